from datetime import timedelta

import pytest
from sqlalchemy import update
from storefront.cache._cache import InMemoryStore
from storefront.common.utils import now
from storefront.delivery.services import DeliveryFeeCalculator
from storefront.orders.models import OrderCreateIn
from storefront.orders.services import OrderAssembler
from storefront.schema.full_schema import Coupon, Orders, Product
from storefront.scripts.expire_unpaid_orders import parse_args
from tests.factories import (
    RecordingDispatcher, add_to_cart, create_coupon, create_product, create_user, reload, shipping_payload,
)


def _assembler(session, clock=now) -> OrderAssembler:
    return OrderAssembler(session, DeliveryFeeCalculator(session, InMemoryStore()), RecordingDispatcher(), clock=clock)


async def _place(session, user, product, payment_method="paystack", coupon_code=None):
    await add_to_cart(session, user, product, 2)
    checkout = OrderCreateIn(**shipping_payload(payment_method=payment_method, coupon_code=coupon_code))
    order, _ = await _assembler(session).place_order(user.id, checkout)
    return order


async def _age(session, order_id: int, hours: int):
    await session.execute(update(Orders).where(Orders.id == order_id).values(created_at=now() - timedelta(hours=hours)))
    await session.commit()


@pytest.mark.asyncio
async def test_stale_gateway_orders_are_cancelled_and_restocked(db_session):
    user = await create_user(db_session)
    product = await create_product(db_session, stock=10)
    coupon = await create_coupon(db_session, min_order_amount=None)

    stale = await _place(db_session, user, product, coupon_code="SAVE10")
    fresh = await _place(db_session, user, product)
    cod = await _place(db_session, user, product, payment_method="cash_on_delivery")
    await _age(db_session, stale.id, 30)
    await _age(db_session, cod.id, 30)
    assert (await reload(db_session, Product, product.id)).stock_qty == 4

    report = await _assembler(db_session).expire_unpaid_orders(older_than_hours=24)
    assert (report.expired, report.failed) == (1, 0)

    expired = await reload(db_session, Orders, stale.id)
    assert expired.status == "cancelled"
    assert expired.expired_at is not None
    assert (await reload(db_session, Orders, fresh.id)).status == "pending"
    assert (await reload(db_session, Orders, cod.id)).status == "pending"
    assert (await reload(db_session, Product, product.id)).stock_qty == 6
    assert (await reload(db_session, Coupon, coupon.id)).used_count == 0

    # second run finds nothing left to do
    again = await _assembler(db_session).expire_unpaid_orders(older_than_hours=24)
    assert (again.expired, again.failed) == (0, 0)


@pytest.mark.asyncio
async def test_paid_orders_are_never_expired(db_session):
    user = await create_user(db_session)
    product = await create_product(db_session, stock=10)
    order = await _place(db_session, user, product)
    await db_session.execute(
        update(Orders).where(Orders.id == order.id).values(payment_status="paid", status="processing",
                                                          created_at=now() - timedelta(hours=48))
    )
    await db_session.commit()

    report = await _assembler(db_session).expire_unpaid_orders(older_than_hours=24)
    assert report.expired == 0
    assert (await reload(db_session, Orders, order.id)).status == "processing"


def test_script_arguments():
    assert parse_args([]).hours == 24
    assert parse_args(["--hours", "6"]).hours == 6
    with pytest.raises(SystemExit):
        parse_args(["--hours", "-1"])
