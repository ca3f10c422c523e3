from datetime import timedelta
from decimal import Decimal

import pytest
from storefront.common.utils import now
from storefront.coupons.repository import get_coupon_by_code, redeem_coupon, release_coupon
from storefront.coupons.services import calculate_discount, coupon_rejection_reason, is_coupon_valid
from storefront.orders.pricing import PricedLine, PricingEngine, effective_unit_price
from storefront.schema.full_schema import Coupon
from tests.factories import auth_headers, create_coupon, create_user, reload, url_prefix


def _coupon(**overrides) -> Coupon:
    values = {"code": "SAVE10", "type": "percentage", "value": Decimal("10"), "min_order_amount": Decimal("1000")}
    values.update(overrides)
    return Coupon(**values)


def test_scenario_d_percentage_coupon():
    coupon = _coupon()
    assert is_coupon_valid(coupon, Decimal("2000"), now())
    assert calculate_discount(coupon, Decimal("2000")) == Decimal("200.00")


def test_percentage_is_capped_by_max_discount():
    coupon = _coupon(value=Decimal("50"), max_discount_amount=Decimal("300"))
    assert calculate_discount(coupon, Decimal("2000")) == Decimal("300.00")


def test_percentage_above_hundred_is_treated_as_hundred():
    assert calculate_discount(_coupon(value=Decimal("150")), Decimal("2000")) == Decimal("2000.00")


def test_fixed_discount_never_exceeds_amount():
    coupon = _coupon(type="fixed", value=Decimal("5000"))
    assert calculate_discount(coupon, Decimal("1200")) == Decimal("1200.00")
    assert calculate_discount(coupon, Decimal("0")) == Decimal("0.00")


@pytest.mark.parametrize("overrides,amount,reason", [
    ({"is_active": False}, "2000", "Coupon is not active"),
    ({"starts_at": now() + timedelta(days=1)}, "2000", "Coupon is not yet valid"),
    ({"expires_at": now() - timedelta(minutes=1)}, "2000", "Coupon has expired"),
    ({"usage_limit": 5, "used_count": 5}, "2000", "Coupon usage limit reached"),
    ({}, "999.99", "Order must be at least 1000.00 to use this coupon"),
])
def test_rejection_reasons(overrides, amount, reason):
    assert coupon_rejection_reason(_coupon(**overrides), Decimal(amount), now()) == reason


def test_coupon_already_used_by_customer():
    assert coupon_rejection_reason(_coupon(), Decimal("2000"), now(), user_has_used=True) == "You have already used this coupon"


def test_effective_price_prefers_sale_price_and_adds_variant_adjustment():
    assert effective_unit_price(Decimal("1000"), None) == Decimal("1000.00")
    assert effective_unit_price(Decimal("1000"), Decimal("800")) == Decimal("800.00")
    assert effective_unit_price(Decimal("1000"), Decimal("800"), Decimal("250")) == Decimal("1050.00")


def test_grand_total_identity():
    lines = [
        PricedLine(1, None, "Palm Oil 5L", None, 2, Decimal("1000.00"), Decimal("1000.00")),
        PricedLine(2, 7, "Rice", "10kg", 1, Decimal("333.33"), Decimal("333.33")),
    ]
    totals = PricingEngine(Decimal("0.08")).totals(lines, Decimal("500"), Decimal("200"))
    assert totals.subtotal == Decimal("2333.33")
    assert totals.tax == Decimal("186.67")
    assert totals.grand_total == totals.subtotal + totals.tax + totals.shipping_fee - totals.discount
    assert totals.grand_total == Decimal("2820.00")


@pytest.mark.asyncio
async def test_redeem_respects_usage_limit_and_release_stays_non_negative(db_session):
    coupon = await create_coupon(db_session, usage_limit=1)

    assert await redeem_coupon(db_session, coupon.id)
    assert not await redeem_coupon(db_session, coupon.id)
    await db_session.commit()
    assert (await reload(db_session, Coupon, coupon.id)).used_count == 1

    assert await release_coupon(db_session, coupon.id)
    assert not await release_coupon(db_session, coupon.id)
    await db_session.commit()
    assert (await reload(db_session, Coupon, coupon.id)).used_count == 0


@pytest.mark.asyncio
async def test_lookup_is_case_insensitive(db_session):
    await create_coupon(db_session, code="SAVE10")
    assert (await get_coupon_by_code(db_session, "  save10 ")).code == "SAVE10"
    assert await get_coupon_by_code(db_session, "NOPE") is None


@pytest.mark.asyncio
async def test_validate_endpoint_previews_discount_without_redeeming(ac_client, db_session):
    coupon = await create_coupon(db_session, min_order_amount=Decimal("1000"))

    resp = await ac_client.post(f"{url_prefix}/coupons/validate", json={"code": "save10", "subtotal": "2000"})
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["discount"] == 200.0
    assert data["subtotal_after_discount"] == 1800.0
    assert (await reload(db_session, Coupon, coupon.id)).used_count == 0


@pytest.mark.asyncio
async def test_validate_endpoint_with_token_and_unknown_code(ac_client, db_session):
    user = await create_user(db_session)
    await create_coupon(db_session, min_order_amount=Decimal("1000"))

    too_small = await ac_client.post(f"{url_prefix}/coupons/validate", json={"code": "SAVE10", "subtotal": "500"},
                                     headers=auth_headers(user))
    assert too_small.status_code == 422
    assert too_small.json()["error"]["code"] == "COUPON_INVALID"

    unknown = await ac_client.post(f"{url_prefix}/coupons/validate", json={"code": "NOPE", "subtotal": "500"})
    assert unknown.status_code == 404
