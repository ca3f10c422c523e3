from decimal import Decimal
from typing import Any, Dict, List, Optional
from jose import jwt
from sqlalchemy import func, select

from storefront.config.settings import config_settings
from storefront.notifications.dispatcher import NotificationDispatcher
from storefront.schema.full_schema import CartItem, Coupon, FulfillmentPoint, Orders, Payment, Product, ProductVariant, Users

url_prefix = "/api/v1"


class RecordingDispatcher(NotificationDispatcher):
    def __init__(self):
        self.sent: List[str] = []

    async def order_confirmed(self, order) -> None:
        self.sent.append(order.order_number)


class UnreachableStore:
    """Key-value store whose backend is down."""

    async def get(self, key):
        raise ConnectionError("redis down")

    async def set(self, key, value, ttl_seconds):
        raise ConnectionError("redis down")

    async def delete(self, key):
        raise ConnectionError("redis down")


def make_token(user: Users, roles=()) -> str:
    claims = {"sub": str(user.public_id), "roles": list(roles)}
    return jwt.encode(claims, config_settings.JWT_SECRET, algorithm=config_settings.JWT_ALGO)


def auth_headers(user: Users, roles=()) -> Dict[str, str]:
    return {"Authorization": f"Bearer {make_token(user, roles)}"}


async def create_user(session, email: str = "ada@example.com", name: str = "Ada Obi") -> Users:
    user = Users(email=email, name=name, phone="+2348030000000")
    session.add(user)
    await session.commit()
    return user


async def create_product(session, name: str = "Palm Oil 5L", base_price: str = "1000.00",
                         sale_price: Optional[str] = None, stock: int = 10, is_active: bool = True) -> Product:
    product = Product(
        name=name,
        base_price=Decimal(base_price),
        sale_price=Decimal(sale_price) if sale_price is not None else None,
        stock_qty=stock,
        is_active=is_active,
    )
    session.add(product)
    await session.commit()
    return product


async def create_variant(session, product: Product, label: str = "10kg", adjustment: str = "0.00",
                         stock: int = 5) -> ProductVariant:
    variant = ProductVariant(product_id=product.id, label=label, price_adjustment=Decimal(adjustment), stock_qty=stock)
    session.add(variant)
    await session.commit()
    return variant


async def add_to_cart(session, user: Users, product: Product, quantity: int,
                      variant: Optional[ProductVariant] = None) -> CartItem:
    item = CartItem(user_id=user.id, product_id=product.id, variant_id=variant.id if variant else None, quantity=quantity)
    session.add(item)
    await session.commit()
    return item


async def create_point(session, **overrides) -> FulfillmentPoint:
    values = {
        "name": "Lekki Store",
        "latitude": 6.4474,
        "longitude": 3.4700,
        "is_pickup_location": True,
        "is_delivery_location": True,
        "delivery_base_fee": Decimal("200.00"),
        "delivery_fee_per_km": Decimal("100.00"),
    }
    values.update(overrides)
    point = FulfillmentPoint(**values)
    session.add(point)
    await session.commit()
    return point


async def create_coupon(session, code: str = "SAVE10", type: str = "percentage", value: str = "10",
                        **overrides) -> Coupon:
    coupon = Coupon(code=code, type=type, value=Decimal(value), **overrides)
    session.add(coupon)
    await session.commit()
    return coupon


async def reload(session, model, pk):
    """Fresh copy of a row, as committed by whichever connection wrote it last."""
    return await session.get(model, pk, populate_existing=True)


async def count_rows(session, model) -> int:
    res = await session.execute(select(func.count()).select_from(model))
    return int(res.scalar_one())


def shipping_payload(**overrides) -> Dict[str, Any]:
    payload = {
        "payment_method": "cash_on_delivery",
        "delivery_method": "shipping",
        "customer_name": "Ada Obi",
        "customer_email": "ada@example.com",
        "shipping_address": "12 Admiralty Way",
        "shipping_city": "Lekki",
        "shipping_state": "Lagos",
        "shipping_phone": "+2348030000000",
        "shipping_fee": "500.00",
    }
    payload.update(overrides)
    return payload


async def create_order_with_payment(session, user: Users, grand_total: str = "2660.00",
                                    reference: str = "STF-1700000000-ab12cd34", gateway: str = "paystack",
                                    order_number: str = "ORD-TEST000001"):
    order = Orders(
        order_number=order_number,
        user_id=user.id,
        subtotal=Decimal(grand_total),
        grand_total=Decimal(grand_total),
        payment_method=gateway,
        payment_reference=reference,
        customer_name=user.name,
        customer_email=user.email,
    )
    session.add(order)
    await session.flush()
    payment = Payment(order_id=order.id, gateway=gateway, amount=Decimal(grand_total), reference=reference)
    session.add(payment)
    await session.commit()
    return order, payment
