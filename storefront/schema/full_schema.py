import enum
import uuid
from decimal import Decimal
from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Index, Integer, Numeric, Text, UniqueConstraint, Uuid, text
from uuid6 import uuid7
from datetime import datetime
from typing import Dict, FrozenSet, Optional
from sqlmodel import Column, SQLModel, Field, String
from storefront.common.custom_exceptions import InvalidStateTransition
from storefront.common.utils import now


def _money_column(nullable: bool = False) -> Column:
    return Column(Numeric(12, 2), nullable=nullable)


def _checked_transition(current: enum.Enum, target: enum.Enum, allowed: Dict[enum.Enum, FrozenSet[enum.Enum]]):
    if target not in allowed.get(current, frozenset()):
        raise InvalidStateTransition(
            f"cannot move from {current.value} to {target.value}",
            details={"from": current.value, "to": target.value},
        )
    return target


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.CANCELLED, OrderStatus.REFUNDED)

    def transition_to(self, target: "OrderStatus") -> "OrderStatus":
        return _checked_transition(self, OrderStatus(target), _ORDER_TRANSITIONS)


_ORDER_TRANSITIONS = {
    OrderStatus.PENDING: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED, OrderStatus.REFUNDED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.CANCELLED, OrderStatus.REFUNDED}),
}


class PaymentState(str, enum.Enum):
    """Order-level payment flag. Only ever moves forward."""
    PENDING = "pending"
    PAID = "paid"

    def transition_to(self, target: "PaymentState") -> "PaymentState":
        return _checked_transition(self, PaymentState(target), _PAYMENT_STATE_TRANSITIONS)


_PAYMENT_STATE_TRANSITIONS = {
    PaymentState.PENDING: frozenset({PaymentState.PAID}),
}


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"

    def transition_to(self, target: "PaymentStatus") -> "PaymentStatus":
        return _checked_transition(self, PaymentStatus(target), _PAYMENT_TRANSITIONS)


_PAYMENT_TRANSITIONS = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.COMPLETED}),
}


class GatewayKind(str, enum.Enum):
    PAYSTACK = "paystack"
    FLUTTERWAVE = "flutterwave"


class PaymentMethod(str, enum.Enum):
    CASH_ON_DELIVERY = "cash_on_delivery"
    BANK_TRANSFER = "bank_transfer"
    PAYSTACK = "paystack"
    FLUTTERWAVE = "flutterwave"


class DeliveryMethod(str, enum.Enum):
    SHIPPING = "shipping"
    PICKUP = "pickup"


class CouponType(str, enum.Enum):
    FIXED = "fixed"
    PERCENTAGE = "percentage"


class Users(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    public_id: uuid.UUID = Field(
        default_factory=uuid7,
        sa_column=Column(Uuid(as_uuid=True), unique=True, index=True, nullable=False)
    )
    email: Optional[str] = Field(default=None,sa_column=Column(String(320), nullable=True,unique=True))
    name: Optional[str] = Field(default=None, sa_column=Column(String(128), nullable=True))
    phone: Optional[str] = Field(default=None, sa_column=Column(String(32), nullable=True))
    created_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), nullable=False,default=now))


class FulfillmentPoint(SQLModel, table=True):
    """A store or warehouse. Fee columns left null fall back to the store-wide defaults."""

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(sa_column=Column(String(256), nullable=False))
    address: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    latitude: Optional[float] = Field(default=None, sa_column=Column(Float, nullable=True))
    longitude: Optional[float] = Field(default=None, sa_column=Column(Float, nullable=True))
    is_active: bool = Field(default=True, sa_column=Column(Boolean, nullable=False, server_default=text('true')))
    is_pickup_location: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, server_default=text('false')))
    is_delivery_location: bool = Field(default=True, sa_column=Column(Boolean, nullable=False, server_default=text('true')))
    delivery_base_fee: Optional[Decimal] = Field(default=None, sa_column=_money_column(nullable=True))
    delivery_fee_per_km: Optional[Decimal] = Field(default=None, sa_column=_money_column(nullable=True))
    free_delivery_threshold: Optional[Decimal] = Field(default=None, sa_column=_money_column(nullable=True))
    minimum_order_value: Optional[Decimal] = Field(default=None, sa_column=_money_column(nullable=True))
    # [[lat, lon], ...]
    geofence_coordinates: Optional[list] = Field(default=None, sa_column=Column(JSON, nullable=True))
    created_at: datetime = Field(default_factory=now, sa_column=Column(DateTime(timezone=True), nullable=False, default=now))


class Product(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    public_id: uuid.UUID = Field(default_factory=uuid7, sa_column=Column(Uuid(as_uuid=True), unique=True, index=True, nullable=False))
    name: str = Field(sa_column=Column(String(256), nullable=False))
    base_price: Decimal = Field(sa_column=_money_column())
    sale_price: Optional[Decimal] = Field(default=None, sa_column=_money_column(nullable=True))
    stock_qty: int = Field(default=0, sa_column=Column(Integer, nullable=False, server_default=text("0")))
    is_active: bool = Field(default=True, sa_column=Column(Boolean, nullable=False, server_default=text('true')))
    created_at: datetime = Field(default_factory=now, sa_column=Column(DateTime(timezone=True), nullable=False, default=now))


class ProductVariant(SQLModel, table=True):
    """Sellable measurement of a product (size, weight, pack). Carries its own stock."""

    id: Optional[int] = Field(default=None, primary_key=True)
    product_id: int = Field(sa_column=Column(Integer, ForeignKey("product.id", ondelete="CASCADE"), nullable=False, index=True))
    label: str = Field(sa_column=Column(String(128), nullable=False))
    price_adjustment: Decimal = Field(default=Decimal("0.00"), sa_column=Column(Numeric(12, 2), nullable=False, server_default=text("0")))
    stock_qty: int = Field(default=0, sa_column=Column(Integer, nullable=False, server_default=text("0")))


class CartItem(SQLModel, table=True):

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(sa_column=Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True))
    product_id: int = Field(sa_column=Column(Integer, ForeignKey("product.id", ondelete="CASCADE"), nullable=False))
    variant_id: Optional[int] = Field(default=None, sa_column=Column(Integer, ForeignKey("productvariant.id", ondelete="CASCADE"), nullable=True))
    quantity: int = Field(sa_column=Column(Integer, nullable=False))
    created_at: datetime = Field(default_factory=now, sa_column=Column(DateTime(timezone=True), nullable=False, default=now))

    __table_args__ = (
        UniqueConstraint("user_id", "product_id", "variant_id", name="uq_cart_user_product_variant"),
    )


class Coupon(SQLModel, table=True):

    id: Optional[int] = Field(default=None, primary_key=True)
    code: str = Field(sa_column=Column(String(64), nullable=False, unique=True, index=True))
    type: str = Field(default=CouponType.FIXED.value, sa_column=Column(String(16), nullable=False))
    value: Decimal = Field(sa_column=_money_column())
    min_order_amount: Optional[Decimal] = Field(default=None, sa_column=_money_column(nullable=True))
    max_discount_amount: Optional[Decimal] = Field(default=None, sa_column=_money_column(nullable=True))
    starts_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    expires_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    usage_limit: Optional[int] = Field(default=None, sa_column=Column(Integer, nullable=True))
    used_count: int = Field(default=0, sa_column=Column(Integer, nullable=False, server_default=text("0")))
    is_active: bool = Field(default=True, sa_column=Column(Boolean, nullable=False, server_default=text('true')))
    created_at: datetime = Field(default_factory=now, sa_column=Column(DateTime(timezone=True), nullable=False, default=now))


class Orders(SQLModel, table=True):

    id: Optional[int] = Field(default=None, primary_key=True)
    public_id: uuid.UUID = Field(default_factory=uuid7, sa_column=Column(Uuid(as_uuid=True), unique=True, index=True, nullable=False))
    order_number: str = Field(sa_column=Column(String(32), nullable=False, unique=True, index=True))
    user_id: Optional[int] = Field(default=None, sa_column=Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), index=True))
    status: str = Field(default=OrderStatus.PENDING.value, sa_column=Column(String(16), nullable=False, index=True))
    payment_status: str = Field(default=PaymentState.PENDING.value, sa_column=Column(String(16), nullable=False, index=True))
    currency: str = Field(default="NGN", sa_column=Column(String(8), nullable=False))
    subtotal: Decimal = Field(default=Decimal("0.00"), sa_column=_money_column())
    discount: Decimal = Field(default=Decimal("0.00"), sa_column=_money_column())
    tax: Decimal = Field(default=Decimal("0.00"), sa_column=_money_column())
    shipping_fee: Decimal = Field(default=Decimal("0.00"), sa_column=_money_column())
    grand_total: Decimal = Field(default=Decimal("0.00"), sa_column=_money_column())
    delivery_method: str = Field(default=DeliveryMethod.SHIPPING.value, sa_column=Column(String(16), nullable=False))
    payment_method: str = Field(sa_column=Column(String(32), nullable=False))
    payment_reference: Optional[str] = Field(default=None, sa_column=Column(String(128), nullable=True, index=True))
    coupon_id: Optional[int] = Field(default=None, sa_column=Column(Integer, ForeignKey("coupon.id", ondelete="SET NULL"), nullable=True))
    fulfillment_point_id: Optional[int] = Field(default=None, sa_column=Column(Integer, ForeignKey("fulfillmentpoint.id", ondelete="SET NULL"), nullable=True))
    customer_name: Optional[str] = Field(default=None, sa_column=Column(String(256), nullable=True))
    customer_email: Optional[str] = Field(default=None, sa_column=Column(String(320), nullable=True))
    shipping_address: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    shipping_city: Optional[str] = Field(default=None, sa_column=Column(String(128), nullable=True))
    shipping_state: Optional[str] = Field(default=None, sa_column=Column(String(128), nullable=True))
    shipping_zip: Optional[str] = Field(default=None, sa_column=Column(String(32), nullable=True))
    shipping_phone: Optional[str] = Field(default=None, sa_column=Column(String(32), nullable=True))
    shipping_latitude: Optional[float] = Field(default=None, sa_column=Column(Float, nullable=True))
    shipping_longitude: Optional[float] = Field(default=None, sa_column=Column(Float, nullable=True))
    notes: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    expired_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    created_at: datetime = Field(default_factory=now, sa_column=Column(DateTime(timezone=True), nullable=False, default=now, index=True))
    updated_at: datetime = Field(default_factory=now,sa_column=Column(DateTime(timezone=True), nullable=False,default=now, onupdate=now))


# Order --> OrderItems (1:many); one row per distinct (product, variant)
class OrderItem(SQLModel, table=True):

    id: Optional[int] = Field(default=None, primary_key=True)
    order_id: int = Field(sa_column=Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True))
    product_id: int = Field(sa_column=Column(Integer, ForeignKey("product.id", ondelete="RESTRICT"), nullable=False))
    variant_id: Optional[int] = Field(default=None, sa_column=Column(Integer, ForeignKey("productvariant.id", ondelete="RESTRICT"), nullable=True))
    product_name: str = Field(sa_column=Column(String(256), nullable=False))
    variant_label: Optional[str] = Field(default=None, sa_column=Column(String(128), nullable=True))
    quantity: int = Field(sa_column=Column(Integer, nullable=False))
    unit_price: Decimal = Field(sa_column=_money_column())
    base_price: Decimal = Field(sa_column=_money_column())
    subtotal: Decimal = Field(sa_column=_money_column())

    __table_args__ = (
        UniqueConstraint("order_id", "product_id", "variant_id", name="uq_order_product_variant"),
    )


class Payment(SQLModel, table=True):

    id: Optional[int] = Field(default=None, primary_key=True)
    order_id: int = Field(sa_column=Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True))
    gateway: str = Field(sa_column=Column(String(32), nullable=False))
    amount: Decimal = Field(sa_column=_money_column())
    currency: str = Field(default="NGN", sa_column=Column(String(8), nullable=False))
    reference: str = Field(sa_column=Column(String(128), nullable=False, unique=True, index=True))
    transaction_id: Optional[str] = Field(default=None, sa_column=Column(String(128), nullable=True, index=True))
    status: str = Field(default=PaymentStatus.PENDING.value, sa_column=Column(String(16), nullable=False, index=True))
    raw_payload: Optional[dict] = Field(default=None, sa_column=Column(JSON, nullable=True))
    completed_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    created_at: datetime = Field(default_factory=now, sa_column=Column(DateTime(timezone=True), nullable=False, default=now))


class PaymentWebhookEvent(SQLModel, table=True):

    id: Optional[int] = Field(default=None, primary_key=True)
    gateway: str = Field(sa_column=Column(String(32), nullable=False, index=True))
    provider_event_id: str = Field(sa_column=Column(String(128), nullable=False))
    event_type: Optional[str] = Field(default=None, sa_column=Column(String(64), nullable=True))
    reference: Optional[str] = Field(default=None, sa_column=Column(String(128), nullable=True, index=True))
    payload: Optional[dict] = Field(default=None, sa_column=Column(JSON, nullable=True))
    processed_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True, index=True))
    last_error: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    created_at: datetime = Field(default_factory=now, sa_column=Column(DateTime(timezone=True), nullable=False, default=now))

    __table_args__ = (
        UniqueConstraint("gateway", "provider_event_id", name="uq_webhook_gateway_event"),
        Index("ix_webhook_unprocessed", "gateway", "processed_at"),
    )
