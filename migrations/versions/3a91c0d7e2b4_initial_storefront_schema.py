"""initial storefront schema

Revision ID: 3a91c0d7e2b4
Revises:
Create Date: 2026-10-18 11:42:07.381204

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3a91c0d7e2b4'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _money(name: str, nullable: bool = False, **kw) -> sa.Column:
    return sa.Column(name, sa.Numeric(12, 2), nullable=nullable, **kw)


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), nullable=False)


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("public_id", sa.Uuid(), nullable=False),
        sa.Column("email", sa.String(320), nullable=True, unique=True),
        sa.Column("name", sa.String(128), nullable=True),
        sa.Column("phone", sa.String(32), nullable=True),
        _created_at(),
    )
    op.create_index("ix_users_public_id", "users", ["public_id"], unique=True)

    op.create_table(
        "fulfillmentpoint",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(256), nullable=False),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("is_pickup_location", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_delivery_location", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _money("delivery_base_fee", nullable=True),
        _money("delivery_fee_per_km", nullable=True),
        _money("free_delivery_threshold", nullable=True),
        _money("minimum_order_value", nullable=True),
        sa.Column("geofence_coordinates", sa.JSON(), nullable=True),
        _created_at(),
    )

    op.create_table(
        "product",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("public_id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(256), nullable=False),
        _money("base_price"),
        _money("sale_price", nullable=True),
        sa.Column("stock_qty", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _created_at(),
    )
    op.create_index("ix_product_public_id", "product", ["public_id"], unique=True)

    op.create_table(
        "productvariant",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("product.id", ondelete="CASCADE"), nullable=False),
        sa.Column("label", sa.String(128), nullable=False),
        _money("price_adjustment", server_default=sa.text("0")),
        sa.Column("stock_qty", sa.Integer(), nullable=False, server_default=sa.text("0")),
    )
    op.create_index("ix_productvariant_product_id", "productvariant", ["product_id"])

    op.create_table(
        "cartitem",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("product.id", ondelete="CASCADE"), nullable=False),
        sa.Column("variant_id", sa.Integer(), sa.ForeignKey("productvariant.id", ondelete="CASCADE"), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        _created_at(),
        sa.UniqueConstraint("user_id", "product_id", "variant_id", name="uq_cart_user_product_variant"),
    )
    op.create_index("ix_cartitem_user_id", "cartitem", ["user_id"])

    op.create_table(
        "coupon",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("code", sa.String(64), nullable=False),
        sa.Column("type", sa.String(16), nullable=False),
        _money("value"),
        _money("min_order_amount", nullable=True),
        _money("max_discount_amount", nullable=True),
        sa.Column("starts_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("usage_limit", sa.Integer(), nullable=True),
        sa.Column("used_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _created_at(),
    )
    op.create_index("ix_coupon_code", "coupon", ["code"], unique=True)

    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("public_id", sa.Uuid(), nullable=False),
        sa.Column("order_number", sa.String(32), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("payment_status", sa.String(16), nullable=False),
        sa.Column("currency", sa.String(8), nullable=False),
        _money("subtotal"),
        _money("discount"),
        _money("tax"),
        _money("shipping_fee"),
        _money("grand_total"),
        sa.Column("delivery_method", sa.String(16), nullable=False),
        sa.Column("payment_method", sa.String(32), nullable=False),
        sa.Column("payment_reference", sa.String(128), nullable=True),
        sa.Column("coupon_id", sa.Integer(), sa.ForeignKey("coupon.id", ondelete="SET NULL"), nullable=True),
        sa.Column("fulfillment_point_id", sa.Integer(), sa.ForeignKey("fulfillmentpoint.id", ondelete="SET NULL"), nullable=True),
        sa.Column("customer_name", sa.String(256), nullable=True),
        sa.Column("customer_email", sa.String(320), nullable=True),
        sa.Column("shipping_address", sa.Text(), nullable=True),
        sa.Column("shipping_city", sa.String(128), nullable=True),
        sa.Column("shipping_state", sa.String(128), nullable=True),
        sa.Column("shipping_zip", sa.String(32), nullable=True),
        sa.Column("shipping_phone", sa.String(32), nullable=True),
        sa.Column("shipping_latitude", sa.Float(), nullable=True),
        sa.Column("shipping_longitude", sa.Float(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("expired_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_orders_public_id", "orders", ["public_id"], unique=True)
    op.create_index("ix_orders_order_number", "orders", ["order_number"], unique=True)
    op.create_index("ix_orders_user_id", "orders", ["user_id"])
    op.create_index("ix_orders_status", "orders", ["status"])
    op.create_index("ix_orders_payment_status", "orders", ["payment_status"])
    op.create_index("ix_orders_payment_reference", "orders", ["payment_reference"])
    op.create_index("ix_orders_created_at", "orders", ["created_at"])

    op.create_table(
        "orderitem",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("product.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("variant_id", sa.Integer(), sa.ForeignKey("productvariant.id", ondelete="RESTRICT"), nullable=True),
        sa.Column("product_name", sa.String(256), nullable=False),
        sa.Column("variant_label", sa.String(128), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        _money("unit_price"),
        _money("base_price"),
        _money("subtotal"),
        sa.UniqueConstraint("order_id", "product_id", "variant_id", name="uq_order_product_variant"),
    )
    op.create_index("ix_orderitem_order_id", "orderitem", ["order_id"])

    op.create_table(
        "payment",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("gateway", sa.String(32), nullable=False),
        _money("amount"),
        sa.Column("currency", sa.String(8), nullable=False),
        sa.Column("reference", sa.String(128), nullable=False),
        sa.Column("transaction_id", sa.String(128), nullable=True),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("raw_payload", sa.JSON(), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
    )
    op.create_index("ix_payment_order_id", "payment", ["order_id"])
    op.create_index("ix_payment_reference", "payment", ["reference"], unique=True)
    op.create_index("ix_payment_transaction_id", "payment", ["transaction_id"])
    op.create_index("ix_payment_status", "payment", ["status"])

    op.create_table(
        "paymentwebhookevent",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("gateway", sa.String(32), nullable=False),
        sa.Column("provider_event_id", sa.String(128), nullable=False),
        sa.Column("event_type", sa.String(64), nullable=True),
        sa.Column("reference", sa.String(128), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        _created_at(),
        sa.UniqueConstraint("gateway", "provider_event_id", name="uq_webhook_gateway_event"),
    )
    op.create_index("ix_paymentwebhookevent_gateway", "paymentwebhookevent", ["gateway"])
    op.create_index("ix_paymentwebhookevent_reference", "paymentwebhookevent", ["reference"])
    op.create_index("ix_paymentwebhookevent_processed_at", "paymentwebhookevent", ["processed_at"])
    op.create_index("ix_webhook_unprocessed", "paymentwebhookevent", ["gateway", "processed_at"])


def downgrade() -> None:
    """Downgrade schema."""
    for table in ("paymentwebhookevent", "payment", "orderitem", "orders", "coupon",
                  "cartitem", "productvariant", "product", "fulfillmentpoint", "users"):
        op.drop_table(table)
