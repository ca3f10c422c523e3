from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple
from sqlalchemy import and_, delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from storefront.schema.full_schema import CartItem, OrderItem, Orders, PaymentState, OrderStatus, Product, ProductVariant


@dataclass
class CartLine:
    product_id: int
    variant_id: Optional[int]
    quantity: int
    product_name: str
    base_price: Decimal
    sale_price: Optional[Decimal]
    is_active: bool
    available_stock: int
    variant_label: Optional[str] = None
    price_adjustment: Decimal = Decimal("0")


async def load_cart_lines(session: AsyncSession, user_id: int) -> List[CartLine]:
    """
    Cart rows joined with their product/variant, product rows locked for the rest of the
    transaction. Duplicate (product, variant) rows are merged into one line.
    """
    stmt = (
        select(CartItem.product_id, CartItem.variant_id, CartItem.quantity,
               Product.name, Product.base_price, Product.sale_price, Product.stock_qty, Product.is_active)
        .join(Product, Product.id == CartItem.product_id)
        .where(CartItem.user_id == user_id)
        .order_by(CartItem.id)
        .with_for_update(of=Product, nowait=False)
    )
    rows = (await session.execute(stmt)).all()
    if not rows:
        return []

    variant_ids = sorted({r.variant_id for r in rows if r.variant_id is not None})
    variants: Dict[int, ProductVariant] = {}
    if variant_ids:
        v_stmt = select(ProductVariant).where(ProductVariant.id.in_(variant_ids)).with_for_update()
        variants = {v.id: v for v in (await session.execute(v_stmt)).scalars().all()}

    merged: Dict[Tuple[int, Optional[int]], CartLine] = {}
    for r in rows:
        key = (int(r.product_id), r.variant_id)
        if key in merged:
            merged[key].quantity += int(r.quantity)
            continue

        variant = variants.get(r.variant_id) if r.variant_id is not None else None
        if r.variant_id is not None and (variant is None or variant.product_id != r.product_id):
            # dangling variant reference: nothing sellable on this line
            available, label, adjustment = 0, None, Decimal("0")
        elif variant is not None:
            available, label, adjustment = int(variant.stock_qty), variant.label, variant.price_adjustment
        else:
            available, label, adjustment = int(r.stock_qty), None, Decimal("0")

        merged[key] = CartLine(
            product_id=int(r.product_id),
            variant_id=r.variant_id,
            quantity=int(r.quantity),
            product_name=r.name,
            base_price=r.base_price,
            sale_price=r.sale_price,
            is_active=bool(r.is_active),
            available_stock=available,
            variant_label=label,
            price_adjustment=adjustment,
        )
    return list(merged.values())


async def adjust_product_stock(session: AsyncSession, product_id: int, delta: int) -> bool:
    """
    The only way product stock changes. A decrement only applies while stock covers it,
    so concurrent checkouts can never drive stock negative. False when nothing was updated.
    """
    conditions = [Product.id == product_id]
    if delta < 0:
        conditions.append(Product.stock_qty >= -delta)
    stmt = update(Product).where(and_(*conditions)).values(stock_qty=Product.stock_qty + delta)
    res = await session.execute(stmt)
    return res.rowcount == 1


async def adjust_variant_stock(session: AsyncSession, variant_id: int, delta: int) -> bool:
    conditions = [ProductVariant.id == variant_id]
    if delta < 0:
        conditions.append(ProductVariant.stock_qty >= -delta)
    stmt = update(ProductVariant).where(and_(*conditions)).values(stock_qty=ProductVariant.stock_qty + delta)
    res = await session.execute(stmt)
    return res.rowcount == 1


async def adjust_line_stock(session: AsyncSession, product_id: int, variant_id: Optional[int], delta: int) -> bool:
    if variant_id is not None:
        return await adjust_variant_stock(session, variant_id, delta)
    return await adjust_product_stock(session, product_id, delta)


async def clear_cart(session: AsyncSession, user_id: int) -> None:
    await session.execute(delete(CartItem).where(CartItem.user_id == user_id))


async def order_number_exists(session: AsyncSession, order_number: str) -> bool:
    res = await session.execute(select(Orders.id).where(Orders.order_number == order_number))
    return res.scalar_one_or_none() is not None


async def get_order(session: AsyncSession, order_id: int, for_update: bool = False) -> Optional[Orders]:
    stmt = select(Orders).where(Orders.id == order_id)
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    res = await session.execute(stmt)
    return res.scalar_one_or_none()


async def get_order_by_key(session: AsyncSession, key: str, for_update: bool = False) -> Optional[Orders]:
    """Numeric keys are ids, anything else is an order number."""
    cond = Orders.id == int(key) if key.isascii() and key.isdigit() else Orders.order_number == key.upper()
    stmt = select(Orders).where(cond)
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    res = await session.execute(stmt)
    return res.scalar_one_or_none()


async def get_order_items(session: AsyncSession, order_id: int) -> List[OrderItem]:
    res = await session.execute(select(OrderItem).where(OrderItem.order_id == order_id).order_by(OrderItem.id))
    return list(res.scalars().all())


async def list_user_orders(session: AsyncSession, user_id: int, limit: int, offset: int = 0) -> List[Orders]:
    stmt = (
        select(Orders)
        .where(Orders.user_id == user_id)
        .order_by(Orders.created_at.desc(), Orders.id.desc())
        .limit(limit)
        .offset(offset)
    )
    res = await session.execute(stmt)
    return list(res.scalars().all())


async def stale_unpaid_order_ids(session: AsyncSession, cutoff: datetime,
                                 payment_methods: Sequence[str]) -> List[int]:
    stmt = (
        select(Orders.id)
        .where(
            Orders.status == OrderStatus.PENDING.value,
            Orders.payment_status == PaymentState.PENDING.value,
            Orders.payment_method.in_(list(payment_methods)),
            Orders.expired_at.is_(None),
            Orders.created_at < cutoff,
        )
        .order_by(Orders.id)
    )
    res = await session.execute(stmt)
    return [int(i) for i in res.scalars().all()]
