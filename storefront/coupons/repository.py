from typing import Optional
from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from storefront.schema.full_schema import Coupon, Orders, PaymentState


async def get_coupon_by_code(session: AsyncSession, code: str) -> Optional[Coupon]:
    stmt = select(Coupon).where(func.upper(Coupon.code) == code.strip().upper())
    res = await session.execute(stmt)
    return res.scalar_one_or_none()


async def user_has_used_coupon(session: AsyncSession, user_id: Optional[int], coupon_id: int) -> bool:
    """A coupon counts as used once the user has a paid order carrying it."""
    if user_id is None:
        return False
    stmt = (
        select(Orders.id)
        .where(
            Orders.user_id == user_id,
            Orders.coupon_id == coupon_id,
            Orders.payment_status == PaymentState.PAID.value,
        )
        .limit(1)
    )
    res = await session.execute(stmt)
    return res.scalar_one_or_none() is not None


async def redeem_coupon(session: AsyncSession, coupon_id: int) -> bool:
    """Increment used_count unless the limit is already reached. False when nothing was updated."""
    stmt = (
        update(Coupon)
        .where(
            Coupon.id == coupon_id,
            or_(Coupon.usage_limit.is_(None), Coupon.used_count < Coupon.usage_limit),
        )
        .values(used_count=Coupon.used_count + 1)
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    return res.rowcount == 1


async def release_coupon(session: AsyncSession, coupon_id: int) -> bool:
    stmt = (
        update(Coupon)
        .where(Coupon.id == coupon_id, Coupon.used_count > 0)
        .values(used_count=Coupon.used_count - 1)
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    return res.rowcount == 1
