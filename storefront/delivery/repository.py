from typing import Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from storefront.schema.full_schema import FulfillmentPoint


async def get_fulfillment_point(session: AsyncSession, point_id: int) -> Optional[FulfillmentPoint]:
    res = await session.execute(select(FulfillmentPoint).where(FulfillmentPoint.id == point_id))
    return res.scalar_one_or_none()


async def first_delivery_point(session: AsyncSession) -> Optional[FulfillmentPoint]:
    stmt = (
        select(FulfillmentPoint)
        .where(FulfillmentPoint.is_active.is_(True), FulfillmentPoint.is_delivery_location.is_(True))
        .order_by(FulfillmentPoint.id)
        .limit(1)
    )
    res = await session.execute(stmt)
    return res.scalar_one_or_none()


async def get_active_pickup_point(session: AsyncSession, point_id: int) -> Optional[FulfillmentPoint]:
    stmt = select(FulfillmentPoint).where(
        FulfillmentPoint.id == point_id,
        FulfillmentPoint.is_active.is_(True),
        FulfillmentPoint.is_pickup_location.is_(True),
    )
    res = await session.execute(stmt)
    return res.scalar_one_or_none()
