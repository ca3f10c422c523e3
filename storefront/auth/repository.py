import uuid
from typing import Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from storefront.schema.full_schema import Users


async def identify_user_by_pid(session: AsyncSession, user_pid) -> Optional[int]:
    try:
        pid = user_pid if isinstance(user_pid, uuid.UUID) else uuid.UUID(str(user_pid))
    except (TypeError, ValueError):
        return None
    stmt=select(Users.id).where(Users.public_id==pid)
    res=await session.execute(stmt)
    return res.scalar_one_or_none()
