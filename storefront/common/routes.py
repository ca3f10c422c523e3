from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import  AsyncSession
from storefront.common.custom_exceptions import AppError
from storefront.common.utils import build_success, json_ok
from storefront.db.dependencies import get_session

home_router = APIRouter()


@home_router.get("/health")
async def health_check(session:AsyncSession=Depends(get_session)):
    try:
        await session.execute(select(1))
    except SQLAlchemyError as e:
        raise AppError("Database connection error", code="DB_UNAVAILABLE") from e

    return json_ok(build_success({"status": "healthy"}))
