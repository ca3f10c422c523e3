from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession
from storefront.cache._cache import KeyValueStore
from storefront.cache.utils import get_kv_store
from storefront.db.dependencies import get_session
from storefront.delivery.services import DeliveryFeeCalculator


async def get_fee_calculator(session: AsyncSession = Depends(get_session),
                             store: KeyValueStore = Depends(get_kv_store)) -> DeliveryFeeCalculator:
    return DeliveryFeeCalculator(session, store)
