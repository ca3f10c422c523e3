from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession
from storefront.db.dependencies import get_session
from storefront.delivery.dependency import get_fee_calculator
from storefront.delivery.services import DeliveryFeeCalculator
from storefront.notifications.dispatcher import NotificationDispatcher, get_notifier
from storefront.orders.services import OrderAssembler


async def get_order_assembler(session: AsyncSession = Depends(get_session),
                              calculator: DeliveryFeeCalculator = Depends(get_fee_calculator),
                              notifier: NotificationDispatcher = Depends(get_notifier)) -> OrderAssembler:
    return OrderAssembler(session, calculator, notifier)
