from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession
from storefront.db.dependencies import get_session
from storefront.notifications.dispatcher import NotificationDispatcher, get_notifier
from storefront.payments.reconciler import PaymentReconciler


async def get_reconciler(session: AsyncSession = Depends(get_session),
                         notifier: NotificationDispatcher = Depends(get_notifier)) -> PaymentReconciler:
    return PaymentReconciler(session, notifier)
