from abc import ABC, abstractmethod
from typing import Optional
from fastapi import Request
from storefront.common.logging_setup import ContextLogger, get_logger, mask_email
from storefront.schema.full_schema import Orders

logger = get_logger("storefront.notifications")


class NotificationDispatcher(ABC):
    """Outbound customer notifications. Delivery (email, SMS) lives behind this interface."""

    @abstractmethod
    async def order_confirmed(self, order: Orders) -> None:
        ...


class LoggingNotificationDispatcher(NotificationDispatcher):

    async def order_confirmed(self, order: Orders) -> None:
        logger.info(
            "notification.order_confirmed",
            extra={
                "order_number": order.order_number,
                "customer_email": mask_email(order.customer_email),
                "payment_method": order.payment_method,
            },
        )


async def notify_order_confirmed(dispatcher: NotificationDispatcher, order: Orders,
                                 log: Optional[ContextLogger] = None) -> bool:
    """Best-effort: the order is already committed, so a failed send is logged and dropped."""
    log = log or logger
    try:
        await dispatcher.order_confirmed(order)
        return True
    except Exception:
        log.exception("notification.order_confirmed.failed", extra={"order_number": order.order_number})
        return False


def get_notifier(request: Request) -> NotificationDispatcher:
    return request.app.state.notifier
