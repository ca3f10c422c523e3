from typing import Callable, Optional, Tuple
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.common.custom_exceptions import BusinessRuleViolation, GatewayError, ValidationError
from storefront.common.logging_setup import get_logger
from storefront.common.utils import now, to_money
from storefront.db.utils import atomic
from storefront.payments.gateways import Amount, CustomerInfo, InitResult, PaymentGateway
from storefront.schema.full_schema import OrderStatus, Orders, Payment, PaymentState, PaymentStatus

logger = get_logger("storefront.payments")


def ensure_payable(order: Orders) -> None:
    if order.payment_status == PaymentState.PAID.value:
        raise BusinessRuleViolation("Order has already been paid", code="ORDER_ALREADY_PAID")
    if OrderStatus(order.status).is_terminal:
        raise BusinessRuleViolation(f"Order is {order.status} and cannot be paid", code="ORDER_NOT_PAYABLE")


def check_requested_amount(gateway: PaymentGateway, order: Orders, requested: Optional[Amount]) -> None:
    """A client-sent amount is only a cross-check against grand_total, never what gets charged."""
    if requested is None:
        return
    due = to_money(order.grand_total)
    normalized = gateway.normalize_amount(requested)
    if normalized != due:
        raise ValidationError(
            "Amount does not match the order total",
            details={"amount": normalized, "due": due, "unit": requested.unit.value if requested.unit else None},
        )


async def initialize_payment(session: AsyncSession, gateway: PaymentGateway, order: Orders,
                             customer: CustomerInfo, callback_url: str,
                             requested: Optional[Amount] = None,
                             clock: Callable = now) -> Tuple[InitResult, Payment]:
    """
    Records a pending Payment under a fresh reference, then asks the gateway for a checkout link.
    The row exists before the gateway knows the reference, so any later signal for it can be matched.
    """
    ensure_payable(order)
    check_requested_amount(gateway, order, requested)

    reference = gateway.new_reference(order)
    async with atomic(session):
        payment = Payment(
            order_id=order.id,
            gateway=gateway.kind.value,
            amount=to_money(order.grand_total),
            currency=order.currency,
            reference=reference,
            status=PaymentStatus.PENDING.value,
            created_at=clock(),
        )
        session.add(payment)
        order.payment_reference = reference
        order.payment_method = gateway.kind.value
        order.updated_at = clock()
        session.add(order)

    try:
        init = await gateway.initialize(order, customer, reference, callback_url)
    except GatewayError:
        # the pending row stays; a retry issues a fresh reference
        logger.warning(
            "payments.initialize.failed",
            extra={"order_number": order.order_number, "gateway": gateway.kind.value, "reference": reference},
        )
        raise

    logger.info(
        "payments.initialized",
        extra={"order_number": order.order_number, "gateway": gateway.kind.value, "reference": reference},
    )
    return init, payment
