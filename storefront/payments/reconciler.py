from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Optional
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.common.custom_exceptions import BusinessRuleViolation, NotFound
from storefront.common.logging_setup import ContextLogger, get_logger
from storefront.common.utils import now, to_money
from storefront.db.utils import atomic
from storefront.notifications.dispatcher import NotificationDispatcher, notify_order_confirmed
from storefront.orders.repository import get_order
from storefront.payments.repository import (
    complete_payment_if_pending, completed_payment_for_order, get_latest_payment_for_order_reference,
    get_payment_by_reference, get_payment_by_transaction_id,
)
from storefront.schema.full_schema import OrderStatus, Orders, Payment, PaymentState, PaymentStatus


@dataclass
class ReconcileResult:
    order: Orders
    payment: Payment
    already_processed: bool


class PaymentReconciler:
    """
    Turns "the gateway says this payment succeeded" into exactly one local transition,
    whichever channel (callback, verify, webhook) reports it first and however often.

    Per call, inside one transaction:
      1. find the payment (reference, then gateway transaction id, then the order's last reference), row-locked
      2. completed already -> already_processed, nothing changes
      3. order paid through another payment -> already_processed, this one is left pending and flagged
      4. claimed amount below what is due -> rejected
      5. conditional pending -> completed update; zero rows means another caller got there first
      6. order marked paid, pending orders move to processing
    The confirmation goes out only after commit and only from the caller that won step 5.
    """

    def __init__(self, session: AsyncSession, notifier: NotificationDispatcher,
                 clock: Callable = now, logger: Optional[ContextLogger] = None):
        self.session = session
        self.notifier = notifier
        self.clock = clock
        self.logger = logger or get_logger("storefront.payments.reconciler")

    async def _find_payment(self, reference: Optional[str], transaction_id: Optional[str]) -> Optional[Payment]:
        payment = None
        if reference:
            payment = await get_payment_by_reference(self.session, reference, for_update=True)
        if payment is None and transaction_id:
            payment = await get_payment_by_transaction_id(self.session, transaction_id, for_update=True)
        if payment is None and reference:
            payment = await get_latest_payment_for_order_reference(self.session, reference, for_update=True)
        return payment

    async def reconcile(self, reference: Optional[str], *, claimed_amount: Optional[Decimal] = None,
                        raw_payload: Optional[dict] = None, transaction_id: Optional[str] = None,
                        channel: str = "unknown") -> ReconcileResult:
        log_ctx = {"reference": reference, "channel": channel}

        async with atomic(self.session):
            payment = await self._find_payment(reference, transaction_id)
            if payment is None:
                self.logger.warning("payments.reconcile.not_found", extra=log_ctx)
                raise NotFound("Payment not found")

            order = await get_order(self.session, payment.order_id, for_update=True)
            if order is None:
                raise NotFound("Order not found for payment")
            log_ctx["order_number"] = order.order_number

            status = PaymentStatus(payment.status)
            if status == PaymentStatus.COMPLETED:
                self.logger.info("payments.reconcile.already_processed", extra=log_ctx)
                return ReconcileResult(order=order, payment=payment, already_processed=True)

            if order.payment_status == PaymentState.PAID.value:
                other = await completed_payment_for_order(self.session, order.id)
                self.logger.warning(
                    "payments.reconcile.duplicate_charge",
                    extra={**log_ctx, "paid_via": other.reference if other else None, "amount": str(payment.amount)},
                )
                return ReconcileResult(order=order, payment=payment, already_processed=True)

            if claimed_amount is not None and to_money(claimed_amount) < to_money(payment.amount):
                self.logger.warning(
                    "payments.reconcile.amount_short",
                    extra={**log_ctx, "claimed": str(claimed_amount), "due": str(payment.amount)},
                )
                raise BusinessRuleViolation(
                    "Amount paid is less than the amount due",
                    code="AMOUNT_MISMATCH",
                    details={"paid": to_money(claimed_amount), "due": to_money(payment.amount)},
                )

            status.transition_to(PaymentStatus.COMPLETED)
            won = await complete_payment_if_pending(
                self.session, payment.id, self.clock(), transaction_id, raw_payload,
            )
            await self.session.refresh(payment)
            if not won:
                self.logger.info("payments.reconcile.lost_race", extra=log_ctx)
                return ReconcileResult(order=order, payment=payment, already_processed=True)

            order.payment_status = PaymentState(order.payment_status).transition_to(PaymentState.PAID).value
            order_status = OrderStatus(order.status)
            if order_status == OrderStatus.PENDING:
                order.status = order_status.transition_to(OrderStatus.PROCESSING).value
            else:
                # paid after cancel/expiry: money is in, order stays as it is for manual follow-up
                self.logger.warning("payments.reconcile.order_not_pending", extra={**log_ctx, "status": order.status})
            order.updated_at = self.clock()
            self.session.add(order)

        self.logger.info("payments.reconcile.completed", extra={**log_ctx, "amount": str(payment.amount)})
        await notify_order_confirmed(self.notifier, order, self.logger)
        return ReconcileResult(order=order, payment=payment, already_processed=False)
