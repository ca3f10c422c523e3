from typing import Callable, Optional
from urllib.parse import urlencode
from fastapi import APIRouter, Depends
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.auth.dependencies import CurrentUser, get_current_user
from storefront.common.custom_exceptions import AppError, BusinessRuleViolation, NotFound, PermissionDenied
from storefront.common.logging_setup import get_logger
from storefront.common.utils import build_success, json_ok
from storefront.config.settings import config_settings
from storefront.db.dependencies import get_session
from storefront.orders.repository import get_order
from storefront.orders.utils import serialize_order
from storefront.payments.dependency import get_reconciler
from storefront.payments.gateways import Amount, CustomerInfo, PaymentGateway, get_gateway_factory
from storefront.payments.models import PaymentInitIn, PaymentVerifyIn
from storefront.payments.reconciler import PaymentReconciler
from storefront.payments.repository import get_latest_payment_for_order, get_payment_by_reference
from storefront.payments.services import initialize_payment
from storefront.schema.full_schema import GatewayKind, Orders

logger = get_logger("storefront.payments")

payments_router = APIRouter()

# statuses a gateway puts on the browser redirect when the customer did not cancel
CALLBACK_OK_STATUSES = ("successful", "success", "completed")


def _owned_or_admin(order: Orders, user: CurrentUser) -> None:
    if order.user_id != user.id and not user.is_admin:
        raise PermissionDenied("You cannot access payments for this order")


def _payment_view(payment) -> Optional[dict]:
    if payment is None:
        return None
    return {
        "reference": payment.reference,
        "gateway": payment.gateway,
        "status": payment.status,
        "amount": payment.amount,
        "currency": payment.currency,
        "transaction_id": payment.transaction_id,
        "completed_at": payment.completed_at,
    }


@payments_router.post("/initialize")
async def initialize(payload: PaymentInitIn,
    user: CurrentUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    gateway_factory: Callable[[GatewayKind], PaymentGateway] = Depends(get_gateway_factory)):

    order = await get_order(session, payload.order_id)
    if order is None:
        raise NotFound("Order not found")
    _owned_or_admin(order, user)

    gateway = gateway_factory(payload.gateway)
    requested = Amount(payload.amount, payload.amount_unit) if payload.amount is not None else None
    customer = CustomerInfo(email=payload.email, name=payload.name or order.customer_name, phone=payload.phone)

    init, payment = await initialize_payment(
        session, gateway, order, customer,
        callback_url=payload.callback_url or config_settings.PAYMENT_CALLBACK_URL,
        requested=requested,
    )
    data = {
        "gateway": gateway.kind.value,
        "reference": init.reference,
        "redirect_url": init.redirect_url,
        "access_code": init.access_code,
        "amount": payment.amount,
        "currency": payment.currency,
        "order_id": order.id,
    }
    return json_ok(build_success(data))


@payments_router.post("/verify")
async def verify(payload: PaymentVerifyIn,
    user: CurrentUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    reconciler: PaymentReconciler = Depends(get_reconciler),
    gateway_factory: Callable[[GatewayKind], PaymentGateway] = Depends(get_gateway_factory)):

    payment = await get_payment_by_reference(session, payload.reference)
    if payment is None:
        raise NotFound("Payment not found")
    order = await get_order(session, payment.order_id)
    _owned_or_admin(order, user)

    gateway = gateway_factory(GatewayKind(payment.gateway))
    verification = await gateway.verify(payment.reference, payment.transaction_id)
    if not verification.success:
        raise BusinessRuleViolation("Payment was not successful", code="PAYMENT_NOT_SUCCESSFUL")

    result = await reconciler.reconcile(
        payment.reference,
        claimed_amount=verification.amount,
        raw_payload=verification.raw,
        transaction_id=verification.transaction_id,
        channel="verify",
    )
    data = {
        "already_processed": result.already_processed,
        "order": serialize_order(result.order),
        "payment": _payment_view(result.payment),
    }
    return json_ok(build_success(data))


def _redirect(base: str, **params) -> RedirectResponse:
    query = urlencode({k: v for k, v in params.items() if v is not None})
    sep = "&" if "?" in base else "?"
    return RedirectResponse(f"{base}{sep}{query}" if query else base, status_code=303)


@payments_router.get("/callback")
async def payment_callback(status: Optional[str] = None,
    tx_ref: Optional[str] = None,
    transaction_id: Optional[str] = None,
    reference: Optional[str] = None,
    trxref: Optional[str] = None,
    session: AsyncSession = Depends(get_session),
    reconciler: PaymentReconciler = Depends(get_reconciler),
    gateway_factory: Callable[[GatewayKind], PaymentGateway] = Depends(get_gateway_factory)):
    """
    Browser lands here from the gateway. Never trusts the query string: the payment is
    verified server-to-server before anything changes. Always ends in a redirect.
    """
    error_url = config_settings.PAYMENT_ERROR_URL
    ref = tx_ref or reference or trxref
    if not ref:
        return _redirect(error_url, reason="missing_reference")
    if status and status.lower() not in CALLBACK_OK_STATUSES:
        logger.info("payments.callback.not_successful", extra={"reference": ref, "gateway_status": status})
        return _redirect(error_url, reference=ref, reason="payment_not_successful")

    payment = await get_payment_by_reference(session, ref)
    if payment is None:
        logger.warning("payments.callback.unknown_reference", extra={"reference": ref})
        return _redirect(error_url, reference=ref, reason="unknown_reference")

    try:
        gateway = gateway_factory(GatewayKind(payment.gateway))
        verification = await gateway.verify(ref, transaction_id or payment.transaction_id)
        if not verification.success:
            return _redirect(error_url, reference=ref, reason="payment_not_successful")

        result = await reconciler.reconcile(
            ref,
            claimed_amount=verification.amount,
            raw_payload=verification.raw,
            transaction_id=verification.transaction_id,
            channel="callback",
        )
    except AppError as e:
        logger.warning("payments.callback.failed", extra={"reference": ref, "reason": e.message, "code": e.code})
        return _redirect(error_url, reference=ref, reason=e.code.lower())

    return _redirect(
        config_settings.PAYMENT_SUCCESS_URL,
        order_number=result.order.order_number,
        reference=ref,
        status=result.order.payment_status,
    )


@payments_router.get("/{order_id}/status")
async def payment_status(order_id: int,
    user: CurrentUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session)):

    order = await get_order(session, order_id)
    if order is None:
        raise NotFound("Order not found")
    _owned_or_admin(order, user)

    payment = await get_latest_payment_for_order(session, order.id)
    data = {
        "order_id": order.id,
        "order_number": order.order_number,
        "status": order.status,
        "payment_status": order.payment_status,
        "grand_total": order.grand_total,
        "payment": _payment_view(payment),
    }
    return json_ok(build_success(data))
