import hashlib
import json
from typing import Callable, Optional
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.common.custom_exceptions import AppError
from storefront.common.logging_setup import get_logger
from storefront.common.utils import build_error, now
from storefront.config.settings import config_settings
from storefront.db.dependencies import get_session
from storefront.payments.dependency import get_reconciler
from storefront.payments.gateways import PaymentGateway, get_gateway_factory
from storefront.payments.reconciler import PaymentReconciler
from storefront.payments.repository import mark_webhook_failed, mark_webhook_processed, record_webhook_event
from storefront.schema.full_schema import GatewayKind

logger = get_logger("storefront.payments.webhooks")

webhooks_router = APIRouter()


def _ack(note: str) -> JSONResponse:
    return JSONResponse({"status": "ok", "note": note}, status_code=200)


@webhooks_router.post("/webhook")
async def payment_webhook(request: Request,
    gateway: Optional[GatewayKind] = None,
    session: AsyncSession = Depends(get_session),
    reconciler: PaymentReconciler = Depends(get_reconciler),
    gateway_factory: Callable[[GatewayKind], PaymentGateway] = Depends(get_gateway_factory)):
    """
    Signature is checked on the raw body before anything is parsed. After that the provider
    always gets a 200 so it stops retrying; failures are kept on the event row instead.
    """
    kind = gateway or GatewayKind(config_settings.DEFAULT_PAYMENT_GATEWAY)
    client = gateway_factory(kind)
    body = await request.body()

    if not client.verify_webhook_signature(request.headers, body):
        logger.warning("payments.webhook.bad_signature", extra={"gateway": kind.value})
        return JSONResponse(
            build_error(code="INVALID_SIGNATURE", details={"message": "invalid webhook signature"}),
            status_code=401,
        )

    try:
        payload = json.loads(body)
    except ValueError:
        logger.warning("payments.webhook.bad_json", extra={"gateway": kind.value})
        return _ack("ignored: body is not json")
    if not isinstance(payload, dict):
        return _ack("ignored: unexpected payload")

    try:
        event = client.parse_webhook(payload)
    except Exception:
        logger.exception("payments.webhook.unreadable", extra={"gateway": kind.value})
        return _ack("ignored: unreadable payload")
    provider_event_id = event.provider_event_id or hashlib.sha256(body).hexdigest()

    try:
        ev = await record_webhook_event(session, kind.value, provider_event_id, event.event, event.reference, payload)
    except Exception:
        await session.rollback()
        logger.exception(
            "payments.webhook.record_failed",
            extra={"gateway": kind.value, "provider_event_id": provider_event_id},
        )
        return _ack("not recorded")
    ev_id = ev.id
    if ev.processed_at is not None:
        return _ack("already processed")

    if not event.successful:
        await mark_webhook_processed(session, ev, now(), last_error=None)
        logger.info("payments.webhook.ignored", extra={"gateway": kind.value, "event": event.event})
        return _ack(f"ignored: {event.event}")

    if not event.reference and not event.transaction_id:
        await mark_webhook_processed(session, ev, now(), last_error="no reference in payload")
        return _ack("ignored: no reference")

    try:
        result = await reconciler.reconcile(
            event.reference,
            claimed_amount=event.amount,
            raw_payload=payload,
            transaction_id=event.transaction_id,
            channel="webhook",
        )
    except AppError as e:
        await mark_webhook_failed(session, ev_id, f"{e.code}: {e.message}")
        logger.warning("payments.webhook.rejected", extra={"reference": event.reference, "code": e.code, "reason": e.message})
        return _ack("recorded")
    except Exception as e:
        await session.rollback()
        await mark_webhook_failed(session, ev_id, f"{type(e).__name__}: {e}")
        logger.exception("payments.webhook.failed", extra={"reference": event.reference})
        return _ack("recorded")

    await mark_webhook_processed(session, ev, now())
    return _ack("already processed" if result.already_processed else "processed")
