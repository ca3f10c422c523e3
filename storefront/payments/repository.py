from datetime import datetime
from typing import Optional
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from storefront.schema.full_schema import Orders, Payment, PaymentStatus, PaymentWebhookEvent


async def get_payment_by_reference(session: AsyncSession, reference: str, for_update: bool = False) -> Optional[Payment]:
    stmt = select(Payment).where(Payment.reference == reference)
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    res = await session.execute(stmt)
    return res.scalar_one_or_none()


async def get_payment_by_transaction_id(session: AsyncSession, transaction_id: str, for_update: bool = False) -> Optional[Payment]:
    stmt = select(Payment).where(Payment.transaction_id == transaction_id).order_by(Payment.id.desc()).limit(1)
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    res = await session.execute(stmt)
    return res.scalar_one_or_none()


async def get_latest_payment_for_order_reference(session: AsyncSession, reference: str,
                                                 for_update: bool = False) -> Optional[Payment]:
    """Most recent payment of the order whose payment_reference is `reference`."""
    stmt = (
        select(Payment)
        .join(Orders, Orders.id == Payment.order_id)
        .where(Orders.payment_reference == reference)
        .order_by(Payment.id.desc())
        .limit(1)
    )
    if for_update:
        stmt = stmt.with_for_update(of=Payment).execution_options(populate_existing=True)
    res = await session.execute(stmt)
    return res.scalar_one_or_none()


async def get_latest_payment_for_order(session: AsyncSession, order_id: int) -> Optional[Payment]:
    stmt = select(Payment).where(Payment.order_id == order_id).order_by(Payment.id.desc()).limit(1)
    res = await session.execute(stmt)
    return res.scalar_one_or_none()


async def completed_payment_for_order(session: AsyncSession, order_id: int) -> Optional[Payment]:
    stmt = select(Payment).where(Payment.order_id == order_id, Payment.status == PaymentStatus.COMPLETED.value).limit(1)
    res = await session.execute(stmt)
    return res.scalar_one_or_none()


async def complete_payment_if_pending(session: AsyncSession, payment_id: int, completed_at: datetime,
                                      transaction_id: Optional[str], raw_payload: Optional[dict]) -> bool:
    """
    pending -> completed as a single conditional UPDATE. Exactly one caller per payment
    sees True; everyone else lost the race.
    """
    values = {"status": PaymentStatus.COMPLETED.value, "completed_at": completed_at}
    if transaction_id:
        values["transaction_id"] = transaction_id
    if raw_payload is not None:
        values["raw_payload"] = raw_payload

    stmt = (
        update(Payment)
        .where(Payment.id == payment_id, Payment.status == PaymentStatus.PENDING.value)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    return res.rowcount == 1


# ----------------------------------------------------------------------------------------------
# webhook audit log

async def get_webhook_event(session: AsyncSession, gateway: str, provider_event_id: str) -> Optional[PaymentWebhookEvent]:
    stmt = select(PaymentWebhookEvent).where(
        PaymentWebhookEvent.gateway == gateway,
        PaymentWebhookEvent.provider_event_id == provider_event_id,
    )
    res = await session.execute(stmt)
    return res.scalar_one_or_none()


async def record_webhook_event(session: AsyncSession, gateway: str, provider_event_id: str,
                               event_type: Optional[str], reference: Optional[str],
                               payload: Optional[dict]) -> PaymentWebhookEvent:
    """Insert-or-get on (gateway, provider_event_id); commits so the delivery is on record before processing."""
    existing = await get_webhook_event(session, gateway, provider_event_id)
    if existing is not None:
        return existing

    ev = PaymentWebhookEvent(
        gateway=gateway,
        provider_event_id=provider_event_id,
        event_type=event_type,
        reference=reference,
        payload=payload,
    )
    session.add(ev)
    try:
        await session.commit()
    except IntegrityError:
        # concurrent delivery of the same event won the insert
        await session.rollback()
        existing = await get_webhook_event(session, gateway, provider_event_id)
        if existing is None:
            raise
        return existing
    return ev


async def mark_webhook_processed(session: AsyncSession, ev: PaymentWebhookEvent, processed_at: datetime,
                                 last_error: Optional[str] = None) -> None:
    ev.processed_at = processed_at
    ev.last_error = last_error
    session.add(ev)
    await session.commit()


async def mark_webhook_failed(session: AsyncSession, ev_id: int, error: str) -> None:
    stmt = (
        update(PaymentWebhookEvent)
        .where(PaymentWebhookEvent.id == ev_id)
        .values(last_error=error[:2000])
        .execution_options(synchronize_session=False)
    )
    await session.execute(stmt)
    await session.commit()
