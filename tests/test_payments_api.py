import hashlib
import hmac
import json
from urllib.parse import parse_qs, urlparse

import pytest
from sqlalchemy.exc import OperationalError
from storefront.payments import webhooks
from storefront.schema.full_schema import Orders, Payment, PaymentWebhookEvent
from tests.factories import (
    add_to_cart, auth_headers, count_rows, create_product, create_user, reload, shipping_payload, url_prefix,
)

PAYSTACK_KEY = b"sk_test_paystack"


async def _gateway_order(ac_client, db_session, user, payment_method="paystack"):
    product = await create_product(db_session, stock=5)
    await add_to_cart(db_session, user, product, 2)
    resp = await ac_client.post(f"{url_prefix}/orders", json=shipping_payload(payment_method=payment_method),
                                headers=auth_headers(user))
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]


async def _initialize(ac_client, user, order, gateway="paystack", **extra):
    payload = {"order_id": order["id"], "gateway": gateway, "email": "ada@example.com", **extra}
    return await ac_client.post(f"{url_prefix}/payments/initialize", json=payload, headers=auth_headers(user))


def _signed(payload: dict):
    body = json.dumps(payload).encode()
    signature = hmac.new(PAYSTACK_KEY, body, hashlib.sha512).hexdigest()
    return body, {"x-paystack-signature": signature, "Content-Type": "application/json"}


def _charge_success(reference: str, kobo: int, tx_id: int = 4321) -> dict:
    return {"event": "charge.success", "data": {
        "id": tx_id, "reference": reference, "amount": kobo, "currency": "NGN", "status": "success"}}


@pytest.mark.asyncio
async def test_initialize_records_pending_payment(ac_client, db_session, provider):
    user = await create_user(db_session)
    order = await _gateway_order(ac_client, db_session, user)

    resp = await _initialize(ac_client, user, order)
    assert resp.status_code == 200, resp.text
    data = resp.json()["data"]
    assert data["redirect_url"].startswith("https://checkout.paystack.com/")
    assert data["amount"] == 2660.0
    assert data["reference"].startswith("STF-")

    payment = (await db_session.execute(
        Payment.__table__.select().where(Payment.__table__.c.reference == data["reference"])
    )).one()
    assert payment.status == "pending"
    stored = await reload(db_session, Orders, order["id"])
    assert stored.payment_reference == data["reference"]
    # the provider is asked for exactly the order total, in kobo
    sent = json.loads(provider.requests[0].content)
    assert sent["amount"] == 266000


@pytest.mark.asyncio
async def test_initialize_cross_checks_client_amount(ac_client, db_session):
    user = await create_user(db_session)
    order = await _gateway_order(ac_client, db_session, user)

    ok = await _initialize(ac_client, user, order, amount="266000", amount_unit="minor")
    assert ok.status_code == 200

    wrong = await _initialize(ac_client, user, order, amount="2000")
    assert wrong.status_code == 422
    assert wrong.json()["error"]["code"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_initialize_guards(ac_client, db_session, provider):
    owner = await create_user(db_session)
    stranger = await create_user(db_session, email="bayo@example.com", name="Bayo")
    order = await _gateway_order(ac_client, db_session, owner)

    assert (await _initialize(ac_client, stranger, order)).status_code == 403
    assert (await ac_client.post(f"{url_prefix}/payments/initialize",
                                 json={"order_id": 999, "gateway": "paystack", "email": "ada@example.com"},
                                 headers=auth_headers(owner))).status_code == 404

    provider.fail_with = 503
    failed = await _initialize(ac_client, owner, order)
    assert failed.status_code == 500
    assert failed.json()["error"]["code"] == "GATEWAY_ERROR"

    # the row written before the call stays pending and the order points at it
    db_session.expire_all()
    payment = (await db_session.execute(Payment.__table__.select())).one()
    assert payment.status == "pending"
    assert (await reload(db_session, Orders, order["id"])).payment_reference == payment.reference


@pytest.mark.asyncio
async def test_provider_error_text_is_not_shown_to_the_client(ac_client, db_session, provider):
    user = await create_user(db_session)
    order = await _gateway_order(ac_client, db_session, user)

    provider.decline_message = "Invalid key sk_live_abc123 for merchant 998"
    resp = await _initialize(ac_client, user, order)
    assert resp.status_code == 500
    error = resp.json()["error"]
    assert error["code"] == "GATEWAY_ERROR"
    assert error["details"]["message"] == "paystack initialization failed"
    assert "sk_live_abc123" not in resp.text


@pytest.mark.asyncio
async def test_verify_reconciles_and_is_idempotent(ac_client, db_session, notifier):
    user = await create_user(db_session)
    order = await _gateway_order(ac_client, db_session, user)
    reference = (await _initialize(ac_client, user, order)).json()["data"]["reference"]

    first = await ac_client.post(f"{url_prefix}/payments/verify", json={"reference": reference}, headers=auth_headers(user))
    assert first.status_code == 200, first.text
    data = first.json()["data"]
    assert data["already_processed"] is False
    assert data["order"]["payment_status"] == "paid"
    assert data["order"]["status"] == "processing"
    assert data["payment"]["status"] == "completed"

    second = await ac_client.post(f"{url_prefix}/payments/verify", json={"reference": reference}, headers=auth_headers(user))
    assert second.json()["data"]["already_processed"] is True
    assert notifier.sent == [order["order_number"]]


@pytest.mark.asyncio
async def test_verify_unsuccessful_and_underpaid(ac_client, db_session, provider):
    user = await create_user(db_session)
    order = await _gateway_order(ac_client, db_session, user)
    reference = (await _initialize(ac_client, user, order)).json()["data"]["reference"]

    provider.verify_status = "failed"
    failed = await ac_client.post(f"{url_prefix}/payments/verify", json={"reference": reference}, headers=auth_headers(user))
    assert failed.status_code == 422
    assert failed.json()["error"]["code"] == "PAYMENT_NOT_SUCCESSFUL"

    provider.verify_status = "success"
    provider.amount_override_kobo = 100000
    short = await ac_client.post(f"{url_prefix}/payments/verify", json={"reference": reference}, headers=auth_headers(user))
    assert short.status_code == 422
    assert short.json()["error"]["code"] == "AMOUNT_MISMATCH"
    assert (await reload(db_session, Orders, order["id"])).payment_status == "pending"


@pytest.mark.asyncio
async def test_callback_redirects_to_success_page(ac_client, db_session):
    user = await create_user(db_session)
    order = await _gateway_order(ac_client, db_session, user, payment_method="flutterwave")
    reference = (await _initialize(ac_client, user, order, gateway="flutterwave")).json()["data"]["reference"]

    resp = await ac_client.get(f"{url_prefix}/payments/callback", params={"status": "successful", "tx_ref": reference})
    assert resp.status_code == 303
    location = urlparse(resp.headers["location"])
    query = parse_qs(location.query)
    assert location.path == "/checkout/success"
    assert query["order_number"] == [order["order_number"]]
    assert query["status"] == ["paid"]


@pytest.mark.asyncio
async def test_callback_error_redirects(ac_client, db_session, provider):
    user = await create_user(db_session)
    order = await _gateway_order(ac_client, db_session, user)
    reference = (await _initialize(ac_client, user, order)).json()["data"]["reference"]

    def reason_of(resp):
        assert resp.status_code == 303
        assert urlparse(resp.headers["location"]).path == "/checkout/error"
        return parse_qs(urlparse(resp.headers["location"]).query)["reason"][0]

    assert reason_of(await ac_client.get(f"{url_prefix}/payments/callback")) == "missing_reference"
    assert reason_of(await ac_client.get(f"{url_prefix}/payments/callback",
                                         params={"status": "cancelled", "tx_ref": reference})) == "payment_not_successful"
    assert reason_of(await ac_client.get(f"{url_prefix}/payments/callback",
                                         params={"reference": "STF-0-unknown"})) == "unknown_reference"

    provider.amount_override_kobo = 1000
    assert reason_of(await ac_client.get(f"{url_prefix}/payments/callback",
                                         params={"trxref": reference, "reference": reference})) == "amount_mismatch"
    assert (await reload(db_session, Orders, order["id"])).payment_status == "pending"


@pytest.mark.asyncio
async def test_webhook_rejects_bad_signature(ac_client, db_session):
    body = json.dumps(_charge_success("STF-1-x", 100)).encode()
    resp = await ac_client.post(f"{url_prefix}/payments/webhook?gateway=paystack", content=body,
                                headers={"x-paystack-signature": "bad"})
    assert resp.status_code == 401
    assert await count_rows(db_session, PaymentWebhookEvent) == 0


@pytest.mark.asyncio
async def test_webhook_marks_order_paid(ac_client, db_session, notifier):
    user = await create_user(db_session)
    order = await _gateway_order(ac_client, db_session, user)
    reference = (await _initialize(ac_client, user, order)).json()["data"]["reference"]

    body, headers = _signed(_charge_success(reference, 266000))
    resp = await ac_client.post(f"{url_prefix}/payments/webhook?gateway=paystack", content=body, headers=headers)
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "note": "processed"}

    stored = await reload(db_session, Orders, order["id"])
    assert stored.payment_status == "paid"
    assert notifier.sent == [order["order_number"]]


@pytest.mark.asyncio
async def test_scenario_e_repeated_webhooks_for_paid_order(ac_client, db_session, notifier):
    user = await create_user(db_session)
    order = await _gateway_order(ac_client, db_session, user)
    reference = (await _initialize(ac_client, user, order)).json()["data"]["reference"]
    await ac_client.post(f"{url_prefix}/payments/verify", json={"reference": reference}, headers=auth_headers(user))
    payments_before = await count_rows(db_session, Payment)

    first_body, first_headers = _signed(_charge_success(reference, 266000, tx_id=1))
    second_body, second_headers = _signed(_charge_success(reference, 266000, tx_id=2))
    r1 = await ac_client.post(f"{url_prefix}/payments/webhook?gateway=paystack", content=first_body, headers=first_headers)
    r2 = await ac_client.post(f"{url_prefix}/payments/webhook?gateway=paystack", content=second_body, headers=second_headers)
    # same delivery again
    r3 = await ac_client.post(f"{url_prefix}/payments/webhook?gateway=paystack", content=first_body, headers=first_headers)

    assert [r.status_code for r in (r1, r2, r3)] == [200, 200, 200]
    assert r3.json()["note"] == "already processed"
    assert await count_rows(db_session, Payment) == payments_before
    assert await count_rows(db_session, PaymentWebhookEvent) == 2
    assert notifier.sent == [order["order_number"]]


@pytest.mark.asyncio
async def test_webhook_failures_are_recorded_and_acknowledged(ac_client, db_session):
    user = await create_user(db_session)
    order = await _gateway_order(ac_client, db_session, user)
    reference = (await _initialize(ac_client, user, order)).json()["data"]["reference"]

    body, headers = _signed(_charge_success(reference, 1000))
    resp = await ac_client.post(f"{url_prefix}/payments/webhook?gateway=paystack", content=body, headers=headers)
    assert resp.status_code == 200

    db_session.expire_all()
    event = (await db_session.execute(PaymentWebhookEvent.__table__.select())).one()
    assert event.processed_at is None
    assert event.last_error.startswith("AMOUNT_MISMATCH")


@pytest.mark.asyncio
async def test_webhook_ignores_other_events(ac_client, db_session):
    body, headers = _signed({"event": "transfer.success", "data": {"id": 9, "reference": "T-1"}})
    resp = await ac_client.post(f"{url_prefix}/payments/webhook?gateway=paystack", content=body, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["note"] == "ignored: transfer.success"


@pytest.mark.asyncio
async def test_signed_webhook_with_malformed_data_is_acknowledged(ac_client, db_session):
    body, headers = _signed({"event": "charge.success", "data": "oops"})
    resp = await ac_client.post(f"{url_prefix}/payments/webhook?gateway=paystack", content=body, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["note"] == "ignored: no reference"

    db_session.expire_all()
    event = (await db_session.execute(PaymentWebhookEvent.__table__.select())).one()
    assert event.last_error == "no reference in payload"


@pytest.mark.asyncio
async def test_webhook_is_acknowledged_when_audit_insert_fails(ac_client, db_session, monkeypatch):
    async def broken_record(*args, **kwargs):
        raise OperationalError("INSERT INTO payment_webhook_events", {}, Exception("database is locked"))

    monkeypatch.setattr(webhooks, "record_webhook_event", broken_record)
    body, headers = _signed(_charge_success("STF-1700000000-ab12cd34", 266000))
    resp = await ac_client.post(f"{url_prefix}/payments/webhook?gateway=paystack", content=body, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["note"] == "not recorded"
    assert await count_rows(db_session, PaymentWebhookEvent) == 0

@pytest.mark.asyncio
async def test_flutterwave_webhook_uses_verif_hash(ac_client, db_session):
    user = await create_user(db_session)
    order = await _gateway_order(ac_client, db_session, user, payment_method="flutterwave")
    reference = (await _initialize(ac_client, user, order, gateway="flutterwave")).json()["data"]["reference"]

    payload = {"event": "charge.completed", "data": {
        "id": 77, "tx_ref": reference, "amount": 2660, "currency": "NGN", "status": "successful"}}
    resp = await ac_client.post(f"{url_prefix}/payments/webhook?gateway=flutterwave", json=payload,
                                headers={"verif-hash": "flw-test-hash"})
    assert resp.status_code == 200
    assert resp.json()["note"] == "processed"
    assert (await reload(db_session, Orders, order["id"])).payment_status == "paid"


@pytest.mark.asyncio
async def test_payment_status_endpoint(ac_client, db_session):
    user = await create_user(db_session)
    stranger = await create_user(db_session, email="bayo@example.com", name="Bayo")
    order = await _gateway_order(ac_client, db_session, user)
    reference = (await _initialize(ac_client, user, order)).json()["data"]["reference"]

    resp = await ac_client.get(f"{url_prefix}/payments/{order['id']}/status", headers=auth_headers(user))
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["payment_status"] == "pending"
    assert data["payment"]["reference"] == reference

    assert (await ac_client.get(f"{url_prefix}/payments/{order['id']}/status",
                                headers=auth_headers(stranger))).status_code == 403
