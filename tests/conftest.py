import os
import tempfile

# settings are read at import time, so the test database and keys go in before the app is imported
_DB_DIR = tempfile.mkdtemp(prefix="storefront-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["PAYSTACK_SECRET_KEY"] = "sk_test_paystack"
os.environ["FLUTTERWAVE_SECRET_KEY"] = "FLWSECK_TEST-flutterwave"
os.environ["FLUTTERWAVE_SECRET_HASH"] = "flw-test-hash"
os.environ["REDIS_URL"] = ""
os.environ["ENABLE_ADMIN"] = "true"

import json
from decimal import Decimal
from typing import Any, Dict, List, Optional

import httpx
import pytest
from asgi_lifespan import LifespanManager
from httpx import ASGITransport, AsyncClient
from sqlmodel import SQLModel

from storefront.db.connection import async_engine, async_session
from storefront.main import app
from storefront.notifications.dispatcher import get_notifier
from storefront.payments.gateways import get_gateway, get_gateway_factory
from tests.factories import RecordingDispatcher


class FakeProvider:
    """
    In-process stand-in for both gateway APIs, served through httpx.MockTransport.
    Remembers what was initialized so verify answers with the same amount unless told otherwise.
    """

    def __init__(self):
        self.transactions: Dict[str, Dict[str, Any]] = {}
        self.requests: List[httpx.Request] = []
        self.verify_status = "success"
        self.amount_override_kobo: Optional[int] = None
        self.fail_with: Optional[int] = None
        self.decline_message: Optional[str] = None

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_with:
            return httpx.Response(self.fail_with, json={"status": False, "message": "provider unavailable"})
        if self.decline_message:
            return httpx.Response(200, json={"status": False, "message": self.decline_message})

        path = request.url.path
        if request.method == "POST" and path == "/transaction/initialize":
            body = json.loads(request.content)
            ref = body["reference"]
            self.transactions[ref] = {"kobo": body["amount"], "id": 1000 + len(self.transactions)}
            return httpx.Response(200, json={
                "status": True,
                "message": "Authorization URL created",
                "data": {"authorization_url": f"https://checkout.paystack.com/{ref}", "access_code": "ac_test", "reference": ref},
            })

        if request.method == "GET" and path.startswith("/transaction/verify/"):
            ref = path.rsplit("/", 1)[-1]
            tx = self.transactions.get(ref)
            if tx is None:
                return httpx.Response(404, json={"status": False, "message": "Transaction reference not found"})
            kobo = self.amount_override_kobo if self.amount_override_kobo is not None else tx["kobo"]
            return httpx.Response(200, json={
                "status": True,
                "message": "Verification successful",
                "data": {"status": self.verify_status, "amount": kobo, "currency": "NGN", "reference": ref, "id": tx["id"]},
            })

        if request.method == "POST" and path == "/v3/payments":
            body = json.loads(request.content)
            ref = body["tx_ref"]
            self.transactions[ref] = {"kobo": int(Decimal(body["amount"]) * 100), "id": 5000 + len(self.transactions)}
            return httpx.Response(200, json={
                "status": "success",
                "message": "Hosted Link",
                "data": {"link": f"https://checkout.flutterwave.com/v3/hosted/pay/{ref}"},
            })

        if request.method == "GET" and path == "/v3/transactions/verify_by_reference":
            ref = request.url.params.get("tx_ref")
            tx = self.transactions.get(ref)
            if tx is None:
                return httpx.Response(400, json={"status": "error", "message": "No transaction was found"})
            kobo = self.amount_override_kobo if self.amount_override_kobo is not None else tx["kobo"]
            status = "successful" if self.verify_status == "success" else self.verify_status
            return httpx.Response(200, json={
                "status": "success",
                "data": {"status": status, "amount": kobo / 100, "currency": "NGN", "tx_ref": ref, "id": tx["id"]},
            })

        return httpx.Response(404, json={"status": False, "message": f"unexpected call {request.method} {path}"})

@pytest.fixture(autouse=True)
async def db_tables():
    async with async_engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield
    async with async_engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.drop_all)
    await async_engine.dispose()

@pytest.fixture
async def db_session():
    async with async_session() as session:
        yield session

@pytest.fixture
def notifier():
    recorder = RecordingDispatcher()
    app.dependency_overrides[get_notifier] = lambda: recorder
    yield recorder
    app.dependency_overrides.pop(get_notifier, None)

@pytest.fixture
def provider():
    fake = FakeProvider()
    transport = fake.transport()
    app.dependency_overrides[get_gateway_factory] = lambda: (lambda kind: get_gateway(kind, transport=transport))
    yield fake
    app.dependency_overrides.pop(get_gateway_factory, None)

@pytest.fixture
async def ac_client(notifier, provider):
    async with LifespanManager(app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac

