import base64
import enum
import hashlib
import hmac
import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Callable, Dict, Mapping, Optional
import httpx

from storefront.common.custom_exceptions import ConfigurationError, GatewayError, ValidationError
from storefront.common.logging_setup import get_logger
from storefront.common.utils import now, to_money
from storefront.config.settings import Settings, config_settings
from storefront.schema.full_schema import GatewayKind, Orders

logger = get_logger("storefront.payments.gateways")

# integers above this are read as kobo when a caller does not say which unit it used
MINOR_UNIT_HEURISTIC_THRESHOLD = 100_000


class AmountUnit(str, enum.Enum):
    MAJOR = "major"     # naira
    MINOR = "minor"     # kobo


@dataclass(frozen=True)
class Amount:
    value: Decimal
    unit: Optional[AmountUnit] = None


def to_minor_units(amount: Amount) -> int:
    """
    Kobo for an amount. With an explicit unit this is exact. Without one, the legacy heuristic
    applies: fractional values are naira, integers above the threshold are already kobo,
    smaller integers are naira. A naira amount above the threshold sent without a unit is
    therefore misread as kobo; order-driven calls always carry the unit.
    """
    try:
        value = Decimal(str(amount.value))
    except InvalidOperation as e:
        raise ValidationError("amount is not a number", details={"amount": str(amount.value)}) from e
    if value < 0:
        raise ValidationError("amount cannot be negative", details={"amount": str(value)})

    is_integral = value == value.to_integral_value()
    unit = amount.unit
    if unit is None:
        if not is_integral:
            unit = AmountUnit.MAJOR
        elif value > MINOR_UNIT_HEURISTIC_THRESHOLD:
            unit = AmountUnit.MINOR
        else:
            unit = AmountUnit.MAJOR

    if unit == AmountUnit.MINOR:
        if not is_integral:
            raise ValidationError("minor-unit amounts must be whole numbers", details={"amount": str(value)})
        return int(value)
    return int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@dataclass
class CustomerInfo:
    email: str
    name: Optional[str] = None
    phone: Optional[str] = None


@dataclass
class InitResult:
    redirect_url: str
    reference: str
    access_code: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class VerifyResult:
    success: bool
    amount: Optional[Decimal]
    currency: Optional[str]
    reference: Optional[str]
    transaction_id: Optional[str]
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class WebhookEvent:
    gateway: GatewayKind
    event: Optional[str]
    reference: Optional[str]
    transaction_id: Optional[str]
    successful: bool
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    provider_event_id: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


def _decimal_or_none(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        parsed = Decimal(str(value))
    except InvalidOperation:
        return None
    return parsed if parsed.is_finite() else None


def _mapping(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _str_or_none(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (dict, list)):
        return None
    return str(value)


class PaymentGateway(ABC):
    kind: GatewayKind

    def __init__(self, secret_key: str, base_url: str, *, timeout: float = 15.0,
                 reference_prefix: str = "STF", currency: str = "NGN",
                 transport: Optional[httpx.AsyncBaseTransport] = None,
                 clock: Callable = now):
        self.secret_key = secret_key
        self.base_url = base_url
        self.timeout = timeout
        self.reference_prefix = reference_prefix
        self.currency = currency
        self.transport = transport
        self.clock = clock

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def _request(self, method: str, path: str, *, json: Optional[dict] = None,
                       params: Optional[dict] = None) -> Dict[str, Any]:
        """One bounded call, no retries. Every failure comes back as GatewayError."""
        name = self.kind.value
        try:
            async with httpx.AsyncClient(base_url=self.base_url, timeout=httpx.Timeout(self.timeout),
                                         transport=self.transport) as client:
                resp = await client.request(method, path, json=json, params=params, headers=self._headers())
        except httpx.TimeoutException as e:
            logger.warning("gateway.timeout", extra={"gateway": name, "path": path})
            raise GatewayError(f"{name} did not respond in time") from e
        except httpx.HTTPError as e:
            logger.warning("gateway.transport_error", extra={"gateway": name, "path": path, "error": str(e)})
            raise GatewayError(f"could not reach {name}") from e

        try:
            body = resp.json()
        except ValueError:
            body = None

        if resp.status_code >= 400 or not isinstance(body, dict):
            raise GatewayError(
                f"{name} returned HTTP {resp.status_code}",
                raw_response=body if body is not None else resp.text[:500],
            )
        return body

    def _timestamp(self) -> int:
        return int(self.clock().timestamp())

    def normalize_amount(self, amount: Amount) -> Decimal:
        """Amount in major units as this gateway would read it."""
        return to_money(Decimal(to_minor_units(amount)) / 100)

    @abstractmethod
    def new_reference(self, order: Orders) -> str:
        ...

    @abstractmethod
    async def initialize(self, order: Orders, customer: CustomerInfo, reference: str,
                         callback_url: str) -> InitResult:
        ...

    @abstractmethod
    async def verify(self, reference: str, transaction_id: Optional[str] = None) -> VerifyResult:
        ...

    @abstractmethod
    def verify_webhook_signature(self, headers: Mapping[str, str], body: bytes) -> bool:
        ...

    @abstractmethod
    def parse_webhook(self, payload: Dict[str, Any]) -> WebhookEvent:
        ...


class PaystackGateway(PaymentGateway):
    kind = GatewayKind.PAYSTACK
    SIGNATURE_HEADER = "x-paystack-signature"

    def new_reference(self, order: Orders) -> str:
        return f"{self.reference_prefix}-{self._timestamp()}-{secrets.token_hex(4)}"

    async def initialize(self, order: Orders, customer: CustomerInfo, reference: str,
                         callback_url: str) -> InitResult:
        payload = {
            "email": customer.email,
            "amount": to_minor_units(Amount(order.grand_total, AmountUnit.MAJOR)),
            "currency": order.currency or self.currency,
            "reference": reference,
            "callback_url": callback_url,
            "metadata": {"order_id": order.id, "order_number": order.order_number},
        }
        body = await self._request("POST", "/transaction/initialize", json=payload)
        data = _mapping(body.get("data"))
        if not body.get("status") or not data.get("authorization_url"):
            raise GatewayError("paystack initialization failed", raw_response=body)

        return InitResult(
            redirect_url=data["authorization_url"],
            reference=data.get("reference") or reference,
            access_code=data.get("access_code"),
            raw=body,
        )

    async def verify(self, reference: str, transaction_id: Optional[str] = None) -> VerifyResult:
        body = await self._request("GET", f"/transaction/verify/{reference}")
        data = body.get("data")
        if not body.get("status") or not isinstance(data, dict):
            raise GatewayError("paystack verification failed", raw_response=body)

        kobo = _decimal_or_none(data.get("amount"))
        return VerifyResult(
            success=data.get("status") == "success",
            amount=to_money(kobo / 100) if kobo is not None else None,
            currency=_str_or_none(data.get("currency")),
            reference=data.get("reference") or reference,
            transaction_id=str(data["id"]) if data.get("id") is not None else None,
            raw=body,
        )

    def verify_webhook_signature(self, headers: Mapping[str, str], body: bytes) -> bool:
        signature = headers.get(self.SIGNATURE_HEADER)
        if not signature:
            return False
        expected = hmac.new(self.secret_key.encode(), body, hashlib.sha512).hexdigest()
        return hmac.compare_digest(expected, signature)

    def parse_webhook(self, payload: Dict[str, Any]) -> WebhookEvent:
        event = _str_or_none(payload.get("event"))
        data = _mapping(payload.get("data"))
        kobo = _decimal_or_none(data.get("amount"))
        tx_id = str(data["id"]) if data.get("id") is not None else None
        return WebhookEvent(
            gateway=self.kind,
            event=event,
            reference=_str_or_none(data.get("reference")),
            transaction_id=tx_id,
            successful=event == "charge.success" and data.get("status", "success") == "success",
            amount=to_money(kobo / 100) if kobo is not None else None,
            currency=_str_or_none(data.get("currency")),
            provider_event_id=f"{event}:{tx_id}" if event and tx_id else None,
            raw=payload,
        )


class FlutterwaveGateway(PaymentGateway):
    kind = GatewayKind.FLUTTERWAVE
    HASH_HEADER = "verif-hash"
    SIGNATURE_HEADER = "flutterwave-signature"

    def __init__(self, secret_key: str, base_url: str, *, secret_hash: Optional[str] = None, **kwargs):
        super().__init__(secret_key, base_url, **kwargs)
        self.secret_hash = secret_hash

    def new_reference(self, order: Orders) -> str:
        return f"{self.reference_prefix}-{self._timestamp()}-{order.id}"

    def normalize_amount(self, amount: Amount) -> Decimal:
        # flutterwave takes naira; only an explicit kobo amount is converted
        if amount.unit == AmountUnit.MINOR:
            return to_money(Decimal(to_minor_units(amount)) / 100)
        return to_money(amount.value)

    async def initialize(self, order: Orders, customer: CustomerInfo, reference: str,
                         callback_url: str) -> InitResult:
        payload = {
            "tx_ref": reference,
            "amount": str(to_money(order.grand_total)),
            "currency": order.currency or self.currency,
            "redirect_url": callback_url,
            "customer": {
                "email": customer.email,
                "name": customer.name or "",
                "phonenumber": customer.phone or "",
            },
            "meta": {"order_id": order.id, "order_number": order.order_number},
            "customizations": {"title": f"Order {order.order_number}"},
        }
        body = await self._request("POST", "/payments", json=payload)
        data = _mapping(body.get("data"))
        if body.get("status") != "success" or not data.get("link"):
            raise GatewayError("flutterwave initialization failed", raw_response=body)

        return InitResult(redirect_url=data["link"], reference=reference, raw=body)

    async def verify(self, reference: str, transaction_id: Optional[str] = None) -> VerifyResult:
        if transaction_id:
            body = await self._request("GET", f"/transactions/{transaction_id}/verify")
        else:
            body = await self._request("GET", "/transactions/verify_by_reference", params={"tx_ref": reference})

        data = body.get("data")
        if body.get("status") != "success" or not isinstance(data, dict):
            raise GatewayError("flutterwave verification failed", raw_response=body)

        amount = _decimal_or_none(data.get("amount"))
        return VerifyResult(
            success=data.get("status") == "successful",
            amount=to_money(amount) if amount is not None else None,
            currency=_str_or_none(data.get("currency")),
            reference=data.get("tx_ref") or reference,
            transaction_id=str(data["id"]) if data.get("id") is not None else transaction_id,
            raw=body,
        )

    def verify_webhook_signature(self, headers: Mapping[str, str], body: bytes) -> bool:
        if not self.secret_hash:
            logger.error("gateway.webhook.secret_hash_missing", extra={"gateway": self.kind.value})
            return False

        verif_hash = headers.get(self.HASH_HEADER)
        if verif_hash:
            return hmac.compare_digest(verif_hash, self.secret_hash)

        signature = headers.get(self.SIGNATURE_HEADER)
        if signature:
            digest = hmac.new(self.secret_hash.encode(), body, hashlib.sha256).digest()
            expected = base64.b64encode(digest).decode()
            return hmac.compare_digest(expected, signature)
        return False

    def parse_webhook(self, payload: Dict[str, Any]) -> WebhookEvent:
        event = _str_or_none(payload.get("event") or payload.get("event.type"))
        data = _mapping(payload.get("data"))
        tx_id = str(data["id"]) if data.get("id") is not None else None
        amount = _decimal_or_none(data.get("amount"))
        return WebhookEvent(
            gateway=self.kind,
            event=event,
            reference=_str_or_none(data.get("tx_ref") or data.get("txRef")),
            transaction_id=tx_id,
            successful=event == "charge.completed" and data.get("status") == "successful",
            amount=to_money(amount) if amount is not None else None,
            currency=_str_or_none(data.get("currency")),
            provider_event_id=f"{event}:{tx_id}" if event and tx_id else None,
            raw=payload,
        )


def get_gateway(kind: GatewayKind, settings: Settings = config_settings,
                transport: Optional[httpx.AsyncBaseTransport] = None) -> PaymentGateway:
    kind = GatewayKind(kind)
    common = {
        "timeout": settings.GATEWAY_TIMEOUT_SECONDS,
        "reference_prefix": settings.PAYMENT_REFERENCE_PREFIX,
        "currency": settings.PAYMENT_CURRENCY,
        "transport": transport,
    }
    if kind == GatewayKind.PAYSTACK:
        if not settings.PAYSTACK_SECRET_KEY:
            raise ConfigurationError("PAYSTACK_SECRET_KEY is not set")
        return PaystackGateway(settings.PAYSTACK_SECRET_KEY, settings.PAYSTACK_BASE_URL, **common)

    if not settings.FLUTTERWAVE_SECRET_KEY:
        raise ConfigurationError("FLUTTERWAVE_SECRET_KEY is not set")
    return FlutterwaveGateway(
        settings.FLUTTERWAVE_SECRET_KEY,
        settings.FLUTTERWAVE_BASE_URL,
        secret_hash=settings.FLUTTERWAVE_SECRET_HASH,
        **common,
    )


def get_gateway_factory() -> Callable[[GatewayKind], PaymentGateway]:
    return get_gateway
