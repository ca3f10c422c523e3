import math
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.cache._cache import KeyValueStore
from storefront.cache.utils import build_key, cache_get_or_load
from storefront.common.logging_setup import ContextLogger, get_logger
from storefront.common.utils import to_money
from storefront.config.delivery_config import DeliverySettings, delivery_settings
from storefront.config.settings import config_settings
from storefront.delivery.geo import distance_km, is_valid_coordinate, parse_polygon, point_in_polygon
from storefront.delivery.repository import first_delivery_point, get_fulfillment_point
from storefront.schema.full_schema import FulfillmentPoint

CURRENCY_SYMBOLS = {"NGN": "₦"}


def format_amount(amount: Decimal, currency: str) -> str:
    symbol = CURRENCY_SYMBOLS.get(currency, f"{currency} ")
    return f"{symbol}{amount:,.2f}"


@dataclass(frozen=True)
class PointConfig:
    """Snapshot of a fulfillment point as the fee calculator needs it; cacheable as plain JSON."""

    id: int
    name: str
    latitude: Optional[float]
    longitude: Optional[float]
    is_active: bool = True
    is_delivery_location: bool = True
    delivery_base_fee: Optional[Decimal] = None
    delivery_fee_per_km: Optional[Decimal] = None
    free_delivery_threshold: Optional[Decimal] = None
    minimum_order_value: Optional[Decimal] = None
    geofence: Optional[List[Tuple[float, float]]] = None

    _MONEY_FIELDS = ("delivery_base_fee", "delivery_fee_per_km", "free_delivery_threshold", "minimum_order_value")

    @classmethod
    def from_row(cls, row: FulfillmentPoint) -> "PointConfig":
        return cls(
            id=row.id,
            name=row.name,
            latitude=row.latitude,
            longitude=row.longitude,
            is_active=row.is_active,
            is_delivery_location=row.is_delivery_location,
            delivery_base_fee=row.delivery_base_fee,
            delivery_fee_per_km=row.delivery_fee_per_km,
            free_delivery_threshold=row.free_delivery_threshold,
            minimum_order_value=row.minimum_order_value,
            geofence=parse_polygon(row.geofence_coordinates),
        )

    def to_cache(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "name": self.name,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "is_active": self.is_active,
            "is_delivery_location": self.is_delivery_location,
            "geofence": [list(v) for v in self.geofence] if self.geofence else None,
        }
        for name in self._MONEY_FIELDS:
            value = getattr(self, name)
            data[name] = str(value) if value is not None else None
        return data

    @classmethod
    def from_cache(cls, data: Dict[str, Any]) -> "PointConfig":
        money = {
            name: Decimal(data[name]) if data.get(name) is not None else None
            for name in cls._MONEY_FIELDS
        }
        return cls(
            id=data["id"],
            name=data["name"],
            latitude=data.get("latitude"),
            longitude=data.get("longitude"),
            is_active=data.get("is_active", True),
            is_delivery_location=data.get("is_delivery_location", True),
            geofence=parse_polygon(data.get("geofence")),
            **money,
        )


@dataclass(frozen=True)
class FeePolicy:
    base_fee: Decimal
    fee_per_km: Decimal
    free_threshold: Decimal
    minimum_order: Decimal
    free_radius_km: float = 2.0

    @classmethod
    def resolve(cls, point: Optional[PointConfig], defaults: DeliverySettings) -> "FeePolicy":
        """Point-level values win; anything the point leaves unset comes from the store-wide defaults."""
        def pick(own: Optional[Decimal], fallback: Decimal) -> Decimal:
            return to_money(own if own is not None else fallback)

        return cls(
            base_fee=pick(point.delivery_base_fee if point else None, defaults.DELIVERY_BASE_FEE),
            fee_per_km=pick(point.delivery_fee_per_km if point else None, defaults.DELIVERY_FEE_PER_KM),
            free_threshold=pick(point.free_delivery_threshold if point else None, defaults.DELIVERY_FREE_THRESHOLD),
            minimum_order=pick(point.minimum_order_value if point else None, defaults.DELIVERY_MIN_ORDER),
            free_radius_km=defaults.DELIVERY_FREE_RADIUS_KM,
        )


@dataclass
class FeeQuote:
    fee: Decimal
    is_available: bool
    message: str
    distance_km: Optional[float] = None
    estimated_minutes: Optional[int] = None
    currency: str = "NGN"
    fulfillment_point_id: Optional[int] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "fee": self.fee,
            "distance_km": self.distance_km,
            "is_available": self.is_available,
            "message": self.message,
            "estimated_minutes": self.estimated_minutes,
            "currency": self.currency,
            "fulfillment_point_id": self.fulfillment_point_id,
            **self.extra,
        }


def _unavailable(message: str, currency: str, point_id: Optional[int] = None,
                 distance: Optional[float] = None, **extra) -> FeeQuote:
    return FeeQuote(
        fee=Decimal("0.00"),
        is_available=False,
        message=message,
        distance_km=distance,
        currency=currency,
        fulfillment_point_id=point_id,
        extra=extra,
    )


def compute_quote(subtotal: Decimal, customer: Optional[Tuple[Any, Any]], point: Optional[PointConfig],
                  policy: FeePolicy, currency: str = "NGN") -> FeeQuote:
    """Pure fee computation for one point. Never raises on bad data; returns an unavailable quote."""
    subtotal = to_money(subtotal)

    if point is None:
        return _unavailable("No delivery location is available", currency)
    if not point.is_active or not point.is_delivery_location:
        return _unavailable("Selected store does not offer delivery", currency, point.id)
    if not is_valid_coordinate(point.latitude, point.longitude):
        return _unavailable("Store location is not configured", currency, point.id)
    if customer is None or not is_valid_coordinate(*customer):
        return _unavailable("Delivery address coordinates are invalid", currency, point.id)

    customer_xy = (float(customer[0]), float(customer[1]))
    # fee and ETA use the exact distance, trimmed of float noise below a millimetre;
    # only the reported figure is rounded to 2 dp
    raw_distance = round(distance_km((point.latitude, point.longitude), customer_xy), 6)
    distance = round(raw_distance, 2)

    # fences with fewer than 3 vertices do not restrict delivery
    if point.geofence and len(point.geofence) >= 3 and not point_in_polygon(customer_xy, point.geofence):
        return _unavailable("Delivery address is outside the delivery area", currency, point.id, distance)

    if subtotal < policy.minimum_order:
        shortfall = policy.minimum_order - subtotal
        return _unavailable(
            f"Minimum order for delivery is {format_amount(policy.minimum_order, currency)} "
            f"(add {format_amount(shortfall, currency)} more)",
            currency, point.id, distance,
            minimum_order_value=policy.minimum_order,
            shortfall=shortfall,
        )

    chargeable_km = max(0, math.ceil(raw_distance - policy.free_radius_km))
    fee = to_money(policy.base_fee + chargeable_km * policy.fee_per_km)
    estimated_minutes = 5 + math.ceil(raw_distance * 3)

    if subtotal >= policy.free_threshold:
        fee = Decimal("0.00")
        message = "Free delivery for your order!"
    else:
        message = f"Delivery fee: {format_amount(fee, currency)} ({distance:g} km)"

    return FeeQuote(
        fee=fee,
        is_available=True,
        message=message,
        distance_km=distance,
        estimated_minutes=estimated_minutes,
        currency=currency,
        fulfillment_point_id=point.id,
    )


class DeliveryFeeCalculator:

    def __init__(self, session: AsyncSession, store: KeyValueStore,
                 defaults: DeliverySettings = delivery_settings,
                 logger: Optional[ContextLogger] = None,
                 cache_ttl: Optional[int] = None):
        self.session = session
        self.store = store
        self.defaults = defaults
        self.logger = logger or get_logger("storefront.delivery")
        self.cache_ttl = cache_ttl if cache_ttl is not None else config_settings.KV_CACHE_TTL_SECONDS

    async def load_point(self, point_id: Optional[int]) -> Optional[PointConfig]:
        async def loader():
            if point_id is not None:
                row = await get_fulfillment_point(self.session, point_id)
            else:
                row = await first_delivery_point(self.session)
            return PointConfig.from_row(row).to_cache() if row else None

        key = build_key("storefront", "fpoint", point_id if point_id is not None else "default")
        cached = await cache_get_or_load(self.store, key, self.cache_ttl, loader)
        return PointConfig.from_cache(cached) if cached else None

    async def quote(self, subtotal: Decimal, customer_coords: Optional[Tuple[Any, Any]],
                    fulfillment_point_id: Optional[int] = None) -> FeeQuote:
        point = await self.load_point(fulfillment_point_id)
        policy = FeePolicy.resolve(point, self.defaults)
        result = compute_quote(subtotal, customer_coords, point, policy, self.defaults.DELIVERY_CURRENCY)

        self.logger.info(
            "delivery.quote",
            extra={
                "fulfillment_point_id": result.fulfillment_point_id,
                "available": result.is_available,
                "fee": str(result.fee),
                "distance_km": result.distance_km,
            },
        )
        return result
