from decimal import Decimal
from pydantic_settings import BaseSettings


class DeliverySettings(BaseSettings):
    """Store-wide fallbacks for fulfillment points without their own fee config."""

    DELIVERY_BASE_FEE: Decimal = Decimal("0")
    DELIVERY_FEE_PER_KM: Decimal = Decimal("100")
    DELIVERY_FREE_THRESHOLD: Decimal = Decimal("10000")
    DELIVERY_MIN_ORDER: Decimal = Decimal("0")
    DELIVERY_FREE_RADIUS_KM: float = 2.0
    DELIVERY_CURRENCY: str = "NGN"

    ORDER_TAX_RATE: Decimal = Decimal("0.08")
    DELIVERY_FALLBACK_FEE: Decimal = Decimal("500")

    class Config:
        env_file = ".env"
        extra="ignore"

delivery_settings = DeliverySettings()
