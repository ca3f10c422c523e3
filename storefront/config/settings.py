from typing import Optional
from pydantic_settings import BaseSettings

class Settings(BaseSettings):

    DATABASE_URL: str = "sqlite+aiosqlite:///./storefront.db"
    JWT_SECRET: str
    JWT_ALGO: str = "HS256"
    REDIS_URL: Optional[str] = None
    KV_CACHE_TTL_SECONDS: int = 60

    # payment gateways; keys are checked when a gateway is built, not at import
    PAYSTACK_SECRET_KEY: Optional[str] = None
    PAYSTACK_PUBLIC_KEY: Optional[str] = None
    PAYSTACK_BASE_URL: str = "https://api.paystack.co"
    FLUTTERWAVE_SECRET_KEY: Optional[str] = None
    FLUTTERWAVE_PUBLIC_KEY: Optional[str] = None
    FLUTTERWAVE_SECRET_HASH: Optional[str] = None
    FLUTTERWAVE_BASE_URL: str = "https://api.flutterwave.com/v3"
    DEFAULT_PAYMENT_GATEWAY: str = "paystack"
    GATEWAY_TIMEOUT_SECONDS: float = 15.0
    PAYMENT_REFERENCE_PREFIX: str = "STF"
    PAYMENT_CURRENCY: str = "NGN"

    PAYMENT_CALLBACK_URL: str = "http://localhost:8000/api/v1/payments/callback"
    PAYMENT_SUCCESS_URL: str = "http://localhost:3000/checkout/success"
    PAYMENT_ERROR_URL: str = "http://localhost:3000/checkout/error"

    class Config:
        env_file = ".env"
        extra="ignore"

config_settings = Settings()
