from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field
from storefront.payments.gateways import AmountUnit
from storefront.schema.full_schema import GatewayKind


class PaymentInitIn(BaseModel):
    order_id: int = Field(..., gt=0)
    gateway: GatewayKind
    email: str = Field(..., max_length=320, pattern=r"^[^@\s]+@[^@\s]+$")
    name: Optional[str] = Field(None, max_length=256)
    phone: Optional[str] = Field(None, max_length=32)
    # optional; the order's grand_total is what gets charged
    amount: Optional[Decimal] = Field(None, gt=0, max_digits=14, decimal_places=2)
    amount_unit: Optional[AmountUnit] = None
    callback_url: Optional[str] = Field(None, max_length=1024)

    model_config = {"extra": "forbid"}


class PaymentVerifyIn(BaseModel):
    reference: str = Field(..., min_length=1, max_length=128)

    model_config = {"extra": "forbid"}
