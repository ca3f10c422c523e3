from decimal import Decimal
from pydantic import BaseModel, Field


class CouponValidateIn(BaseModel):
    code: str = Field(..., min_length=1, max_length=64)
    subtotal: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)

    model_config = {"extra": "forbid"}
