from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field


class DeliveryQuoteIn(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    subtotal: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    fulfillment_point_id: Optional[int] = Field(None, gt=0)

    model_config = {"extra": "forbid"}
