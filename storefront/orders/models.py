from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field, model_validator
from storefront.schema.full_schema import DeliveryMethod, OrderStatus, PaymentMethod


class OrderCreateIn(BaseModel):
    payment_method: PaymentMethod
    delivery_method: DeliveryMethod = DeliveryMethod.SHIPPING
    customer_name: str = Field(..., min_length=1, max_length=256)
    customer_email: Optional[str] = Field(None, max_length=320, pattern=r"^[^@\s]+@[^@\s]+$")
    shipping_address: Optional[str] = Field(None, max_length=1000)
    shipping_city: Optional[str] = Field(None, max_length=128)
    shipping_state: Optional[str] = Field(None, max_length=128)
    shipping_zip: Optional[str] = Field(None, max_length=32)
    shipping_phone: Optional[str] = Field(None, max_length=32)
    shipping_latitude: Optional[float] = Field(None, ge=-90, le=90)
    shipping_longitude: Optional[float] = Field(None, ge=-180, le=180)
    # fee the client already quoted, used only when no coordinates are sent
    shipping_fee: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    fulfillment_point_id: Optional[int] = Field(None, gt=0)
    pickup_location_id: Optional[int] = Field(None, gt=0)
    coupon_code: Optional[str] = Field(None, max_length=64)
    notes: Optional[str] = Field(None, max_length=2000)

    model_config = {"extra": "forbid"}

    @model_validator(mode="after")
    def check_delivery_details(self):
        if self.delivery_method == DeliveryMethod.SHIPPING:
            missing = [
                name for name in ("shipping_address", "shipping_city", "shipping_state", "shipping_phone")
                if not getattr(self, name)
            ]
            if missing:
                raise ValueError(f"required for shipping: {', '.join(missing)}")
        elif self.pickup_location_id is None:
            raise ValueError("pickup_location_id is required for pickup orders")

        if (self.shipping_latitude is None) != (self.shipping_longitude is None):
            raise ValueError("shipping_latitude and shipping_longitude must be sent together")
        return self

    @property
    def coordinates(self):
        if self.shipping_latitude is None:
            return None
        return (self.shipping_latitude, self.shipping_longitude)


class OrderStatusUpdateIn(BaseModel):
    status: OrderStatus

    model_config = {"extra": "forbid"}
