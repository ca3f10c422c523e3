from fastapi import APIRouter, Depends
from storefront.common.utils import build_success, json_ok
from storefront.delivery.dependency import get_fee_calculator
from storefront.delivery.models import DeliveryQuoteIn
from storefront.delivery.services import DeliveryFeeCalculator

delivery_router = APIRouter()


@delivery_router.post("/quote")
async def quote_delivery_fee(payload: DeliveryQuoteIn,
    calculator: DeliveryFeeCalculator = Depends(get_fee_calculator)):

    quote = await calculator.quote(
        payload.subtotal,
        (payload.latitude, payload.longitude),
        fulfillment_point_id=payload.fulfillment_point_id,
    )
    return json_ok(build_success(quote.as_dict()))
