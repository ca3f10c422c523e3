from typing import Optional
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from storefront.auth.dependencies import CurrentUser, get_optional_user
from storefront.common.custom_exceptions import BusinessRuleViolation, NotFound
from storefront.common.utils import build_success, json_ok, now
from storefront.coupons.models import CouponValidateIn
from storefront.coupons.repository import get_coupon_by_code, user_has_used_coupon
from storefront.coupons.services import calculate_discount, coupon_rejection_reason
from storefront.db.dependencies import get_session

coupons_router = APIRouter()


# preview only; redemption happens when the order is placed
@coupons_router.post("/validate")
async def validate_coupon(payload: CouponValidateIn,
    user: Optional[CurrentUser] = Depends(get_optional_user),
    session: AsyncSession = Depends(get_session)):

    coupon = await get_coupon_by_code(session, payload.code)
    if coupon is None:
        raise NotFound("Coupon not found")

    used = await user_has_used_coupon(session, user.id if user else None, coupon.id)
    reason = coupon_rejection_reason(coupon, payload.subtotal, now(), user_has_used=used)
    if reason:
        raise BusinessRuleViolation(reason, code="COUPON_INVALID")

    discount = calculate_discount(coupon, payload.subtotal)
    data = {
        "code": coupon.code,
        "type": coupon.type,
        "value": coupon.value,
        "discount": discount,
        "subtotal_after_discount": payload.subtotal - discount,
    }
    return json_ok(build_success(data))
