from datetime import datetime
from decimal import Decimal
from typing import Optional
from storefront.common.utils import as_utc, to_money
from storefront.schema.full_schema import Coupon, CouponType


def coupon_rejection_reason(coupon: Coupon, order_amount: Decimal, at: datetime,
                            user_has_used: bool = False) -> Optional[str]:
    """None when the coupon may be applied, otherwise a customer-facing reason."""
    if not coupon.is_active:
        return "Coupon is not active"

    starts_at = as_utc(coupon.starts_at)
    expires_at = as_utc(coupon.expires_at)
    if starts_at is not None and at < starts_at:
        return "Coupon is not yet valid"
    if expires_at is not None and at > expires_at:
        return "Coupon has expired"

    if coupon.usage_limit is not None and coupon.used_count >= coupon.usage_limit:
        return "Coupon usage limit reached"

    if coupon.min_order_amount is not None and to_money(order_amount) < to_money(coupon.min_order_amount):
        return f"Order must be at least {to_money(coupon.min_order_amount)} to use this coupon"

    if user_has_used:
        return "You have already used this coupon"

    return None


def is_coupon_valid(coupon: Coupon, order_amount: Decimal, at: datetime, user_has_used: bool = False) -> bool:
    return coupon_rejection_reason(coupon, order_amount, at, user_has_used) is None


def calculate_discount(coupon: Coupon, order_amount: Decimal) -> Decimal:
    """Discount for a valid coupon; never more than the order amount."""
    amount = to_money(order_amount)
    if amount <= 0:
        return Decimal("0.00")

    if CouponType(coupon.type) == CouponType.PERCENTAGE:
        percent = min(to_money(coupon.value), Decimal("100"))
        discount = to_money(amount * percent / Decimal("100"))
        if coupon.max_discount_amount is not None:
            discount = min(discount, to_money(coupon.max_discount_amount))
    else:
        discount = to_money(coupon.value)

    return max(Decimal("0.00"), min(discount, amount))
