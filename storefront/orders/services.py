import secrets
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from typing import Callable, List, Optional, Tuple
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.auth.dependencies import CurrentUser
from storefront.common.custom_exceptions import BusinessRuleViolation, NotFound, PermissionDenied, ValidationError
from storefront.common.logging_setup import ContextLogger, get_logger
from storefront.common.utils import now, to_money
from storefront.config.delivery_config import DeliverySettings, delivery_settings
from storefront.coupons.repository import get_coupon_by_code, redeem_coupon, release_coupon, user_has_used_coupon
from storefront.coupons.services import calculate_discount, coupon_rejection_reason
from storefront.db.utils import atomic
from storefront.delivery.repository import get_active_pickup_point
from storefront.delivery.services import DeliveryFeeCalculator
from storefront.notifications.dispatcher import NotificationDispatcher, notify_order_confirmed
from storefront.orders.constants import ORDER_NUMBER_ALPHABET, ORDER_NUMBER_LENGTH, ORDER_NUMBER_PREFIX, UNPAID_ORDER_TTL_HOURS
from storefront.orders.models import OrderCreateIn
from storefront.orders.pricing import PricedLine, PricingEngine, effective_unit_price
from storefront.orders.repository import (
    CartLine, adjust_line_stock, clear_cart, get_order, get_order_items, load_cart_lines,
    order_number_exists, stale_unpaid_order_ids,
)
from storefront.schema.full_schema import (
    Coupon, DeliveryMethod, OrderItem, OrderStatus, Orders, PaymentMethod, PaymentState,
)

# methods that are paid online and therefore expire when left unpaid
EXPIRABLE_PAYMENT_METHODS = (PaymentMethod.PAYSTACK.value, PaymentMethod.FLUTTERWAVE.value)


def generate_order_number() -> str:
    suffix = "".join(secrets.choice(ORDER_NUMBER_ALPHABET) for _ in range(ORDER_NUMBER_LENGTH))
    return f"{ORDER_NUMBER_PREFIX}{suffix}"


def check_availability(lines: List[CartLine]) -> None:
    errors = []
    for line in lines:
        if not line.is_active:
            errors.append({"product_id": line.product_id, "detail": f"{line.product_name} is no longer available"})
        elif line.quantity > line.available_stock:
            errors.append({
                "product_id": line.product_id,
                "variant_id": line.variant_id,
                "detail": f"Not enough stock for {line.product_name}: requested={line.quantity}, available={line.available_stock}",
            })
    if errors:
        raise BusinessRuleViolation("Some items in your cart are unavailable", code="INSUFFICIENT_STOCK", details=errors)


def price_lines(lines: List[CartLine]) -> List[PricedLine]:
    return [
        PricedLine(
            product_id=line.product_id,
            variant_id=line.variant_id,
            product_name=line.product_name,
            variant_label=line.variant_label,
            quantity=line.quantity,
            unit_price=effective_unit_price(line.base_price, line.sale_price, line.price_adjustment),
            base_price=to_money(line.base_price),
        )
        for line in lines
    ]


@dataclass
class ExpiryReport:
    expired: int = 0
    failed: int = 0


class OrderAssembler:
    """Turns a cart into an order and owns every later stock/coupon reversal of that order."""

    def __init__(self, session: AsyncSession, fee_calculator: DeliveryFeeCalculator,
                 notifier: NotificationDispatcher,
                 settings: DeliverySettings = delivery_settings,
                 clock: Callable = now,
                 logger: Optional[ContextLogger] = None):
        self.session = session
        self.fee_calculator = fee_calculator
        self.notifier = notifier
        self.settings = settings
        self.clock = clock
        self.logger = logger or get_logger("storefront.orders")
        self.pricing = PricingEngine(settings.ORDER_TAX_RATE)

    async def _unique_order_number(self) -> str:
        for _ in range(5):
            candidate = generate_order_number()
            if not await order_number_exists(self.session, candidate):
                return candidate
        raise RuntimeError("could not allocate a unique order number")

    async def _resolve_shipping(self, checkout: OrderCreateIn, subtotal: Decimal) -> Tuple[Decimal, Optional[int]]:
        if checkout.delivery_method == DeliveryMethod.PICKUP:
            point = await get_active_pickup_point(self.session, checkout.pickup_location_id)
            if point is None:
                raise BusinessRuleViolation("Selected pickup location is not available", code="PICKUP_UNAVAILABLE")
            return Decimal("0.00"), point.id

        fallback = to_money(self.settings.DELIVERY_FALLBACK_FEE)
        coords = checkout.coordinates
        if coords is not None:
            quote = await self.fee_calculator.quote(subtotal, coords, checkout.fulfillment_point_id)
            if quote.is_available:
                return quote.fee, quote.fulfillment_point_id
            self.logger.warning(
                "orders.shipping.fallback_fee",
                extra={"reason": quote.message, "fallback_fee": str(fallback)},
            )
            return fallback, quote.fulfillment_point_id or checkout.fulfillment_point_id

        if checkout.shipping_fee is not None:
            return to_money(checkout.shipping_fee), checkout.fulfillment_point_id
        return fallback, checkout.fulfillment_point_id

    async def _resolve_coupon(self, user_id: int, code: Optional[str], subtotal: Decimal) -> Tuple[Optional[Coupon], Decimal]:
        if not code or not code.strip():
            return None, Decimal("0.00")

        coupon = await get_coupon_by_code(self.session, code)
        if coupon is None:
            raise BusinessRuleViolation("Coupon code is not valid", code="COUPON_INVALID")

        used = await user_has_used_coupon(self.session, user_id, coupon.id)
        reason = coupon_rejection_reason(coupon, subtotal, self.clock(), user_has_used=used)
        if reason:
            raise BusinessRuleViolation(reason, code="COUPON_INVALID")
        return coupon, calculate_discount(coupon, subtotal)

    async def place_order(self, user_id: int, checkout: OrderCreateIn) -> Tuple[Orders, List[OrderItem]]:
        session = self.session

        async with atomic(session):
            lines = await load_cart_lines(session, user_id)
            if not lines:
                raise BusinessRuleViolation("Your cart is empty", code="CART_EMPTY")
            check_availability(lines)

            priced = price_lines(lines)
            subtotal = sum((p.subtotal for p in priced), Decimal("0.00"))
            shipping_fee, point_id = await self._resolve_shipping(checkout, subtotal)
            coupon, discount = await self._resolve_coupon(user_id, checkout.coupon_code, subtotal)

            totals = self.pricing.totals(priced, shipping_fee, discount)
            if totals.grand_total <= 0:
                raise BusinessRuleViolation("Order total must be greater than zero", code="INVALID_TOTAL")

            order = Orders(
                order_number=await self._unique_order_number(),
                user_id=user_id,
                status=OrderStatus.PENDING.value,
                payment_status=PaymentState.PENDING.value,
                currency=self.settings.DELIVERY_CURRENCY,
                subtotal=totals.subtotal,
                discount=totals.discount,
                tax=totals.tax,
                shipping_fee=totals.shipping_fee,
                grand_total=totals.grand_total,
                delivery_method=checkout.delivery_method.value,
                payment_method=checkout.payment_method.value,
                coupon_id=coupon.id if coupon else None,
                fulfillment_point_id=point_id,
                customer_name=checkout.customer_name,
                customer_email=checkout.customer_email,
                shipping_address=checkout.shipping_address,
                shipping_city=checkout.shipping_city,
                shipping_state=checkout.shipping_state,
                shipping_zip=checkout.shipping_zip,
                shipping_phone=checkout.shipping_phone,
                shipping_latitude=checkout.shipping_latitude,
                shipping_longitude=checkout.shipping_longitude,
                notes=checkout.notes,
                created_at=self.clock(),
                updated_at=self.clock(),
            )
            session.add(order)
            await session.flush()

            items = [
                OrderItem(
                    order_id=order.id,
                    product_id=p.product_id,
                    variant_id=p.variant_id,
                    product_name=p.product_name,
                    variant_label=p.variant_label,
                    quantity=p.quantity,
                    unit_price=p.unit_price,
                    base_price=p.base_price,
                    subtotal=p.subtotal,
                )
                for p in priced
            ]
            session.add_all(items)

            for p in priced:
                if not await adjust_line_stock(session, p.product_id, p.variant_id, -p.quantity):
                    raise BusinessRuleViolation(
                        f"Not enough stock for {p.product_name}",
                        code="INSUFFICIENT_STOCK",
                        details=[{"product_id": p.product_id, "variant_id": p.variant_id}],
                    )

            if coupon is not None and not await redeem_coupon(session, coupon.id):
                raise BusinessRuleViolation("Coupon usage limit reached", code="COUPON_INVALID")

            await clear_cart(session, user_id)

        self.logger.info(
            "orders.place.completed",
            extra={
                "order_number": order.order_number,
                "grand_total": str(order.grand_total),
                "payment_method": order.payment_method,
                "lines": len(items),
            },
        )

        if order.payment_method == PaymentMethod.CASH_ON_DELIVERY.value:
            await notify_order_confirmed(self.notifier, order, self.logger)

        return order, items

    async def _reverse(self, order: Orders, target: OrderStatus) -> None:
        """Move a live order to cancelled/refunded, giving back stock and coupon usage."""
        current = OrderStatus(order.status)
        if current.is_terminal:
            raise BusinessRuleViolation(
                f"Order is already {current.value}",
                code="ORDER_NOT_REVERSIBLE",
            )
        current.transition_to(target)

        for item in await get_order_items(self.session, order.id):
            await adjust_line_stock(self.session, item.product_id, item.variant_id, item.quantity)

        if order.coupon_id is not None:
            await release_coupon(self.session, order.coupon_id)

        order.status = target.value
        order.updated_at = self.clock()
        self.session.add(order)

    async def _load_for_change(self, order_id: int, actor: CurrentUser) -> Orders:
        order = await get_order(self.session, order_id, for_update=True)
        if order is None:
            raise NotFound("Order not found")
        if order.user_id != actor.id and not actor.is_admin:
            raise PermissionDenied("You cannot modify this order")
        return order

    async def cancel_order(self, order_id: int, actor: CurrentUser) -> Orders:
        async with atomic(self.session):
            order = await self._load_for_change(order_id, actor)
            await self._reverse(order, OrderStatus.CANCELLED)

        self.logger.info("orders.cancelled", extra={"order_number": order.order_number, "by_admin": actor.is_admin})
        return order

    async def refund_order(self, order_id: int, actor: CurrentUser) -> Orders:
        if not actor.is_admin:
            raise PermissionDenied("Admin role required")
        async with atomic(self.session):
            order = await self._load_for_change(order_id, actor)
            await self._reverse(order, OrderStatus.REFUNDED)

        self.logger.info("orders.refunded", extra={"order_number": order.order_number})
        return order

    async def update_status(self, order_id: int, target: OrderStatus, actor: CurrentUser) -> Orders:
        """Admin status change. Reversals restore stock and coupon usage like a cancellation."""
        if target == OrderStatus.CANCELLED:
            return await self.cancel_order(order_id, actor)
        if target == OrderStatus.REFUNDED:
            return await self.refund_order(order_id, actor)
        if target != OrderStatus.PROCESSING:
            raise ValidationError("Unsupported status change", details={"status": target.value})

        async with atomic(self.session):
            order = await self._load_for_change(order_id, actor)
            order.status = OrderStatus(order.status).transition_to(target).value
            order.updated_at = self.clock()
            self.session.add(order)
        return order

    async def expire_unpaid_orders(self, older_than_hours: int = UNPAID_ORDER_TTL_HOURS) -> ExpiryReport:
        cutoff = self.clock() - timedelta(hours=older_than_hours)
        order_ids = await stale_unpaid_order_ids(self.session, cutoff, EXPIRABLE_PAYMENT_METHODS)
        await self.session.commit()

        report = ExpiryReport()
        for order_id in order_ids:
            try:
                async with atomic(self.session):
                    order = await get_order(self.session, order_id, for_update=True)
                    # paid or cancelled since the scan
                    if (order is None or order.status != OrderStatus.PENDING.value
                            or order.payment_status != PaymentState.PENDING.value):
                        continue
                    await self._reverse(order, OrderStatus.CANCELLED)
                    order.expired_at = self.clock()
                report.expired += 1
                self.logger.info("orders.expired", extra={"order_number": order.order_number})
            except Exception:
                report.failed += 1
                self.logger.exception("orders.expire.failed", extra={"order_id": order_id})

        self.logger.info(
            "orders.expire.summary",
            extra={"expired": report.expired, "failed": report.failed, "cutoff": cutoff.isoformat()},
        )
        return report
