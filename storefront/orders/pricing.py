from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional
from storefront.common.utils import to_money


@dataclass
class PricedLine:
    product_id: int
    variant_id: Optional[int]
    product_name: str
    variant_label: Optional[str]
    quantity: int
    unit_price: Decimal
    base_price: Decimal

    @property
    def subtotal(self) -> Decimal:
        return to_money(self.unit_price * self.quantity)


@dataclass(frozen=True)
class OrderTotals:
    subtotal: Decimal
    tax: Decimal
    shipping_fee: Decimal
    discount: Decimal

    @property
    def grand_total(self) -> Decimal:
        return to_money(self.subtotal + self.tax + self.shipping_fee - self.discount)


def effective_unit_price(base_price: Decimal, sale_price: Optional[Decimal],
                         price_adjustment: Optional[Decimal] = None) -> Decimal:
    """sale_price wins over base_price when set; a variant's adjustment is added on top."""
    price = sale_price if sale_price is not None else base_price
    if price_adjustment:
        price = price + price_adjustment
    return to_money(max(Decimal("0"), price))


def compute_subtotal(lines: Iterable[PricedLine]) -> Decimal:
    return to_money(sum((line.subtotal for line in lines), Decimal("0")))


def compute_tax(subtotal: Decimal, rate: Decimal) -> Decimal:
    return to_money(subtotal * rate)


class PricingEngine:

    def __init__(self, tax_rate: Decimal):
        self.tax_rate = tax_rate

    def totals(self, lines: Iterable[PricedLine], shipping_fee: Decimal,
               discount: Decimal = Decimal("0")) -> OrderTotals:
        subtotal = compute_subtotal(lines)
        return OrderTotals(
            subtotal=subtotal,
            tax=compute_tax(subtotal, self.tax_rate),
            shipping_fee=to_money(shipping_fee),
            discount=to_money(discount),
        )
