from typing import Any, Dict, Iterable, Optional
from storefront.schema.full_schema import OrderItem, Orders


def serialize_item(item: OrderItem) -> Dict[str, Any]:
    return {
        "product_id": item.product_id,
        "variant_id": item.variant_id,
        "product_name": item.product_name,
        "variant_label": item.variant_label,
        "quantity": item.quantity,
        "unit_price": item.unit_price,
        "base_price": item.base_price,
        "subtotal": item.subtotal,
    }


def serialize_order(order: Orders, items: Optional[Iterable[OrderItem]] = None) -> Dict[str, Any]:
    data = {
        "id": order.id,
        "public_id": str(order.public_id),
        "order_number": order.order_number,
        "status": order.status,
        "payment_status": order.payment_status,
        "payment_method": order.payment_method,
        "delivery_method": order.delivery_method,
        "currency": order.currency,
        "subtotal": order.subtotal,
        "discount": order.discount,
        "tax": order.tax,
        "shipping_fee": order.shipping_fee,
        "grand_total": order.grand_total,
        "coupon_id": order.coupon_id,
        "fulfillment_point_id": order.fulfillment_point_id,
        "payment_reference": order.payment_reference,
        "shipping": {
            "address": order.shipping_address,
            "city": order.shipping_city,
            "state": order.shipping_state,
            "zip": order.shipping_zip,
            "phone": order.shipping_phone,
            "latitude": order.shipping_latitude,
            "longitude": order.shipping_longitude,
        },
        "customer_name": order.customer_name,
        "notes": order.notes,
        "expired_at": order.expired_at,
        "created_at": order.created_at,
    }
    if items is not None:
        data["items"] = [serialize_item(i) for i in items]
    return data
