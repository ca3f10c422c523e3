from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from storefront.auth.dependencies import CurrentUser, get_current_user, require_admin
from storefront.common.custom_exceptions import NotFound, PermissionDenied
from storefront.common.utils import build_success, json_ok
from storefront.db.dependencies import get_session
from storefront.orders.constants import ORDER_LIST_LIMIT
from storefront.orders.dependency import get_order_assembler
from storefront.orders.models import OrderCreateIn, OrderStatusUpdateIn
from storefront.orders.repository import get_order_by_key, get_order_items, list_user_orders
from storefront.orders.services import OrderAssembler
from storefront.orders.utils import serialize_order

orders_router = APIRouter()
orders_admin_router = APIRouter()


@orders_router.post("")
async def place_order(payload: OrderCreateIn,
    user: CurrentUser = Depends(get_current_user),
    assembler: OrderAssembler = Depends(get_order_assembler)):

    order, items = await assembler.place_order(user.id, payload)
    return json_ok(build_success(serialize_order(order, items)), status_code=status.HTTP_201_CREATED)


@orders_router.get("")
async def list_orders(limit: int = Query(ORDER_LIST_LIMIT, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user: CurrentUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session)):

    orders = await list_user_orders(session, user.id, limit, offset)
    data = {"orders": [serialize_order(o) for o in orders], "limit": limit, "offset": offset}
    return json_ok(build_success(data))


@orders_router.get("/{order_key}")
async def get_order_detail(order_key: str,
    user: CurrentUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session)):

    order = await get_order_by_key(session, order_key)
    if order is None:
        raise NotFound("Order not found")
    if order.user_id != user.id and not user.is_admin:
        raise PermissionDenied("You cannot view this order")

    items = await get_order_items(session, order.id)
    return json_ok(build_success(serialize_order(order, items)))


@orders_router.post("/{order_id}/cancel")
async def cancel_order(order_id: int,
    user: CurrentUser = Depends(get_current_user),
    assembler: OrderAssembler = Depends(get_order_assembler)):

    order = await assembler.cancel_order(order_id, user)
    return json_ok(build_success(serialize_order(order)))


@orders_admin_router.put("/{order_id}/status")
async def update_order_status(order_id: int, payload: OrderStatusUpdateIn,
    admin: CurrentUser = Depends(require_admin),
    assembler: OrderAssembler = Depends(get_order_assembler)):

    order = await assembler.update_status(order_id, payload.status, admin)
    return json_ok(build_success(serialize_order(order)))
