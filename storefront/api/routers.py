from fastapi import APIRouter
from storefront.api import version_prefix
from storefront.common.routes import home_router
from storefront.coupons.routes import coupons_router
from storefront.delivery.routes import delivery_router
from storefront.orders.routes import orders_admin_router, orders_router
from storefront.payments.routes import payments_router
from storefront.payments.webhooks import webhooks_router


public_routers = APIRouter(prefix=version_prefix)

public_routers.include_router(orders_router, prefix="/orders", tags=["orders"])
public_routers.include_router(delivery_router, prefix="/delivery-fee", tags=["delivery"])
public_routers.include_router(coupons_router, prefix="/coupons", tags=["coupons"])
public_routers.include_router(payments_router, prefix="/payments", tags=["payments"])
public_routers.include_router(webhooks_router, prefix="/payments", tags=["webhooks"])
public_routers.include_router(home_router, tags=["home"])

#--------------------------------------------------------------------------------------------------------

admin_routers = APIRouter(prefix=f"{version_prefix}/admin")

admin_routers.include_router(orders_admin_router, prefix="/orders", tags=["orders-admin"])
