from contextlib import asynccontextmanager
from fastapi import FastAPI
from storefront import __version__
from storefront.api import version_prefix
from storefront.api.routers import admin_routers, public_routers
from storefront.cache._cache import build_store
from storefront.common.custom_exceptions import register_all_exceptions
from storefront.common.logging_setup import get_logger, setup_logging, stop_logging
from storefront.config.admin_config import admin_config
from storefront.db.connection import async_engine, async_session
from storefront.middlewares.auth_middleware import AuthenticationMiddleware
from storefront.middlewares.request_id_middleware import RequestIdMiddleware
from storefront.notifications.dispatcher import LoggingNotificationDispatcher

logger = get_logger("storefront.app")


@asynccontextmanager
async def app_lifespan(app: FastAPI):
    setup_logging()
    app.state.kv_store = build_store()
    app.state.notifier = LoggingNotificationDispatcher()
    logger.info("app.startup", extra={"service": admin_config.SERVICE_NAME, "env": admin_config.ENV})

    try:
        yield
    finally:
        # new requests are no longer accepted at this point
        await app.state.kv_store.close()
        await async_engine.dispose()
        logger.info("app.shutdown")
        stop_logging()


def create_app():
    app = FastAPI(
        title="Storefront",
        version=__version__,
        lifespan=app_lifespan)

    app.include_router(public_routers)

    if admin_config.ENABLE_ADMIN:
        app.include_router(admin_routers)      # mounts /api/v1/admin

    app.add_middleware(AuthenticationMiddleware, session_maker=async_session,
                       paths=[f"{version_prefix}/health",
                              f"{version_prefix}/delivery-fee",
                              f"{version_prefix}/payments/callback",
                              f"{version_prefix}/payments/webhook",
                              "/docs",
                              "/openapi.json"],
                       maybe_auth_paths=[f"{version_prefix}/coupons/validate"])
    app.add_middleware(RequestIdMiddleware)
    register_all_exceptions(app)

    return app

app = create_app()
