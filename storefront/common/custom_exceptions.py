from typing import Any, Optional
from fastapi import FastAPI, HTTPException, Request,status
from fastapi.exceptions import RequestValidationError
from storefront.common.logging_setup import get_logger
from storefront.common.utils import build_error, json_error
from storefront.common.constants import request_id_ctx
from storefront.config.admin_config import admin_config

logger = get_logger("storefront.errors")


class AppError(Exception):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "APP_ERROR"

    def __init__(self, message: str, *, code: Optional[str] = None,
                 status_code: Optional[int] = None, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        self.details = details


class ValidationError(AppError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "VALIDATION_ERROR"


class BusinessRuleViolation(AppError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "BUSINESS_RULE_VIOLATION"


class InvalidStateTransition(BusinessRuleViolation):
    code = "INVALID_STATE_TRANSITION"


class NotFound(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"


class PermissionDenied(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "FORBIDDEN"


class GatewayError(AppError):
    """Any failure talking to a payment provider. raw_response is for logs only."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "GATEWAY_ERROR"

    def __init__(self, message: str, raw_response: Optional[Any] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.raw_response = raw_response


class ConfigurationError(AppError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "CONFIGURATION_ERROR"


async def app_error_handler(request: Request, exc: AppError):
    rid = request_id_ctx.get(None)

    if isinstance(exc, ConfigurationError):
        logger.error("config.error", extra={"path": request.url.path, "reason": exc.message})
        body = {"message": "payment gateway not configured"}
    elif isinstance(exc, GatewayError):
        logger.error(
            "gateway.error",
            extra={"path": request.url.path, "reason": exc.message, "raw_response": exc.raw_response},
        )
        body = {"message": exc.message}
    else:
        logger.info(
            "request.rejected",
            extra={"path": request.url.path, "code": exc.code, "reason": exc.message},
        )
        body = {"message": exc.message}
        if exc.details is not None:
            body["fields"] = exc.details

    payload = build_error(code=exc.code, details=body, request_id=rid)
    return json_error(payload, status_code=exc.status_code)


async def fallback_handler(request: Request, exc: Exception):

    rid = request_id_ctx.get(None)
    body = {"message": "Internal Server Error"}
    if admin_config.DEBUG:
        body["detail"] = f"{type(exc).__name__}: {exc}"

    logger.error(
        "unexpected.exception",
        extra={
            "path": request.url.path,
            "method": request.method,
        },
        exc_info=exc,
    )

    payload = build_error(code="SERVER_ERROR", details=body, request_id=rid)
    return json_error(payload, status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    rid = request_id_ctx.get(None)
    fields = [
        {"loc": list(err.get("loc", ())), "message": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]
    logger.warning(
        "request.validation_failed",
        extra={
            "errors": fields,
            "path": request.url.path,
        },
    )

    payload = build_error(code="UNPROCESSABLE_ENTITY", details={"message":"invalid request", "fields": fields}, request_id=rid)
    return json_error(payload, status_code=status.HTTP_422_UNPROCESSABLE_ENTITY)


async def http_exception_handler(request: Request, exc: HTTPException):

    rid = request_id_ctx.get(None)
    payload = build_error(code=f"HTTP_{exc.status_code}", details={"message":exc.detail}, request_id=rid)
    return json_error(payload, status_code=exc.status_code, headers=getattr(exc, "headers", None))


def register_all_exceptions(app: FastAPI):

    app.add_exception_handler(
        Exception, # catch all unidentified/unhandled exceptions
        fallback_handler
    )

    app.add_exception_handler(
        AppError,
        app_error_handler
    )

    app.add_exception_handler(
        RequestValidationError,
        validation_exception_handler
    )

    app.add_exception_handler(
        HTTPException,
        http_exception_handler
    )
