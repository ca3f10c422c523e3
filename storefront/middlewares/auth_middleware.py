
from typing import Optional, Sequence
from fastapi import Request, status
from starlette.middleware.base import BaseHTTPMiddleware
from storefront.auth.dependencies import Authentication
from storefront.auth.repository import identify_user_by_pid
from storefront.common.logging_setup import get_logger
from storefront.common.utils import build_error, json_error

logger = get_logger("storefront.middlewares")


class AuthenticationMiddleware(BaseHTTPMiddleware):
    """
    Resolves the bearer token to a local user id on request.state.
    `paths` skip auth entirely; `maybe_auth_paths` attach the user when a valid token is
    present and continue anonymously otherwise.
    """

    def __init__(self, app, *, session_maker, paths: Sequence[str], maybe_auth_paths: Optional[Sequence[str]] = None):
        super().__init__(app)
        self.session_maker = session_maker
        self.paths = tuple(paths)
        self.maybe_auth_paths = tuple(maybe_auth_paths or ())

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if any(path.startswith(p) for p in self.paths):
            return await call_next(request)

        optional = any(path.startswith(p) for p in self.maybe_auth_paths)

        try:
            auth_token = await Authentication()(request)
        except Exception as e:
            if optional:
                return await call_next(request)
            reason = getattr(e, "detail", "Missing or Invalid Auth Headers")
            logger.warning("auth.middleware.failed", extra={
                "reason": reason,
                "path": path,
                "method": request.method
            })
            payload = build_error(code="INVALID_AUTH", details={"message":"Missing or Invalid Auth Headers"})
            return json_error(payload, status_code=status.HTTP_401_UNAUTHORIZED)

        user_pid = auth_token.get("sub")
        user_roles = auth_token.get("roles") or []

        async with self.session_maker() as session:
            user_identifier = await identify_user_by_pid(session, user_pid)

        if not user_identifier:
            logger.warning("auth.middleware.user_not_found", extra={
                "user_public_id": user_pid,
                "path": path
            })
            payload = build_error(code="INVALID_AUTH", details={"message":"User unidentified and not authorized"})
            return json_error(payload, status_code=status.HTTP_403_FORBIDDEN)

        request.state.user_identifier = user_identifier
        request.state.user_public_id = user_pid
        request.state.user_roles = list(user_roles)

        return await call_next(request)
