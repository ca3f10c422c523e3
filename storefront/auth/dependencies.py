from dataclasses import dataclass, field
from typing import List, Optional
from fastapi import Depends, Request,HTTPException,status
from fastapi.security import HTTPBearer , http

from jose import jwt, JWTError
from storefront.common.custom_exceptions import PermissionDenied
from storefront.config.settings import config_settings

ADMIN_ROLE = "admin"


class Authentication(HTTPBearer):
    def __init__(self,auto_error=True):
        super().__init__(auto_error=auto_error)

    async def __call__(self, request:Request) -> http.HTTPAuthorizationCredentials|None:
        auth_creds=await super().__call__(request)
        token=auth_creds.credentials

        decoded_token=self.decode_token(token)

        if not decoded_token:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED,detail="Invalid or expired token provided.")

        return decoded_token

    def decode_token(self,token:str):
        """To verify the signature , expiration and user claims of token"""
        try:
            return jwt.decode(
                token,
                key=config_settings.JWT_SECRET,
                algorithms=[config_settings.JWT_ALGO],
            )
        except JWTError:
            return None


@dataclass
class CurrentUser:
    id: int
    public_id: str
    roles: List[str] = field(default_factory=list)

    @property
    def is_admin(self) -> bool:
        return ADMIN_ROLE in self.roles


def get_optional_user(request: Request) -> Optional[CurrentUser]:
    user_identifier = getattr(request.state, "user_identifier", None)
    if user_identifier is None:
        return None
    return CurrentUser(
        id=user_identifier,
        public_id=request.state.user_public_id,
        roles=list(request.state.user_roles or []),
    )


def get_current_user(request: Request) -> CurrentUser:
    user = get_optional_user(request)
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    return user


def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not user.is_admin:
        raise PermissionDenied("Admin role required")
    return user
