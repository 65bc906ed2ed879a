"""
Bearer token authentication.

Tokens are issued elsewhere; this module only verifies them and exposes the
signed-in user (login, org id, org role, server admin flag) to handlers.
"""

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from jose import ExpiredSignatureError, JWTError, jwt
from pydantic import BaseModel

from plugin_server.config import settings
from plugin_server.constants.roles import OrgRole, role_includes
from plugin_server.exceptions import AuthenticationError, AuthorizationError

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token", auto_error=False)


class SignedInUser(BaseModel):
    user_id: int
    login: str
    org_id: int
    org_role: OrgRole = OrgRole.VIEWER
    is_server_admin: bool = False

    def has_role(self, role: OrgRole) -> bool:
        if self.is_server_admin:
            return True
        return role_includes(self.org_role.value, role.value)


def create_access_token(data: dict[str, Any], expires_delta: timedelta | None = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    to_encode.update({"exp": expire})

    if "sub" not in to_encode:
        raise ValueError("Missing 'sub' claim (login) in token data.")

    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def decode_access_token(token: str) -> SignedInUser:
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except ExpiredSignatureError:
        logger.info("Rejected expired token")
        raise AuthenticationError("Token has expired")
    except JWTError as e:
        logger.info("JWT decoding failed: %s", e)
        raise AuthenticationError("Invalid token")

    login = payload.get("sub")
    if not login:
        raise AuthenticationError("Token does not contain 'sub' field.")

    try:
        return SignedInUser(
            user_id=payload.get("uid", 0),
            login=login,
            org_id=payload.get("org_id", 1),
            org_role=payload.get("role", OrgRole.VIEWER.value),
            is_server_admin=payload.get("server_admin", False),
        )
    except ValueError as e:
        logger.info("Token claims rejected: %s", e)
        raise AuthenticationError("Invalid token claims")


async def get_current_user(request: Request, token: str | None = Depends(oauth2_scheme)) -> SignedInUser:
    if not token:
        raise AuthenticationError()

    user = decode_access_token(token)
    request.state.user = user
    return user


def require_org_role(required: OrgRole) -> Callable[..., SignedInUser]:
    async def _current_user_with_role(user: SignedInUser = Depends(get_current_user)) -> SignedInUser:
        if not user.has_role(required):
            raise AuthorizationError(
                f"Role '{user.org_role.value}' does not have access to this resource.",
                required_role=required.value,
            )
        return user

    return _current_user_with_role


async def require_server_admin(user: SignedInUser = Depends(get_current_user)) -> SignedInUser:
    if not user.is_server_admin:
        raise AuthorizationError("Server admin access required", required_role="ServerAdmin")
    return user
