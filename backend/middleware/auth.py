"""
Access-token authentication helpers.

Tokens are issued by the account service (outside this codebase) as HS256
JWTs:

    iss    JWT_ISSUER
    sub    user id (owner of orders)
    roles  list of role names; "admin" grants the admin capability
    iat, exp

This module only decodes them. issue_access_token() exists so the account
service and the test-suite can mint compatible tokens.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone, timedelta
from typing import Optional

import jwt
from fastapi import Depends, Header, HTTPException

from config import settings
from domain.errors import AuthorizationError, UnauthorizedError

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"


@dataclass(frozen=True)
class Principal:
    """The authenticated caller."""
    user_id: str
    roles: tuple[str, ...] = field(default_factory=tuple)

    @property
    def is_admin(self) -> bool:
        return ADMIN_ROLE in self.roles


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _parse_bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    parts = authorization.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    token = parts[1].strip()
    return token or None


def decode_access_token(token: str) -> dict:
    if not settings.jwt_secret:
        raise HTTPException(
            status_code=500,
            detail="Server auth misconfigured (JWT secret missing).",
        )
    try:
        return jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=["HS256"],
            issuer=settings.jwt_issuer,
            options={"require": ["exp", "iat", "iss", "sub"]},
        )
    except jwt.ExpiredSignatureError:
        raise UnauthorizedError("Access token expired.")
    except jwt.InvalidTokenError:
        raise UnauthorizedError("Invalid access token.")


def issue_access_token(*, user_id: str, roles: list[str] | tuple[str, ...] = (), ttl_minutes: int | None = None) -> str:
    if not settings.jwt_secret:
        raise HTTPException(
            status_code=500,
            detail="Server auth misconfigured (JWT secret missing).",
        )
    now = _now_utc()
    ttl = settings.jwt_access_ttl_minutes if ttl_minutes is None else ttl_minutes
    exp = now.replace(microsecond=0) + timedelta(minutes=ttl)
    payload = {
        "iss": settings.jwt_issuer,
        "sub": user_id,
        "roles": list(roles),
        "iat": int(now.timestamp()),
        "exp": int(exp.timestamp()),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm="HS256")


async def require_principal(
    authorization: Optional[str] = Header(None, alias="Authorization"),
) -> Principal:
    """Dependency: any authenticated caller."""
    token = _parse_bearer_token(authorization)
    if not token:
        raise UnauthorizedError("Authentication required. Provide Authorization: Bearer <token>.")

    payload = decode_access_token(token)
    roles = payload.get("roles") or []
    if isinstance(roles, str):
        roles = [roles]
    return Principal(user_id=str(payload["sub"]), roles=tuple(roles))


async def require_admin(principal: Principal = Depends(require_principal)) -> Principal:
    """Dependency: caller must hold the admin capability."""
    if not principal.is_admin:
        logger.warning(f"Admin endpoint denied for user {principal.user_id}")
        raise AuthorizationError("Admin capability required")
    return principal
