from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import uuid4

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from app.db import get_db
from app.errors import ApiError, AuthorizationError
from app.models import AppRole
from app.services.directory import ActingUser, resolve_acting_user
from app.settings import get_settings

bearer_scheme = HTTPBearer(auto_error=False)

TOKEN_ALGORITHM = "HS256"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def create_access_token(user_id: int, *, expires_delta: timedelta | None = None) -> tuple[str, int]:
    settings = get_settings()
    now = _utcnow()
    lifetime = expires_delta or timedelta(minutes=settings.access_token_minutes)
    claims = {
        "sub": str(user_id),
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
        "iat": int(now.timestamp()),
        "exp": int((now + lifetime).timestamp()),
        "jti": str(uuid4()),
        "typ": "access",
    }
    token = jwt.encode(claims, settings.jwt_secret, algorithm=TOKEN_ALGORITHM)
    return token, int(lifetime.total_seconds())


def decode_token(token: str) -> dict[str, Any]:
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[TOKEN_ALGORITHM],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options={"require_sub": True, "require_iat": True, "require_exp": True},
        )
    except JWTError as exc:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token is invalid.") from exc

    if payload.get("typ") != "access":
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token type is invalid.")
    return payload


def _subject_user_id(payload: dict[str, Any]) -> int:
    try:
        return int(str(payload.get("sub")))
    except ValueError as exc:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token subject is invalid.") from exc


def get_acting_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> ActingUser:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Missing bearer token.")

    payload = decode_token(credentials.credentials)
    actor = resolve_acting_user(db, _subject_user_id(payload))

    request.state.actor_id = str(actor.id)
    return actor


def require_roles(*roles: AppRole) -> Callable[..., ActingUser]:
    allowed = frozenset(roles)
    if not allowed:
        raise ValueError("require_roles needs at least one role")

    def _dependency(actor: ActingUser = Depends(get_acting_user)) -> ActingUser:
        if not actor.has_any_role(allowed):
            raise AuthorizationError("Insufficient permissions.")
        return actor

    return _dependency
