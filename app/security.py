from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable
from uuid import uuid4

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from app.db import get_db
from app.errors import ApiError
from app.models import Role, User
from app.settings import get_settings

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True, slots=True)
class Actor:
    """Authenticated caller resolved from a bearer token."""

    user_id: int
    role: Role
    campaign_id: int | None
    email: str
    full_name: str

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    @property
    def is_manager(self) -> bool:
        return self.role == Role.MANAGER


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def actor_from_user(user: User) -> Actor:
    return Actor(
        user_id=user.id,
        role=Role(user.role),
        campaign_id=user.campaign_id,
        email=user.email,
        full_name=user.full_name,
    )


def create_access_token(*, user_id: int, role: Role | str) -> tuple[str, int, dict[str, Any]]:
    settings = get_settings()
    now = _utcnow()
    exp = now + timedelta(minutes=settings.access_token_minutes)
    claims = {
        "sub": str(user_id),
        "role": Role(role).value,
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
        "iat": int(now.timestamp()),
        "exp": int(exp.timestamp()),
        "jti": str(uuid4()),
        "typ": "access",
    }
    token = jwt.encode(claims, settings.jwt_secret, algorithm="HS256")
    return token, settings.access_token_minutes * 60, claims


def decode_token(token: str) -> dict[str, Any]:
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=["HS256"],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options={"require_sub": True, "require_iat": True, "require_exp": True},
        )
    except JWTError as exc:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token is invalid.") from exc

    if payload.get("typ") != "access":
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token type is invalid.")

    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject.isdigit():
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token subject is invalid.")

    return payload


def require_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> Actor:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Missing bearer token.")

    payload = decode_token(credentials.credentials)
    user = db.get(User, int(payload["sub"]))
    if user is None or not user.is_active:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="User is not active.")

    actor = actor_from_user(user)
    request.state.actor = actor.role.value
    request.state.actor_id = str(actor.user_id)
    return actor


def require_roles(*roles: Role) -> Callable[..., Actor]:
    if not roles:
        raise ValueError("At least one role is required")
    allowed = frozenset(roles)

    def _dependency(actor: Actor = Depends(require_user)) -> Actor:
        if actor.role not in allowed:
            raise ApiError(status_code=403, code="FORBIDDEN", message="Insufficient permissions.")
        return actor

    return _dependency
