from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

import jwt

from siteqa.core.config import get_settings
from siteqa.core.errors import InvalidTokenError


@dataclass(frozen=True)
class TokenClaims:
    # Identity carried by a bearer token; team roles are a login-time snapshot.
    user_id: str
    email: str | None = None
    name: str | None = None
    teams: list[dict[str, str]] = field(default_factory=list)


def issue_token(
    *,
    user_id: str,
    email: str | None,
    name: str | None,
    teams: list[dict[str, str]],
    now: datetime | None = None,
) -> str:
    settings = get_settings()
    issued_at = now or datetime.now(timezone.utc)
    payload: dict[str, Any] = {
        "sub": user_id,
        "email": email,
        "name": name,
        "teams": teams,
        "iat": int(issued_at.timestamp()),
        "exp": int((issued_at + timedelta(days=settings.jwt_ttl_days)).timestamp()),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> TokenClaims:
    # Signature, expiry and subject are all required for a usable token.
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            options={"require": ["sub", "exp"]},
        )
    except jwt.ExpiredSignatureError as exc:
        raise InvalidTokenError("Token expired") from exc
    except jwt.PyJWTError as exc:
        raise InvalidTokenError("Invalid token") from exc
    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject:
        raise InvalidTokenError("Invalid token")
    teams = payload.get("teams") or []
    return TokenClaims(
        user_id=subject,
        email=payload.get("email"),
        name=payload.get("name"),
        teams=[team for team in teams if isinstance(team, dict)],
    )
