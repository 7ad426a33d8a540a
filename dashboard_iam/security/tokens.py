"""Bearer tokens (PyJWT). A token names a user and the session it was issued for."""

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

import jwt

from dashboard_iam.config.settings import get_settings
from dashboard_iam.domain.exceptions import Unauthorized


@dataclass(frozen=True)
class TokenClaims:
    user_id: str
    session_id: str
    expires_at: datetime


def issue_access_token(user_id: str, session_id: str, expires_at: datetime) -> str:
    settings = get_settings()
    payload = {
        "sub": user_id,
        "sid": session_id,
        "jti": uuid.uuid4().hex,
        "type": "access",
        "exp": expires_at,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> TokenClaims:
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            options={"require": ["sub", "sid", "exp"]},
        )
    except jwt.PyJWTError as e:
        raise Unauthorized(f"Invalid or expired token: {e}") from e
    if payload.get("type") != "access":
        raise Unauthorized("Invalid token type")
    return TokenClaims(
        user_id=str(payload["sub"]),
        session_id=str(payload["sid"]),
        expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
    )
