"""Signed session tokens issued after sign-in."""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Any, Mapping

import jwt
from botocore.exceptions import BotoCoreError, ClientError

from .model import UserProfile

DEFAULT_EXPIRES_IN_SECONDS = 7 * 24 * 60 * 60
TOKEN_ISSUER = "snapsyllabus"
TOKEN_AUDIENCE = "snapsyllabus-users"
_ALGORITHM = "HS256"


class SessionTokenError(ValueError):
    """Raised when a session token is missing, malformed, or expired."""


class SessionConfigError(RuntimeError):
    """Raised when session signing is not configured."""


def _secrets_manager_client():
    import boto3

    return boto3.client("secretsmanager")


@lru_cache(maxsize=4)
def _secret_from_arn(secret_arn: str) -> str:
    """Fetch the signing secret once per warm runtime."""
    try:
        response = _secrets_manager_client().get_secret_value(SecretId=secret_arn)
    except (BotoCoreError, ClientError) as exc:
        raise SessionConfigError(f"server misconfiguration: unable to read JWT secret: {exc}") from exc
    return str(response.get("SecretString", "")).strip()


@dataclass(frozen=True)
class SessionTokenConfig:
    """Signing secret and lifetime for session tokens."""

    secret: str
    expires_in_seconds: int = DEFAULT_EXPIRES_IN_SECONDS

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "SessionTokenConfig":
        source = os.environ if env is None else env
        secret = source.get("JWT_SECRET", "").strip()
        secret_arn = source.get("JWT_SECRET_ARN", "").strip()
        if not secret and secret_arn:
            secret = _secret_from_arn(secret_arn)
        if not secret:
            raise SessionConfigError("server misconfiguration: JWT_SECRET missing")

        raw_expiry = source.get("JWT_EXPIRES_IN_SECONDS", "").strip()
        try:
            expires_in = int(raw_expiry) if raw_expiry else DEFAULT_EXPIRES_IN_SECONDS
        except ValueError:
            expires_in = DEFAULT_EXPIRES_IN_SECONDS
        if expires_in <= 0:
            expires_in = DEFAULT_EXPIRES_IN_SECONDS
        return cls(secret=secret, expires_in_seconds=expires_in)


@dataclass(frozen=True)
class SessionClaims:
    """Identity carried inside a verified session token."""

    user_id: str
    email: str
    name: str

    def to_api_dict(self) -> dict[str, str]:
        return {"userId": self.user_id, "email": self.email, "name": self.name}


def mint_session_token(
    profile: UserProfile,
    *,
    config: SessionTokenConfig,
    now: datetime | None = None,
) -> str:
    issued_at = now or datetime.now(timezone.utc)
    payload = {
        "sub": profile.user_id,
        "email": profile.email,
        "name": profile.name,
        "iat": issued_at,
        "exp": issued_at + timedelta(seconds=config.expires_in_seconds),
        "iss": TOKEN_ISSUER,
        "aud": TOKEN_AUDIENCE,
    }
    return jwt.encode(payload, config.secret, algorithm=_ALGORITHM)


def verify_session_token(token: str, *, config: SessionTokenConfig) -> SessionClaims:
    """Verify signature, issuer, audience and expiry; return the session identity."""
    if not isinstance(token, str) or not token.strip():
        raise SessionTokenError("session token is required")
    try:
        decoded: dict[str, Any] = jwt.decode(
            token,
            config.secret,
            algorithms=[_ALGORITHM],
            issuer=TOKEN_ISSUER,
            audience=TOKEN_AUDIENCE,
        )
    except jwt.ExpiredSignatureError as exc:
        raise SessionTokenError("session token expired") from exc
    except jwt.InvalidTokenError as exc:
        raise SessionTokenError("invalid session token") from exc

    user_id = decoded.get("sub")
    if not isinstance(user_id, str) or not user_id:
        raise SessionTokenError("invalid session token")
    return SessionClaims(
        user_id=user_id,
        email=str(decoded.get("email", "")),
        name=str(decoded.get("name", "")),
    )


def extract_bearer_token(header: str | None) -> str | None:
    if not isinstance(header, str) or not header.startswith("Bearer "):
        return None
    token = header[len("Bearer ") :].strip()
    return token or None
