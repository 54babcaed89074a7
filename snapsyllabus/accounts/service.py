"""Sign-up, login, Google sign-in and Canvas linking flows."""

from __future__ import annotations

import re
from typing import Any, Callable, Mapping

import bcrypt

from .model import UserProfile, generate_id
from .repository import UserProfileStore

IdFactory = Callable[[], str]
GoogleVerifier = Callable[[str, str], Mapping[str, Any]]

MIN_PASSWORD_LENGTH = 8
DEFAULT_BCRYPT_ROUNDS = 10
_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class AccountError(ValueError):
    """Base class for account flow failures."""


class AccountValidationError(AccountError):
    """Raised when sign-up or login input is malformed."""


class AccountExistsError(AccountError):
    """Raised when an email is already registered for credentials login."""


class InvalidCredentialsError(AccountError):
    """Raised when email/password or a Google credential does not check out."""


def _require(payload: Mapping[str, Any], field: str) -> str:
    value = payload.get(field)
    if not isinstance(value, str) or not value.strip():
        raise AccountValidationError(f"{field} is required")
    return value.strip()


def _validate_email(email: str) -> str:
    if not _EMAIL_PATTERN.match(email):
        raise AccountValidationError("email must be a valid address")
    return email.lower()


def verify_google_id_token(credential: str, client_id: str) -> Mapping[str, Any]:
    """Verify a Google ID token against Google's public keys."""
    from google.auth.transport import requests as google_requests
    from google.oauth2 import id_token

    return id_token.verify_oauth2_token(credential, google_requests.Request(), client_id)


def sign_up(
    payload: Mapping[str, Any],
    *,
    store: UserProfileStore,
    id_factory: IdFactory = generate_id,
    bcrypt_rounds: int = DEFAULT_BCRYPT_ROUNDS,
) -> UserProfile:
    """Create a credentials account and store its bcrypt password hash."""
    email = _validate_email(_require(payload, "email"))
    name = _require(payload, "name")
    password = payload.get("password")
    if not isinstance(password, str) or not password:
        raise AccountValidationError("password is required")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise AccountValidationError(f"password must be at least {MIN_PASSWORD_LENGTH} characters")

    if store.find_by_email(email, auth_provider="credentials") is not None:
        raise AccountExistsError("an account with this email already exists")

    user_id = f"cred_{id_factory()}"
    password_hash = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=bcrypt_rounds))
    store.save_password_hash(user_id, password_hash.decode("utf-8"))

    profile = UserProfile.create(user_id=user_id, email=email, name=name, auth_provider="credentials")
    store.save(profile)
    return profile


def log_in(payload: Mapping[str, Any], *, store: UserProfileStore) -> UserProfile:
    """Check email/password and record the login time."""
    email = _require(payload, "email")
    password = payload.get("password")
    if not isinstance(password, str) or not password:
        raise AccountValidationError("password is required")

    profile = store.find_by_email(email, auth_provider="credentials")
    if profile is None:
        raise InvalidCredentialsError("invalid credentials")

    stored_hash = store.get_password_hash(profile.user_id)
    if not stored_hash:
        raise InvalidCredentialsError("invalid credentials")
    try:
        valid = bcrypt.checkpw(password.encode("utf-8"), stored_hash.strip().encode("utf-8"))
    except ValueError:
        valid = False
    if not valid:
        raise InvalidCredentialsError("invalid credentials")

    updated = profile.touch_login()
    store.save(updated)
    return updated


def google_sign_in(
    payload: Mapping[str, Any],
    *,
    store: UserProfileStore,
    client_id: str,
    verifier: GoogleVerifier = verify_google_id_token,
) -> UserProfile:
    """Verify a Google credential and create or refresh the matching profile."""
    credential = _require(payload, "credential")
    if not client_id:
        raise RuntimeError("server misconfiguration: GOOGLE_CLIENT_ID missing")

    try:
        claims = verifier(credential, client_id)
    except ValueError as exc:
        raise InvalidCredentialsError("invalid Google token") from exc

    google_id = claims.get("sub")
    email = claims.get("email")
    if not isinstance(google_id, str) or not google_id or not isinstance(email, str) or not email:
        raise InvalidCredentialsError("invalid Google token")
    name = claims.get("name")
    if not isinstance(name, str) or not name.strip():
        name = email

    user_id = f"google_{google_id}"
    existing = store.get(user_id)
    if existing is None:
        profile = UserProfile.create(user_id=user_id, email=email, name=name, auth_provider="google")
    else:
        profile = existing.touch_login()
    store.save(profile)
    return profile


def link_canvas_token(
    *,
    user_id: str,
    canvas_token: str,
    canvas_user: Mapping[str, Any],
    store: UserProfileStore,
) -> UserProfile:
    """Store a validated Canvas token on the user's profile."""
    canvas_user_id = canvas_user.get("id")
    return store.update_canvas_token(
        user_id,
        canvas_token,
        str(canvas_user_id) if canvas_user_id is not None else None,
    )
