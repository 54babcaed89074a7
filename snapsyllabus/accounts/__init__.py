"""User accounts: profiles, S3 persistence, session tokens and sign-in flows."""

from .model import UserProfile, generate_id, utc_now_rfc3339
from .repository import ProfileNotFoundError, S3UserProfileStore, UserProfileStore
from .service import (
    AccountError,
    AccountExistsError,
    AccountValidationError,
    InvalidCredentialsError,
    google_sign_in,
    link_canvas_token,
    log_in,
    sign_up,
)
from .tokens import (
    SessionClaims,
    SessionConfigError,
    SessionTokenConfig,
    SessionTokenError,
    extract_bearer_token,
    mint_session_token,
    verify_session_token,
)

__all__ = [
    "AccountError",
    "AccountExistsError",
    "AccountValidationError",
    "InvalidCredentialsError",
    "ProfileNotFoundError",
    "S3UserProfileStore",
    "SessionClaims",
    "SessionConfigError",
    "SessionTokenConfig",
    "SessionTokenError",
    "UserProfile",
    "UserProfileStore",
    "extract_bearer_token",
    "generate_id",
    "google_sign_in",
    "link_canvas_token",
    "log_in",
    "mint_session_token",
    "sign_up",
    "utc_now_rfc3339",
]
