"""User profile record stored as JSON in the object store."""

from __future__ import annotations

import re
import secrets
import time
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Mapping

AUTH_PROVIDERS = frozenset({"credentials", "google"})
_RFC3339_UTC_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}Z$")


def utc_now_rfc3339() -> str:
    """Return the current UTC timestamp in RFC3339 form with trailing Z."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def generate_id() -> str:
    """Time-prefixed random id, e.g. ``1760000000000_k3j9x0a2b``."""
    return f"{int(time.time() * 1000)}_{secrets.token_hex(5)}"


@dataclass(frozen=True)
class UserProfile:
    """A SnapSyllabus account and its optional linked Canvas token."""

    user_id: str
    email: str
    name: str
    auth_provider: str
    created_at: str
    last_login: str
    canvas_token: str | None = None
    canvas_user_id: str | None = None

    def __post_init__(self) -> None:
        self._validate_non_empty("user_id", self.user_id)
        self._validate_non_empty("email", self.email)
        self._validate_non_empty("name", self.name)
        if self.auth_provider not in AUTH_PROVIDERS:
            raise ValueError(f"auth_provider must be one of {sorted(AUTH_PROVIDERS)}")
        self._validate_timestamp("created_at", self.created_at)
        self._validate_timestamp("last_login", self.last_login)

    @staticmethod
    def _validate_non_empty(field_name: str, value: Any) -> None:
        if not isinstance(value, str):
            raise ValueError(f"{field_name} must be a string")
        if not value.strip():
            raise ValueError(f"{field_name} must not be empty")

    @staticmethod
    def _validate_timestamp(field_name: str, value: Any) -> None:
        if not isinstance(value, str) or not _RFC3339_UTC_RE.match(value):
            raise ValueError(f"{field_name} must be RFC3339 UTC with trailing Z")

    @classmethod
    def create(
        cls,
        *,
        user_id: str,
        email: str,
        name: str,
        auth_provider: str,
        now: str | None = None,
    ) -> "UserProfile":
        stamp = now or utc_now_rfc3339()
        return cls(
            user_id=user_id,
            email=email,
            name=name,
            auth_provider=auth_provider,
            created_at=stamp,
            last_login=stamp,
        )

    @property
    def has_canvas_token(self) -> bool:
        return bool(self.canvas_token)

    def touch_login(self, *, now: str | None = None) -> "UserProfile":
        return replace(self, last_login=now or utc_now_rfc3339())

    def with_canvas_token(self, canvas_token: str, canvas_user_id: str | None) -> "UserProfile":
        return replace(self, canvas_token=canvas_token, canvas_user_id=canvas_user_id)

    def public_dict(self) -> dict[str, Any]:
        """User fields safe to return to the browser."""
        return {
            "userId": self.user_id,
            "email": self.email,
            "name": self.name,
            "hasCanvasToken": self.has_canvas_token,
        }

    def to_item(self) -> dict[str, Any]:
        """Serialize to the stored JSON document."""
        item: dict[str, Any] = {
            "userId": self.user_id,
            "email": self.email,
            "name": self.name,
            "authProvider": self.auth_provider,
            "createdAt": self.created_at,
            "lastLogin": self.last_login,
        }
        if self.canvas_token is not None:
            item["canvasToken"] = self.canvas_token
        if self.canvas_user_id is not None:
            item["canvasUserId"] = self.canvas_user_id
        return item

    @classmethod
    def from_item(cls, item: Mapping[str, Any]) -> "UserProfile":
        canvas_user_id = item.get("canvasUserId")
        return cls(
            user_id=item.get("userId"),
            email=item.get("email"),
            name=item.get("name"),
            auth_provider=item.get("authProvider"),
            created_at=item.get("createdAt"),
            last_login=item.get("lastLogin"),
            canvas_token=item.get("canvasToken") or None,
            canvas_user_id=str(canvas_user_id) if canvas_user_id is not None else None,
        )
