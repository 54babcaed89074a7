"""Persistence boundaries for user profiles."""

from __future__ import annotations

import json
import logging
from typing import Any, Protocol, runtime_checkable

from botocore.exceptions import ClientError

from .model import UserProfile

logger = logging.getLogger(__name__)

_PROFILE_FILENAME = "profile.json"
_MISSING_KEY_CODES = frozenset({"NoSuchKey", "404", "NotFound"})


class ProfileNotFoundError(LookupError):
    """Raised when an operation needs a profile that does not exist."""


@runtime_checkable
class UserProfileStore(Protocol):
    """Storage interface for user profiles and password hashes."""

    def save(self, profile: UserProfile) -> None:
        """Persist a profile."""

    def get(self, user_id: str) -> UserProfile | None:
        """Lookup a profile by user id."""

    def find_by_email(self, email: str, *, auth_provider: str) -> UserProfile | None:
        """Lookup a profile by email within one auth provider."""

    def save_password_hash(self, user_id: str, password_hash: str) -> None:
        """Persist a bcrypt hash for a credentials account."""

    def get_password_hash(self, user_id: str) -> str | None:
        """Read a stored bcrypt hash."""

    def update_canvas_token(self, user_id: str, canvas_token: str, canvas_user_id: str | None) -> UserProfile:
        """Attach a Canvas token to an existing profile."""


def profile_key(user_id: str) -> str:
    return f"users/{user_id}/{_PROFILE_FILENAME}"


def password_key(user_id: str) -> str:
    return f"users/{user_id}/auth/password.txt"


class S3UserProfileStore:
    """S3 adapter: one JSON document per user under ``users/<userId>/``."""

    def __init__(self, s3_client: Any, bucket: str) -> None:
        if not bucket:
            raise ValueError("bucket is required")
        self._s3 = s3_client
        self._bucket = bucket

    def _put(self, key: str, body: str, content_type: str) -> None:
        self._s3.put_object(
            Bucket=self._bucket,
            Key=key,
            Body=body.encode("utf-8"),
            ContentType=content_type,
        )

    def _read(self, key: str) -> str | None:
        try:
            response = self._s3.get_object(Bucket=self._bucket, Key=key)
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in _MISSING_KEY_CODES:
                return None
            raise
        return response["Body"].read().decode("utf-8")

    def save(self, profile: UserProfile) -> None:
        self._put(profile_key(profile.user_id), json.dumps(profile.to_item()), "application/json")

    def get(self, user_id: str) -> UserProfile | None:
        raw = self._read(profile_key(user_id))
        if raw is None:
            return None
        payload = json.loads(raw)
        if not isinstance(payload, dict):
            return None
        return UserProfile.from_item(payload)

    def _list_profile_user_ids(self) -> list[str]:
        request: dict[str, Any] = {"Bucket": self._bucket, "Prefix": "users/"}
        user_ids: list[str] = []
        while True:
            response = self._s3.list_objects_v2(**request)
            for row in response.get("Contents", []):
                key = str(row.get("Key", ""))
                parts = key.split("/")
                if len(parts) == 3 and parts[2] == _PROFILE_FILENAME:
                    user_ids.append(parts[1])
            if not response.get("IsTruncated"):
                break
            request["ContinuationToken"] = response["NextContinuationToken"]
        return user_ids

    def find_by_email(self, email: str, *, auth_provider: str) -> UserProfile | None:
        wanted = email.strip().lower()
        for user_id in self._list_profile_user_ids():
            try:
                profile = self.get(user_id)
            except (ValueError, TypeError) as exc:
                logger.warning("skipping unreadable profile %s: %s", user_id, exc)
                continue
            if profile is None:
                continue
            if profile.auth_provider == auth_provider and profile.email.strip().lower() == wanted:
                return profile
        return None

    def save_password_hash(self, user_id: str, password_hash: str) -> None:
        self._put(password_key(user_id), password_hash, "text/plain")

    def get_password_hash(self, user_id: str) -> str | None:
        return self._read(password_key(user_id))

    def update_canvas_token(
        self,
        user_id: str,
        canvas_token: str,
        canvas_user_id: str | None,
    ) -> UserProfile:
        """Attach a Canvas token to an existing profile and return the saved record."""
        profile = self.get(user_id)
        if profile is None:
            raise ProfileNotFoundError(f"user profile not found: {user_id}")
        updated = profile.with_canvas_token(canvas_token, canvas_user_id)
        self.save(updated)
        return updated
