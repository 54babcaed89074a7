"""Unit tests for sign-up, login, Google sign-in and Canvas linking."""

from __future__ import annotations

import unittest

from snapsyllabus.accounts.model import UserProfile
from snapsyllabus.accounts.repository import ProfileNotFoundError
from snapsyllabus.accounts.service import (
    AccountExistsError,
    AccountValidationError,
    InvalidCredentialsError,
    google_sign_in,
    link_canvas_token,
    log_in,
    sign_up,
)


class _MemoryProfileStore:
    def __init__(self) -> None:
        self.profiles: dict[str, UserProfile] = {}
        self.hashes: dict[str, str] = {}

    def save(self, profile: UserProfile) -> None:
        self.profiles[profile.user_id] = profile

    def get(self, user_id: str) -> UserProfile | None:
        return self.profiles.get(user_id)

    def find_by_email(self, email: str, *, auth_provider: str) -> UserProfile | None:
        for profile in self.profiles.values():
            if profile.auth_provider == auth_provider and profile.email.lower() == email.lower():
                return profile
        return None

    def save_password_hash(self, user_id: str, password_hash: str) -> None:
        self.hashes[user_id] = password_hash

    def get_password_hash(self, user_id: str) -> str | None:
        return self.hashes.get(user_id)

    def update_canvas_token(self, user_id: str, canvas_token: str, canvas_user_id: str | None) -> UserProfile:
        profile = self.profiles.get(user_id)
        if profile is None:
            raise ProfileNotFoundError(user_id)
        updated = profile.with_canvas_token(canvas_token, canvas_user_id)
        self.profiles[user_id] = updated
        return updated


def _sign_up(store: _MemoryProfileStore, **overrides) -> UserProfile:
    payload = {"email": "Sam@Example.edu", "password": "correct-horse", "name": "Sam"}
    payload.update(overrides)
    return sign_up(payload, store=store, id_factory=lambda: "1760000000000_abc", bcrypt_rounds=4)


class SignUpTests(unittest.TestCase):
    def test_sign_up_creates_profile_and_hash(self) -> None:
        store = _MemoryProfileStore()
        profile = _sign_up(store)

        self.assertEqual(profile.user_id, "cred_1760000000000_abc")
        self.assertEqual(profile.email, "sam@example.edu")
        self.assertEqual(store.profiles[profile.user_id], profile)
        self.assertTrue(store.hashes[profile.user_id].startswith("$2"))
        self.assertNotIn("correct-horse", store.hashes[profile.user_id])

    def test_sign_up_validates_input(self) -> None:
        store = _MemoryProfileStore()
        with self.assertRaisesRegex(AccountValidationError, "email"):
            _sign_up(store, email="not-an-email")
        with self.assertRaisesRegex(AccountValidationError, "at least 8"):
            _sign_up(store, password="short")
        with self.assertRaisesRegex(AccountValidationError, "name"):
            _sign_up(store, name="")

    def test_duplicate_email_rejected(self) -> None:
        store = _MemoryProfileStore()
        _sign_up(store)
        with self.assertRaises(AccountExistsError):
            _sign_up(store, email="sam@example.edu")


class LogInTests(unittest.TestCase):
    def test_log_in_with_correct_password(self) -> None:
        store = _MemoryProfileStore()
        _sign_up(store)

        profile = log_in({"email": "SAM@example.edu", "password": "correct-horse"}, store=store)

        self.assertEqual(profile.user_id, "cred_1760000000000_abc")

    def test_log_in_rejects_wrong_password_and_unknown_email(self) -> None:
        store = _MemoryProfileStore()
        _sign_up(store)
        with self.assertRaises(InvalidCredentialsError):
            log_in({"email": "sam@example.edu", "password": "wrong-password"}, store=store)
        with self.assertRaises(InvalidCredentialsError):
            log_in({"email": "nobody@example.edu", "password": "correct-horse"}, store=store)

    def test_log_in_rejects_corrupt_hash(self) -> None:
        store = _MemoryProfileStore()
        profile = _sign_up(store)
        store.hashes[profile.user_id] = "not-a-bcrypt-hash"
        with self.assertRaises(InvalidCredentialsError):
            log_in({"email": "sam@example.edu", "password": "correct-horse"}, store=store)


class GoogleSignInTests(unittest.TestCase):
    def test_creates_then_reuses_google_profile(self) -> None:
        store = _MemoryProfileStore()
        calls: list[tuple[str, str]] = []

        def _verifier(credential: str, client_id: str) -> dict:
            calls.append((credential, client_id))
            return {"sub": "g-123", "email": "sam@gmail.com", "name": "Sam G"}

        first = google_sign_in({"credential": "id-token"}, store=store, client_id="client", verifier=_verifier)
        second = google_sign_in({"credential": "id-token"}, store=store, client_id="client", verifier=_verifier)

        self.assertEqual(first.user_id, "google_g-123")
        self.assertEqual(first.auth_provider, "google")
        self.assertEqual(second.created_at, first.created_at)
        self.assertEqual(calls, [("id-token", "client"), ("id-token", "client")])
        self.assertEqual(len(store.profiles), 1)

    def test_invalid_credential_maps_to_invalid_credentials(self) -> None:
        def _verifier(credential: str, client_id: str) -> dict:
            raise ValueError("Token used too late")

        with self.assertRaises(InvalidCredentialsError):
            google_sign_in({"credential": "x"}, store=_MemoryProfileStore(), client_id="client", verifier=_verifier)

    def test_missing_client_id_is_misconfiguration(self) -> None:
        with self.assertRaisesRegex(RuntimeError, "GOOGLE_CLIENT_ID"):
            google_sign_in({"credential": "x"}, store=_MemoryProfileStore(), client_id="")


class LinkCanvasTokenTests(unittest.TestCase):
    def test_link_stores_token_and_canvas_user_id(self) -> None:
        store = _MemoryProfileStore()
        profile = _sign_up(store)

        updated = link_canvas_token(
            user_id=profile.user_id,
            canvas_token="canvas-abc",
            canvas_user={"id": 42, "name": "Sam"},
            store=store,
        )

        self.assertEqual(updated.canvas_token, "canvas-abc")
        self.assertEqual(updated.canvas_user_id, "42")
        self.assertTrue(store.profiles[profile.user_id].has_canvas_token)


if __name__ == "__main__":
    unittest.main()
