"""Canvas REST client: authenticated GET executor and per-resource accessors."""

from __future__ import annotations

import json
import logging
import os
import re
from http.client import HTTPException
from typing import Any, Sequence
from urllib.error import HTTPError, URLError
from urllib.parse import quote, urlencode
from urllib.request import Request, urlopen

from coursecompanion.models.canvas import (
    CourseAnalytics,
    CourseBundle,
    FileLink,
    GradeSummary,
    ModelValidationError,
)

logger = logging.getLogger(__name__)

DEFAULT_CANVAS_BASE_URL = "https://canvas.instructure.com"
DEFAULT_USER_AGENT = "CourseCompanion/0.1"
_DEFAULT_TIMEOUT_SECONDS = 20
_PAGE_SIZE = 100
_ANCHOR_PATTERN = re.compile(r"""<a[^>]+href=["']([^"']+)["'][^>]*>([^<]*)</a>""", re.IGNORECASE)
_FILE_EXTENSION_PATTERN = re.compile(r"\.(pdf|docx?|xlsx?|pptx?|txt|csv|zip|png|jpe?g|gif)$", re.IGNORECASE)

Query = Sequence[tuple[str, Any]]


class CanvasApiError(RuntimeError):
    """Raised when Canvas API requests fail or return malformed payloads."""

    def __init__(self, message: str, *, status: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status = status
        self.body = body


class CanvasAccessDeniedError(CanvasApiError):
    """Raised when Canvas returns 401/403 (token lacks permission)."""


def normalize_canvas_base_url(base_url: str) -> str:
    """Normalize user-provided Canvas base URL to a host root URL."""
    normalized = base_url.strip().rstrip("/")
    if normalized.lower().endswith("/api/v1"):
        normalized = normalized[: -len("/api/v1")]
    return normalized


def canvas_base_url_from_env() -> str:
    return os.getenv("CANVAS_BASE_URL", "").strip() or DEFAULT_CANVAS_BASE_URL


def canvas_user_agent_from_env() -> str:
    return os.getenv("CANVAS_USER_AGENT", "").strip() or DEFAULT_USER_AGENT


def _timeout_seconds() -> float:
    raw = os.getenv("CANVAS_TIMEOUT_SECONDS", "").strip()
    try:
        parsed = float(raw)
    except ValueError:
        return _DEFAULT_TIMEOUT_SECONDS
    return parsed if parsed > 0 else _DEFAULT_TIMEOUT_SECONDS


def build_api_url(base_url: str, path: str, query: Query | None = None) -> str:
    """Build ``<root>/api/v1/<path>?<query>`` for a Canvas resource path."""
    url = f"{normalize_canvas_base_url(base_url)}/api/v1/{path.lstrip('/')}"
    if query:
        url = f"{url}?{urlencode(list(query))}"
    return url


def _error_detail(exc: HTTPError) -> str:
    if exc.fp is None:
        return ""
    try:
        return exc.read().decode("utf-8", errors="ignore")
    except (OSError, HTTPException):
        return ""


def _request_json(*, url: str, token: str, user_agent: str) -> tuple[Any, dict[str, str]]:
    req = Request(
        url=url,
        headers={
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
            "User-Agent": user_agent,
        },
        method="GET",
    )
    try:
        with urlopen(req, timeout=_timeout_seconds()) as resp:
            raw = resp.read().decode("utf-8")
            payload = json.loads(raw)
            headers = {k.lower(): v for k, v in resp.headers.items()}
            return payload, headers
    except HTTPError as exc:
        detail = _error_detail(exc)
        message = f"canvas request failed ({exc.code}) for {url}: {detail}"
        if exc.code in (401, 403):
            raise CanvasAccessDeniedError(message, status=exc.code, body=detail) from exc
        raise CanvasApiError(message, status=exc.code, body=detail) from exc
    except URLError as exc:
        raise CanvasApiError(f"canvas request failed for {url}: {exc.reason}") from exc
    except (OSError, HTTPException) as exc:
        # Timeouts and resets while reading the body are not wrapped by urllib.
        raise CanvasApiError(f"canvas request failed for {url}: {exc!r}") from exc
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise CanvasApiError(f"canvas response was not valid JSON for {url}") from exc


def _extract_next_link(link_header: str) -> str | None:
    for part in link_header.split(","):
        segment = part.strip()
        if 'rel="next"' not in segment:
            continue
        if "<" not in segment or ">" not in segment:
            continue
        return segment[segment.find("<") + 1 : segment.find(">")]
    return None


def _get_paginated_json(*, url: str, token: str, user_agent: str) -> list[dict[str, Any]]:
    rows: list[dict[str, Any]] = []
    next_url: str | None = url
    while next_url:
        payload, headers = _request_json(url=next_url, token=token, user_agent=user_agent)
        if not isinstance(payload, list):
            raise CanvasApiError(f"canvas response expected list for {next_url}")

        for row in payload:
            if isinstance(row, dict):
                rows.append(row)

        next_url = _extract_next_link(headers.get("link", ""))
    return rows


def _get_object(*, base_url: str, token: str, user_agent: str, path: str, query: Query | None = None) -> dict[str, Any]:
    url = build_api_url(base_url, path, query)
    payload, _ = _request_json(url=url, token=token, user_agent=user_agent)
    if not isinstance(payload, dict):
        raise CanvasApiError(f"canvas response expected object for {url}")
    return payload


def _get_list(*, base_url: str, token: str, user_agent: str, path: str, query: Query | None = None) -> list[dict[str, Any]]:
    params = list(query or ())
    params.append(("per_page", _PAGE_SIZE))
    return _get_paginated_json(
        url=build_api_url(base_url, path, params),
        token=token,
        user_agent=user_agent,
    )


# Users and courses


def fetch_current_user(*, base_url: str, token: str, user_agent: str) -> dict[str, Any]:
    """Fetch the Canvas user that owns the token."""
    return _get_object(base_url=base_url, token=token, user_agent=user_agent, path="users/self")


def validate_token(*, base_url: str, token: str, user_agent: str) -> bool:
    """Return whether the token can read the caller's own user record."""
    try:
        fetch_current_user(base_url=base_url, token=token, user_agent=user_agent)
    except CanvasApiError:
        return False
    return True


def fetch_active_courses(*, base_url: str, token: str, user_agent: str) -> list[dict[str, Any]]:
    """Fetch courses with an active enrollment, in Canvas order."""
    return _get_list(
        base_url=base_url,
        token=token,
        user_agent=user_agent,
        path="courses",
        query=[
            ("enrollment_state", "active"),
            ("include[]", "term"),
            ("include[]", "total_students"),
        ],
    )


# Assignments and submissions


def fetch_course_assignments(*, base_url: str, token: str, course_id: int | str, user_agent: str) -> list[dict[str, Any]]:
    return _get_list(
        base_url=base_url,
        token=token,
        user_agent=user_agent,
        path=f"courses/{course_id}/assignments",
        query=[("include[]", "attachments")],
    )


def fetch_assignment(
    *,
    base_url: str,
    token: str,
    course_id: int | str,
    assignment_id: int | str,
    user_agent: str,
) -> dict[str, Any]:
    """Fetch one assignment including its attachments."""
    return _get_object(
        base_url=base_url,
        token=token,
        user_agent=user_agent,
        path=f"courses/{course_id}/assignments/{assignment_id}",
        query=[("include[]", "attachments")],
    )


def fetch_course_submissions(*, base_url: str, token: str, course_id: int | str, user_agent: str) -> list[dict[str, Any]]:
    """Fetch the caller's own submissions across a course."""
    return _get_list(
        base_url=base_url,
        token=token,
        user_agent=user_agent,
        path=f"courses/{course_id}/students/submissions",
        query=[("student_ids[]", "self"), ("include[]", "assignment")],
    )


def fetch_assignment_submissions(
    *,
    base_url: str,
    token: str,
    course_id: int | str,
    assignment_id: int | str,
    user_agent: str,
) -> list[dict[str, Any]]:
    return _get_list(
        base_url=base_url,
        token=token,
        user_agent=user_agent,
        path=f"courses/{course_id}/assignments/{assignment_id}/submissions",
        query=[("include[]", "submission_history"), ("include[]", "rubric_assessment")],
    )


def fetch_course_grades(*, base_url: str, token: str, course_id: int | str, user_agent: str) -> GradeSummary:
    """Derive a grade summary from the caller's first enrollment in the course."""
    enrollments = _get_list(
        base_url=base_url,
        token=token,
        user_agent=user_agent,
        path=f"courses/{course_id}/enrollments",
        query=[("user_id", "self")],
    )
    if not enrollments:
        return GradeSummary()
    return GradeSummary.from_enrollment(enrollments[0])


# Quizzes (permission-gated)


def fetch_course_quizzes(*, base_url: str, token: str, course_id: int | str, user_agent: str) -> list[dict[str, Any]]:
    """Fetch course quizzes, or an empty list when Canvas refuses access."""
    try:
        return _get_list(
            base_url=base_url,
            token=token,
            user_agent=user_agent,
            path=f"courses/{course_id}/quizzes",
        )
    except CanvasApiError as exc:
        logger.info("quizzes unavailable for course %s: %s", course_id, exc)
        return []


def fetch_quiz(
    *,
    base_url: str,
    token: str,
    course_id: int | str,
    quiz_id: int | str,
    user_agent: str,
) -> dict[str, Any]:
    return _get_object(
        base_url=base_url,
        token=token,
        user_agent=user_agent,
        path=f"courses/{course_id}/quizzes/{quiz_id}",
    )


def fetch_quiz_questions(
    *,
    base_url: str,
    token: str,
    course_id: int | str,
    quiz_id: int | str,
    user_agent: str,
) -> list[dict[str, Any]]:
    """Fetch quiz questions; students usually lack this permission, so failures yield []."""
    try:
        return _get_list(
            base_url=base_url,
            token=token,
            user_agent=user_agent,
            path=f"courses/{course_id}/quizzes/{quiz_id}/questions",
        )
    except CanvasApiError as exc:
        logger.info("quiz questions unavailable for course %s quiz %s: %s", course_id, quiz_id, exc)
        return []


# Modules and pages


def fetch_course_modules(*, base_url: str, token: str, course_id: int | str, user_agent: str) -> list[dict[str, Any]]:
    return _get_list(
        base_url=base_url,
        token=token,
        user_agent=user_agent,
        path=f"courses/{course_id}/modules",
        query=[("include[]", "items")],
    )


def fetch_module_items(
    *,
    base_url: str,
    token: str,
    course_id: int | str,
    module_id: int | str,
    user_agent: str,
) -> list[dict[str, Any]]:
    return _get_list(
        base_url=base_url,
        token=token,
        user_agent=user_agent,
        path=f"courses/{course_id}/modules/{module_id}/items",
    )


def fetch_course_pages(*, base_url: str, token: str, course_id: int | str, user_agent: str) -> list[dict[str, Any]]:
    return _get_list(
        base_url=base_url,
        token=token,
        user_agent=user_agent,
        path=f"courses/{course_id}/pages",
    )


def fetch_page(
    *,
    base_url: str,
    token: str,
    course_id: int | str,
    page_url: str,
    user_agent: str,
) -> dict[str, Any]:
    """Fetch one wiki page (with body) by its URL slug."""
    return _get_object(
        base_url=base_url,
        token=token,
        user_agent=user_agent,
        path=f"courses/{course_id}/pages/{quote(page_url, safe='')}",
    )


# Files


def fetch_course_files(*, base_url: str, token: str, course_id: int | str, user_agent: str) -> list[dict[str, Any]]:
    return _get_list(
        base_url=base_url,
        token=token,
        user_agent=user_agent,
        path=f"courses/{course_id}/files",
    )


def fetch_file(*, base_url: str, token: str, file_id: int | str, user_agent: str) -> dict[str, Any]:
    return _get_object(base_url=base_url, token=token, user_agent=user_agent, path=f"files/{file_id}")


def extract_file_links(html: str | None) -> list[FileLink]:
    """Find anchors in an HTML body that point at Canvas files or document-like URLs."""
    if not html:
        return []

    links: list[FileLink] = []
    for match in _ANCHOR_PATTERN.finditer(html):
        url, text = match.group(1), match.group(2)
        if "/files/" in url or _FILE_EXTENSION_PATTERN.search(url):
            links.append(FileLink(url=url, text=text))
    return links


def fetch_assignment_files(
    *,
    base_url: str,
    token: str,
    course_id: int | str,
    assignment_id: int | str,
    user_agent: str,
) -> dict[str, list[dict[str, Any]]]:
    """Collect an assignment's attachments plus file links in its description."""
    assignment = fetch_assignment(
        base_url=base_url,
        token=token,
        course_id=course_id,
        assignment_id=assignment_id,
        user_agent=user_agent,
    )
    attachments = assignment.get("attachments")
    description = assignment.get("description")
    return {
        "attachments": list(attachments) if isinstance(attachments, list) else [],
        "linkedFiles": [
            link.to_api_dict()
            for link in extract_file_links(description if isinstance(description, str) else "")
        ],
    }


# Discussions


def fetch_course_discussions(*, base_url: str, token: str, course_id: int | str, user_agent: str) -> list[dict[str, Any]]:
    return _get_list(
        base_url=base_url,
        token=token,
        user_agent=user_agent,
        path=f"courses/{course_id}/discussion_topics",
    )


# Analytics (permission-gated)


def fetch_course_analytics(*, base_url: str, token: str, course_id: int | str, user_agent: str) -> CourseAnalytics:
    """Fetch the caller's activity analytics, zeroed when Canvas does not serve them."""
    try:
        payload = _get_object(
            base_url=base_url,
            token=token,
            user_agent=user_agent,
            path=f"courses/{course_id}/analytics/user_activity/self",
        )
        return CourseAnalytics.from_api_dict(payload)
    except (CanvasApiError, ModelValidationError) as exc:
        logger.info("analytics unavailable for course %s: %s", course_id, exc)
        return CourseAnalytics.zero()


def fetch_assignment_analytics(*, base_url: str, token: str, course_id: int | str, user_agent: str) -> list[dict[str, Any]]:
    try:
        return _get_list(
            base_url=base_url,
            token=token,
            user_agent=user_agent,
            path=f"courses/{course_id}/analytics/assignments",
        )
    except CanvasApiError as exc:
        logger.info("assignment analytics unavailable for course %s: %s", course_id, exc)
        return []


class CanvasClient:
    """Credential-scoped wrapper that forwards to the module-level accessors.

    The client keeps no mutable state; it only remembers which token, host and
    user agent to pass along.
    """

    def __init__(self, token: str, *, base_url: str | None = None, user_agent: str | None = None) -> None:
        if not isinstance(token, str) or not token.strip():
            raise ValueError("token is required")
        self.token = token.strip()
        self.base_url = normalize_canvas_base_url(base_url or canvas_base_url_from_env())
        self.user_agent = user_agent or canvas_user_agent_from_env()

    def _auth(self) -> dict[str, str]:
        return {"base_url": self.base_url, "token": self.token, "user_agent": self.user_agent}

    def current_user(self) -> dict[str, Any]:
        return fetch_current_user(**self._auth())

    def validate_token(self) -> bool:
        return validate_token(**self._auth())

    def courses(self) -> list[dict[str, Any]]:
        return fetch_active_courses(**self._auth())

    def assignments(self, course_id: int | str) -> list[dict[str, Any]]:
        return fetch_course_assignments(course_id=course_id, **self._auth())

    def assignment(self, course_id: int | str, assignment_id: int | str) -> dict[str, Any]:
        return fetch_assignment(course_id=course_id, assignment_id=assignment_id, **self._auth())

    def submissions(self, course_id: int | str) -> list[dict[str, Any]]:
        return fetch_course_submissions(course_id=course_id, **self._auth())

    def assignment_submissions(self, course_id: int | str, assignment_id: int | str) -> list[dict[str, Any]]:
        return fetch_assignment_submissions(course_id=course_id, assignment_id=assignment_id, **self._auth())

    def grades(self, course_id: int | str) -> GradeSummary:
        return fetch_course_grades(course_id=course_id, **self._auth())

    def quizzes(self, course_id: int | str) -> list[dict[str, Any]]:
        return fetch_course_quizzes(course_id=course_id, **self._auth())

    def quiz(self, course_id: int | str, quiz_id: int | str) -> dict[str, Any]:
        return fetch_quiz(course_id=course_id, quiz_id=quiz_id, **self._auth())

    def quiz_questions(self, course_id: int | str, quiz_id: int | str) -> list[dict[str, Any]]:
        return fetch_quiz_questions(course_id=course_id, quiz_id=quiz_id, **self._auth())

    def modules(self, course_id: int | str) -> list[dict[str, Any]]:
        return fetch_course_modules(course_id=course_id, **self._auth())

    def module_items(self, course_id: int | str, module_id: int | str) -> list[dict[str, Any]]:
        return fetch_module_items(course_id=course_id, module_id=module_id, **self._auth())

    def pages(self, course_id: int | str) -> list[dict[str, Any]]:
        return fetch_course_pages(course_id=course_id, **self._auth())

    def page(self, course_id: int | str, page_url: str) -> dict[str, Any]:
        return fetch_page(course_id=course_id, page_url=page_url, **self._auth())

    def files(self, course_id: int | str) -> list[dict[str, Any]]:
        return fetch_course_files(course_id=course_id, **self._auth())

    def file(self, file_id: int | str) -> dict[str, Any]:
        return fetch_file(file_id=file_id, **self._auth())

    def assignment_files(self, course_id: int | str, assignment_id: int | str) -> dict[str, list[dict[str, Any]]]:
        return fetch_assignment_files(course_id=course_id, assignment_id=assignment_id, **self._auth())

    def discussions(self, course_id: int | str) -> list[dict[str, Any]]:
        return fetch_course_discussions(course_id=course_id, **self._auth())

    def analytics(self, course_id: int | str) -> CourseAnalytics:
        return fetch_course_analytics(course_id=course_id, **self._auth())

    def assignment_analytics(self, course_id: int | str) -> list[dict[str, Any]]:
        return fetch_assignment_analytics(course_id=course_id, **self._auth())

    def all_assignments(self) -> dict[Any, list[dict[str, Any]]]:
        from backend.course_data import fetch_all_assignments

        return fetch_all_assignments(**self._auth())

    def all_course_data(
        self,
        *,
        max_workers: int | None = None,
        include_quiz_questions: bool = False,
    ) -> list[CourseBundle]:
        """Aggregate every course's resources; see ``backend.course_data``."""
        from backend.course_data import fetch_all_course_data

        return fetch_all_course_data(
            max_workers=max_workers,
            include_quiz_questions=include_quiz_questions,
            **self._auth(),
        )
