"""Unit tests for per-course aggregation and failure isolation."""

from __future__ import annotations

import io
import json
import re
import threading
import unittest
from email.message import Message
from unittest.mock import patch
from urllib.error import HTTPError, URLError
from urllib.parse import urlparse

from backend.canvas_client import CanvasAccessDeniedError, CanvasApiError, CanvasClient
from backend.course_data import (
    DEFAULT_MAX_CONCURRENCY,
    AggregatorConfig,
    fetch_all_assignments,
    fetch_all_course_data,
)
from coursecompanion.models.canvas import CourseAnalytics, GradeSummary

AUTH = {"base_url": "https://canvas.example.edu", "token": "token", "user_agent": "test-agent"}


class _FakeResponse:
    def __init__(self, payload: object) -> None:
        self._body = json.dumps(payload).encode("utf-8")
        self.headers = Message()
        self.headers["Content-Type"] = "application/json"

    def read(self) -> bytes:
        return self._body

    def __enter__(self) -> "_FakeResponse":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        return None


class _BrokenBodyResponse(_FakeResponse):
    """Response whose body read fails after the connection succeeded."""

    def __init__(self, error: BaseException) -> None:
        super().__init__(None)
        self._error = error

    def read(self) -> bytes:
        raise self._error


class _ReadFailure:
    def __init__(self, error: BaseException) -> None:
        self.error = error


class _FakeCanvas:
    """Route Canvas API paths to canned payloads or HTTP error codes."""

    def __init__(self, routes: dict[str, object]) -> None:
        self.routes = routes
        self.paths: list[str] = []
        self._lock = threading.Lock()

    def __call__(self, req, timeout=None):  # noqa: ARG002 - urlopen signature
        path = urlparse(req.full_url).path[len("/api/v1/") :]
        with self._lock:
            self.paths.append(path)
        for pattern, result in self.routes.items():
            if re.fullmatch(pattern, path):
                if isinstance(result, int):
                    raise HTTPError(req.full_url, result, "error", None, io.BytesIO(b"{}"))
                if isinstance(result, BaseException):
                    raise result
                if isinstance(result, _ReadFailure):
                    return _BrokenBodyResponse(result.error)
                return _FakeResponse(result)
        raise HTTPError(req.full_url, 404, "not found", None, io.BytesIO(b"{}"))


def _course_routes(course_id: int) -> dict[str, object]:
    prefix = f"courses/{course_id}"
    return {
        rf"{prefix}/assignments": [{"id": course_id * 10, "name": f"HW {course_id}", "due_at": "2026-10-01T00:00:00Z"}],
        rf"{prefix}/students/submissions": [{"id": course_id * 100}],
        rf"{prefix}/enrollments": [{"grades": {"current_score": 88, "current_grade": "B+"}}],
        rf"{prefix}/quizzes": [{"id": course_id * 1000}],
        rf"{prefix}/quizzes/\d+/questions": [{"id": 1, "question_text": "?"}],
        rf"{prefix}/modules": [{"id": 1, "name": "Week 1"}],
        rf"{prefix}/pages": [{"url": "intro"}],
        rf"{prefix}/files": [{"id": 5}],
        rf"{prefix}/discussion_topics": [{"id": 6}],
        rf"{prefix}/analytics/user_activity/self": {"page_views": {"total": 4, "max": 10, "level": 1}},
    }


def _canvas_with_courses(*course_ids: int, overrides: dict[str, object] | None = None) -> _FakeCanvas:
    routes: dict[str, object] = {}
    if overrides:
        routes.update(overrides)
    routes["courses"] = [{"id": course_id, "name": f"Course {course_id}"} for course_id in course_ids]
    for course_id in course_ids:
        for pattern, payload in _course_routes(course_id).items():
            routes.setdefault(pattern, payload)
    return _FakeCanvas(routes)


class AggregatorConfigTests(unittest.TestCase):
    def test_from_env_defaults_and_parses(self) -> None:
        self.assertEqual(AggregatorConfig.from_env({}).max_concurrency, DEFAULT_MAX_CONCURRENCY)
        self.assertEqual(AggregatorConfig.from_env({"CANVAS_MAX_CONCURRENCY": "3"}).max_concurrency, 3)
        self.assertEqual(AggregatorConfig.from_env({"CANVAS_MAX_CONCURRENCY": "x"}).max_concurrency, 8)
        self.assertEqual(AggregatorConfig.from_env({"CANVAS_MAX_CONCURRENCY": "0"}).max_concurrency, 8)


class FetchAllCourseDataTests(unittest.TestCase):
    def test_returns_one_bundle_per_course_in_listing_order(self) -> None:
        fake = _canvas_with_courses(3, 1, 2)
        with patch("backend.canvas_client.urlopen", side_effect=fake):
            bundles = fetch_all_course_data(max_workers=4, **AUTH)

        self.assertEqual([bundle.course_id for bundle in bundles], [3, 1, 2])
        first = bundles[0]
        self.assertEqual(first.course["name"], "Course 3")
        self.assertEqual(first.assignments[0]["id"], 30)
        self.assertEqual(first.submissions, [{"id": 300}])
        self.assertEqual(first.grades.current_score, 88)
        self.assertEqual(first.quizzes, [{"id": 3000}])
        self.assertEqual(first.quiz_questions, {})
        self.assertEqual(first.modules[0]["name"], "Week 1")
        self.assertEqual(first.pages, [{"url": "intro"}])
        self.assertEqual(first.files, [{"id": 5}])
        self.assertEqual(first.discussions, [{"id": 6}])
        self.assertEqual(first.analytics.page_views.total, 4)
        self.assertIsNone(first.fetch_error)

    def test_no_courses_returns_empty_list_without_other_calls(self) -> None:
        fake = _FakeCanvas({"courses": []})
        with patch("backend.canvas_client.urlopen", side_effect=fake):
            self.assertEqual(fetch_all_course_data(**AUTH), [])
        self.assertEqual(fake.paths, ["courses"])

    def test_course_list_failure_propagates(self) -> None:
        fake = _FakeCanvas({"courses": 401})
        with patch("backend.canvas_client.urlopen", side_effect=fake):
            with self.assertRaises(CanvasAccessDeniedError):
                fetch_all_course_data(**AUTH)

    def test_course_list_transport_failure_propagates_typed(self) -> None:
        fake = _FakeCanvas({"courses": URLError("connection refused")})
        with patch("backend.canvas_client.urlopen", side_effect=fake):
            with self.assertRaises(CanvasApiError) as ctx:
                fetch_all_course_data(**AUTH)
        self.assertIsNone(ctx.exception.status)
        self.assertEqual(fake.paths, ["courses"])

    def test_repeated_aggregation_returns_equal_bundles(self) -> None:
        fake = _canvas_with_courses(1, 2)
        with patch("backend.canvas_client.urlopen", side_effect=fake):
            first = [bundle.to_api_dict() for bundle in fetch_all_course_data(max_workers=3, **AUTH)]
            second = [bundle.to_api_dict() for bundle in fetch_all_course_data(max_workers=3, **AUTH)]

        self.assertEqual(first, second)

    def test_permission_gated_course_keeps_other_fields_and_sibling_is_unchanged(self) -> None:
        with patch("backend.canvas_client.urlopen", side_effect=_canvas_with_courses(1, 2)):
            full = fetch_all_course_data(**AUTH)

        restricted_canvas = _canvas_with_courses(
            1,
            2,
            overrides={
                "courses/2/quizzes": 403,
                "courses/2/analytics/user_activity/self": 404,
            },
        )
        with patch("backend.canvas_client.urlopen", side_effect=restricted_canvas):
            restricted = fetch_all_course_data(**AUTH)

        self.assertEqual(restricted[0].to_api_dict(), full[0].to_api_dict())

        course_two = restricted[1]
        self.assertIsNone(course_two.fetch_error)
        self.assertEqual(course_two.quizzes, [])
        self.assertEqual(course_two.analytics, CourseAnalytics.zero())
        self.assertEqual(course_two.assignments, full[1].assignments)
        self.assertEqual(course_two.submissions, full[1].submissions)
        self.assertEqual(course_two.grades, full[1].grades)
        self.assertEqual(course_two.modules, full[1].modules)
        self.assertEqual(course_two.pages, full[1].pages)
        self.assertEqual(course_two.files, full[1].files)
        self.assertEqual(course_two.discussions, full[1].discussions)

    def test_analytics_read_timeout_only_zeroes_analytics(self) -> None:
        fake = _canvas_with_courses(
            1,
            2,
            overrides={"courses/2/analytics/user_activity/self": _ReadFailure(TimeoutError("The read operation timed out"))},
        )
        with patch("backend.canvas_client.urlopen", side_effect=fake):
            bundles = fetch_all_course_data(**AUTH)

        self.assertIsNone(bundles[1].fetch_error)
        self.assertEqual(bundles[1].analytics, CourseAnalytics.zero())
        self.assertEqual(bundles[1].assignments[0]["id"], 20)
        self.assertEqual(bundles[0].analytics.page_views.total, 4)

    def test_read_failure_on_required_resource_fails_only_that_course(self) -> None:
        fake = _canvas_with_courses(
            1,
            2,
            overrides={"courses/1/files": _ReadFailure(ConnectionResetError("reset by peer"))},
        )
        with patch("backend.canvas_client.urlopen", side_effect=fake):
            with self.assertLogs("backend.course_data", level="WARNING"):
                bundles = fetch_all_course_data(**AUTH)

        self.assertIn("reset by peer", bundles[0].fetch_error or "")
        self.assertEqual(bundles[0].assignments, [])
        self.assertIsNone(bundles[1].fetch_error)
        self.assertEqual(len(bundles[1].files), 1)

    def test_failing_course_gets_empty_bundle_and_others_are_unaffected(self) -> None:
        fake = _canvas_with_courses(1, 2, 3, overrides={"courses/2/modules": 500})
        with patch("backend.canvas_client.urlopen", side_effect=fake):
            with self.assertLogs("backend.course_data", level="WARNING") as logs:
                bundles = fetch_all_course_data(max_workers=2, **AUTH)

        self.assertEqual([bundle.course_id for bundle in bundles], [1, 2, 3])
        failed = bundles[1]
        self.assertEqual(failed.course, {"id": 2, "name": "Course 2"})
        self.assertEqual(failed.assignments, [])
        self.assertEqual(failed.modules, [])
        self.assertEqual(failed.quizzes, [])
        self.assertEqual(failed.grades, GradeSummary())
        self.assertEqual(failed.analytics, CourseAnalytics.zero())
        self.assertIsNotNone(failed.fetch_error)
        self.assertTrue(any("course 2" in line for line in logs.output))

        for ok in (bundles[0], bundles[2]):
            self.assertIsNone(ok.fetch_error)
            self.assertEqual(len(ok.assignments), 1)
            self.assertEqual(len(ok.modules), 1)

    def test_forbidden_quizzes_degrade_without_failing_course(self) -> None:
        fake = _canvas_with_courses(7, overrides={"courses/7/quizzes": 403})
        with patch("backend.canvas_client.urlopen", side_effect=fake):
            bundles = fetch_all_course_data(**AUTH)

        bundle = bundles[0]
        self.assertIsNone(bundle.fetch_error)
        self.assertEqual(bundle.quizzes, [])
        self.assertEqual(len(bundle.assignments), 1)
        self.assertEqual(len(bundle.files), 1)

    def test_missing_analytics_degrade_to_zero(self) -> None:
        fake = _canvas_with_courses(7, overrides={"courses/7/analytics/user_activity/self": 404})
        with patch("backend.canvas_client.urlopen", side_effect=fake):
            bundles = fetch_all_course_data(**AUTH)

        self.assertIsNone(bundles[0].fetch_error)
        self.assertEqual(bundles[0].analytics, CourseAnalytics.zero())

    def test_quiz_questions_are_keyed_by_quiz_id_when_requested(self) -> None:
        fake = _canvas_with_courses(4, overrides={"courses/4/quizzes": [{"id": 41}, {"id": 42}, {"title": "no id"}]})
        with patch("backend.canvas_client.urlopen", side_effect=fake):
            bundles = fetch_all_course_data(include_quiz_questions=True, **AUTH)

        self.assertEqual(sorted(bundles[0].quiz_questions), ["41", "42"])
        self.assertEqual(bundles[0].quiz_questions["41"][0]["question_text"], "?")

    def test_every_request_uses_same_token(self) -> None:
        seen: list[str] = []
        fake = _canvas_with_courses(1, 2)

        def _recording(req, timeout=None):
            seen.append(req.get_header("Authorization"))
            return fake(req, timeout)

        with patch("backend.canvas_client.urlopen", side_effect=_recording):
            fetch_all_course_data(**AUTH)

        # 1 course listing + 9 resources per course.
        self.assertEqual(len(seen), 1 + 9 * 2)
        self.assertEqual(set(seen), {"Bearer token"})

    def test_concurrency_never_exceeds_worker_cap(self) -> None:
        fake = _canvas_with_courses(*range(1, 6))
        active = 0
        peak = 0
        lock = threading.Lock()
        gate = threading.Event()

        def _tracking(req, timeout=None):
            nonlocal active, peak
            with lock:
                active += 1
                peak = max(peak, active)
            gate.wait(0.005)
            try:
                return fake(req, timeout)
            finally:
                with lock:
                    active -= 1

        with patch("backend.canvas_client.urlopen", side_effect=_tracking):
            bundles = fetch_all_course_data(max_workers=3, **AUTH)

        self.assertEqual(len(bundles), 5)
        self.assertLessEqual(peak, 3)

    def test_client_all_course_data_delegates(self) -> None:
        fake = _canvas_with_courses(9)
        client = CanvasClient("token", base_url="https://canvas.example.edu", user_agent="test-agent")
        with patch("backend.canvas_client.urlopen", side_effect=fake):
            bundles = client.all_course_data(max_workers=2)

        self.assertEqual(bundles[0].course_id, 9)
        self.assertEqual(bundles[0].to_api_dict()["grades"]["current_grade"], "B+")


class FetchAllAssignmentsTests(unittest.TestCase):
    def test_maps_course_ids_and_isolates_failures(self) -> None:
        fake = _canvas_with_courses(1, 2, overrides={"courses/2/assignments": 500})
        with patch("backend.canvas_client.urlopen", side_effect=fake):
            result = fetch_all_assignments(**AUTH)

        self.assertEqual(list(result), [1, 2])
        self.assertEqual(result[1][0]["id"], 10)
        self.assertEqual(result[2], [])

    def test_read_timeout_maps_only_that_course_to_empty(self) -> None:
        fake = _canvas_with_courses(
            1,
            2,
            overrides={"courses/1/assignments": _ReadFailure(TimeoutError("The read operation timed out"))},
        )
        with patch("backend.canvas_client.urlopen", side_effect=fake):
            result = fetch_all_assignments(**AUTH)

        self.assertEqual(result[1], [])
        self.assertEqual(result[2][0]["id"], 20)


if __name__ == "__main__":
    unittest.main()
