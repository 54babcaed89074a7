"""Fan-out aggregation of every Canvas resource for every active course."""

from __future__ import annotations

import logging
import os
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Mapping

from backend.canvas_client import (
    fetch_active_courses,
    fetch_course_analytics,
    fetch_course_assignments,
    fetch_course_discussions,
    fetch_course_files,
    fetch_course_grades,
    fetch_course_modules,
    fetch_course_pages,
    fetch_course_quizzes,
    fetch_course_submissions,
    fetch_quiz_questions,
)
from coursecompanion.models.canvas import CourseBundle

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENCY = 8

# Bundle field -> accessor. Each accessor takes base_url/token/course_id/user_agent.
RESOURCE_FETCHERS: tuple[tuple[str, Callable[..., Any]], ...] = (
    ("assignments", fetch_course_assignments),
    ("submissions", fetch_course_submissions),
    ("grades", fetch_course_grades),
    ("quizzes", fetch_course_quizzes),
    ("modules", fetch_course_modules),
    ("pages", fetch_course_pages),
    ("files", fetch_course_files),
    ("discussions", fetch_course_discussions),
    ("analytics", fetch_course_analytics),
)


@dataclass(frozen=True)
class AggregatorConfig:
    """Concurrency settings for course aggregation."""

    max_concurrency: int = DEFAULT_MAX_CONCURRENCY

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "AggregatorConfig":
        source = os.environ if env is None else env
        raw = source.get("CANVAS_MAX_CONCURRENCY", "").strip()
        if not raw:
            return cls()
        try:
            parsed = int(raw)
        except ValueError:
            return cls()
        return cls(max_concurrency=parsed if parsed > 0 else DEFAULT_MAX_CONCURRENCY)


def _submit_course_fetches(
    pool: ThreadPoolExecutor,
    *,
    base_url: str,
    token: str,
    course_id: Any,
    user_agent: str,
) -> dict[str, Future]:
    return {
        name: pool.submit(
            fetcher,
            base_url=base_url,
            token=token,
            course_id=course_id,
            user_agent=user_agent,
        )
        for name, fetcher in RESOURCE_FETCHERS
    }


def _submit_quiz_question_fetches(
    pool: ThreadPoolExecutor,
    quizzes_future: Future,
    *,
    base_url: str,
    token: str,
    course_id: Any,
    user_agent: str,
) -> dict[str, Future]:
    if quizzes_future.exception() is not None:
        return {}

    futures: dict[str, Future] = {}
    for quiz in quizzes_future.result():
        quiz_id = quiz.get("id")
        if quiz_id is None:
            continue
        futures[str(quiz_id)] = pool.submit(
            fetch_quiz_questions,
            base_url=base_url,
            token=token,
            course_id=course_id,
            quiz_id=quiz_id,
            user_agent=user_agent,
        )
    return futures


def _collect_bundle(
    course: Mapping[str, Any],
    futures: Mapping[str, Future],
    question_futures: Mapping[str, Future],
) -> CourseBundle:
    try:
        values = {name: future.result() for name, future in futures.items()}
        quiz_questions = {quiz_id: future.result() for quiz_id, future in question_futures.items()}
    except Exception as exc:
        logger.warning("course data fetch failed for course %s: %s", course.get("id"), exc)
        return CourseBundle.empty(course, error=str(exc))

    return CourseBundle(course=course, quiz_questions=quiz_questions, **values)


def fetch_all_course_data(
    *,
    base_url: str,
    token: str,
    user_agent: str,
    max_workers: int | None = None,
    include_quiz_questions: bool = False,
) -> list[CourseBundle]:
    """
    Fetch every resource collection for every active course.

    The course list is fetched once and any failure there propagates. After
    that, every per-course fetch runs on a shared bounded pool and failures stay
    inside their course: the course gets ``CourseBundle.empty`` and the others
    are unaffected. Bundles come back in course-list order.
    """
    courses = fetch_active_courses(base_url=base_url, token=token, user_agent=user_agent)
    if not courses:
        return []

    workers = max_workers if max_workers and max_workers > 0 else AggregatorConfig.from_env().max_concurrency
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="canvas-fetch") as pool:
        pending = [
            _submit_course_fetches(
                pool,
                base_url=base_url,
                token=token,
                course_id=course.get("id"),
                user_agent=user_agent,
            )
            for course in courses
        ]

        question_pending: list[dict[str, Future]] = []
        for course, futures in zip(courses, pending):
            if not include_quiz_questions:
                question_pending.append({})
                continue
            question_pending.append(
                _submit_quiz_question_fetches(
                    pool,
                    futures["quizzes"],
                    base_url=base_url,
                    token=token,
                    course_id=course.get("id"),
                    user_agent=user_agent,
                )
            )

        bundles = [
            _collect_bundle(course, futures, question_futures)
            for course, futures, question_futures in zip(courses, pending, question_pending)
        ]

    failed = [bundle.course_id for bundle in bundles if bundle.fetch_error is not None]
    logger.info(
        "course data aggregation finished: %d course(s), failed=%s",
        len(bundles),
        failed,
    )
    return bundles


def fetch_all_assignments(*, base_url: str, token: str, user_agent: str) -> dict[Any, list[dict[str, Any]]]:
    """Map course id -> assignments for every active course; failed courses map to []."""
    courses = fetch_active_courses(base_url=base_url, token=token, user_agent=user_agent)
    if not courses:
        return {}

    workers = AggregatorConfig.from_env().max_concurrency
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="canvas-fetch") as pool:
        futures = [
            (
                course.get("id"),
                pool.submit(
                    fetch_course_assignments,
                    base_url=base_url,
                    token=token,
                    course_id=course.get("id"),
                    user_agent=user_agent,
                ),
            )
            for course in courses
        ]

        assignments: dict[Any, list[dict[str, Any]]] = {}
        for course_id, future in futures:
            try:
                assignments[course_id] = future.result()
            except Exception as exc:
                logger.warning("assignment fetch failed for course %s: %s", course_id, exc)
                assignments[course_id] = []
    return assignments
