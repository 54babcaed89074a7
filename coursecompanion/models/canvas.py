"""Canvas course snapshot and per-course bundle models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping


class ModelValidationError(ValueError):
    """Raised when model payloads fail validation."""


def _validate_non_empty_string(value: Any, field_name: str) -> str:
    """Require non-empty strings for identifying fields."""
    if not isinstance(value, str):
        raise ModelValidationError(f"{field_name}: expected string")
    if not value.strip():
        raise ModelValidationError(f"{field_name}: must not be empty")
    return value


def _optional_number(value: Any) -> float | int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def _optional_string(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value
    return None


def _count(value: Any) -> int | float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return value


@dataclass(frozen=True)
class Course:
    """Immutable snapshot of an enrolled Canvas course."""

    id: int
    name: str
    course_code: str
    workflow_state: str
    term: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.id, int) or isinstance(self.id, bool):
            raise ModelValidationError("id: expected integer")
        _validate_non_empty_string(self.name, "name")

    @classmethod
    def from_api_dict(cls, payload: Mapping[str, Any]) -> "Course":
        """Build from a raw Canvas course row."""
        term = None
        term_obj = payload.get("term")
        if isinstance(term_obj, Mapping):
            term = _optional_string(term_obj.get("name"))

        name = payload.get("name")
        course_code = payload.get("course_code")
        return cls(
            id=payload.get("id"),
            name=name.strip() if isinstance(name, str) else name,
            course_code=course_code.strip() if isinstance(course_code, str) else "",
            workflow_state=str(payload.get("workflow_state") or "unknown"),
            term=term,
        )

    def to_api_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "courseCode": self.course_code,
            "workflowState": self.workflow_state,
            "term": self.term,
        }


@dataclass(frozen=True)
class GradeSummary:
    """Normalized grade summary from a course enrollment record."""

    current_score: float | int | None = None
    final_score: float | int | None = None
    current_grade: str | None = None
    final_grade: str | None = None

    @classmethod
    def from_enrollment(cls, enrollment: Mapping[str, Any]) -> "GradeSummary":
        grades = enrollment.get("grades")
        if not isinstance(grades, Mapping):
            return cls()
        return cls(
            current_score=_optional_number(grades.get("current_score")),
            final_score=_optional_number(grades.get("final_score")),
            current_grade=_optional_string(grades.get("current_grade")),
            final_grade=_optional_string(grades.get("final_grade")),
        )

    def to_api_dict(self) -> dict[str, Any]:
        return {
            "current_score": self.current_score,
            "final_score": self.final_score,
            "current_grade": self.current_grade,
            "final_grade": self.final_grade,
        }


@dataclass(frozen=True)
class ActivityMetric:
    total: int | float = 0
    max: int | float = 0
    level: int | float = 0

    @classmethod
    def from_api_dict(cls, payload: Any) -> "ActivityMetric":
        if not isinstance(payload, Mapping):
            return cls()
        return cls(
            total=_count(payload.get("total")),
            max=_count(payload.get("max")),
            level=_count(payload.get("level")),
        )

    def to_api_dict(self) -> dict[str, Any]:
        return {"total": self.total, "max": self.max, "level": self.level}


@dataclass(frozen=True)
class TardinessBreakdown:
    on_time: int | float = 0
    late: int | float = 0
    missing: int | float = 0
    total: int | float = 0

    @classmethod
    def from_api_dict(cls, payload: Any) -> "TardinessBreakdown":
        if not isinstance(payload, Mapping):
            return cls()
        return cls(
            on_time=_count(payload.get("on_time")),
            late=_count(payload.get("late")),
            missing=_count(payload.get("missing")),
            total=_count(payload.get("total")),
        )

    def to_api_dict(self) -> dict[str, Any]:
        return {
            "on_time": self.on_time,
            "late": self.late,
            "missing": self.missing,
            "total": self.total,
        }


@dataclass(frozen=True)
class CourseAnalytics:
    """Student activity analytics for one course.

    Canvas only serves this to some roles, so callers fall back to
    ``CourseAnalytics.zero()`` instead of failing.
    """

    page_views: ActivityMetric = field(default_factory=ActivityMetric)
    participations: ActivityMetric = field(default_factory=ActivityMetric)
    tardiness_breakdown: TardinessBreakdown = field(default_factory=TardinessBreakdown)

    @classmethod
    def zero(cls) -> "CourseAnalytics":
        return cls()

    @classmethod
    def from_api_dict(cls, payload: Mapping[str, Any]) -> "CourseAnalytics":
        if not isinstance(payload, Mapping):
            raise ModelValidationError("CourseAnalytics: expected object")
        return cls(
            page_views=ActivityMetric.from_api_dict(payload.get("page_views")),
            participations=ActivityMetric.from_api_dict(payload.get("participations")),
            tardiness_breakdown=TardinessBreakdown.from_api_dict(payload.get("tardiness_breakdown")),
        )

    def to_api_dict(self) -> dict[str, Any]:
        return {
            "page_views": self.page_views.to_api_dict(),
            "participations": self.participations.to_api_dict(),
            "tardiness_breakdown": self.tardiness_breakdown.to_api_dict(),
        }


@dataclass(frozen=True)
class FileLink:
    """A file link found inside an HTML body."""

    url: str
    text: str

    def to_api_dict(self) -> dict[str, str]:
        return {"url": self.url, "text": self.text}


@dataclass(frozen=True)
class CourseBundle:
    """Every resource collection fetched for one course.

    All fields are always present. When a course could not be fetched the
    bundle carries the empty value of each field and ``fetch_error`` says why.
    """

    course: Mapping[str, Any]
    assignments: list[dict[str, Any]] = field(default_factory=list)
    submissions: list[dict[str, Any]] = field(default_factory=list)
    grades: GradeSummary = field(default_factory=GradeSummary)
    quizzes: list[dict[str, Any]] = field(default_factory=list)
    quiz_questions: dict[str, list[dict[str, Any]]] = field(default_factory=dict)
    modules: list[dict[str, Any]] = field(default_factory=list)
    pages: list[dict[str, Any]] = field(default_factory=list)
    files: list[dict[str, Any]] = field(default_factory=list)
    discussions: list[dict[str, Any]] = field(default_factory=list)
    analytics: CourseAnalytics = field(default_factory=CourseAnalytics.zero)
    fetch_error: str | None = None

    @classmethod
    def empty(cls, course: Mapping[str, Any], *, error: str | None = None) -> "CourseBundle":
        return cls(course=course, fetch_error=error)

    @property
    def course_id(self) -> Any:
        return self.course.get("id")

    def to_api_dict(self) -> dict[str, Any]:
        return {
            "course": dict(self.course),
            "assignments": list(self.assignments),
            "submissions": list(self.submissions),
            "grades": self.grades.to_api_dict(),
            "quizzes": list(self.quizzes),
            "quiz_questions": {key: list(rows) for key, rows in self.quiz_questions.items()},
            "modules": list(self.modules),
            "pages": list(self.pages),
            "files": list(self.files),
            "discussions": list(self.discussions),
            "analytics": self.analytics.to_api_dict(),
        }
