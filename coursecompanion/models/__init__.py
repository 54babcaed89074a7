"""Domain models shared by the Canvas client and API handlers."""

from .canvas import (
    ActivityMetric,
    Course,
    CourseAnalytics,
    CourseBundle,
    FileLink,
    GradeSummary,
    ModelValidationError,
    TardinessBreakdown,
)

__all__ = [
    "ActivityMetric",
    "Course",
    "CourseAnalytics",
    "CourseBundle",
    "FileLink",
    "GradeSummary",
    "ModelValidationError",
    "TardinessBreakdown",
]
