"""CourseCompanion domain package."""
