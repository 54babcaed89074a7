"""SnapSyllabus account services."""
