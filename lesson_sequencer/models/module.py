"""Module (lesson group) data model."""

from dataclasses import dataclass

from .lesson import LessonStatus

# Bucket key for lessons without a module. The ungrouped pseudo-module is
# implicit and never created on the backend.
UNGROUPED = "no-module"


@dataclass
class Module:
    """A named container for lessons within a course.

    Membership is not stored here; it is derived from ``Lesson.module_id``.
    """

    id: str
    title: str = ""
    status: LessonStatus = LessonStatus.DRAFT
    position: int = 0
    description: str = ""

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            'id': self.id,
            'title': self.title,
            'status': self.status.value,
            'position': self.position,
            'description': self.description,
        }
