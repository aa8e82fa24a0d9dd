"""Lesson data model and its enums."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class LessonKind(str, Enum):
    """Content type of a lesson."""
    VIDEO = "video"
    TEXT = "text"
    QUIZ = "quiz"
    ASSIGNMENT = "assignment"


class LessonStatus(str, Enum):
    """Publication status shared by lessons and modules."""
    DRAFT = "draft"
    PUBLISHED = "published"

    def toggled(self) -> 'LessonStatus':
        if self is LessonStatus.PUBLISHED:
            return LessonStatus.DRAFT
        return LessonStatus.PUBLISHED


@dataclass
class Lesson:
    """A single lesson, ordered by position within its module.

    ``module_id`` of None means the lesson is ungrouped. Positions are only
    meaningful relative to other lessons of the same module and are not
    guaranteed to be contiguous until a reorder normalizes them.
    """

    id: str
    title: str = ""
    position: int = 0
    module_id: Optional[str] = None
    kind: LessonKind = LessonKind.VIDEO
    status: LessonStatus = LessonStatus.DRAFT

    # Display-only
    description: str = ""
    duration: int = 0           # seconds
    views: int = 0
    completion: float = 0.0     # average score
    is_free: bool = False
    thumbnail_url: Optional[str] = None
    video_url: Optional[str] = None

    @property
    def duration_display(self) -> str:
        """Human readable duration, e.g. '1h 5m' or '12m'."""
        if not self.duration:
            return "0m"
        hours, rest = divmod(self.duration, 3600)
        minutes = rest // 60
        if hours:
            return f"{hours}h {minutes}m"
        return f"{minutes}m"

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            'id': self.id,
            'title': self.title,
            'position': self.position,
            'module_id': self.module_id,
            'kind': self.kind.value,
            'status': self.status.value,
            'description': self.description,
            'duration': self.duration,
            'views': self.views,
            'completion': self.completion,
            'is_free': self.is_free,
            'thumbnail_url': self.thumbnail_url,
            'video_url': self.video_url,
        }
