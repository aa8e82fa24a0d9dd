"""Immutable intent values passed between the drag machine, the board and
the reconciliation engine.

Every in-flight operation carries exactly one of these values so rollback
never depends on ambient UI state.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional, Union

from .lesson import LessonKind, LessonStatus


@dataclass(frozen=True)
class ReorderIntent:
    """Place ``lesson_id`` at the index currently held by ``target_id``."""
    lesson_id: str
    target_id: str


@dataclass(frozen=True)
class ReassignIntent:
    """Move ``lesson_id`` to the end of ``module_id`` (None = ungrouped)."""
    lesson_id: str
    module_id: Optional[str]


MoveIntent = Union[ReorderIntent, ReassignIntent]


@dataclass(frozen=True)
class MediaUpload:
    """A file to upload before a lesson referencing it is created."""
    filename: str
    content: bytes = field(repr=False)
    content_type: str = "application/octet-stream"


@dataclass(frozen=True)
class LessonDraft:
    """Fields for a lesson that does not exist yet."""
    title: str
    kind: LessonKind = LessonKind.VIDEO
    module_id: Optional[str] = None
    status: LessonStatus = LessonStatus.DRAFT
    description: str = ""
    duration: int = 0
    is_free: bool = False
    video: Optional[MediaUpload] = None
    thumbnail: Optional[MediaUpload] = None


@dataclass(frozen=True)
class LessonEdit:
    """Partial field update for an existing lesson."""
    lesson_id: str
    fields: Mapping[str, Any]


class OperationKind(str, Enum):
    """Operation classes with their own in-flight indicator."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    REORDER = "reorder"
    BULK = "bulk"
    EXPORT = "export"


class ExportFormat(str, Enum):
    """Formats accepted by the bulk export collaborator."""
    CSV = "csv"
    JSON = "json"
