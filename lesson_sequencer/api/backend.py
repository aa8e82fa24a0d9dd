"""Collaborator contract for the remote course store.

The sequencer never talks to storage directly; it only needs these async
operations to exist and to raise ``BackendError`` (or its transient
subclass ``BackendUnavailableError``) when the remote side rejects a call.
"""

from dataclasses import dataclass
from typing import Any, Mapping, Optional, Protocol, Sequence

from ..models import ExportFormat, Lesson, LessonStatus, MediaUpload, Module

# Per-item outcome of a batch call: lesson id -> error message, or None on
# success. Collaborators that cannot report per item return None instead of
# a mapping and the whole batch is treated as atomic.
BatchOutcome = Optional[Mapping[str, Optional[str]]]


@dataclass(frozen=True)
class UploadResult:
    """Where an uploaded file ended up."""
    url: str
    duration: Optional[float] = None


class CourseBackend(Protocol):
    """Async operations the sequencer calls on the course API."""

    async def list_lessons(self, course_id: str) -> list[Lesson]:
        """Return every lesson of the course."""
        ...

    async def list_modules(self, course_id: str) -> list[Module]:
        ...

    async def create_lesson(self, course_id: str, fields: Mapping[str, Any]) -> Optional[Lesson]:
        ...

    async def update_lesson(self, lesson_id: str, fields: Mapping[str, Any]) -> Optional[Lesson]:
        """Apply a partial update. ``{"module": id_or_None}`` reassigns.

        Returns the confirmed record, or None when the API sends none back.
        """
        ...

    async def delete_lesson(self, lesson_id: str) -> None:
        ...

    async def duplicate_lesson(self, lesson_id: str) -> Optional[Lesson]:
        ...

    async def reorder_lessons(
        self,
        course_id: str,
        ordered_ids: Sequence[str],
        module_id: Optional[str] = None,
    ) -> None:
        """Persist an order. ``ordered_ids`` is the complete scope, not a diff."""
        ...

    async def bulk_update_status(self, lesson_ids: Sequence[str], status: LessonStatus) -> BatchOutcome:
        ...

    async def bulk_delete(self, lesson_ids: Sequence[str]) -> BatchOutcome:
        ...

    async def bulk_export(self, lesson_ids: Sequence[str], export_format: ExportFormat) -> bytes:
        ...

    async def create_module(self, course_id: str, fields: Mapping[str, Any]) -> Optional[Module]:
        """Create a module at the end of the course's module order."""
        ...

    async def update_module(self, module_id: str, fields: Mapping[str, Any]) -> Optional[Module]:
        ...

    async def delete_module(self, module_id: str) -> None:
        """Delete a module. Its lessons become ungrouped."""
        ...

    async def reorder_modules(self, course_id: str, ordered_ids: Sequence[str]) -> None:
        ...

    async def upload_media(self, upload: MediaUpload, media_type: str) -> UploadResult:
        """Upload a file; ``media_type`` is 'video' or 'image'."""
        ...
