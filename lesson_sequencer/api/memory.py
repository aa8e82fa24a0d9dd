"""Dict-backed CourseBackend used by the CLI and the test suite.

State can be loaded from and saved to a JSON course file:

    {
      "course_id": "course-1",
      "modules": [{"id": "intro", "title": "Intro", ...}],
      "lessons": [{"id": "L1", "title": "...", "module_id": "intro", ...}]
    }
"""

import csv
import io
import json
import uuid
from dataclasses import replace
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence

from ..exceptions import BackendError
from ..logging_config import get_logger
from ..models import ExportFormat, Lesson, LessonStatus, MediaUpload, Module
from .backend import BatchOutcome, UploadResult
from .schemas import LessonPayload, ModulePayload

logger = get_logger('api.memory')

# API field name -> Lesson attribute
_LESSON_FIELDS = {
    'title': 'title',
    'type': 'kind',
    'kind': 'kind',
    'module': 'module_id',
    'moduleId': 'module_id',
    'status': 'status',
    'description': 'description',
    'duration': 'duration',
    'isFree': 'is_free',
    'videoUrl': 'video_url',
    'thumbnail': 'thumbnail_url',
}

_EXPORT_COLUMNS = ['id', 'title', 'module_id', 'position', 'kind', 'status', 'duration']


class InMemoryBackend:
    """Single-course backend holding lessons and modules in memory."""

    def __init__(
        self,
        course_id: str = "course-1",
        lessons: Optional[Sequence[Lesson]] = None,
        modules: Optional[Sequence[Module]] = None,
    ):
        self.course_id = course_id
        self.lessons: dict[str, Lesson] = {l.id: l for l in lessons or []}
        self.modules: dict[str, Module] = {m.id: m for m in modules or []}
        self.uploads: dict[str, bytes] = {}

    # ==================== FILE I/O ====================

    @classmethod
    def from_file(cls, path: str) -> 'InMemoryBackend':
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        modules = [
            ModulePayload.model_validate(m).to_module(fallback_position=i)
            for i, m in enumerate(data.get('modules', []))
        ]
        lessons = [
            LessonPayload.model_validate(l).to_lesson(fallback_position=i)
            for i, l in enumerate(data.get('lessons', []))
        ]
        logger.debug(f"Loaded {len(lessons)} lessons and {len(modules)} modules from {path}")
        return cls(course_id=data.get('course_id', 'course-1'), lessons=lessons, modules=modules)

    def save(self, path: str) -> None:
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w', encoding='utf-8') as f:
            json.dump({
                'course_id': self.course_id,
                'modules': [m.to_dict() for m in self.modules.values()],
                'lessons': [l.to_dict() for l in self.lessons.values()],
            }, f, indent=2)

    # ==================== HELPERS ====================

    def _check_course(self, course_id: str, operation: str) -> None:
        if course_id != self.course_id:
            raise BackendError(operation, reason=f"course '{course_id}' not found", status_code=404)

    def _get(self, lesson_id: str, operation: str) -> Lesson:
        lesson = self.lessons.get(lesson_id)
        if lesson is None:
            raise BackendError(operation, reason=f"lesson '{lesson_id}' not found", status_code=404)
        return lesson

    def _next_position(self, module_id: Optional[str]) -> int:
        positions = [l.position for l in self.lessons.values() if l.module_id == module_id]
        return max(positions) + 1 if positions else 0

    def _lesson_changes(self, fields: Mapping[str, Any], operation: str) -> dict:
        changes = {}
        for key, value in fields.items():
            attr = _LESSON_FIELDS.get(key)
            if attr is None:
                raise BackendError(operation, reason=f"unknown field '{key}'", status_code=400)
            changes[attr] = value
        if changes.get('module_id') and changes['module_id'] not in self.modules:
            raise BackendError(operation, reason=f"module '{changes['module_id']}' not found", status_code=404)
        # Coerce through the payload schema so enums and types match
        payload = LessonPayload.model_validate({'id': 'x', **changes})
        return {attr: getattr(payload, attr) for attr in changes}

    # ==================== LESSONS ====================

    async def list_lessons(self, course_id: str) -> list[Lesson]:
        self._check_course(course_id, 'list_lessons')
        return list(self.lessons.values())

    async def create_lesson(self, course_id: str, fields: Mapping[str, Any]) -> Lesson:
        self._check_course(course_id, 'create_lesson')
        changes = self._lesson_changes(fields, 'create_lesson')
        lesson = Lesson(id=uuid.uuid4().hex[:12], **changes)
        lesson.position = self._next_position(lesson.module_id)
        self.lessons[lesson.id] = lesson
        return lesson

    async def update_lesson(self, lesson_id: str, fields: Mapping[str, Any]) -> Lesson:
        lesson = self._get(lesson_id, 'update_lesson')
        changes = self._lesson_changes(fields, 'update_lesson')
        if 'module_id' in changes and changes['module_id'] != lesson.module_id:
            changes['position'] = self._next_position(changes['module_id'])
        updated = replace(lesson, **changes)
        self.lessons[lesson_id] = updated
        return updated

    async def delete_lesson(self, lesson_id: str) -> None:
        self._get(lesson_id, 'delete_lesson')
        del self.lessons[lesson_id]

    async def duplicate_lesson(self, lesson_id: str) -> Lesson:
        source = self._get(lesson_id, 'duplicate_lesson')
        copy = replace(
            source,
            id=uuid.uuid4().hex[:12],
            title=f"{source.title} (Copy)",
            status=LessonStatus.DRAFT,
            position=self._next_position(source.module_id),
            views=0,
            completion=0.0,
        )
        self.lessons[copy.id] = copy
        return copy

    async def reorder_lessons(
        self,
        course_id: str,
        ordered_ids: Sequence[str],
        module_id: Optional[str] = None,
    ) -> None:
        self._check_course(course_id, 'reorder_lessons')
        for lesson_id in ordered_ids:
            self._get(lesson_id, 'reorder_lessons')
        for position, lesson_id in enumerate(ordered_ids):
            self.lessons[lesson_id] = replace(self.lessons[lesson_id], position=position)

    # ==================== BULK ====================

    async def bulk_update_status(self, lesson_ids: Sequence[str], status: LessonStatus) -> BatchOutcome:
        outcome = {}
        for lesson_id in lesson_ids:
            if lesson_id in self.lessons:
                self.lessons[lesson_id] = replace(self.lessons[lesson_id], status=status)
                outcome[lesson_id] = None
            else:
                outcome[lesson_id] = "not found"
        return outcome

    async def bulk_delete(self, lesson_ids: Sequence[str]) -> BatchOutcome:
        outcome = {}
        for lesson_id in lesson_ids:
            outcome[lesson_id] = None if self.lessons.pop(lesson_id, None) else "not found"
        return outcome

    async def bulk_export(self, lesson_ids: Sequence[str], export_format: ExportFormat) -> bytes:
        rows = [self._get(lesson_id, 'bulk_export').to_dict() for lesson_id in lesson_ids]
        if export_format is ExportFormat.JSON:
            return json.dumps(rows, indent=2).encode('utf-8')

        buffer = io.StringIO()
        writer = csv.DictWriter(buffer, fieldnames=_EXPORT_COLUMNS, extrasaction='ignore')
        writer.writeheader()
        writer.writerows(rows)
        return buffer.getvalue().encode('utf-8')

    # ==================== MODULES ====================

    async def list_modules(self, course_id: str) -> list[Module]:
        self._check_course(course_id, 'list_modules')
        return list(self.modules.values())

    async def create_module(self, course_id: str, fields: Mapping[str, Any]) -> Module:
        self._check_course(course_id, 'create_module')
        positions = [m.position for m in self.modules.values()]
        payload = ModulePayload.model_validate({
            **fields,
            'id': uuid.uuid4().hex[:12],
            'position': max(positions) + 1 if positions else 0,
        })
        module = payload.to_module()
        self.modules[module.id] = module
        return module

    async def update_module(self, module_id: str, fields: Mapping[str, Any]) -> Module:
        module = self.modules.get(module_id)
        if module is None:
            raise BackendError('update_module', reason=f"module '{module_id}' not found", status_code=404)
        payload = ModulePayload.model_validate({**module.to_dict(), **fields})
        updated = payload.to_module(fallback_position=module.position)
        self.modules[module_id] = updated
        return updated

    async def delete_module(self, module_id: str) -> None:
        if self.modules.pop(module_id, None) is None:
            raise BackendError('delete_module', reason=f"module '{module_id}' not found", status_code=404)
        members = sorted(
            (l for l in self.lessons.values() if l.module_id == module_id),
            key=lambda l: l.position,
        )
        for lesson in members:
            self.lessons[lesson.id] = replace(lesson, module_id=None, position=self._next_position(None))

    async def reorder_modules(self, course_id: str, ordered_ids: Sequence[str]) -> None:
        self._check_course(course_id, 'reorder_modules')
        for position, module_id in enumerate(ordered_ids):
            if module_id not in self.modules:
                raise BackendError('reorder_modules', reason=f"module '{module_id}' not found", status_code=404)
            self.modules[module_id] = replace(self.modules[module_id], position=position)

    # ==================== UPLOADS ====================

    async def upload_media(self, upload: MediaUpload, media_type: str) -> UploadResult:
        key = f"{media_type}/{uuid.uuid4().hex[:8]}-{upload.filename}"
        self.uploads[key] = upload.content
        return UploadResult(url=f"memory://{key}")
