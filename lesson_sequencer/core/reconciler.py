"""Reconciliation engine: optimistic apply, backend call, confirm or roll back.

Every mutation follows the same shape:

1. validate the request against the local store (no state touched on error)
2. mark the affected lessons busy and take the lock of each module scope
3. snapshot the records the change will touch, apply it to the store
4. await the backend; on ``BackendError`` restore the snapshot and notify
5. release, then refresh from the backend once nothing else is in flight

Locks are taken per module scope in sorted key order, so two moves on the
same module are applied and sent in the order they were issued while moves
on unrelated modules proceed concurrently.
"""

import asyncio
import logging
from collections import Counter
from contextlib import AsyncExitStack, asynccontextmanager, contextmanager
from dataclasses import dataclass, replace
from typing import Iterable, Mapping, Optional, Sequence

from ..api.backend import CourseBackend
from ..api.schemas import LessonCreate, LessonUpdate, ModuleCreate, ModuleUpdate, validate_model
from ..config import SyncConfig
from ..exceptions import (
    BackendError,
    MoveInProgressError,
    UnknownModuleError,
    ValidationError,
)
from ..logging_config import bind, get_logger, log_exception
from ..models import (
    Lesson,
    LessonDraft,
    LessonEdit,
    LessonStatus,
    Module,
    MoveIntent,
    OperationKind,
    ReassignIntent,
    ReorderIntent,
)
from ..retry import retry_async
from .notifier import LogNotifier, Notice, NoticeLevel, Notifier
from .store import LessonStore, StoreSnapshot, bucket_key

logger = get_logger('reconciler')

MODULES_SCOPE = "__modules__"

# Lesson attributes that may legitimately be cleared with None
_NULLABLE_FIELDS = frozenset({'module_id', 'video_url', 'thumbnail_url', 'description'})


@dataclass(frozen=True)
class MutationResult:
    """Outcome of one engine operation."""
    operation: str
    success: bool
    lesson_ids: tuple[str, ...] = ()
    error: Optional[str] = None
    lesson: Optional[Lesson] = None
    module: Optional[Module] = None
    changed: bool = True

    def to_dict(self) -> dict:
        return {
            'operation': self.operation,
            'success': self.success,
            'lesson_ids': list(self.lesson_ids),
            'error': self.error,
            'changed': self.changed,
        }


def reorder_sequence(ids: Sequence[str], moved_id: str, target_id: str) -> list[str]:
    """Move ``moved_id`` to the index ``target_id`` holds in ``ids``."""
    order = list(ids)
    dest = order.index(target_id)
    order.pop(order.index(moved_id))
    order.insert(dest, moved_id)
    return order


class ReconciliationEngine:
    """Keeps the local store and the remote course in agreement.

    Args:
        store: Local ordering store of the open course
        backend: Remote collaborator
        course_id: Course whose lessons are being edited
        notifier: Receives user-facing notices (defaults to the log)
        sync: Refresh and retry settings
    """

    def __init__(
        self,
        store: LessonStore,
        backend: CourseBackend,
        course_id: str,
        notifier: Optional[Notifier] = None,
        sync: Optional[SyncConfig] = None,
    ):
        self.store = store
        self.backend = backend
        self.course_id = course_id
        self.notifier = notifier or LogNotifier()
        self.sync = sync or SyncConfig()
        self.log = bind(logger, course_id=course_id)

        self._locks: dict[str, asyncio.Lock] = {}
        self._busy: set[str] = set()
        self._pending: Counter = Counter()
        self._active = 0
        self._generation = 0
        self._refresh_pending = False

    # ==================== STATUS ====================

    def is_busy(self, lesson_id: str) -> bool:
        """True while a change to ``lesson_id`` is waiting on the backend."""
        return lesson_id in self._busy

    def pending(self, kind: OperationKind) -> int:
        return self._pending[kind]

    @property
    def in_flight(self) -> bool:
        return self._active > 0

    # ==================== BUILDING BLOCKS ====================

    @asynccontextmanager
    async def tracking(self, kind: OperationKind, lesson_ids: Iterable[str] = ()):
        """Count an operation as in flight and mark its lessons busy."""
        lesson_ids = tuple(lesson_ids)
        for lesson_id in lesson_ids:
            if lesson_id in self._busy:
                raise MoveInProgressError(lesson_id)

        self._busy.update(lesson_ids)
        self._pending[kind] += 1
        self._active += 1
        self._generation += 1
        try:
            yield
        finally:
            self._busy.difference_update(lesson_ids)
            self._pending[kind] -= 1
            self._active -= 1

    @asynccontextmanager
    async def scopes(self, *keys: str):
        """Hold the FIFO lock of every named scope."""
        async with AsyncExitStack() as stack:
            for key in sorted(set(keys)):
                await stack.enter_async_context(self._locks.setdefault(key, asyncio.Lock()))
            yield

    @contextmanager
    def rollback_guard(self, snapshot: StoreSnapshot):
        """Restore ``snapshot`` if the block raises, then re-raise."""
        try:
            yield
        except BaseException:
            self.store.restore(snapshot)
            raise

    def report_failure(
        self,
        operation: str,
        message: str,
        error: Exception,
        lesson_ids: Iterable[str] = (),
    ) -> MutationResult:
        lesson_ids = tuple(lesson_ids)
        log_exception(self.log, error, f"{operation} rolled back", level=logging.WARNING,
                      lesson_ids=lesson_ids or None)
        self.notifier.push(Notice(NoticeLevel.ERROR, message))
        return MutationResult(
            operation=operation,
            success=False,
            lesson_ids=lesson_ids,
            error=str(error),
        )

    def report_success(self, message: str) -> None:
        self.notifier.push(Notice(NoticeLevel.SUCCESS, message))

    def confirm(self, lesson: object) -> Optional[Lesson]:
        """Store a server-confirmed lesson record, if the backend sent one."""
        if isinstance(lesson, Lesson):
            self.store.upsert(lesson)
            return lesson
        return None

    # ==================== REFRESH ====================

    @property
    def _retry_options(self) -> dict:
        return {
            'max_attempts': self.sync.max_retries,
            'initial_delay': self.sync.retry_initial_delay,
            'max_delay': self.sync.retry_max_delay,
            'backoff_factor': self.sync.retry_backoff_factor,
        }

    async def refresh(self) -> bool:
        """Reload lessons and modules from the backend.

        The load is skipped (and left pending) when a mutation started while
        the data was being fetched, since the fetched data may predate it.
        Returns True if the store was reloaded.
        """
        generation = self._generation
        lessons = await retry_async(self.backend.list_lessons, self.course_id, **self._retry_options)
        modules = await retry_async(self.backend.list_modules, self.course_id, **self._retry_options)

        if self._active or generation != self._generation:
            self.log.debug("Refresh deferred until in-flight changes settle")
            self._refresh_pending = True
            return False

        self._refresh_pending = False
        self.store.load(lessons, modules)
        return True

    async def settle(self, confirmed: bool = True) -> None:
        """Refresh after a mutation, once no other mutation is in flight."""
        if confirmed and self.sync.refresh_after_mutation:
            self._refresh_pending = True
        if not self._refresh_pending or self._active:
            return
        try:
            await self.refresh()
        except BackendError as e:
            log_exception(self.log, e, "Refresh after change failed", level=logging.WARNING)

    # ==================== MOVES ====================

    async def apply(self, intent: MoveIntent) -> MutationResult:
        """Carry out a move intent produced by the drag machine."""
        if isinstance(intent, ReorderIntent):
            return await self.reorder(intent.lesson_id, intent.target_id)
        if isinstance(intent, ReassignIntent):
            return await self.reassign(intent.lesson_id, intent.module_id)
        raise ValidationError(f"Unsupported move intent: {intent!r}", field='intent')

    async def reorder(self, lesson_id: str, target_id: str) -> MutationResult:
        """Place ``lesson_id`` at ``target_id``'s index within their module."""
        lesson = self.store.get(lesson_id)
        target = self.store.get(target_id)
        if lesson_id == target_id:
            return MutationResult('reorder', True, (lesson_id,), lesson=lesson, changed=False)
        if lesson.module_id != target.module_id:
            raise ValidationError(
                f"Lessons '{lesson_id}' and '{target_id}' are in different modules",
                field='target_id',
                value=target_id,
            )

        async with self.tracking(OperationKind.REORDER, (lesson_id,)):
            async with self.scopes(bucket_key(target.module_id)):
                result = await self._reorder_locked(lesson_id, target_id)
        await self.settle(result.success)
        return result

    async def _reorder_locked(self, lesson_id: str, target_id: str) -> MutationResult:
        # An earlier move in the queue may have changed the scope
        module_id = self.store.get(target_id).module_id
        if self.store.get(lesson_id).module_id != module_id:
            raise ValidationError(
                f"Lesson '{target_id}' left the module before '{lesson_id}' could move",
                field='target_id',
                value=target_id,
            )

        members = [l.id for l in self.store.members(module_id)]
        ordered = reorder_sequence(members, lesson_id, target_id)
        snapshot = self.store.snapshot(members)

        self.log.info(f"Reorder {lesson_id} -> index of {target_id} in '{bucket_key(module_id)}'",
                      extra={'operation': 'reorder', 'lesson_ids': ordered})
        try:
            with self.rollback_guard(snapshot):
                self.store.apply_order(module_id, ordered)
                await self.backend.reorder_lessons(self.course_id, ordered, module_id)
        except BackendError as e:
            return self.report_failure('reorder', "Failed to update order", e, (lesson_id,))

        self.report_success("Order updated successfully")
        return MutationResult('reorder', True, tuple(ordered), lesson=self.store.get(lesson_id))

    async def reassign(self, lesson_id: str, module_id: Optional[str]) -> MutationResult:
        """Move a lesson to the end of another module (None = ungrouped)."""
        lesson = self.store.get(lesson_id)
        if not self.store.has_module(module_id):
            raise UnknownModuleError(module_id)
        if lesson.module_id == module_id:
            return MutationResult('reassign', True, (lesson_id,), lesson=lesson, changed=False)

        async with self.tracking(OperationKind.UPDATE, (lesson_id,)):
            async with self.scopes(bucket_key(lesson.module_id), bucket_key(module_id)):
                snapshot = self.store.snapshot([lesson_id])
                self.log.info(f"Reassign {lesson_id}: '{bucket_key(lesson.module_id)}' -> '{bucket_key(module_id)}'",
                              extra={'operation': 'reassign', 'lesson_ids': [lesson_id]})
                try:
                    with self.rollback_guard(snapshot):
                        self.store.move_to_module(lesson_id, module_id)
                        confirmed = await self.backend.update_lesson(lesson_id, {'module': module_id})
                except BackendError as e:
                    result = self.report_failure(
                        'reassign', "Failed to move lesson to module", e, (lesson_id,))
                else:
                    moved = self.confirm(confirmed) or self.store.get(lesson_id)
                    self.report_success("Lesson updated successfully")
                    result = MutationResult('reassign', True, (lesson_id,), lesson=moved)
        await self.settle(result.success)
        return result

    # ==================== LESSON CRUD ====================

    async def create_lesson(self, draft: LessonDraft) -> MutationResult:
        """Upload media, create the lesson and append it to its module.

        A failed video upload aborts the creation; a failed thumbnail upload
        only drops the thumbnail.
        """
        if not self.store.has_module(draft.module_id):
            raise UnknownModuleError(draft.module_id)
        payload = validate_model(LessonCreate, {
            'title': draft.title,
            'kind': draft.kind,
            'module_id': draft.module_id,
            'status': draft.status,
            'description': draft.description,
            'duration': draft.duration,
            'is_free': draft.is_free,
        })

        async with self.tracking(OperationKind.CREATE):
            result = await self._create(draft, payload)
        await self.settle(result.success)
        return result

    async def _create(self, draft: LessonDraft, payload: LessonCreate) -> MutationResult:
        if draft.video is not None:
            try:
                upload = await self.backend.upload_media(draft.video, 'video')
            except BackendError as e:
                return self.report_failure('create_lesson', "Video upload failed", e)
            updates = {'video_url': upload.url}
            if upload.duration and upload.duration > 0:
                updates['duration'] = int(round(upload.duration))
            payload = payload.model_copy(update=updates)

        if draft.thumbnail is not None:
            try:
                upload = await self.backend.upload_media(draft.thumbnail, 'image')
                payload = payload.model_copy(update={'thumbnail_url': upload.url})
            except BackendError as e:
                log_exception(self.log, e, "Thumbnail upload failed, creating lesson without it",
                              level=logging.WARNING)

        async with self.scopes(bucket_key(draft.module_id)):
            try:
                created = await self.backend.create_lesson(self.course_id, payload.to_request())
            except BackendError as e:
                return self.report_failure('create_lesson', "Failed to create lesson", e)
            lesson = self.confirm(created)

        self.log.info(f"Created lesson '{payload.title}'")
        self.report_success("Lesson created successfully")
        lesson_ids = (lesson.id,) if lesson else ()
        return MutationResult('create_lesson', True, lesson_ids, lesson=lesson)

    async def update_lesson(self, edit: LessonEdit) -> MutationResult:
        """Apply a partial field update; a ``module_id`` change reassigns."""
        lesson = self.store.get(edit.lesson_id)
        fields = {k: v for k, v in edit.fields.items() if v is not None or k in _NULLABLE_FIELDS}
        update = validate_model(LessonUpdate, fields)
        changes = update.model_dump(exclude_unset=True)
        if not changes:
            return MutationResult('update_lesson', True, (lesson.id,), lesson=lesson, changed=False)

        target = changes.pop('module_id', lesson.module_id)
        if not self.store.has_module(target):
            raise UnknownModuleError(target)
        module_change = target != lesson.module_id

        async with self.tracking(OperationKind.UPDATE, (lesson.id,)):
            async with self.scopes(bucket_key(lesson.module_id), bucket_key(target)):
                snapshot = self.store.snapshot([lesson.id])
                try:
                    with self.rollback_guard(snapshot):
                        if module_change:
                            self.store.move_to_module(lesson.id, target, **changes)
                        else:
                            self.store.update_fields(lesson.id, **changes)
                        confirmed = await self.backend.update_lesson(lesson.id, update.to_request())
                except BackendError as e:
                    result = self.report_failure(
                        'update_lesson', "Failed to update lesson", e, (lesson.id,))
                else:
                    updated = self.confirm(confirmed) or self.store.get(lesson.id)
                    self.report_success("Lesson updated successfully")
                    result = MutationResult('update_lesson', True, (lesson.id,), lesson=updated)
        await self.settle(result.success)
        return result

    async def delete_lesson(self, lesson_id: str) -> MutationResult:
        """Remove a lesson. Remaining positions are left as they are."""
        lesson = self.store.get(lesson_id)

        async with self.tracking(OperationKind.DELETE, (lesson_id,)):
            async with self.scopes(bucket_key(lesson.module_id)):
                snapshot = self.store.snapshot([lesson_id])
                try:
                    with self.rollback_guard(snapshot):
                        self.store.remove([lesson_id])
                        await self.backend.delete_lesson(lesson_id)
                except BackendError as e:
                    result = self.report_failure(
                        'delete_lesson', "Failed to delete lesson", e, (lesson_id,))
                else:
                    self.report_success("Lesson deleted successfully")
                    result = MutationResult('delete_lesson', True, (lesson_id,))
        await self.settle(result.success)
        return result

    async def duplicate_lesson(self, lesson_id: str) -> MutationResult:
        lesson = self.store.get(lesson_id)

        async with self.tracking(OperationKind.CREATE):
            async with self.scopes(bucket_key(lesson.module_id)):
                try:
                    copy = self.confirm(await self.backend.duplicate_lesson(lesson_id))
                except BackendError as e:
                    result = self.report_failure(
                        'duplicate_lesson', "Failed to duplicate lesson", e, (lesson_id,))
                else:
                    self.report_success("Lesson duplicated successfully")
                    lesson_ids = (lesson_id, copy.id) if copy else (lesson_id,)
                    result = MutationResult('duplicate_lesson', True, lesson_ids, lesson=copy)
        await self.settle(result.success)
        return result

    # ==================== MODULES ====================

    async def update_module(self, module_id: str, fields: Mapping[str, object]) -> MutationResult:
        module = self.store.get_module(module_id)
        update = validate_model(ModuleUpdate, dict(fields))
        changes = update.model_dump(exclude_unset=True)
        if not changes:
            return MutationResult('update_module', True, module=module, changed=False)

        async with self.tracking(OperationKind.UPDATE):
            async with self.scopes(MODULES_SCOPE):
                snapshot = self.store.snapshot(module_ids=[module_id])
                try:
                    with self.rollback_guard(snapshot):
                        self.store.upsert_module(replace(self.store.get_module(module_id), **changes))
                        confirmed = await self.backend.update_module(module_id, update.to_request())
                except BackendError as e:
                    result = self.report_failure('update_module', "Failed to update module", e)
                else:
                    if isinstance(confirmed, Module):
                        self.store.upsert_module(confirmed)
                    self.report_success("Module updated successfully")
                    result = MutationResult('update_module', True, module=self.store.get_module(module_id))
        await self.settle(result.success)
        return result

    async def create_module(
        self,
        title: str,
        description: str = "",
        status: LessonStatus = LessonStatus.DRAFT,
    ) -> MutationResult:
        """Create a module after the existing ones."""
        payload = validate_model(ModuleCreate, {'title': title, 'description': description, 'status': status})

        async with self.tracking(OperationKind.CREATE):
            async with self.scopes(MODULES_SCOPE):
                try:
                    created = await self.backend.create_module(self.course_id, payload.to_request())
                except BackendError as e:
                    result = self.report_failure('create_module', "Failed to create module", e)
                else:
                    module = created if isinstance(created, Module) else None
                    if module is not None:
                        self.store.upsert_module(module)
                    self.log.info(f"Created module '{payload.title}'")
                    self.report_success("Module created successfully")
                    result = MutationResult('create_module', True, module=module)
        await self.settle(result.success)
        return result

    async def delete_module(self, module_id: str) -> MutationResult:
        """Delete a module. Its lessons move to the end of the ungrouped list."""
        self.store.get_module(module_id)
        member_ids = [l.id for l in self.store.members(module_id)]

        async with self.tracking(OperationKind.DELETE, member_ids):
            async with self.scopes(MODULES_SCOPE, bucket_key(module_id), bucket_key(None)):
                # Earlier moves in the queue may have changed the membership
                self.store.get_module(module_id)
                member_ids = [l.id for l in self.store.members(module_id)]
                snapshot = self.store.snapshot(member_ids, module_ids=[module_id])
                self.log.info(f"Delete module '{module_id}', ungrouping {len(member_ids)} lessons")
                try:
                    with self.rollback_guard(snapshot):
                        self.store.remove_module(module_id)
                        await self.backend.delete_module(module_id)
                except BackendError as e:
                    result = self.report_failure('delete_module', "Failed to delete module", e, member_ids)
                else:
                    self.report_success("Module deleted successfully")
                    result = MutationResult('delete_module', True, tuple(member_ids))
        await self.settle(result.success)
        return result

    async def toggle_module_status(self, module_id: str) -> MutationResult:
        """Flip a module between draft and published."""
        module = self.store.get_module(module_id)
        return await self.update_module(module_id, {'status': module.status.toggled()})

    async def reorder_modules(self, ordered_ids: Sequence[str]) -> MutationResult:
        ordered = list(ordered_ids)
        current = [m.id for m in self.store.modules]
        if len(ordered) != len(set(ordered)) or set(ordered) != set(current):
            raise ValidationError("Module order must list each module exactly once", field='ordered_ids')
        if ordered == current:
            return MutationResult('reorder_modules', True, changed=False)

        async with self.tracking(OperationKind.REORDER):
            async with self.scopes(MODULES_SCOPE):
                snapshot = self.store.snapshot(module_ids=current)
                try:
                    with self.rollback_guard(snapshot):
                        self.store.apply_module_order(ordered)
                        await self.backend.reorder_modules(self.course_id, ordered)
                except BackendError as e:
                    result = self.report_failure('reorder_modules', "Failed to update module order", e)
                else:
                    self.report_success("Module order updated successfully")
                    result = MutationResult('reorder_modules', True)
        await self.settle(result.success)
        return result
