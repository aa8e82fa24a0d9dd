"""Bulk selection over the visible lesson list, and the batch operations
that act on it.

Batch operations reuse the reconciliation engine's building blocks
(tracking, scope locks, rollback guard, settle). A backend that answers a
batch call with ``None`` is treated as all-or-nothing; one that answers with
a ``{lesson_id: error_or_None}`` mapping gets per-item handling: successes
leave the selection, failures stay selected and their optimistic changes
are restored. An id the mapping leaves out counts as failed.
"""

from dataclasses import dataclass, field
from typing import Callable, Iterable, Mapping, Optional, Sequence

from ..api.backend import BatchOutcome
from ..exceptions import BackendError, UnknownModuleError, ValidationError
from ..logging_config import bind, get_logger
from ..models import ExportFormat, LessonStatus, OperationKind
from .notifier import Notice, NoticeLevel
from .reconciler import ReconciliationEngine
from .store import StoreSnapshot, bucket_key

logger = get_logger('selection')

NO_OUTCOME = "No result reported"


class BulkSelection:
    """Selected lesson ids, always read through the current visible list.

    Args:
        visible_ids: Returns the ids of the filtered view, in view order
    """

    def __init__(self, visible_ids: Callable[[], Sequence[str]]):
        self._visible_ids = visible_ids
        self._selected: set[str] = set()

    def __len__(self) -> int:
        return len(self.ids())

    def __contains__(self, lesson_id: str) -> bool:
        return lesson_id in self._selected and lesson_id in self._visible_ids()

    def ids(self) -> list[str]:
        """Selected ids that are still visible, in view order."""
        return [lid for lid in self._visible_ids() if lid in self._selected]

    def toggle(self, lesson_id: str) -> bool:
        """Flip one lesson. Returns True if it is now selected."""
        if lesson_id in self._selected:
            self._selected.discard(lesson_id)
            return False
        self._selected.add(lesson_id)
        return True

    def select(self, lesson_ids: Iterable[str]) -> None:
        self._selected.update(lesson_ids)

    def deselect(self, lesson_ids: Iterable[str]) -> None:
        self._selected.difference_update(lesson_ids)

    def select_all(self) -> None:
        """Replace the selection with exactly the visible lessons."""
        self._selected = set(self._visible_ids())

    def clear(self) -> None:
        self._selected.clear()


@dataclass
class BatchResult:
    """Outcome of one batch operation."""
    operation: str
    succeeded: tuple[str, ...] = ()
    failed: dict[str, str] = field(default_factory=dict)
    atomic: bool = True
    payload: Optional[bytes] = None

    @property
    def success(self) -> bool:
        return not self.failed

    def to_dict(self) -> dict:
        return {
            'operation': self.operation,
            'succeeded': list(self.succeeded),
            'failed': dict(self.failed),
            'atomic': self.atomic,
        }


class BatchOperations:
    """Status, delete, export and module assignment for the selection."""

    def __init__(
        self,
        engine: ReconciliationEngine,
        selection: BulkSelection,
        export_format: ExportFormat = ExportFormat.CSV,
    ):
        self.engine = engine
        self.selection = selection
        self.export_format = export_format
        self.log = bind(logger, course_id=engine.course_id)

    @property
    def store(self):
        return self.engine.store

    @property
    def backend(self):
        return self.engine.backend

    def _selected(self) -> list[str]:
        ids = self.selection.ids()
        if not ids:
            raise ValidationError("No lessons selected", field='selection')
        return ids

    def _scopes_of(self, lesson_ids: Iterable[str]) -> set[str]:
        return {bucket_key(self.store.get(lid).module_id) for lid in lesson_ids}

    def _resolve(
        self,
        operation: str,
        lesson_ids: Sequence[str],
        outcome: BatchOutcome,
        snapshot: StoreSnapshot,
        done: str,
        failed_message: str,
    ) -> BatchResult:
        if outcome is None:
            self.selection.clear()
            self.engine.report_success(done.format(n=len(lesson_ids)))
            return BatchResult(operation, tuple(lesson_ids), atomic=True)

        return self._partial(operation, lesson_ids, outcome, snapshot, done, failed_message)

    def _partial(
        self,
        operation: str,
        lesson_ids: Sequence[str],
        outcome: Mapping[str, Optional[str]],
        snapshot: StoreSnapshot,
        done: str,
        failed_message: str,
    ) -> BatchResult:
        failed = {}
        for lid in lesson_ids:
            if lid not in outcome:
                failed[lid] = NO_OUTCOME
            elif outcome[lid]:
                failed[lid] = outcome[lid]
        succeeded = tuple(lid for lid in lesson_ids if lid not in failed)

        if failed:
            self.store.restore(StoreSnapshot(
                lessons={lid: snapshot.lessons.get(lid) for lid in failed},
                order=snapshot.order,
            ))
            for lesson_id, error in failed.items():
                self.log.warning(f"{operation} failed for {lesson_id}: {error}",
                                 extra={'operation': operation, 'lesson_ids': [lesson_id]})
            self.engine.notifier.push(Notice(NoticeLevel.ERROR, failed_message.format(n=len(failed))))
            self.selection.deselect(succeeded)
        else:
            self.selection.clear()

        if succeeded:
            self.engine.report_success(done.format(n=len(succeeded)))
        return BatchResult(operation, succeeded, failed, atomic=False)

    def _atomic_failure(self, operation: str, message: str, error: BackendError,
                        lesson_ids: Sequence[str]) -> BatchResult:
        self.engine.report_failure(operation, message, error, lesson_ids)
        return BatchResult(operation, (), {lid: str(error) for lid in lesson_ids}, atomic=True)

    # ==================== OPERATIONS ====================

    async def set_status(self, status: LessonStatus) -> BatchResult:
        """Publish or unpublish every selected lesson."""
        ids = self._selected()

        async with self.engine.tracking(OperationKind.BULK, ids):
            async with self.engine.scopes(*self._scopes_of(ids)):
                snapshot = self.store.snapshot(ids)
                try:
                    with self.engine.rollback_guard(snapshot):
                        self.store.update_many(ids, status=status)
                        outcome = await self.backend.bulk_update_status(ids, status)
                except BackendError as e:
                    result = self._atomic_failure('bulk_status', "Failed to update lessons", e, ids)
                else:
                    result = self._resolve(
                        'bulk_status', ids, outcome, snapshot,
                        f"{{n}} lessons set to {status.value}", "Failed to update {n} lessons")
        await self.engine.settle(bool(result.succeeded))
        return result

    async def delete(self) -> BatchResult:
        ids = self._selected()

        async with self.engine.tracking(OperationKind.BULK, ids):
            async with self.engine.scopes(*self._scopes_of(ids)):
                snapshot = self.store.snapshot(ids)
                try:
                    with self.engine.rollback_guard(snapshot):
                        self.store.remove(ids)
                        outcome = await self.backend.bulk_delete(ids)
                except BackendError as e:
                    result = self._atomic_failure('bulk_delete', "Failed to delete lessons", e, ids)
                else:
                    result = self._resolve(
                        'bulk_delete', ids, outcome, snapshot,
                        "{n} lessons deleted", "Failed to delete {n} lessons")
        await self.engine.settle(bool(result.succeeded))
        return result

    async def export(self, export_format: Optional[ExportFormat] = None) -> BatchResult:
        """Export the selected lessons, in the board's format unless one is given.

        The selection is cleared once the export succeeds.
        """
        ids = self._selected()
        export_format = export_format or self.export_format

        async with self.engine.tracking(OperationKind.EXPORT):
            try:
                data = await self.backend.bulk_export(ids, export_format)
            except BackendError as e:
                return self._atomic_failure('bulk_export', "Failed to export lessons", e, ids)

        self.selection.clear()
        self.engine.report_success(f"Exported {len(ids)} lessons")
        return BatchResult('bulk_export', tuple(ids), payload=data)

    async def assign(self, module_id: Optional[str]) -> BatchResult:
        """Move every selected lesson to the end of ``module_id``, in view order.

        Each lesson is its own backend call, so the outcome is per item.
        """
        if not self.store.has_module(module_id):
            raise UnknownModuleError(module_id)
        ids = [lid for lid in self._selected() if self.store.get(lid).module_id != module_id]
        if not ids:
            self.selection.clear()
            return BatchResult('bulk_assign', atomic=False)

        async with self.engine.tracking(OperationKind.BULK, ids):
            async with self.engine.scopes(bucket_key(module_id), *self._scopes_of(ids)):
                snapshot = self.store.snapshot(ids)
                outcome: dict[str, Optional[str]] = {}
                with self.engine.rollback_guard(snapshot):
                    for lesson_id in ids:
                        self.store.move_to_module(lesson_id, module_id)
                    for lesson_id in ids:
                        try:
                            await self.backend.update_lesson(lesson_id, {'module': module_id})
                            outcome[lesson_id] = None
                        except BackendError as e:
                            outcome[lesson_id] = str(e)
                result = self._partial(
                    'bulk_assign', ids, outcome, snapshot,
                    f"{{n}} lessons moved to '{bucket_key(module_id)}'", "Failed to move {n} lessons")
        await self.engine.settle(bool(result.succeeded))
        return result
