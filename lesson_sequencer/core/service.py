"""LessonBoard service - wires the store, drag machine, engine and selection
for one selected course."""

from dataclasses import replace
from typing import Optional

from ..api.backend import CourseBackend
from ..config import Config, load_config
from ..logging_config import get_logger
from ..models import ExportFormat, MoveIntent
from .drag import DragStateMachine, LessonTarget, ModuleTarget
from .notifier import LogNotifier, Notifier
from .reconciler import MutationResult, ReconciliationEngine
from .selection import BatchOperations, BulkSelection
from .store import LessonFilters, LessonStore, ModuleView, SortKey

logger = get_logger('service')


class LessonBoard:
    """
    Lesson board of one course.

    Handles:
    1. Loading the course into the local store
    2. Filtered, sorted and grouped views
    3. Drag gestures turned into moves
    4. Single-lesson, module and batch mutations
    """

    def __init__(
        self,
        backend: CourseBackend,
        course_id: str,
        config: Optional[Config] = None,
        notifier: Optional[Notifier] = None,
    ):
        self.config = config or load_config()
        self.course_id = course_id
        self.store = LessonStore()
        self.notifier = notifier or LogNotifier()
        self.engine = ReconciliationEngine(
            self.store,
            backend,
            course_id,
            notifier=self.notifier,
            sync=self.config.sync,
        )
        self.drag = DragStateMachine(self.store, is_busy=self.engine.is_busy)
        self.filters = LessonFilters(sort=SortKey(self.config.board.default_sort))
        self.selection = BulkSelection(lambda: self.store.visible_ids(self.filters))
        self.batch = BatchOperations(
            self.engine,
            self.selection,
            export_format=ExportFormat(self.config.board.export_format),
        )

    async def open(self) -> None:
        """Load the course from the backend, replacing any local state."""
        logger.info(f"Opening course {self.course_id}")
        self.drag.cancel()
        self.selection.clear()
        await self.engine.refresh()

    # ==================== VIEWS ====================

    def set_filters(self, **changes) -> LessonFilters:
        """Change some filters. The sort key may be given by name."""
        if isinstance(changes.get('sort'), str):
            changes['sort'] = SortKey(changes['sort'])
        self.filters = replace(self.filters, **changes)
        return self.filters

    def clear_filters(self) -> LessonFilters:
        self.filters = LessonFilters(sort=self.filters.sort)
        return self.filters

    def view(self):
        return self.store.filtered(self.filters)

    def grouped(self) -> tuple[ModuleView, ...]:
        return self.store.grouped(self.filters)

    # ==================== DRAG ====================

    def begin_drag(self, lesson_id: str) -> bool:
        return self.drag.start(lesson_id)

    def hover_lesson(self, lesson_id: str) -> bool:
        return self.drag.enter(LessonTarget(lesson_id))

    def hover_module(self, module_id: Optional[str]) -> bool:
        return self.drag.enter(ModuleTarget(module_id))

    def leave(self) -> bool:
        return self.drag.leave()

    def cancel_drag(self) -> None:
        self.drag.cancel()

    async def drop(self) -> Optional[MutationResult]:
        """Finish the current drag. Returns None when nothing moved."""
        intent = self.drag.drop()
        if intent is None:
            return None
        return await self.move(intent)

    async def move(self, intent: MoveIntent) -> MutationResult:
        return await self.engine.apply(intent)
