"""Local ordering store: the session copy of a course's lessons and modules.

Lessons live in a flat arena keyed by id (insertion order is the stored
sequence). Module membership, the filtered+sorted list and the grouped view
are pure projections recomputed from the arena and memoized per revision.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, Iterable, Mapping, Optional, Sequence

from ..exceptions import UnknownLessonError, UnknownModuleError, ValidationError
from ..logging_config import get_logger
from ..models import UNGROUPED, Lesson, LessonKind, LessonStatus, Module

logger = get_logger('store')


class SortKey(str, Enum):
    """Orderings offered by the lesson list."""
    POSITION = "position"       # stored position, ascending
    NEWEST = "newest"           # identifier-derived recency, descending
    DURATION = "duration"       # longest first
    COMPLETION = "completion"   # highest average score first


def _recency(lesson: Lesson) -> tuple[int, str]:
    # Ids grow with creation time: counters get longer, ObjectIds share one width
    return len(lesson.id), lesson.id


_SORTS: dict[SortKey, tuple[Callable[[Lesson], object], bool]] = {
    SortKey.POSITION: (lambda l: l.position, False),
    SortKey.NEWEST: (_recency, True),
    SortKey.DURATION: (lambda l: l.duration, True),
    SortKey.COMPLETION: (lambda l: l.completion, True),
}


@dataclass(frozen=True)
class LessonFilters:
    """Active list filters. All set predicates must match.

    ``module`` is a module id, ``UNGROUPED`` for lessons without a module,
    or None for every module.
    """
    search: str = ""
    kind: Optional[LessonKind] = None
    status: Optional[LessonStatus] = None
    module: Optional[str] = None
    sort: SortKey = SortKey.POSITION

    def matches(self, lesson: Lesson) -> bool:
        if self.search and self.search.lower() not in lesson.title.lower():
            return False
        if self.kind is not None and lesson.kind != self.kind:
            return False
        if self.status is not None and lesson.status != self.status:
            return False
        if self.module is not None and bucket_key(lesson.module_id) != self.module:
            return False
        return True


@dataclass(frozen=True)
class ModuleView:
    """One bucket of the grouped view."""
    key: str                        # module id or UNGROUPED
    module: Optional[Module]        # None for the ungrouped or an unknown module
    lessons: tuple[Lesson, ...] = ()

    @property
    def lesson_ids(self) -> list[str]:
        return [l.id for l in self.lessons]


@dataclass(frozen=True)
class StoreSnapshot:
    """Records captured before an optimistic change.

    A value of None means the record did not exist when captured.
    """
    lessons: Mapping[str, Optional[Lesson]] = field(default_factory=dict)
    modules: Mapping[str, Optional[Module]] = field(default_factory=dict)
    order: tuple[str, ...] = ()


def bucket_key(module_id: Optional[str]) -> str:
    return module_id if module_id is not None else UNGROUPED


def scope_module(key: str) -> Optional[str]:
    """Inverse of bucket_key."""
    return None if key == UNGROUPED else key


class LessonStore:
    """Authoritative-for-the-session lesson collection of one course."""

    def __init__(self):
        self._lessons: dict[str, Lesson] = {}
        self._modules: dict[str, Module] = {}
        self._views: dict[tuple, tuple] = {}
        self._listeners: list[Callable[[int], None]] = []
        self.revision = 0

    # ==================== OBSERVATION ====================

    def subscribe(self, listener: Callable[[int], None]) -> Callable[[], None]:
        """Call ``listener(revision)`` after every mutation.

        Returns a function that removes the listener.
        """
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def _commit(self) -> None:
        self.revision += 1
        self._views.clear()
        for listener in list(self._listeners):
            listener(self.revision)

    # ==================== READS ====================

    @property
    def lessons(self) -> tuple[Lesson, ...]:
        """All lessons in stored (arena) order."""
        return tuple(self._lessons.values())

    @property
    def modules(self) -> tuple[Module, ...]:
        """Known modules in module position order."""
        return tuple(sorted(self._modules.values(), key=lambda m: m.position))

    def find(self, lesson_id: str) -> Optional[Lesson]:
        return self._lessons.get(lesson_id)

    def get(self, lesson_id: str) -> Lesson:
        lesson = self._lessons.get(lesson_id)
        if lesson is None:
            raise UnknownLessonError(lesson_id)
        return lesson

    def get_module(self, module_id: str) -> Module:
        module = self._modules.get(module_id)
        if module is None:
            raise UnknownModuleError(module_id)
        return module

    def has_module(self, module_id: Optional[str]) -> bool:
        return module_id is None or module_id in self._modules

    def members(self, module_id: Optional[str]) -> list[Lesson]:
        """Lessons of one module (None = ungrouped), in position order."""
        return sorted(
            (l for l in self._lessons.values() if l.module_id == module_id),
            key=lambda l: l.position,
        )

    def filtered(self, filters: LessonFilters = LessonFilters()) -> tuple[Lesson, ...]:
        """Lessons matching ``filters``, stably sorted by ``filters.sort``."""
        cache_key = ('filtered', filters)
        if cache_key not in self._views:
            key, reverse = _SORTS[filters.sort]
            matching = [l for l in self._lessons.values() if filters.matches(l)]
            self._views[cache_key] = tuple(sorted(matching, key=key, reverse=reverse))
        return self._views[cache_key]

    def visible_ids(self, filters: LessonFilters = LessonFilters()) -> list[str]:
        return [l.id for l in self.filtered(filters)]

    def grouped(self, filters: LessonFilters = LessonFilters()) -> tuple[ModuleView, ...]:
        """Partition the filtered list by module.

        Every known module is listed, empty or not, followed by buckets for
        module ids the store does not know and finally the ungrouped bucket.
        """
        cache_key = ('grouped', filters)
        if cache_key in self._views:
            return self._views[cache_key]

        buckets: dict[str, list[Lesson]] = {m.id: [] for m in self.modules}
        strays: dict[str, list[Lesson]] = {}
        ungrouped: list[Lesson] = []
        for lesson in self.filtered(filters):
            if lesson.module_id is None:
                ungrouped.append(lesson)
            elif lesson.module_id in buckets:
                buckets[lesson.module_id].append(lesson)
            else:
                strays.setdefault(lesson.module_id, []).append(lesson)

        for module_id in strays:
            logger.warning(f"Lessons reference unknown module '{module_id}'")

        views = [ModuleView(key=mid, module=self._modules[mid], lessons=tuple(ls))
                 for mid, ls in buckets.items()]
        views += [ModuleView(key=mid, module=None, lessons=tuple(ls))
                  for mid, ls in strays.items()]
        views.append(ModuleView(key=UNGROUPED, module=None, lessons=tuple(ungrouped)))

        self._views[cache_key] = tuple(views)
        return self._views[cache_key]

    # ==================== SNAPSHOTS ====================

    def snapshot(
        self,
        lesson_ids: Iterable[str] = (),
        module_ids: Iterable[str] = (),
    ) -> StoreSnapshot:
        """Capture the current records of the given lessons and modules."""
        return StoreSnapshot(
            lessons={lid: self._lessons.get(lid) for lid in lesson_ids},
            modules={mid: self._modules.get(mid) for mid in module_ids},
            order=tuple(self._lessons),
        )

    def restore(self, snapshot: StoreSnapshot) -> None:
        """Put captured records back in a single mutation.

        Records not named in the snapshot keep their current state, so
        changes made concurrently to other lessons survive a rollback.
        """
        merged = dict(self._lessons)
        for lesson_id, lesson in snapshot.lessons.items():
            if lesson is None:
                merged.pop(lesson_id, None)
            else:
                merged[lesson_id] = lesson

        order = [lid for lid in snapshot.order if lid in merged]
        seen = set(order)
        order += [lid for lid in merged if lid not in seen]
        self._lessons = {lid: merged[lid] for lid in order}

        for module_id, module in snapshot.modules.items():
            if module is None:
                self._modules.pop(module_id, None)
            else:
                self._modules[module_id] = module

        self._commit()

    # ==================== MUTATIONS ====================

    def load(self, lessons: Sequence[Lesson], modules: Sequence[Module]) -> None:
        """Replace the whole collection with server-confirmed data."""
        self._lessons = {l.id: l for l in lessons}
        self._modules = {m.id: m for m in modules}
        logger.debug(f"Loaded {len(self._lessons)} lessons, {len(self._modules)} modules")
        self._commit()

    def apply_order(self, module_id: Optional[str], ordered_ids: Sequence[str]) -> None:
        """Renumber one module densely (0..n-1) following ``ordered_ids``.

        ``ordered_ids`` must name every member of the module exactly once.
        """
        current = {l.id for l in self.members(module_id)}
        if len(ordered_ids) != len(set(ordered_ids)) or set(ordered_ids) != current:
            raise ValidationError(
                f"Order for module '{bucket_key(module_id)}' must list each member exactly once",
                field='ordered_ids',
            )
        for position, lesson_id in enumerate(ordered_ids):
            self._lessons[lesson_id] = replace(self._lessons[lesson_id], position=position)
        self._commit()

    def move_to_module(self, lesson_id: str, module_id: Optional[str], **changes) -> Lesson:
        """Move a lesson to the end of another module in one mutation.

        Extra field ``changes`` are applied in the same mutation.
        """
        lesson = self.get(lesson_id)
        if not self.has_module(module_id):
            raise UnknownModuleError(module_id)

        positions = [l.position for l in self.members(module_id) if l.id != lesson_id]
        moved = replace(
            lesson,
            module_id=module_id,
            position=max(positions) + 1 if positions else 0,
            **changes,
        )
        self._lessons[lesson_id] = moved
        self._commit()
        return moved

    def update_fields(self, lesson_id: str, **changes) -> Lesson:
        updated = replace(self.get(lesson_id), **changes)
        self._lessons[lesson_id] = updated
        self._commit()
        return updated

    def update_many(self, lesson_ids: Iterable[str], **changes) -> None:
        """Apply the same field changes to several lessons in one mutation."""
        targets = [self.get(lesson_id) for lesson_id in lesson_ids]
        for lesson in targets:
            self._lessons[lesson.id] = replace(lesson, **changes)
        self._commit()

    def upsert(self, lesson: Lesson) -> None:
        self._lessons[lesson.id] = lesson
        self._commit()

    def remove(self, lesson_ids: Iterable[str]) -> None:
        """Delete lessons without renumbering anyone else."""
        for lesson_id in lesson_ids:
            self._lessons.pop(lesson_id, None)
        self._commit()

    def upsert_module(self, module: Module) -> None:
        self._modules[module.id] = module
        self._commit()

    def remove_module(self, module_id: str) -> list[str]:
        """Delete a module and ungroup its lessons in one mutation.

        Members keep their relative order and are appended after the
        existing ungrouped lessons. Returns the ids that moved.
        """
        self.get_module(module_id)
        members = self.members(module_id)
        taken = [l.position for l in self.members(None)]
        start = max(taken) + 1 if taken else 0
        for offset, lesson in enumerate(members):
            self._lessons[lesson.id] = replace(lesson, module_id=None, position=start + offset)
        del self._modules[module_id]
        self._commit()
        return [l.id for l in members]

    def apply_module_order(self, ordered_ids: Sequence[str]) -> None:
        if set(ordered_ids) != set(self._modules) or len(ordered_ids) != len(self._modules):
            raise ValidationError("Module order must list each module exactly once", field='ordered_ids')
        for position, module_id in enumerate(ordered_ids):
            self._modules[module_id] = replace(self._modules[module_id], position=position)
        self._commit()
