"""Drag interaction state machine.

The state is a tagged value, one of:

    Idle
    Dragging(lesson_id)
    DraggingOver(lesson_id, target)

so a hover target without an active drag cannot be represented. Pointer and
keyboard handlers feed events in; ``drop()`` hands back at most one move
intent and always leaves the machine Idle.
"""

from dataclasses import dataclass
from typing import Callable, Optional, Union

from ..logging_config import get_logger
from ..models import MoveIntent, ReassignIntent, ReorderIntent
from .store import LessonStore

logger = get_logger('drag')


@dataclass(frozen=True)
class LessonTarget:
    """Hovering another lesson's row."""
    lesson_id: str


@dataclass(frozen=True)
class ModuleTarget:
    """Hovering a module header or body (None = ungrouped area)."""
    module_id: Optional[str]


DropTarget = Union[LessonTarget, ModuleTarget]


@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class Dragging:
    lesson_id: str


@dataclass(frozen=True)
class DraggingOver:
    lesson_id: str
    target: DropTarget


DragState = Union[Idle, Dragging, DraggingOver]

IDLE = Idle()


class DragStateMachine:
    """Tracks one drag gesture at a time.

    Args:
        store: Lesson store used to resolve the dragged lesson's module
        is_busy: Returns True while a lesson has a move in flight; such a
                 lesson cannot be picked up again until it settles
    """

    def __init__(self, store: LessonStore, is_busy: Optional[Callable[[str], bool]] = None):
        self.store = store
        self.is_busy = is_busy or (lambda lesson_id: False)
        self.state: DragState = IDLE

    @property
    def dragged_id(self) -> Optional[str]:
        if isinstance(self.state, (Dragging, DraggingOver)):
            return self.state.lesson_id
        return None

    @property
    def target(self) -> Optional[DropTarget]:
        if isinstance(self.state, DraggingOver):
            return self.state.target
        return None

    @property
    def is_dragging(self) -> bool:
        return not isinstance(self.state, Idle)

    def start(self, lesson_id: str) -> bool:
        """Pick up a lesson. Returns False when the drag is refused."""
        if self.is_dragging:
            logger.debug(f"Abandoned drag of {self.dragged_id} replaced by {lesson_id}")
            self.state = IDLE

        if self.store.find(lesson_id) is None:
            logger.warning(f"Cannot drag unknown lesson {lesson_id}")
            return False
        if self.is_busy(lesson_id):
            logger.info(f"Lesson {lesson_id} has a move in flight; drag refused")
            return False

        self.state = Dragging(lesson_id)
        return True

    def enter(self, target: DropTarget) -> bool:
        """Pointer entered a drop zone. Returns True if the hover changed."""
        if isinstance(self.state, Idle):
            return False
        if isinstance(target, LessonTarget) and target.lesson_id == self.state.lesson_id:
            return False
        if isinstance(self.state, DraggingOver) and self.state.target == target:
            return False

        self.state = DraggingOver(self.state.lesson_id, target)
        return True

    def leave(self, target: Optional[DropTarget] = None) -> bool:
        """Pointer left a drop zone.

        Leaving a zone other than the current hover target is ignored, so a
        late leave event for the previous zone cannot clear a newer hover.
        """
        if not isinstance(self.state, DraggingOver):
            return False
        if target is not None and target != self.state.target:
            return False

        self.state = Dragging(self.state.lesson_id)
        return True

    def drop(self) -> Optional[MoveIntent]:
        """Finish the gesture, returning the move intent if there is one."""
        state = self.state
        self.state = IDLE

        if not isinstance(state, DraggingOver):
            return None

        intent = self._intent_for(state.lesson_id, state.target)
        if intent is None:
            logger.debug(f"Drop of {state.lesson_id} on {state.target} is a no-op")
        return intent

    def cancel(self) -> None:
        """Abandon the gesture (escape key, drag ended off-screen, error)."""
        if self.is_dragging:
            logger.debug(f"Drag of {self.dragged_id} cancelled")
        self.state = IDLE

    def reset(self) -> None:
        self.cancel()

    def _intent_for(self, lesson_id: str, target: DropTarget) -> Optional[MoveIntent]:
        lesson = self.store.find(lesson_id)
        if lesson is None:
            return None

        if isinstance(target, LessonTarget):
            other = self.store.find(target.lesson_id)
            if other is None:
                return None
            if other.module_id == lesson.module_id:
                return ReorderIntent(lesson_id=lesson_id, target_id=other.id)
            # Dropping on a row of another module joins that module
            return ReassignIntent(lesson_id=lesson_id, module_id=other.module_id)

        if target.module_id == lesson.module_id:
            return None
        return ReassignIntent(lesson_id=lesson_id, module_id=target.module_id)
