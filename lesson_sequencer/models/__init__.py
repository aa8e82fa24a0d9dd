# Models module - lessons, modules and the intent values that move them
from .lesson import Lesson, LessonKind, LessonStatus
from .module import Module, UNGROUPED
from .intents import (
    ReorderIntent,
    ReassignIntent,
    MoveIntent,
    MediaUpload,
    LessonDraft,
    LessonEdit,
    OperationKind,
    ExportFormat,
)

__all__ = [
    'Lesson',
    'LessonKind',
    'LessonStatus',
    'Module',
    'UNGROUPED',
    'ReorderIntent',
    'ReassignIntent',
    'MoveIntent',
    'MediaUpload',
    'LessonDraft',
    'LessonEdit',
    'OperationKind',
    'ExportFormat',
]
