# Core module - local store, drag machine, reconciliation and batch operations
from .drag import DragStateMachine, LessonTarget, ModuleTarget
from .notifier import LogNotifier, Notice, NoticeLevel, Notifier, RecordingNotifier
from .reconciler import MutationResult, ReconciliationEngine, reorder_sequence
from .selection import BatchOperations, BatchResult, BulkSelection
from .service import LessonBoard
from .store import LessonFilters, LessonStore, ModuleView, SortKey, StoreSnapshot

__all__ = [
    'DragStateMachine',
    'LessonTarget',
    'ModuleTarget',
    'LogNotifier',
    'Notice',
    'NoticeLevel',
    'Notifier',
    'RecordingNotifier',
    'MutationResult',
    'ReconciliationEngine',
    'reorder_sequence',
    'BatchOperations',
    'BatchResult',
    'BulkSelection',
    'LessonBoard',
    'LessonFilters',
    'LessonStore',
    'ModuleView',
    'SortKey',
    'StoreSnapshot',
]
