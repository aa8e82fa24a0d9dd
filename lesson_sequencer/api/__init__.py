# API module - collaborator contract, payload schemas and backends
from .backend import CourseBackend, BatchOutcome, UploadResult
from .http import HttpCourseBackend
from .memory import InMemoryBackend
from .schemas import (
    LessonCreate,
    LessonUpdate,
    ModuleCreate,
    ModuleUpdate,
    parse_lessons,
    parse_modules,
    validate_model,
)

__all__ = [
    'CourseBackend',
    'BatchOutcome',
    'UploadResult',
    'HttpCourseBackend',
    'InMemoryBackend',
    'LessonCreate',
    'LessonUpdate',
    'ModuleCreate',
    'ModuleUpdate',
    'parse_lessons',
    'parse_modules',
    'validate_model',
]
