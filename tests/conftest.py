"""
Shared pytest fixtures for lesson sequencer tests.
Uses the in-memory backend so no test touches the network.
"""

import pytest

from lesson_sequencer.api import InMemoryBackend
from lesson_sequencer.config import SyncConfig
from lesson_sequencer.core import LessonStore, ReconciliationEngine, RecordingNotifier
from lesson_sequencer.models import Lesson, LessonKind, LessonStatus, Module

COURSE_ID = "course-1"


def make_modules():
    return [
        Module(id="intro", title="Intro", position=0),
        Module(id="advanced", title="Advanced", status=LessonStatus.PUBLISHED, position=1),
    ]


def make_lessons():
    return [
        Lesson(id="L1", title="Welcome", position=0, module_id="intro", duration=300, completion=80.0),
        Lesson(id="L2", title="Setup", position=1, module_id="intro", kind=LessonKind.TEXT, duration=120),
        Lesson(id="L3", title="First steps", position=2, module_id="intro", duration=900,
               status=LessonStatus.PUBLISHED, completion=95.5),
        Lesson(id="A1", title="Deep dive", position=0, module_id="advanced", kind=LessonKind.QUIZ),
        Lesson(id="A2", title="Wrap up", position=1, module_id="advanced", duration=60),
        Lesson(id="U1", title="Bonus intro clip", position=0, module_id=None, is_free=True),
    ]


@pytest.fixture
def sample_lessons():
    return make_lessons()


@pytest.fixture
def sample_modules():
    return make_modules()


@pytest.fixture
def store():
    """Store loaded with the sample course."""
    s = LessonStore()
    s.load(make_lessons(), make_modules())
    return s


@pytest.fixture
def backend():
    """In-memory backend holding its own copy of the sample course."""
    return InMemoryBackend(COURSE_ID, lessons=make_lessons(), modules=make_modules())


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def sync_config():
    """Fast retries and no automatic refresh unless a test enables it."""
    return SyncConfig(
        refresh_after_mutation=False,
        max_retries=2,
        retry_initial_delay=0.0,
        retry_max_delay=0.0,
    )


@pytest.fixture
def engine(store, backend, notifier, sync_config):
    return ReconciliationEngine(store, backend, COURSE_ID, notifier=notifier, sync=sync_config)


def ids_of(lessons):
    return [l.id for l in lessons]


def positions(store, module_id):
    return [(l.id, l.position) for l in store.members(module_id)]
