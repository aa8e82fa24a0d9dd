"""Tests for the LessonBoard service wiring."""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from conftest import COURSE_ID, ids_of
from lesson_sequencer.config import Config
from lesson_sequencer.core import LessonBoard, SortKey
from lesson_sequencer.exceptions import BackendError
from lesson_sequencer.models import UNGROUPED, LessonStatus


@pytest.fixture
def board(backend, notifier):
    config = Config()
    config.sync.retry_initial_delay = 0.0
    config.sync.retry_max_delay = 0.0
    board = LessonBoard(backend, COURSE_ID, config=config, notifier=notifier)
    asyncio.run(board.open())
    return board


@pytest.mark.integration
class TestLessonBoard:

    def test_open_loads_course(self, board):
        assert [g.key for g in board.grouped()] == ["intro", "advanced", UNGROUPED]
        assert len(board.view()) == 6

    def test_drag_within_module(self, board, backend):
        backend.reorder_lessons = AsyncMock(wraps=backend.reorder_lessons)

        board.begin_drag("L3")
        board.hover_lesson("L1")
        result = asyncio.run(board.drop())

        assert result.success
        backend.reorder_lessons.assert_awaited_once_with(COURSE_ID, ["L3", "L1", "L2"], "intro")
        assert board.grouped()[0].lesson_ids == ["L3", "L1", "L2"]

    def test_drag_onto_module_header(self, board, backend):
        backend.update_lesson = AsyncMock(wraps=backend.update_lesson)

        board.begin_drag("L2")
        board.hover_module("advanced")
        result = asyncio.run(board.drop())

        assert result.success
        backend.update_lesson.assert_awaited_once_with("L2", {"module": "advanced"})
        groups = {g.key: g.lesson_ids for g in board.grouped()}
        assert "L2" not in groups["intro"]
        assert groups["advanced"][-1] == "L2"

    def test_drop_without_target(self, board):
        board.begin_drag("L1")
        assert asyncio.run(board.drop()) is None
        assert not board.drag.is_dragging

    def test_failed_drop_leaves_board_idle_and_unchanged(self, board, backend, notifier):
        backend.reorder_lessons = AsyncMock(side_effect=BackendError('reorder_lessons', reason="nope"))
        before = board.grouped()[0].lesson_ids

        board.begin_drag("L3")
        board.hover_lesson("L1")
        result = asyncio.run(board.drop())

        assert not result.success
        assert board.grouped()[0].lesson_ids == before
        assert not board.drag.is_dragging
        assert notifier.errors == ["Failed to update order"]

    def test_filters_and_sort_by_name(self, board):
        board.set_filters(sort="duration", status=LessonStatus.DRAFT)
        assert board.filters.sort is SortKey.DURATION
        assert ids_of(board.view())[0] == "L1"
        board.clear_filters()
        assert board.filters.status is None
        assert board.filters.sort is SortKey.DURATION

    def test_select_all_respects_filters(self, board):
        board.set_filters(module="advanced")
        board.selection.select_all()
        board.clear_filters()
        assert board.selection.ids() == ["A1", "A2"]

    def test_bulk_publish_then_refresh(self, board, backend):
        board.set_filters(module="intro")
        board.selection.select_all()

        result = asyncio.run(board.batch.set_status(LessonStatus.PUBLISHED))

        assert result.success
        assert all(backend.lessons[lid].status is LessonStatus.PUBLISHED for lid in ("L1", "L2", "L3"))
        assert all(l.status is LessonStatus.PUBLISHED for l in board.view())

    def test_export_uses_configured_format(self, backend, notifier):
        config = Config()
        config.board.export_format = "json"
        board = LessonBoard(backend, COURSE_ID, config=config, notifier=notifier)
        asyncio.run(board.open())
        board.selection.select(["L2"])

        result = asyncio.run(board.batch.export())

        assert [row["id"] for row in json.loads(result.payload)] == ["L2"]
        assert board.selection.ids() == []
