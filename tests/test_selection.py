"""Tests for bulk selection and batch operations."""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from conftest import ids_of, positions
from lesson_sequencer.core import BatchOperations, BulkSelection, LessonFilters
from lesson_sequencer.exceptions import BackendError, UnknownModuleError, ValidationError
from lesson_sequencer.models import ExportFormat, LessonStatus, OperationKind


@pytest.fixture
def filters():
    return {'current': LessonFilters()}


@pytest.fixture
def selection(store, filters):
    return BulkSelection(lambda: store.visible_ids(filters['current']))


@pytest.fixture
def batch(engine, selection):
    return BatchOperations(engine, selection)


@pytest.mark.unit
class TestBulkSelection:

    def test_select_all_takes_exactly_the_visible_ids(self, selection, filters):
        filters['current'] = LessonFilters(module="intro")
        selection.select_all()
        assert selection.ids() == ["L1", "L2", "L3"]

    def test_select_all_replaces_previous_selection(self, selection, filters):
        selection.select(["A1"])
        filters['current'] = LessonFilters(module="intro")
        selection.select_all()
        filters['current'] = LessonFilters()
        assert "A1" not in selection.ids()

    def test_hidden_ids_are_not_returned(self, selection, filters):
        selection.select(["L1", "A1"])
        filters['current'] = LessonFilters(module="advanced")
        assert selection.ids() == ["A1"]

    def test_ids_follow_view_order(self, selection):
        selection.select(["L3", "L1"])
        assert selection.ids() == ["L1", "L3"]

    def test_toggle(self, selection):
        assert selection.toggle("L1")
        assert not selection.toggle("L1")
        assert len(selection) == 0

    def test_deleted_lessons_drop_out(self, selection, store):
        selection.select(["L1", "L2"])
        store.remove(["L2"])
        assert selection.ids() == ["L1"]

    def test_membership_follows_the_visible_view(self, selection, filters):
        selection.select(["L1", "A1"])
        filters['current'] = LessonFilters(module="advanced")

        assert "A1" in selection
        assert "L1" not in selection
        assert len(selection) == 1


@pytest.mark.unit
class TestBatchStatus:

    def test_full_success_clears_selection(self, batch, selection, store, backend):
        selection.select(["L1", "L2"])

        result = asyncio.run(batch.set_status(LessonStatus.PUBLISHED))

        assert result.success
        assert result.succeeded == ("L1", "L2")
        assert store.get("L2").status is LessonStatus.PUBLISHED
        assert backend.lessons["L1"].status is LessonStatus.PUBLISHED
        assert selection.ids() == []

    def test_nothing_selected(self, batch):
        with pytest.raises(ValidationError):
            asyncio.run(batch.set_status(LessonStatus.PUBLISHED))

    def test_atomic_failure_restores_everything(self, batch, selection, store, backend, notifier):
        selection.select(["L1", "L2"])
        backend.bulk_update_status = AsyncMock(
            side_effect=BackendError('bulk_update_status', reason="down", status_code=500))

        result = asyncio.run(batch.set_status(LessonStatus.PUBLISHED))

        assert not result.success and result.atomic
        assert set(result.failed) == {"L1", "L2"}
        assert store.get("L1").status is LessonStatus.DRAFT
        assert store.get("L2").status is LessonStatus.DRAFT
        assert notifier.errors == ["Failed to update lessons"]
        assert selection.ids() == ["L1", "L2"]

    def test_atomic_success(self, batch, selection, backend):
        selection.select(["L1"])
        backend.bulk_update_status = AsyncMock(return_value=None)

        result = asyncio.run(batch.set_status(LessonStatus.PUBLISHED))

        assert result.atomic and result.success
        assert selection.ids() == []

    def test_partial_failure_keeps_failed_selected(self, batch, selection, store, backend, notifier):
        selection.select(["L1", "L2", "A1"])
        backend.bulk_update_status = AsyncMock(return_value={"L1": None, "L2": "locked", "A1": None})

        result = asyncio.run(batch.set_status(LessonStatus.PUBLISHED))

        assert not result.atomic
        assert result.failed == {"L2": "locked"}
        assert set(result.succeeded) == {"L1", "A1"}
        assert selection.ids() == ["L2"]
        assert store.get("L2").status is LessonStatus.DRAFT
        assert store.get("L1").status is LessonStatus.PUBLISHED
        assert notifier.errors == ["Failed to update 1 lessons"]

    def test_ids_missing_from_outcome_count_as_failed(self, batch, selection, store, backend, notifier):
        selection.select(["L1", "L2", "A1"])
        backend.bulk_update_status = AsyncMock(return_value={"L1": None})

        result = asyncio.run(batch.set_status(LessonStatus.PUBLISHED))

        assert result.succeeded == ("L1",)
        assert set(result.failed) == {"L2", "A1"}
        assert store.get("L2").status is LessonStatus.DRAFT
        assert store.get("A1").status is LessonStatus.DRAFT
        assert store.get("L1").status is LessonStatus.PUBLISHED
        assert selection.ids() == ["A1", "L2"]
        assert notifier.errors == ["Failed to update 2 lessons"]

    def test_empty_outcome_fails_every_lesson(self, batch, selection, store, backend):
        selection.select(["L1", "L2"])
        backend.bulk_update_status = AsyncMock(return_value={})

        result = asyncio.run(batch.set_status(LessonStatus.PUBLISHED))

        assert result.succeeded == ()
        assert not result.success
        assert store.get("L1").status is LessonStatus.DRAFT
        assert selection.ids() == ["L1", "L2"]

    def test_reorder_waits_for_status_change_in_same_module(self, batch, selection, store, backend, engine):
        selection.select(["L1", "L3"])

        async def scenario():
            release = asyncio.Event()

            async def held(lesson_ids, status):
                await release.wait()
                raise BackendError('bulk_update_status', reason="down", status_code=500)

            backend.bulk_update_status = AsyncMock(side_effect=held)
            bulk = asyncio.create_task(batch.set_status(LessonStatus.PUBLISHED))
            await asyncio.sleep(0)
            move = asyncio.create_task(engine.reorder("L2", "L1"))
            await asyncio.sleep(0)
            release.set()
            return await bulk, await move

        status_result, move_result = asyncio.run(scenario())

        assert not status_result.success
        assert move_result.success
        assert positions(store, "intro") == [("L2", 0), ("L1", 1), ("L3", 2)]
        assert store.get("L1").status is LessonStatus.DRAFT
        assert store.get("L3").status is LessonStatus.PUBLISHED

    def test_counter_returns_to_zero(self, batch, selection, engine):
        selection.select(["L1"])
        asyncio.run(batch.set_status(LessonStatus.PUBLISHED))
        assert engine.pending(OperationKind.BULK) == 0
        assert not engine.is_busy("L1")


@pytest.mark.unit
class TestBatchDelete:

    def test_delete_selected(self, batch, selection, store, backend):
        selection.select(["L2", "A1"])

        result = asyncio.run(batch.delete())

        assert result.success
        assert store.find("L2") is None and store.find("A1") is None
        assert "L2" not in backend.lessons

    def test_partial_delete_restores_failures(self, batch, selection, store, backend):
        selection.select(["L2", "A1"])
        backend.bulk_delete = AsyncMock(return_value={"L2": None, "A1": "in use"})

        result = asyncio.run(batch.delete())

        assert result.failed == {"A1": "in use"}
        assert store.find("L2") is None
        assert store.get("A1").module_id == "advanced"
        assert selection.ids() == ["A1"]


@pytest.mark.unit
class TestBatchExport:

    def test_export_json(self, batch, selection):
        selection.select(["L1", "L3"])

        result = asyncio.run(batch.export(ExportFormat.JSON))

        rows = json.loads(result.payload)
        assert [row["id"] for row in rows] == ["L1", "L3"]
        assert selection.ids() == []

    def test_export_csv_header(self, batch, selection):
        selection.select(["L1"])
        result = asyncio.run(batch.export())
        assert result.payload.decode("utf-8").splitlines()[0].startswith("id,title")

    def test_export_failure(self, batch, selection, backend, notifier):
        selection.select(["L1"])
        backend.bulk_export = AsyncMock(side_effect=BackendError('bulk_export', reason="timeout"))

        result = asyncio.run(batch.export())

        assert not result.success
        assert notifier.errors == ["Failed to export lessons"]
        assert selection.ids() == ["L1"]

    def test_default_format_comes_from_the_board(self, engine, selection):
        batch = BatchOperations(engine, selection, export_format=ExportFormat.JSON)
        selection.select(["A2"])

        result = asyncio.run(batch.export())

        assert [row["id"] for row in json.loads(result.payload)] == ["A2"]


@pytest.mark.unit
class TestBatchAssign:

    def test_assign_appends_in_view_order(self, batch, selection, store):
        selection.select(["U1", "L2"])

        result = asyncio.run(batch.assign("advanced"))

        assert result.success
        assert ids_of(store.members("advanced")) == ["A1", "A2", "U1", "L2"]
        assert selection.ids() == []

    def test_lessons_already_there_are_skipped(self, batch, selection, backend):
        selection.select(["A1", "L1"])
        backend.update_lesson = AsyncMock(return_value=None)

        asyncio.run(batch.assign("advanced"))

        backend.update_lesson.assert_awaited_once_with("L1", {"module": "advanced"})

    def test_unknown_module(self, batch, selection):
        selection.select(["L1"])
        with pytest.raises(UnknownModuleError):
            asyncio.run(batch.assign("missing"))

    def test_per_lesson_failure(self, batch, selection, store, backend):
        selection.select(["L1", "L2"])

        async def update(lesson_id, fields):
            if lesson_id == "L2":
                raise BackendError('update_lesson', reason="locked", status_code=423)
            return None

        backend.update_lesson = AsyncMock(side_effect=update)

        result = asyncio.run(batch.assign(None))

        assert result.succeeded == ("L1",)
        assert "L2" in result.failed
        assert store.get("L2").module_id == "intro"
        assert store.get("L1").module_id is None
        assert selection.ids() == ["L2"]
