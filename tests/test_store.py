"""Tests for the local ordering store and its derived views."""

import pytest

from conftest import ids_of, positions
from lesson_sequencer.core import LessonFilters, LessonStore, SortKey
from lesson_sequencer.exceptions import UnknownLessonError, UnknownModuleError, ValidationError
from lesson_sequencer.models import UNGROUPED, Lesson, LessonKind, LessonStatus


@pytest.mark.unit
class TestFilteredView:

    def test_default_view_sorts_by_position(self, store):
        lessons = store.filtered()
        assert [l.position for l in lessons] == sorted(l.position for l in lessons)

    def test_search_is_case_insensitive_on_title(self, store):
        assert ids_of(store.filtered(LessonFilters(search="INTRO"))) == ["U1"]

    def test_kind_status_and_module_filters_combine(self, store):
        filters = LessonFilters(kind=LessonKind.VIDEO, status=LessonStatus.DRAFT, module="intro")
        assert ids_of(store.filtered(filters)) == ["L1"]

    def test_ungrouped_module_filter(self, store):
        assert ids_of(store.filtered(LessonFilters(module=UNGROUPED))) == ["U1"]

    def test_newest_sorts_by_id_descending(self, store):
        assert ids_of(store.filtered(LessonFilters(sort=SortKey.NEWEST))) == [
            "U1", "L3", "L2", "L1", "A2", "A1"]

    def test_newest_orders_counter_ids_numerically(self):
        store = LessonStore()
        store.load([Lesson(id="9", position=0), Lesson(id="10", position=1), Lesson(id="100", position=2)], [])
        assert ids_of(store.filtered(LessonFilters(sort=SortKey.NEWEST))) == ["100", "10", "9"]

    def test_newest_orders_object_ids_by_creation(self):
        store = LessonStore()
        store.load([
            Lesson(id="65a0f0c2e4b0a1b2c3d4e5f6", position=0),
            Lesson(id="65b1a3d4e4b0a1b2c3d4e5f7", position=1),
        ], [])
        assert ids_of(store.filtered(LessonFilters(sort=SortKey.NEWEST)))[0] == "65b1a3d4e4b0a1b2c3d4e5f7"

    def test_duration_and_completion_sort_descending(self, store):
        by_duration = ids_of(store.filtered(LessonFilters(sort=SortKey.DURATION)))
        assert by_duration[:3] == ["L3", "L1", "L2"]
        by_completion = ids_of(store.filtered(LessonFilters(sort=SortKey.COMPLETION)))
        assert by_completion[:2] == ["L3", "L1"]

    def test_view_is_memoized_until_next_mutation(self, store):
        first = store.filtered()
        assert store.filtered() is first
        store.update_fields("L1", title="Hello")
        assert store.filtered() is not first

    def test_filter_preserves_relative_order(self, store):
        store.apply_order("intro", ["L3", "L1", "L2"])
        filters = LessonFilters(module="intro", kind=LessonKind.VIDEO)
        assert ids_of(store.filtered(filters)) == ["L3", "L1"]


@pytest.mark.unit
class TestGroupedView:

    def test_lists_every_module_then_ungrouped(self, store):
        groups = store.grouped()
        assert [g.key for g in groups] == ["intro", "advanced", UNGROUPED]
        assert groups[0].lesson_ids == ["L1", "L2", "L3"]
        assert groups[-1].module is None

    def test_empty_modules_are_kept(self, store):
        groups = store.grouped(LessonFilters(search="wrap"))
        assert [g.key for g in groups] == ["intro", "advanced", UNGROUPED]
        assert groups[0].lessons == ()
        assert groups[1].lesson_ids == ["A2"]

    def test_unknown_module_gets_its_own_bucket(self, store):
        store.upsert(Lesson(id="X1", title="Stray", module_id="gone"))
        keys = [g.key for g in store.grouped()]
        assert keys == ["intro", "advanced", "gone", UNGROUPED]

    def test_modules_follow_module_position(self, store):
        store.apply_module_order(["advanced", "intro"])
        assert [g.key for g in store.grouped()][:2] == ["advanced", "intro"]


@pytest.mark.unit
class TestMutations:

    def test_apply_order_renumbers_densely(self, store):
        store.apply_order("intro", ["L3", "L1", "L2"])
        assert positions(store, "intro") == [("L3", 0), ("L1", 1), ("L2", 2)]

    def test_apply_order_rejects_partial_list(self, store):
        revision = store.revision
        with pytest.raises(ValidationError):
            store.apply_order("intro", ["L3", "L1"])
        assert store.revision == revision

    def test_apply_order_rejects_duplicates(self, store):
        with pytest.raises(ValidationError):
            store.apply_order("intro", ["L1", "L1", "L2"])

    def test_move_to_module_appends_at_end(self, store):
        moved = store.move_to_module("L2", "advanced")
        assert moved.module_id == "advanced"
        assert moved.position == 2
        assert ids_of(store.members("intro")) == ["L1", "L3"]

    def test_move_to_empty_module_starts_at_zero(self, store):
        store.move_to_module("U1", "intro")
        moved = store.move_to_module("A1", None)
        assert moved.position == 0

    def test_move_to_unknown_module_raises(self, store):
        with pytest.raises(UnknownModuleError):
            store.move_to_module("L1", "missing")
        assert store.get("L1").module_id == "intro"

    def test_move_with_extra_changes(self, store):
        moved = store.move_to_module("L1", None, title="Renamed")
        assert (moved.module_id, moved.title) == (None, "Renamed")

    def test_update_many_checks_all_ids_first(self, store):
        with pytest.raises(UnknownLessonError):
            store.update_many(["L1", "nope"], status=LessonStatus.PUBLISHED)
        assert store.get("L1").status is LessonStatus.DRAFT

    def test_remove_does_not_renumber(self, store):
        store.remove(["L2"])
        assert positions(store, "intro") == [("L1", 0), ("L3", 2)]

    def test_remove_module_ungroups_members_after_existing(self, store):
        seen = []
        store.subscribe(seen.append)

        moved = store.remove_module("intro")

        assert moved == ["L1", "L2", "L3"]
        assert len(seen) == 1
        assert not store.has_module("intro")
        assert positions(store, None) == [("U1", 0), ("L1", 1), ("L2", 2), ("L3", 3)]

    def test_remove_unknown_module_raises(self, store):
        with pytest.raises(UnknownModuleError):
            store.remove_module("missing")

    def test_restore_brings_back_removed_module(self, store):
        snap = store.snapshot(["L1", "L2", "L3"], module_ids=["intro"])
        store.remove_module("intro")
        store.restore(snap)
        assert store.has_module("intro")
        assert positions(store, "intro") == [("L1", 0), ("L2", 1), ("L3", 2)]

    def test_subscribers_see_each_commit_once(self, store):
        seen = []
        unsubscribe = store.subscribe(seen.append)
        store.update_many(["L1", "L2"], status=LessonStatus.PUBLISHED)
        unsubscribe()
        store.remove(["L1"])
        assert seen == [store.revision - 1]


@pytest.mark.unit
class TestSnapshots:

    def test_restore_puts_back_changed_and_removed_records(self, store):
        before = store.lessons
        snap = store.snapshot(["L1", "L2", "L3"])
        store.apply_order("intro", ["L3", "L2", "L1"])
        store.remove(["L2"])
        store.restore(snap)
        assert store.lessons == before

    def test_restore_drops_records_that_did_not_exist(self, store):
        snap = store.snapshot(["NEW"])
        store.upsert(Lesson(id="NEW", title="Fresh"))
        store.restore(snap)
        assert store.find("NEW") is None

    def test_restore_keeps_unrelated_changes(self, store):
        snap = store.snapshot(["L1"])
        store.update_fields("L1", title="Changed")
        store.update_fields("A1", title="Concurrent")
        store.restore(snap)
        assert store.get("L1").title == "Welcome"
        assert store.get("A1").title == "Concurrent"

    def test_restore_modules(self, store):
        snap = store.snapshot(module_ids=["intro", "advanced"])
        store.apply_module_order(["advanced", "intro"])
        store.restore(snap)
        assert [m.id for m in store.modules] == ["intro", "advanced"]

    def test_empty_store(self):
        empty = LessonStore()
        assert empty.filtered() == ()
        assert [g.key for g in empty.grouped()] == [UNGROUPED]
