"""Tests for API payload parsing and request validation."""

import pytest

from lesson_sequencer.api import LessonCreate, LessonUpdate, ModuleUpdate, parse_lessons, parse_modules, validate_model
from lesson_sequencer.api.schemas import ModuleCreate, UploadPayload, parse_lesson, parse_module, unwrap
from lesson_sequencer.exceptions import ValidationError
from lesson_sequencer.models import LessonKind, LessonStatus


@pytest.mark.unit
class TestParsing:

    def test_unwrap_envelope(self):
        raw = {"success": True, "message": "ok", "data": {"lessons": [1, 2]}}
        assert unwrap(raw, "lessons") == [1, 2]

    def test_lesson_from_api_shape(self):
        raw = {"data": {
            "_id": "665f",
            "title": "Intro",
            "order": 4,
            "module": {"_id": "m1", "title": "Basics"},
            "type": "quiz",
            "status": "published",
            "averageScore": 72.5,
            "completionCount": 10,
            "isFree": True,
            "thumbnail": "https://img/t.png",
        }}
        lesson = parse_lesson(raw)
        assert lesson.id == "665f"
        assert lesson.position == 4
        assert lesson.module_id == "m1"
        assert lesson.kind is LessonKind.QUIZ
        assert lesson.status is LessonStatus.PUBLISHED
        assert lesson.completion == 72.5
        assert lesson.views == 10
        assert lesson.is_free
        assert lesson.thumbnail_url == "https://img/t.png"

    def test_module_as_plain_id_and_missing_order(self):
        lessons = parse_lessons({"data": [
            {"_id": "a", "module": "m1"},
            {"_id": "b", "module": None, "duration": None},
        ]})
        assert [(l.id, l.module_id, l.position) for l in lessons] == [("a", "m1", 0), ("b", None, 1)]
        assert lessons[1].duration == 0

    def test_blank_type_defaults_to_video(self):
        assert parse_lesson({"_id": "x", "type": ""}).kind is LessonKind.VIDEO

    def test_message_only_body_has_no_record(self):
        assert parse_lesson({"success": True, "message": "Lesson updated"}) is None
        assert parse_lesson(None) is None
        assert parse_module({"success": True, "data": {"message": "ok"}}) is None

    def test_single_module_record(self):
        module = parse_module({"data": {"module": {"_id": "m1", "title": "One", "order": 4}}})
        assert (module.id, module.position) == ("m1", 4)

    def test_modules(self):
        modules = parse_modules({"data": {"modules": [{"_id": "m2", "title": "Two", "order": 1}]}})
        assert modules[0].id == "m2" and modules[0].position == 1

    def test_non_list_response_is_empty(self):
        assert parse_lessons({"data": None}) == []

    def test_upload_duration_from_metadata(self):
        payload = UploadPayload.from_response({"data": {"url": "u", "metadata": {"duration": 12.5}}})
        assert payload.duration == 12.5


@pytest.mark.unit
class TestRequests:

    def test_create_request_uses_api_names(self):
        create = validate_model(LessonCreate, {"title": " Hello ", "module_id": "m1", "is_free": True})
        assert create.to_request() == {
            "title": "Hello",
            "type": "video",
            "module": "m1",
            "status": "draft",
            "description": "",
            "duration": 0,
            "isFree": True,
        }

    def test_create_requires_title(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_model(LessonCreate, {})
        assert exc_info.value.field == "title"
        assert exc_info.value.value is None

    def test_title_length_limit(self):
        with pytest.raises(ValidationError):
            validate_model(LessonCreate, {"title": "x" * 201})

    def test_update_sends_only_set_fields(self):
        update = validate_model(LessonUpdate, {"module_id": None})
        assert update.to_request() == {"module": None}

    def test_update_rejects_unknown_fields(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_model(LessonUpdate, {"order": 3})
        assert exc_info.value.field == "order"

    def test_negative_duration_rejected(self):
        with pytest.raises(ValidationError):
            validate_model(LessonUpdate, {"duration": -1})

    def test_module_update(self):
        update = validate_model(ModuleUpdate, {"status": LessonStatus.PUBLISHED})
        assert update.to_request() == {"status": "published"}

    def test_module_create_defaults_to_draft(self):
        payload = validate_model(ModuleCreate, {"title": " Extras "})
        assert payload.to_request() == {"title": "Extras", "description": "", "status": "draft"}

    def test_module_create_requires_title(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_model(ModuleCreate, {"title": ""})
        assert exc_info.value.field == "title"
