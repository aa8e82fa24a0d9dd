"""Pydantic schemas for course API payloads.

Inbound schemas accept the shapes the course API actually returns
(``_id``, ``order``, ``type``, ``module`` as a nested object or a bare id,
``averageScore`` ...). Outbound schemas validate editor input before any
network call is made.
"""

from typing import Any, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError as PydanticValidationError,
    field_validator,
)

from ..exceptions import ValidationError
from ..models import Lesson, LessonKind, LessonStatus, Module


def _ref_id(value: Any) -> Optional[str]:
    """Reduce an id reference (object or string) to the id string."""
    if isinstance(value, dict):
        value = value.get('_id') or value.get('id')
    if value in (None, ""):
        return None
    return str(value)


def unwrap(payload: Any, *keys: str) -> Any:
    """Strip the API's ``{"success", "message", "data"}`` envelopes.

    Descends through nested ``data`` wrappers, then through the first of
    ``keys`` that is present (e.g. ``lessons`` or ``modules``).
    """
    while isinstance(payload, dict) and 'data' in payload:
        payload = payload['data']
    if isinstance(payload, dict):
        for key in keys:
            if key in payload:
                return payload[key]
    return payload


class LessonPayload(BaseModel):
    """A lesson as returned by the course API."""

    model_config = ConfigDict(populate_by_name=True, extra='ignore')

    id: str = Field(validation_alias=AliasChoices('_id', 'id'))
    title: str = ""
    position: Optional[int] = Field(default=None, validation_alias=AliasChoices('order', 'position'))
    module_id: Optional[str] = Field(default=None, validation_alias=AliasChoices('module', 'moduleId', 'module_id'))
    kind: LessonKind = Field(default=LessonKind.VIDEO, validation_alias=AliasChoices('type', 'kind'))
    status: LessonStatus = LessonStatus.DRAFT
    description: str = ""
    duration: int = 0
    views: int = Field(default=0, validation_alias=AliasChoices('completionCount', 'views'))
    completion: float = Field(default=0.0, validation_alias=AliasChoices('averageScore', 'completion'))
    is_free: bool = Field(default=False, validation_alias=AliasChoices('isFree', 'is_free'))
    thumbnail_url: Optional[str] = Field(default=None, validation_alias=AliasChoices('thumbnail', 'thumbnail_url'))
    video_url: Optional[str] = Field(default=None, validation_alias=AliasChoices('videoUrl', 'video_url'))

    @field_validator('id', mode='before')
    @classmethod
    def _coerce_id(cls, value):
        return str(value) if value is not None else value

    @field_validator('module_id', mode='before')
    @classmethod
    def _module_ref(cls, value):
        return _ref_id(value)

    @field_validator('kind', 'status', 'title', 'description', mode='before')
    @classmethod
    def _blank_to_default(cls, value, info):
        if value is None or value == "":
            return cls.model_fields[info.field_name].default
        return value

    @field_validator('duration', 'views', 'completion', 'is_free', mode='before')
    @classmethod
    def _null_to_zero(cls, value):
        return value if value is not None else 0

    def to_lesson(self, fallback_position: int = 0) -> Lesson:
        return Lesson(
            id=self.id,
            title=self.title,
            position=self.position if self.position is not None else fallback_position,
            module_id=self.module_id,
            kind=self.kind,
            status=self.status,
            description=self.description,
            duration=self.duration,
            views=self.views,
            completion=self.completion,
            is_free=bool(self.is_free),
            thumbnail_url=self.thumbnail_url,
            video_url=self.video_url,
        )


class ModulePayload(BaseModel):
    """A module as returned by the course API."""

    model_config = ConfigDict(populate_by_name=True, extra='ignore')

    id: str = Field(validation_alias=AliasChoices('_id', 'id'))
    title: str = ""
    status: LessonStatus = LessonStatus.DRAFT
    position: Optional[int] = Field(default=None, validation_alias=AliasChoices('order', 'position'))
    description: str = ""

    @field_validator('id', mode='before')
    @classmethod
    def _coerce_id(cls, value):
        return str(value) if value is not None else value

    @field_validator('status', 'title', 'description', mode='before')
    @classmethod
    def _blank_to_default(cls, value, info):
        if value is None or value == "":
            return cls.model_fields[info.field_name].default
        return value

    def to_module(self, fallback_position: int = 0) -> Module:
        return Module(
            id=self.id,
            title=self.title,
            status=self.status,
            position=self.position if self.position is not None else fallback_position,
            description=self.description,
        )


class UploadPayload(BaseModel):
    """Result of a media upload."""

    model_config = ConfigDict(extra='ignore')

    url: str
    duration: Optional[float] = None

    @classmethod
    def from_response(cls, raw: Any) -> 'UploadPayload':
        data = unwrap(raw, 'file')
        if isinstance(data, dict) and data.get('duration') is None:
            metadata = data.get('metadata') or {}
            data = {**data, 'duration': metadata.get('duration')}
        return cls.model_validate(data)


class LessonCreate(BaseModel):
    """Validated body of a create-lesson request."""

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    title: str = Field(min_length=1, max_length=200)
    kind: LessonKind = Field(default=LessonKind.VIDEO, serialization_alias='type')
    module_id: Optional[str] = Field(default=None, serialization_alias='module')
    status: LessonStatus = LessonStatus.DRAFT
    description: str = ""
    duration: int = Field(default=0, ge=0)
    is_free: bool = Field(default=False, serialization_alias='isFree')
    video_url: Optional[str] = Field(default=None, serialization_alias='videoUrl')
    thumbnail_url: Optional[str] = Field(default=None, serialization_alias='thumbnail')

    def to_request(self) -> dict:
        return self.model_dump(mode='json', by_alias=True, exclude_none=True)


class LessonUpdate(BaseModel):
    """Validated partial update of a lesson. Only set fields are sent."""

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True, extra='forbid')

    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    kind: Optional[LessonKind] = Field(default=None, serialization_alias='type')
    module_id: Optional[str] = Field(default=None, serialization_alias='module')
    status: Optional[LessonStatus] = None
    description: Optional[str] = None
    duration: Optional[int] = Field(default=None, ge=0)
    is_free: Optional[bool] = Field(default=None, serialization_alias='isFree')
    video_url: Optional[str] = Field(default=None, serialization_alias='videoUrl')
    thumbnail_url: Optional[str] = Field(default=None, serialization_alias='thumbnail')

    def to_request(self) -> dict:
        return self.model_dump(mode='json', by_alias=True, exclude_unset=True)


class ModuleCreate(BaseModel):
    """Validated body of a create-module request."""

    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(min_length=1, max_length=200)
    description: str = ""
    status: LessonStatus = LessonStatus.DRAFT

    def to_request(self) -> dict:
        return self.model_dump(mode='json')


class ModuleUpdate(BaseModel):
    """Validated partial update of a module."""

    model_config = ConfigDict(str_strip_whitespace=True, extra='forbid')

    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    status: Optional[LessonStatus] = None
    description: Optional[str] = None

    def to_request(self) -> dict:
        return self.model_dump(mode='json', exclude_unset=True)


def validate_model(model_cls, data: dict):
    """Validate ``data`` against ``model_cls``, raising our ValidationError.

    Only the first reported problem is surfaced; it names the field.
    """
    try:
        return model_cls.model_validate(data)
    except PydanticValidationError as e:
        first = e.errors()[0]
        loc = ".".join(str(part) for part in first.get('loc', ()))
        value = None if first.get('type') == 'missing' else first.get('input')
        raise ValidationError(
            f"Invalid {loc or 'input'}: {first.get('msg')}",
            field=loc or None,
            value=value,
        ) from e


def parse_lessons(raw: Any) -> list[Lesson]:
    """Parse a lesson list response, falling back to list index for order."""
    items = unwrap(raw, 'lessons')
    if not isinstance(items, list):
        return []
    return [
        LessonPayload.model_validate(item).to_lesson(fallback_position=idx)
        for idx, item in enumerate(items)
    ]


def _record(raw: Any, key: str) -> Optional[dict]:
    """The single record in a response, or None when the body has none.

    Update endpoints may answer with just ``{"success", "message"}``.
    """
    data = unwrap(raw, key)
    if isinstance(data, dict) and data.get('_id', data.get('id')) is not None:
        return data
    return None


def parse_lesson(raw: Any) -> Optional[Lesson]:
    data = _record(raw, 'lesson')
    return LessonPayload.model_validate(data).to_lesson() if data is not None else None


def parse_modules(raw: Any) -> list[Module]:
    items = unwrap(raw, 'modules')
    if not isinstance(items, list):
        return []
    return [
        ModulePayload.model_validate(item).to_module(fallback_position=idx)
        for idx, item in enumerate(items)
    ]


def parse_module(raw: Any) -> Optional[Module]:
    data = _record(raw, 'module')
    return ModulePayload.model_validate(data).to_module() if data is not None else None
