"""Course API backend over HTTP (httpx)."""

from typing import Any, Callable, Mapping, Optional, Sequence

import httpx
from pydantic import ValidationError as PydanticValidationError

from ..config import Config
from ..exceptions import BackendError, BackendUnavailableError
from ..logging_config import get_logger
from ..models import ExportFormat, Lesson, LessonStatus, MediaUpload, Module
from .backend import BatchOutcome, UploadResult
from .schemas import (
    UploadPayload,
    parse_lesson,
    parse_lessons,
    parse_module,
    parse_modules,
    unwrap,
)

logger = get_logger('api.http')


def _error_message(response: httpx.Response) -> Optional[str]:
    """Pull the human readable message out of an error response."""
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or None
    if isinstance(body, dict):
        message = body.get('message') or body.get('error')
        if isinstance(message, list):
            message = "; ".join(str(m) for m in message)
        return message
    return None


def _retry_after(response: httpx.Response) -> Optional[float]:
    value = response.headers.get('Retry-After')
    try:
        return float(value) if value else None
    except ValueError:
        return None


def parse_response(operation: str, parser: Callable[[Any], Any], raw: Any) -> Any:
    """Run a schema parser over a response body.

    A body that is present but does not fit the schema is a backend fault.
    """
    try:
        return parser(raw)
    except PydanticValidationError as e:
        first = e.errors()[0]
        loc = ".".join(str(part) for part in first.get('loc', ()))
        raise BackendError(operation, reason=f"unexpected response ({loc}: {first.get('msg')})") from e


def parse_batch_outcome(operation: str, raw: Any) -> BatchOutcome:
    """Interpret a bulk response.

    ``{"results": [{"id", "success", "error"}]}`` gives per-item outcomes.
    A count-only summary with failures cannot say which items failed, so the
    whole batch is reported as failed rather than assuming partial success.
    """
    data = unwrap(raw)
    if isinstance(data, dict) and isinstance(data.get('results'), list):
        outcome = {}
        for entry in data['results']:
            lesson_id = str(entry.get('id') or entry.get('_id'))
            if entry.get('success', entry.get('error') is None):
                outcome[lesson_id] = None
            else:
                outcome[lesson_id] = entry.get('error') or "failed"
        return outcome
    if isinstance(data, dict) and data.get('failed'):
        errors = data.get('errors') or []
        reason = "; ".join(str(e) for e in errors) or f"{data['failed']} item(s) failed"
        raise BackendError(operation, reason=reason)
    return None


class HttpCourseBackend:
    """CourseBackend implementation for the dashboard's REST API.

    Usage:
        async with HttpCourseBackend.from_config(config) as backend:
            lessons = await backend.list_lessons(course_id)
    """

    def __init__(
        self,
        base_url: str,
        api_token: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        headers = {'Accept': 'application/json'}
        if api_token:
            headers['Authorization'] = f"Bearer {api_token}"
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip('/'),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_config(cls, config: Config, **kwargs) -> 'HttpCourseBackend':
        return cls(
            base_url=config.backend.base_url,
            api_token=config.require_api_token(),
            timeout=config.backend.timeout_seconds,
            **kwargs
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()
        return False

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, operation: str, method: str, url: str, **kwargs) -> httpx.Response:
        """Send a request, mapping failures onto the backend error types."""
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise BackendUnavailableError(operation, reason="request timed out") from e
        except httpx.TransportError as e:
            raise BackendUnavailableError(operation, reason=str(e) or type(e).__name__) from e

        if response.status_code == 429 or response.status_code >= 500:
            raise BackendUnavailableError(
                operation,
                reason=_error_message(response),
                status_code=response.status_code,
                retry_after=_retry_after(response),
            )
        if response.is_error:
            raise BackendError(
                operation,
                reason=_error_message(response),
                status_code=response.status_code,
            )

        logger.debug(f"{method} {url} -> {response.status_code}")
        return response

    async def _json(self, operation: str, method: str, url: str, **kwargs) -> Any:
        response = await self._request(operation, method, url, **kwargs)
        if not response.content:
            return None
        return response.json()

    # ==================== LESSONS ====================

    async def list_lessons(self, course_id: str) -> list[Lesson]:
        raw = await self._json('list_lessons', 'GET', f"/courses/{course_id}/lessons")
        return parse_response('list_lessons', parse_lessons, raw)

    async def create_lesson(self, course_id: str, fields: Mapping[str, Any]) -> Optional[Lesson]:
        raw = await self._json('create_lesson', 'POST', f"/courses/{course_id}/lessons", json=dict(fields))
        return parse_response('create_lesson', parse_lesson, raw)

    async def update_lesson(self, lesson_id: str, fields: Mapping[str, Any]) -> Optional[Lesson]:
        raw = await self._json('update_lesson', 'PATCH', f"/lessons/{lesson_id}", json=dict(fields))
        return parse_response('update_lesson', parse_lesson, raw)

    async def delete_lesson(self, lesson_id: str) -> None:
        await self._request('delete_lesson', 'DELETE', f"/lessons/{lesson_id}")

    async def duplicate_lesson(self, lesson_id: str) -> Optional[Lesson]:
        raw = await self._json('duplicate_lesson', 'POST', f"/lessons/{lesson_id}/duplicate")
        return parse_response('duplicate_lesson', parse_lesson, raw)

    async def reorder_lessons(
        self,
        course_id: str,
        ordered_ids: Sequence[str],
        module_id: Optional[str] = None,
    ) -> None:
        body: dict[str, Any] = {'lessonIds': list(ordered_ids)}
        if module_id:
            body['moduleId'] = module_id
        await self._request('reorder_lessons', 'PATCH', f"/courses/{course_id}/lessons/reorder", json=body)

    # ==================== BULK ====================

    async def bulk_update_status(self, lesson_ids: Sequence[str], status: LessonStatus) -> BatchOutcome:
        raw = await self._json(
            'bulk_update_status', 'PATCH', "/lessons/bulk/status",
            json={'ids': list(lesson_ids), 'status': status.value},
        )
        return parse_batch_outcome('bulk_update_status', raw)

    async def bulk_delete(self, lesson_ids: Sequence[str]) -> BatchOutcome:
        raw = await self._json('bulk_delete', 'POST', "/lessons/bulk/delete", json={'ids': list(lesson_ids)})
        return parse_batch_outcome('bulk_delete', raw)

    async def bulk_export(self, lesson_ids: Sequence[str], export_format: ExportFormat) -> bytes:
        response = await self._request(
            'bulk_export', 'POST', "/lessons/bulk/export",
            json={'ids': list(lesson_ids), 'format': export_format.value},
        )
        return response.content

    # ==================== MODULES ====================

    async def list_modules(self, course_id: str) -> list[Module]:
        raw = await self._json('list_modules', 'GET', "/modules", params={'courseId': course_id, 'limit': 100})
        return parse_response('list_modules', parse_modules, raw)

    async def create_module(self, course_id: str, fields: Mapping[str, Any]) -> Optional[Module]:
        raw = await self._json('create_module', 'POST', "/modules", json={**fields, 'course': course_id})
        return parse_response('create_module', parse_module, raw)

    async def update_module(self, module_id: str, fields: Mapping[str, Any]) -> Optional[Module]:
        raw = await self._json('update_module', 'PATCH', f"/modules/{module_id}", json=dict(fields))
        return parse_response('update_module', parse_module, raw)

    async def delete_module(self, module_id: str) -> None:
        await self._request('delete_module', 'DELETE', f"/modules/{module_id}")

    async def reorder_modules(self, course_id: str, ordered_ids: Sequence[str]) -> None:
        await self._request(
            'reorder_modules', 'PATCH', f"/courses/{course_id}/modules/reorder",
            json={'moduleIds': list(ordered_ids)},
        )

    # ==================== UPLOADS ====================

    async def upload_media(self, upload: MediaUpload, media_type: str) -> UploadResult:
        raw = await self._json(
            'upload_media', 'POST', "/uploads/upload",
            files={'file': (upload.filename, upload.content, upload.content_type)},
            data={'type': media_type},
        )
        payload = parse_response('upload_media', UploadPayload.from_response, raw)
        return UploadResult(url=payload.url, duration=payload.duration)
