"""Logging configuration for the Lesson Sequencer.

Records can carry the sequencer context: the course being edited, the
operation and the lessons it touched. The console format appends that
context to the message; the JSON file format emits it as fields.

    log = bind(get_logger('reconciler'), course_id="course-1")
    log.info("Reorder applied", extra={'operation': 'reorder', 'lesson_ids': ["L3", "L1"]})
"""

import json
import logging
import logging.handlers
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Optional, TextIO, Union

if TYPE_CHECKING:
    from .config import LoggingConfig

ROOT_LOGGER_NAME = 'lesson_sequencer'

# Record attributes set through ``extra``
CONTEXT_FIELDS = ('course_id', 'operation', 'lesson_ids', 'status_code')

AnyLogger = Union[logging.Logger, logging.LoggerAdapter]


def record_context(record: logging.LogRecord) -> dict:
    """The context fields present on ``record``."""
    context = {}
    for name in CONTEXT_FIELDS:
        value = getattr(record, name, None)
        if value is not None:
            context[name] = list(value) if name == 'lesson_ids' else value
    return context


class JsonFormatter(logging.Formatter):
    """One JSON object per line, context fields included."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            'timestamp': datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            **record_context(record),
        }
        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)
        return json.dumps(log_data, default=str)


class ContextFormatter(logging.Formatter):
    """Text formatter that appends ``[course_id=... lessons=L1,L2]``."""

    def formatMessage(self, record: logging.LogRecord) -> str:
        line = super().formatMessage(record)
        context = record_context(record)
        if not context:
            return line
        lesson_ids = context.pop('lesson_ids', None)
        parts = [f"{name}={value}" for name, value in context.items()]
        if lesson_ids:
            parts.append(f"lessons={','.join(lesson_ids)}")
        return f"{line} [{' '.join(parts)}]"


class ContextAdapter(logging.LoggerAdapter):
    """Adds bound context to every record; per-call ``extra`` wins."""

    def process(self, msg, kwargs):
        kwargs['extra'] = {**self.extra, **(kwargs.get('extra') or {})}
        return msg, kwargs


def setup_logging(
    settings: 'LoggingConfig',
    level: Optional[str] = None,
    stream: Optional[TextIO] = None,
) -> logging.Logger:
    """Configure the package logger from the ``logging`` config section.

    Args:
        settings: Logging section of the loaded config
        level: Replaces ``settings.level`` (the CLI's --verbose)
        stream: Console stream, stderr by default so command output stays clean

    Returns:
        Root logger for the application
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(getattr(logging, (level or settings.level).upper()))
    logger.handlers.clear()

    console_handler = logging.StreamHandler(stream or sys.stderr)
    console_handler.setFormatter(ContextFormatter(
        "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s", datefmt='%H:%M:%S'))
    logger.addHandler(console_handler)

    if settings.file:
        log_path = Path(settings.file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            log_path,
            maxBytes=settings.max_bytes,
            backupCount=settings.backup_count,
            encoding='utf-8'
        )
        if settings.json_format:
            file_handler.setFormatter(JsonFormatter())
        else:
            file_handler.setFormatter(ContextFormatter(
                "%(asctime)s | %(levelname)-8s | %(name)s | %(module)s:%(lineno)d | %(message)s"))
        logger.addHandler(file_handler)

    logger.propagate = False
    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a child logger, e.g. ``get_logger('store')``."""
    return logging.getLogger(f'{ROOT_LOGGER_NAME}.{name}')


def bind(logger: AnyLogger, **context) -> ContextAdapter:
    """Wrap ``logger`` so every record carries ``context``."""
    if isinstance(logger, ContextAdapter):
        context = {**logger.extra, **context}
        logger = logger.logger
    return ContextAdapter(logger, context)


def log_exception(logger: AnyLogger, exc: Exception,
                  message: str = "An error occurred",
                  level: int = logging.ERROR, **context) -> None:
    """Log an exception with its backend operation and status code.

    Args:
        logger: Logger or bound adapter
        exc: Exception to log
        message: Custom message prefix
        level: Log level (default ERROR)
        **context: Further context fields, e.g. ``lesson_ids``
    """
    extra = {
        'operation': getattr(exc, 'operation', None),
        'status_code': getattr(exc, 'status_code', None),
        **context,
    }
    logger.log(level, f"{message}: {exc}", exc_info=exc, extra=extra)
