"""User-facing notices (the dashboard's toasts)."""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from ..logging_config import get_logger

logger = get_logger('notifier')


class NoticeLevel(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    INFO = "info"


@dataclass(frozen=True)
class Notice:
    level: NoticeLevel
    message: str


class Notifier(Protocol):
    def push(self, notice: Notice) -> None:
        ...


_LOG_LEVELS = {
    NoticeLevel.SUCCESS: logging.INFO,
    NoticeLevel.INFO: logging.INFO,
    NoticeLevel.ERROR: logging.WARNING,
}


class LogNotifier:
    """Writes notices to the application log."""

    def push(self, notice: Notice) -> None:
        logger.log(_LOG_LEVELS[notice.level], f"[{notice.level.value}] {notice.message}")


class RecordingNotifier(LogNotifier):
    """Keeps every notice so a UI (or a test) can read them back."""

    def __init__(self):
        self.notices: list[Notice] = []

    def push(self, notice: Notice) -> None:
        super().push(notice)
        self.notices.append(notice)

    @property
    def errors(self) -> list[str]:
        return [n.message for n in self.notices if n.level is NoticeLevel.ERROR]

    @property
    def last(self) -> Notice:
        return self.notices[-1]
