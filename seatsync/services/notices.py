"""
User-visible notices.

The data layer never renders anything; it hands Notice objects to a sink
supplied by the UI collaborator. The default sink writes them to the log.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from loguru import logger

from seatsync.services.errors import ErrorType
from seatsync.services.results import ApiResult


class NoticeLevel(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class NoticeKind(str, Enum):
    FALLBACK_SUCCEEDED = "fallback_succeeded"
    REQUEST_FAILED = "request_failed"
    QUEUED_OFFLINE = "queued_offline"
    CONNECTION_LOST = "connection_lost"
    CONNECTION_RESTORED = "connection_restored"
    RECONNECT_FAILED = "reconnect_failed"


@dataclass(frozen=True)
class Notice:
    """A message for the user, blocking or not."""

    kind: NoticeKind
    level: NoticeLevel
    title: str
    message: str
    blocking: bool = False
    duration: float | None = 5.0  # seconds on screen; None = persistent
    context: dict[str, Any] = field(default_factory=dict)


class NoticeSink(Protocol):
    def notify(self, notice: Notice) -> None: ...


class LoggingNoticeSink:
    """Writes notices to the log."""

    _LEVELS = {
        NoticeLevel.INFO: "INFO",
        NoticeLevel.SUCCESS: "SUCCESS",
        NoticeLevel.WARNING: "WARNING",
        NoticeLevel.ERROR: "ERROR",
    }

    def notify(self, notice: Notice) -> None:
        logger.log(
            self._LEVELS[notice.level],
            f"[Notice:{notice.kind.value}] {notice.title}: {notice.message}",
        )


def notice_for_result(result: ApiResult, exhausted: bool = False) -> Notice | None:
    """
    Build the notice for a failed result.

    Offline results get an optimistic "queued" notice. Failures after both
    backends were exhausted are blocking; everything else is not.
    """
    if result.success:
        return None

    error_type = result.resolved_error_type
    message = result.error or "Unknown error"

    if result.offline or error_type in (ErrorType.OFFLINE, ErrorType.OFFLINE_DELEGATE):
        queued = error_type == ErrorType.OFFLINE_DELEGATE
        return Notice(
            kind=NoticeKind.QUEUED_OFFLINE,
            level=NoticeLevel.INFO,
            title="Offline",
            message=(
                "Saved on this device, will sync when the connection returns"
                if queued
                else "You are offline; showing the last known data"
            ),
            context={"operation_id": result.operation_id},
        )

    title, level = _TITLES.get(error_type, ("Database connection error", NoticeLevel.ERROR))
    if exhausted:
        return Notice(
            kind=NoticeKind.REQUEST_FAILED,
            level=NoticeLevel.ERROR,
            title=title,
            message=message,
            blocking=True,
            duration=None,
        )
    return Notice(
        kind=NoticeKind.REQUEST_FAILED,
        level=level,
        title=title,
        message=message,
        duration=8.0,
    )


_TITLES = {
    ErrorType.NETWORK_ERROR: ("Network error", NoticeLevel.WARNING),
    ErrorType.TIMEOUT: ("Request timed out", NoticeLevel.WARNING),
    ErrorType.FETCH_ERROR: ("Server communication error", NoticeLevel.ERROR),
    ErrorType.CORS_ERROR: ("Security error", NoticeLevel.ERROR),
    ErrorType.CIRCUIT_OPEN: ("Service temporarily unavailable", NoticeLevel.WARNING),
    ErrorType.RATE_LIMITED: ("Too many requests", NoticeLevel.WARNING),
    ErrorType.SERVER_ERROR: ("Server error", NoticeLevel.ERROR),
    ErrorType.VALIDATION: ("Request rejected", NoticeLevel.ERROR),
    ErrorType.AUTH: ("Not authorized", NoticeLevel.ERROR),
}
