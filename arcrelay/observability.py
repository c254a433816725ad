"""Structured status reporting injected into the session components."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Protocol, Tuple

logger = logging.getLogger(__name__)


class Observer(Protocol):
    """Receives level, message and structured fields."""

    def event(self, level: int, message: str, **fields: Any) -> None: ...

    def error(self, message: str, exc: BaseException, **fields: Any) -> None: ...


def format_fields(fields: Dict[str, Any]) -> str:
    return " ".join(f"{key}={value}" for key, value in fields.items())


class LoggingObserver:
    """Forwards events to :mod:`logging`."""

    def __init__(self, log: Optional[logging.Logger] = None) -> None:
        self._log = log or logger

    def event(self, level: int, message: str, **fields: Any) -> None:
        if fields:
            self._log.log(level, "%s | %s", message, format_fields(fields))
        else:
            self._log.log(level, message)

    def error(self, message: str, exc: BaseException, **fields: Any) -> None:
        fields = {"error": type(exc).__name__, **fields}
        self._log.warning(
            "%s: %s | %s",
            message,
            exc,
            format_fields(fields),
            exc_info=(type(exc), exc, exc.__traceback__),
        )


class RecordingObserver:
    """Keeps events in memory, e.g. for tests or a status endpoint."""

    def __init__(self) -> None:
        self.events: List[Tuple[int, str, Dict[str, Any]]] = []
        self.errors: List[Tuple[str, BaseException, Dict[str, Any]]] = []

    def event(self, level: int, message: str, **fields: Any) -> None:
        self.events.append((level, message, fields))

    def error(self, message: str, exc: BaseException, **fields: Any) -> None:
        self.errors.append((message, exc, fields))

    def messages(self) -> List[str]:
        return [message for _, message, _ in self.events]
