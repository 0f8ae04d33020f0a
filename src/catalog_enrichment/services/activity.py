"""Activity loggers: observational progress reporting for research runs.

An activity logger never influences control flow.  Every call site treats
it as fire-and-forget, so ``NullActivityLogger`` is always a safe choice.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActivityEvent:
    """One recorded activity call."""

    kind: str  # "start" | "progress" | "complete" | "fail"
    operation_id: str
    operation_type: str = ""
    title: str = ""
    message: str = ""
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


class ActivityLogger(ABC):
    """Observer of long-running research operations."""

    @abstractmethod
    def start_operation(
        self,
        item_id: str,
        operation_type: str,
        title: str,
        data: dict[str, Any] | None = None,
    ) -> str:
        """Begin an operation and return its id."""

    @abstractmethod
    def emit_progress(
        self, operation_id: str, message: str, data: dict[str, Any] | None = None
    ) -> None: ...

    @abstractmethod
    def complete_operation(
        self, operation_id: str, title: str, data: dict[str, Any] | None = None
    ) -> None: ...

    @abstractmethod
    def fail_operation(self, operation_id: str, error: str) -> None: ...


class NullActivityLogger(ActivityLogger):
    def start_operation(
        self,
        item_id: str,
        operation_type: str,
        title: str,
        data: dict[str, Any] | None = None,
    ) -> str:
        return str(uuid.uuid4())

    def emit_progress(
        self, operation_id: str, message: str, data: dict[str, Any] | None = None
    ) -> None:
        return None

    def complete_operation(
        self, operation_id: str, title: str, data: dict[str, Any] | None = None
    ) -> None:
        return None

    def fail_operation(self, operation_id: str, error: str) -> None:
        return None


class LoggingActivityLogger(ActivityLogger):
    """Forward activity to the ``logging`` module."""

    def __init__(self, level: int = logging.INFO) -> None:
        self._level = level

    def start_operation(
        self,
        item_id: str,
        operation_type: str,
        title: str,
        data: dict[str, Any] | None = None,
    ) -> str:
        operation_id = str(uuid.uuid4())
        logger.log(
            self._level,
            "[%s] %s started: %s (item=%s)",
            operation_id[:8],
            operation_type,
            title,
            item_id,
        )
        return operation_id

    def emit_progress(
        self, operation_id: str, message: str, data: dict[str, Any] | None = None
    ) -> None:
        logger.log(self._level, "[%s] %s", operation_id[:8], message)

    def complete_operation(
        self, operation_id: str, title: str, data: dict[str, Any] | None = None
    ) -> None:
        logger.log(self._level, "[%s] completed: %s", operation_id[:8], title)

    def fail_operation(self, operation_id: str, error: str) -> None:
        logger.warning("[%s] failed: %s", operation_id[:8], error)


class RecordingActivityLogger(ActivityLogger):
    """Keep every activity call in memory, for tests and debugging.

    Thread-safe: the parallel phases report from worker threads.
    """

    def __init__(self) -> None:
        self._events: list[ActivityEvent] = []
        self._types: dict[str, str] = {}
        self._lock = threading.Lock()

    def start_operation(
        self,
        item_id: str,
        operation_type: str,
        title: str,
        data: dict[str, Any] | None = None,
    ) -> str:
        operation_id = str(uuid.uuid4())
        payload = dict(data or {})
        payload.setdefault("item_id", item_id)
        with self._lock:
            self._types[operation_id] = operation_type
            self._events.append(
                ActivityEvent("start", operation_id, operation_type, title=title, data=payload)
            )
        return operation_id

    def emit_progress(
        self, operation_id: str, message: str, data: dict[str, Any] | None = None
    ) -> None:
        self._append("progress", operation_id, message=message, data=dict(data or {}))

    def complete_operation(
        self, operation_id: str, title: str, data: dict[str, Any] | None = None
    ) -> None:
        self._append("complete", operation_id, title=title, data=dict(data or {}))

    def fail_operation(self, operation_id: str, error: str) -> None:
        self._append("fail", operation_id, message=error)

    @property
    def events(self) -> list[ActivityEvent]:
        with self._lock:
            return list(self._events)

    def operations(self, operation_type: str) -> list[ActivityEvent]:
        """Start events of the given *operation_type*."""
        return [
            e for e in self.events
            if e.kind == "start" and e.operation_type == operation_type
        ]

    def _append(self, kind: str, operation_id: str, **kwargs: Any) -> None:
        with self._lock:
            op_type = self._types.get(operation_id, "")
            self._events.append(ActivityEvent(kind, operation_id, op_type, **kwargs))
