"""Progress events emitted by the deployment core.

The core never prints. It hands ``ProgressEvent`` objects to a reporter
callable, which the CLI renders and tests record.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class EventLevel(str, Enum):
    """Severity of a progress event."""

    STEP = "step"
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class ProgressEvent:
    """A single progress notification.

    Attributes:
        stage: Deployment step the event belongs to (e.g. ``upload``)
        message: Human-readable text
        level: Severity
        current: Items completed so far, for counted stages
        total: Items expected, for counted stages
        data: Extra structured fields
    """

    stage: str
    message: str
    level: EventLevel = EventLevel.INFO
    current: int | None = None
    total: int | None = None
    data: dict[str, Any] = field(default_factory=dict)


Reporter = Callable[[ProgressEvent], None]


def null_reporter(event: ProgressEvent) -> None:
    """Reporter that discards every event."""


class EventRecorder:
    """Reporter that keeps every event, used by tests and JSON output."""

    def __init__(self) -> None:
        self.events: list[ProgressEvent] = []

    def __call__(self, event: ProgressEvent) -> None:
        self.events.append(event)

    def stages(self) -> list[str]:
        return [e.stage for e in self.events]

    def of_level(self, level: EventLevel) -> list[ProgressEvent]:
        return [e for e in self.events if e.level == level]

    @property
    def warnings(self) -> list[ProgressEvent]:
        return self.of_level(EventLevel.WARNING)


class Emitter:
    """Convenience wrapper binding a reporter to a stage."""

    def __init__(self, reporter: Reporter | None, stage: str) -> None:
        self._reporter = reporter or null_reporter
        self.stage = stage

    def emit(
        self, message: str, level: EventLevel = EventLevel.INFO, **kwargs: Any
    ) -> None:
        self._reporter(ProgressEvent(self.stage, message, level, **kwargs))

    def step(self, message: str, **kwargs: Any) -> None:
        self.emit(message, EventLevel.STEP, **kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        self.emit(message, EventLevel.INFO, **kwargs)

    def success(self, message: str, **kwargs: Any) -> None:
        self.emit(message, EventLevel.SUCCESS, **kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self.emit(message, EventLevel.WARNING, **kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        self.emit(message, EventLevel.ERROR, **kwargs)
