"""Progress and log events, and the bus that carries them to a presenter.

The pipeline is the single producer and a sink is the single consumer. The
bus hands events over through a bounded FIFO queue drained by one consumer
thread, so delivery order equals emission order and the producer only blocks
when the buffer is full.
"""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional, Protocol, Union

logger = logging.getLogger(__name__)


class LogLevel(Enum):
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    SUCCESS = "success"


@dataclass(frozen=True)
class ProgressEvent:
    step_index: int
    total_steps: int
    fraction_complete: float
    message: str
    terminal: bool = False

    def __post_init__(self) -> None:
        if not 0.0 <= self.fraction_complete <= 1.0:
            raise ValueError(f"fraction_complete out of range: {self.fraction_complete}")


@dataclass(frozen=True)
class LogEvent:
    level: LogLevel
    message: str
    timestamp: datetime = field(default_factory=datetime.now)


Event = Union[ProgressEvent, LogEvent]


class EventSink(Protocol):
    def handle(self, event: Event) -> None: ...


class NullSink:
    """Discards everything; valid consumer for headless runs and tests."""

    def handle(self, event: Event) -> None:
        return None


class CollectingSink:
    """Keeps every event in memory, in delivery order."""

    def __init__(self) -> None:
        self.events: List[Event] = []

    def handle(self, event: Event) -> None:
        self.events.append(event)

    @property
    def logs(self) -> List[LogEvent]:
        return [e for e in self.events if isinstance(e, LogEvent)]

    @property
    def progress(self) -> List[ProgressEvent]:
        return [e for e in self.events if isinstance(e, ProgressEvent)]

    def messages(self, level: Optional[LogLevel] = None) -> List[str]:
        return [e.message for e in self.logs if level is None or e.level is level]


_PY_LEVELS = {
    LogLevel.DEBUG: logging.DEBUG,
    LogLevel.INFO: logging.INFO,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
    LogLevel.SUCCESS: logging.INFO,
}


class LoggingSink:
    """Forwards log events to stdlib logging; progress goes to DEBUG."""

    def __init__(self, logger_name: str = "cool_kit.events") -> None:
        self._logger = logging.getLogger(logger_name)

    def handle(self, event: Event) -> None:
        if isinstance(event, LogEvent):
            self._logger.log(_PY_LEVELS[event.level], event.message)
        else:
            self._logger.debug(
                "[%d/%d %3.0f%%] %s",
                event.step_index + 1,
                event.total_steps,
                event.fraction_complete * 100,
                event.message,
            )


_STOP = object()


class EventBus:
    """Ordered, buffered channel from the pipeline to a sink."""

    def __init__(self, sink: Optional[EventSink] = None, *, maxsize: int = 1024) -> None:
        self.sink: EventSink = sink or NullSink()
        self._queue: "queue.Queue[object]" = queue.Queue(maxsize=maxsize)
        self._consumer: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self._closed = False

    def __enter__(self) -> "EventBus":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def start(self) -> None:
        with self._lock:
            if self._consumer is not None or self._closed:
                return
            self._consumer = threading.Thread(
                target=self._drain, name="cool-kit-events", daemon=True
            )
            self._consumer.start()

    def emit(self, event: Event) -> None:
        if self._closed:
            raise RuntimeError("event bus is closed")
        self.start()
        self._queue.put(event)

    def log(self, level: LogLevel, message: str) -> None:
        self.emit(LogEvent(level=level, message=message))

    def flush(self) -> None:
        """Block until every event emitted so far has been handed to the sink."""
        if self._consumer is None:
            return
        self._queue.join()

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            consumer = self._consumer
        if consumer is None:
            return
        self._queue.put(_STOP)
        consumer.join()

    def _drain(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                try:
                    self.sink.handle(item)  # type: ignore[arg-type]
                except Exception:  # presenter bugs must not break the producer
                    logger.exception("Event sink failed to handle %r", item)
            finally:
                self._queue.task_done()
