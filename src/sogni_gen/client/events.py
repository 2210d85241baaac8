from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import Callable, ClassVar, Optional, Union


class EventKind(str, Enum):
    UNIT_COMPLETED = "unit-completed"
    JOB_FAILED = "job-failed"
    PROGRESS = "progress"


@dataclass(frozen=True)
class UnitCompleted:
    kind: ClassVar[EventKind] = EventKind.UNIT_COMPLETED
    correlation_id: str
    unit_index: int
    url: Optional[str]
    seed: Optional[int] = None


@dataclass(frozen=True)
class JobFailed:
    kind: ClassVar[EventKind] = EventKind.JOB_FAILED
    correlation_id: str
    error: str = "Job failed"


@dataclass(frozen=True)
class Progress:
    kind: ClassVar[EventKind] = EventKind.PROGRESS
    correlation_id: str
    percentage: float


ClientEvent = Union[UnitCompleted, JobFailed, Progress]
Listener = Callable[[ClientEvent], None]


class EventStream:
    """Lifecycle events of one client instance.

    Listeners are called synchronously, in registration order, on the thread
    that emits.
    """

    def __init__(self) -> None:
        self._listeners: dict[EventKind, list[Listener]] = defaultdict(list)

    def on(self, kind: EventKind, listener: Listener) -> None:
        self._listeners[kind].append(listener)

    def off(self, kind: EventKind, listener: Listener) -> None:
        listeners = self._listeners.get(kind)
        if listeners and listener in listeners:
            listeners.remove(listener)

    def emit(self, event: ClientEvent) -> None:
        for listener in list(self._listeners.get(event.kind, ())):
            listener(event)

    def listener_count(self, kind: Optional[EventKind] = None) -> int:
        if kind is not None:
            return len(self._listeners.get(kind, ()))
        return sum(len(v) for v in self._listeners.values())
