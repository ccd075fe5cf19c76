"""Ordered lifecycle event channel.

The run controller owns one :class:`EventChannel` per run.  Consumers (CLI
progress output, HTTP adapters, CI integrations) subscribe to it without
the engine knowing they exist.  Events are delivered in emission order and
kept in :attr:`EventChannel.history`.
"""

from __future__ import annotations

import inspect
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Literal, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from specrun.models import Phase, TaskStatus, utcnow
from specrun.utils.logging import get_logger

logger = get_logger("engine.events")


class EventKind(str, Enum):
    TASK_START = "taskStart"
    ACTION_COMPLETE = "actionComplete"
    TASK_COMPLETE = "taskComplete"
    ERROR = "error"


class _Event(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)

    sequence: int = 0
    timestamp: datetime = Field(default_factory=utcnow)


class TaskStartEvent(_Event):
    kind: Literal[EventKind.TASK_START] = EventKind.TASK_START
    task_id: str
    title: str = ""


class ActionCompleteEvent(_Event):
    kind: Literal[EventKind.ACTION_COMPLETE] = EventKind.ACTION_COMPLETE
    task_id: str
    action_id: str
    action_type: str
    phase: Phase
    success: bool
    duration_ms: float


class TaskCompleteEvent(_Event):
    kind: Literal[EventKind.TASK_COMPLETE] = EventKind.TASK_COMPLETE
    task_id: str
    status: TaskStatus


class ErrorEvent(_Event):
    kind: Literal[EventKind.ERROR] = EventKind.ERROR
    message: str
    source: str = "engine"
    task_id: str | None = None


EngineEvent = Union[TaskStartEvent, ActionCompleteEvent, TaskCompleteEvent, ErrorEvent]
Listener = Callable[[EngineEvent], Union[None, Awaitable[None]]]


class EventChannel:
    """Fan-out of engine events to subscribed listeners.

    Listeners may be plain functions or coroutines.  A listener that raises
    is logged and skipped; it never interrupts the run.
    """

    def __init__(self) -> None:
        self._listeners: list[tuple[EventKind | None, Listener]] = []
        self.history: list[EngineEvent] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, kind: EventKind | str | None, callback: Listener) -> Callable[[], None]:
        """Register *callback* for *kind* (``None`` for every event).

        Returns a function that removes the subscription.
        """
        entry = (EventKind(kind) if kind is not None else None, callback)
        self._listeners.append(entry)

        def unsubscribe() -> None:
            if entry in self._listeners:
                self._listeners.remove(entry)

        return unsubscribe

    async def emit(self, event: EngineEvent) -> EngineEvent:
        """Stamp *event* with its sequence number and deliver it."""
        if self._closed:
            logger.warning("event_after_close", kind=event.kind.value)
            return event

        event = event.model_copy(update={"sequence": len(self.history) + 1})
        self.history.append(event)

        for kind, callback in list(self._listeners):
            if kind is not None and kind != event.kind:
                continue
            try:
                outcome: Any = callback(event)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:
                logger.exception("event_listener_error", kind=event.kind.value)
        return event

    async def error(self, message: str, source: str = "engine", task_id: str | None = None) -> None:
        await self.emit(ErrorEvent(message=message, source=source, task_id=task_id))

    def of_kind(self, kind: EventKind | str) -> list[EngineEvent]:
        kind = EventKind(kind)
        return [e for e in self.history if e.kind == kind]

    def close(self) -> None:
        self._listeners.clear()
        self._closed = True
