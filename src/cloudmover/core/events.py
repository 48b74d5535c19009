"""Job lifecycle events.

This module provides:
- JobEvent: Typed event published by the worker
- Pydantic payload models describing the camelCase wire form of each event
- EventBus: Thread-safe publish/subscribe hub
- EventChannel: Bounded queue subscriber for pull-based consumers
"""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)


class EventName(str, Enum):
    """Names of the events published on the bus."""

    PROGRESS = "progress"
    COMPLETED = "completed"
    FAILED = "failed"
    RETRY = "retry"
    CANCELLED = "cancelled"


# === Wire payloads ===


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ProgressPayload(_WireModel):
    """Progress of a running job."""

    job_id: str
    user_id: str
    completed: int
    total: int
    pct: int


class CompletedPayload(_WireModel):
    """Job finished successfully."""

    job_id: str
    user_id: str
    result: dict[str, Any]


class FailedPayload(_WireModel):
    """Job failed permanently."""

    job_id: str
    user_id: str
    error: str
    reconnect_required: bool = False


class RetryPayload(_WireModel):
    """Job went back to pending with a backoff delay."""

    job_id: str
    user_id: str
    attempts: int
    next_run_at: datetime


class CancelledPayload(_WireModel):
    """Job was cancelled on user request."""

    job_id: str
    user_id: str


PAYLOAD_MODELS: dict[EventName, type[_WireModel]] = {
    EventName.PROGRESS: ProgressPayload,
    EventName.COMPLETED: CompletedPayload,
    EventName.FAILED: FailedPayload,
    EventName.RETRY: RetryPayload,
    EventName.CANCELLED: CancelledPayload,
}


@dataclass
class JobEvent:
    """An event about one job.

    Attributes:
        name: Event name.
        job_id: Job the event is about.
        user_id: Owner of the job.
        payload: Event specific fields in snake_case.
    """

    name: EventName
    job_id: str
    user_id: str
    payload: dict[str, Any] = field(default_factory=dict)

    def to_wire(self) -> dict[str, Any]:
        """Serialize to the camelCase dict sent to clients."""
        model = PAYLOAD_MODELS[self.name](job_id=self.job_id, user_id=self.user_id, **self.payload)
        return model.model_dump(mode="json", by_alias=True)


Subscriber = Callable[[JobEvent], None]


class EventBus:
    """Thread-safe publish/subscribe hub for job events.

    Subscribers run synchronously on the publishing thread. A subscriber that
    raises is logged and does not prevent delivery to the others.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: list[tuple[Subscriber, frozenset[EventName] | None]] = []

    def subscribe(
        self,
        callback: Subscriber,
        names: list[EventName] | None = None,
    ) -> Callable[[], None]:
        """Register a subscriber.

        Args:
            callback: Called with every matching event.
            names: Event names to receive. All events when None.

        Returns:
            A function that removes the subscription.
        """
        entry = (callback, frozenset(names) if names else None)
        with self._lock:
            self._subscribers.append(entry)

        def unsubscribe() -> None:
            with self._lock:
                if entry in self._subscribers:
                    self._subscribers.remove(entry)

        return unsubscribe

    def publish(self, event: JobEvent) -> None:
        """Deliver an event to every matching subscriber."""
        with self._lock:
            subscribers = list(self._subscribers)
        for callback, names in subscribers:
            if names is not None and event.name not in names:
                continue
            try:
                callback(event)
            except Exception:
                logger.exception("Event subscriber failed for %s on job %s", event.name.value, event.job_id)

    def emit(self, name: EventName, job_id: str, user_id: str, **payload: Any) -> None:
        """Build and publish an event."""
        self.publish(JobEvent(name=name, job_id=job_id, user_id=user_id, payload=payload))

    @property
    def subscriber_count(self) -> int:
        """Get number of registered subscribers."""
        with self._lock:
            return len(self._subscribers)


class EventChannel:
    """Bounded queue fed by an EventBus subscription.

    When the queue is full the oldest event is dropped so publishers never
    block on a slow consumer.

    Usage:
        channel = EventChannel(bus, maxsize=100)
        event = channel.get(timeout=1.0)
        channel.close()
    """

    def __init__(
        self,
        bus: EventBus,
        maxsize: int = 1000,
        names: list[EventName] | None = None,
    ) -> None:
        self._queue: queue.Queue[JobEvent] = queue.Queue(maxsize=maxsize)
        self._dropped = 0
        self._unsubscribe = bus.subscribe(self._put, names)

    def _put(self, event: JobEvent) -> None:
        while True:
            try:
                self._queue.put_nowait(event)
                return
            except queue.Full:
                try:
                    self._queue.get_nowait()
                    self._dropped += 1
                except queue.Empty:
                    pass

    def get(self, timeout: float | None = None) -> JobEvent | None:
        """Pop the next event, or None when nothing arrived within timeout."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> list[JobEvent]:
        """Pop every queued event without blocking."""
        events = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except queue.Empty:
                return events

    @property
    def dropped(self) -> int:
        """Get number of events discarded because the queue was full."""
        return self._dropped

    def close(self) -> None:
        """Stop receiving events."""
        self._unsubscribe()
