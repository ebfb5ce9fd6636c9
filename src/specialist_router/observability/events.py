"""In-process publish/subscribe for router events.

Subscribers run synchronously on the publishing thread, in subscription order.
A failing subscriber is recorded as a ``DispatchError`` and never stops the
remaining subscribers or the publisher. The last ``buffer_size`` events stay
available through ``replay``.
"""

from __future__ import annotations

import itertools
import threading
from collections import deque
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Final

from specialist_router.domain.events import EventType, JSONValue, RouterEvent, redact_sensitive

Subscriber = Callable[[RouterEvent], object]

_ERROR_HISTORY: Final[int] = 1024


@dataclass(frozen=True, slots=True)
class DispatchError:
    event_id: str
    target: str
    error_type: str
    message: str


class EventBus:
    def __init__(self, *, buffer_size: int = 512) -> None:
        if isinstance(buffer_size, bool) or not isinstance(buffer_size, int):
            raise ValueError(f"buffer_size must be an integer, got {type(buffer_size).__name__}")
        if buffer_size < 1:
            raise ValueError("buffer_size must be > 0")

        self._lock = threading.RLock()
        self._tokens = itertools.count(1)
        # token -> (event type filter, callback); dicts keep insertion order
        self._subscribers: dict[int, tuple[EventType | None, Subscriber]] = {}
        self._history: deque[RouterEvent] = deque(maxlen=buffer_size)
        self._errors: deque[DispatchError] = deque(maxlen=_ERROR_HISTORY)

    def subscribe(self, event_type: str | EventType | None, callback: Subscriber) -> int:
        """Register ``callback`` for one event type, or every type when ``None``.

        Returns a token for ``unsubscribe``.
        """

        if not callable(callback):
            raise ValueError("callback must be callable")
        wanted = None if event_type is None else _as_event_type(event_type)
        with self._lock:
            token = next(self._tokens)
            self._subscribers[token] = (wanted, callback)
        return token

    def unsubscribe(self, token: int) -> bool:
        with self._lock:
            return self._subscribers.pop(token, None) is not None

    def publish(self, event: RouterEvent) -> tuple[DispatchError, ...]:
        if not isinstance(event, RouterEvent):
            raise ValueError(f"event must be RouterEvent, got {type(event).__name__}")
        with self._lock:
            self._history.append(event)
            targets = [
                callback
                for wanted, callback in self._subscribers.values()
                if wanted is None or wanted is event.event_type
            ]

        failures = tuple(
            failure
            for failure in (_deliver(callback, event) for callback in targets)
            if failure is not None
        )
        if failures:
            with self._lock:
                self._errors.extend(failures)
        return failures

    def emit(
        self,
        event_type: str | EventType,
        payload: Mapping[str, JSONValue],
        *,
        correlation_id: str | None = None,
    ) -> tuple[RouterEvent, tuple[DispatchError, ...]]:
        """Build an event, mask secret-looking payload keys, then publish it."""

        event = redact_sensitive(
            RouterEvent.create(
                _as_event_type(event_type), dict(payload), correlation_id=correlation_id
            )
        )
        return event, self.publish(event)

    def replay(
        self,
        *,
        event_type: str | EventType | None = None,
        correlation_id: str | None = None,
        limit: int | None = None,
    ) -> tuple[RouterEvent, ...]:
        """Buffered events, oldest first; ``limit`` keeps the newest matches."""

        wanted = None if event_type is None else _as_event_type(event_type)
        with self._lock:
            history = list(self._history)

        matches = [
            event
            for event in history
            if (wanted is None or event.event_type is wanted)
            and (correlation_id is None or event.correlation_id == correlation_id)
        ]
        if limit is None:
            return tuple(matches)
        if isinstance(limit, bool) or not isinstance(limit, int):
            raise ValueError(f"limit must be an integer, got {type(limit).__name__}")
        return tuple(matches[-limit:]) if limit > 0 else ()

    def dispatch_errors(self) -> tuple[DispatchError, ...]:
        with self._lock:
            return tuple(self._errors)


def _deliver(callback: Subscriber, event: RouterEvent) -> DispatchError | None:
    try:
        callback(event)
    except Exception as exc:  # noqa: BLE001
        name = getattr(callback, "__qualname__", None) or type(callback).__name__
        return DispatchError(
            event_id=event.event_id,
            target=str(name),
            error_type=type(exc).__name__,
            message=str(exc),
        )
    return None


def _as_event_type(value: str | EventType) -> EventType:
    try:
        return EventType(value)
    except ValueError as exc:
        allowed = ", ".join(member.value for member in EventType)
        raise ValueError(f"unsupported event type {value!r}; allowed: {allowed}") from exc


__all__ = ["DispatchError", "EventBus", "Subscriber"]
