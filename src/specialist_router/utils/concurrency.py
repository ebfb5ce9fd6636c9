"""Thread concurrency primitives for the shared registry and per-task handoff state."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator


class ReadWriteLock:
    """Readers-writer lock that prefers writers.

    Any number of readers may hold the shared side at once. A writer waits for
    active readers to drain and blocks new readers while it is queued, so a
    hot-reload cannot be starved by a steady stream of classifications.
    """

    def __init__(self) -> None:
        self._condition = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer_active = False
        self._writers_waiting = 0

    def acquire_read(self) -> None:
        with self._condition:
            while self._writer_active or self._writers_waiting:
                self._condition.wait()
            self._readers += 1

    def release_read(self) -> None:
        with self._condition:
            if self._readers <= 0:
                raise RuntimeError("release_read called without a matching acquire_read")
            self._readers -= 1
            if self._readers == 0:
                self._condition.notify_all()

    def acquire_write(self) -> None:
        with self._condition:
            self._writers_waiting += 1
            try:
                while self._writer_active or self._readers:
                    self._condition.wait()
            finally:
                self._writers_waiting -= 1
            self._writer_active = True

    def release_write(self) -> None:
        with self._condition:
            if not self._writer_active:
                raise RuntimeError("release_write called without a matching acquire_write")
            self._writer_active = False
            self._condition.notify_all()

    @contextmanager
    def read_locked(self) -> Iterator[None]:
        self.acquire_read()
        try:
            yield
        finally:
            self.release_read()

    @contextmanager
    def write_locked(self) -> Iterator[None]:
        self.acquire_write()
        try:
            yield
        finally:
            self.release_write()

    def snapshot(self) -> dict[str, int | bool]:
        with self._condition:
            return {
                "readers": self._readers,
                "writer_active": self._writer_active,
                "writers_waiting": self._writers_waiting,
            }


class KeyedTryLock:
    """Per-key non-blocking locks; ``hold`` yields ``False`` when the key is busy."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._held: set[str] = set()

    @contextmanager
    def hold(self, key: str) -> Iterator[bool]:
        with self._guard:
            if key in self._held:
                acquired = False
            else:
                self._held.add(key)
                acquired = True
        try:
            yield acquired
        finally:
            if acquired:
                with self._guard:
                    self._held.discard(key)

    def is_held(self, key: str) -> bool:
        with self._guard:
            return key in self._held


__all__ = [
    "KeyedTryLock",
    "ReadWriteLock",
]
