from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Hashable, Iterator

from marquee_core.errors import AlreadyRunning


class UserRunGuard:
    """At most one in-flight run per key (job name + user id)."""

    def __init__(self) -> None:
        self._active: set[Hashable] = set()
        self._lock = threading.Lock()

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self._lock:
            if key in self._active:
                raise AlreadyRunning(f"run already in progress for {key}")
            self._active.add(key)
        try:
            yield
        finally:
            with self._lock:
                self._active.discard(key)

    def is_running(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._active
