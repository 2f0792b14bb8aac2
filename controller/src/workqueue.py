from __future__ import annotations

import threading
import time
from collections.abc import Callable, Hashable


class WorkQueue:
    """Delayed, per-key serialized queue feeding the reconcile workers.

    Key internal state:
        ``_pending``
            Maps a key to the monotonic due-at time of its next reconcile.
            Re-adding a pending key keeps the earlier due time, so a watch
            event always overrides a long heartbeat requeue.
        ``_processing``
            Keys currently handed to a worker. A key in this set is never
            handed out again until :meth:`done` is called for it; adds that
            arrive meanwhile stay in ``_pending`` and are delivered afterwards.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._cond = threading.Condition()
        self._pending: dict[Hashable, float] = {}
        self._processing: set[Hashable] = set()
        self._shutting_down = False

    def add(self, key: Hashable, delay: float = 0.0) -> None:
        with self._cond:
            if self._shutting_down:
                return
            due_at = self._clock() + max(0.0, delay)
            existing = self._pending.get(key)
            if existing is None or due_at < existing:
                self._pending[key] = due_at
                self._cond.notify_all()

    def forget(self, key: Hashable) -> None:
        with self._cond:
            self._pending.pop(key, None)

    def get(self, timeout: float | None = None) -> Hashable | None:
        """Block until a due key is available and mark it as processing.

        Returns ``None`` on shutdown or when ``timeout`` elapses first.
        """
        deadline = None if timeout is None else self._clock() + timeout
        with self._cond:
            while not self._shutting_down:
                now = self._clock()
                key, wait = self._next_ready(now)
                if key is not None:
                    del self._pending[key]
                    self._processing.add(key)
                    return key
                if deadline is not None:
                    remaining = deadline - now
                    if remaining <= 0:
                        return None
                    wait = remaining if wait is None else min(wait, remaining)
                self._cond.wait(timeout=wait)
            return None

    def _next_ready(self, now: float) -> tuple[Hashable | None, float | None]:
        """Return the earliest due key not in flight, or how long until one is due."""
        earliest_wait: float | None = None
        best_key: Hashable | None = None
        best_due = 0.0
        for key, due_at in self._pending.items():
            if key in self._processing:
                continue
            if due_at <= now:
                if best_key is None or due_at < best_due:
                    best_key, best_due = key, due_at
                continue
            remaining = due_at - now
            if earliest_wait is None or remaining < earliest_wait:
                earliest_wait = remaining
        return best_key, earliest_wait

    def done(self, key: Hashable) -> None:
        with self._cond:
            self._processing.discard(key)
            self._cond.notify_all()

    def shutdown(self) -> None:
        with self._cond:
            self._shutting_down = True
            self._cond.notify_all()

    @property
    def shutting_down(self) -> bool:
        with self._cond:
            return self._shutting_down

    def __len__(self) -> int:
        with self._cond:
            return len(self._pending)

    def in_flight(self) -> int:
        with self._cond:
            return len(self._processing)
