from __future__ import annotations

from dataclasses import dataclass

DEFAULT_REQUEUE_SECONDS = 5 * 60


@dataclass(frozen=True)
class Action:
    """What the driver should do with a key after a reconcile attempt.

    ``requeue_after`` is a delay in seconds; ``None`` means wait for the
    next watch event instead of scheduling one.
    """

    requeue_after: float | None = None

    @classmethod
    def requeue(cls, seconds: float) -> Action:
        return cls(requeue_after=float(seconds))

    @classmethod
    def await_change(cls) -> Action:
        return cls(requeue_after=None)
