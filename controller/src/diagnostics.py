from __future__ import annotations

import threading
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Any

from kubernetes.client import CustomObjectsApi, EventsV1Api
from prometheus_client import CollectorRegistry

from controller.src.document import Document
from controller.src.kube import EventRecorder
from controller.src.metrics import ReconcilerMetrics

DEFAULT_REPORTER = "doc-controller"


def _utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class Diagnostics:
    """Health snapshot served on ``GET /``.

    ``last_event`` is the start time of the most recent reconcile attempt,
    successful or not. ``reporter`` names this controller on emitted events
    and is deliberately left out of the JSON form.
    """

    last_event: datetime = field(default_factory=_utc_now)
    reporter: str = DEFAULT_REPORTER

    def to_dict(self) -> dict[str, str]:
        return {"last_event": self.last_event.isoformat()}


class DiagnosticsStore:
    """Lock-guarded holder of the current :class:`Diagnostics` value.

    Writers (reconcile workers) swap in a new frozen value; readers (HTTP
    handlers) get the current value back. Nothing outside this class ever
    holds a mutable reference, so readers cannot observe a half-written
    snapshot. The lock only guards the swap, never any I/O.
    """

    def __init__(self, diagnostics: Diagnostics | None = None, now_fn: Any = _utc_now) -> None:
        self._lock = threading.Lock()
        self._now_fn = now_fn
        self._diagnostics = diagnostics or Diagnostics(last_event=now_fn())

    def touch(self) -> None:
        now = self._now_fn()
        with self._lock:
            self._diagnostics = replace(self._diagnostics, last_event=now)

    def snapshot(self) -> Diagnostics:
        with self._lock:
            return self._diagnostics

    def recorder(self, events_api: EventsV1Api, document: Document) -> EventRecorder:
        return EventRecorder(events_api, self.snapshot().reporter, document)


@dataclass(frozen=True)
class Context:
    """Everything a reconcile needs: API clients plus the shared state handles."""

    custom_api: CustomObjectsApi
    events_api: EventsV1Api
    diagnostics: DiagnosticsStore
    metrics: ReconcilerMetrics


class State:
    """State shared between the controller workers and the web server.

    Constructed once at startup and handed to both sides; the web server
    only ever calls :meth:`metrics` and :meth:`diagnostics`.
    """

    def __init__(
        self,
        registry: CollectorRegistry | None = None,
        diagnostics: DiagnosticsStore | None = None,
    ) -> None:
        self.registry = registry or CollectorRegistry()
        self.diagnostics_store = diagnostics or DiagnosticsStore()
        self._metrics: ReconcilerMetrics | None = None
        self._metrics_lock = threading.Lock()

    @property
    def reconciler_metrics(self) -> ReconcilerMetrics:
        with self._metrics_lock:
            if self._metrics is None:
                self._metrics = ReconcilerMetrics(self.registry)
            return self._metrics

    def metrics(self) -> bytes:
        """Render every metric in this state's registry in text exposition format."""
        return self.reconciler_metrics.render()

    def diagnostics(self) -> Diagnostics:
        return self.diagnostics_store.snapshot()

    def to_context(self, custom_api: CustomObjectsApi, events_api: EventsV1Api) -> Context:
        return Context(
            custom_api=custom_api,
            events_api=events_api,
            diagnostics=self.diagnostics_store,
            metrics=self.reconciler_metrics,
        )
