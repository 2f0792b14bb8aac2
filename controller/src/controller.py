from __future__ import annotations

import logging
import random
import threading
import time
from collections.abc import Callable
from typing import Any

from kubernetes import watch
from kubernetes.client import ApiException, CustomObjectsApi, EventsV1Api

from controller.src.action import DEFAULT_REQUEUE_SECONDS, Action
from controller.src.diagnostics import Context, State
from controller.src.document import Document
from controller.src.errors import ReconcileError, SerializationError, UnexpectedError
from controller.src.kube import list_documents
from controller.src.reconciler import error_policy, reconcile
from controller.src.workqueue import WorkQueue

Key = tuple[str, str]
ReconcileFn = Callable[[Document, Context], Action]
ErrorPolicyFn = Callable[[Document, ReconcileError, Context], Action]


class ControllerError(RuntimeError):
    """Raised when the watch loop cannot continue (for example RBAC denial)."""


def _key_from_raw(obj: Any) -> Key | None:
    metadata = obj.get("metadata") if isinstance(obj, dict) else None
    if not isinstance(metadata, dict):
        return None
    name = metadata.get("name")
    if not isinstance(name, str) or not name:
        return None
    return (metadata.get("namespace") or "", name)


class DocumentController:
    """Lists and watches Documents and reconciles them on a pool of workers.

    The watch thread keeps ``_store`` (latest snapshot per key) current and
    pushes keys onto a :class:`WorkQueue`; workers pop keys, reconcile the
    stored snapshot and schedule the returned :class:`Action`. The queue
    guarantees at most one reconcile per ``(namespace, name)`` at a time,
    which the optimistic finalizer patches rely on.

    Key internal state:
        ``_store``
            Maps ``(namespace, name)`` to the last parsed :class:`Document`.
            A key missing from the store was deleted; its queued reconcile
            is skipped.
        ``queue``
            Pending keys with due-at times. Watch events enqueue immediately;
            actions with ``requeue_after`` enqueue with that delay.
    """

    def __init__(
        self,
        custom_api: CustomObjectsApi,
        events_api: EventsV1Api,
        state: State,
        namespace: str | None = None,
        workers: int = 4,
        watch_timeout_seconds: int = 30,
        shutdown_grace_seconds: int = 30,
        reconcile_fn: ReconcileFn = reconcile,
        error_policy_fn: ErrorPolicyFn = error_policy,
        logger: logging.Logger | None = None,
    ) -> None:
        self.custom_api = custom_api
        self.namespace = namespace or None
        self.ctx = state.to_context(custom_api, events_api)
        self.workers = workers
        self.watch_timeout_seconds = watch_timeout_seconds
        self.shutdown_grace_seconds = shutdown_grace_seconds
        self.reconcile_fn = reconcile_fn
        self.error_policy_fn = error_policy_fn
        self.logger = logger or logging.getLogger(__name__)

        self.queue = WorkQueue()
        self._store: dict[Key, Document] = {}
        self._store_lock = threading.Lock()
        self._worker_threads: list[threading.Thread] = []

        self.ready = threading.Event()
        self._external_stop = threading.Event()
        self._active_watcher: watch.Watch | None = None
        self._watcher_lock = threading.Lock()

    def request_stop(self) -> None:
        """Request a cooperative stop and immediately interrupt any open watch stream."""
        self._external_stop.set()
        with self._watcher_lock:
            active_watcher = self._active_watcher
        if active_watcher is not None:
            active_watcher.stop()

    def _should_stop(self, stop_event: threading.Event) -> bool:
        return stop_event.is_set() or self._external_stop.is_set()

    def get_document(self, key: Key) -> Document | None:
        with self._store_lock:
            return self._store.get(key)

    def _record_decode_failure(self, obj: Any, error: SerializationError) -> None:
        key = _key_from_raw(obj)
        instance = key[1] if key else "<unknown>"
        self.logger.warning(
            "Skipping undecodable Document %s: %s",
            instance,
            error,
            extra={"document": instance, "error_label": error.metric_label()},
        )
        self.ctx.metrics.set_failure(instance, error)
        if key is not None:
            with self._store_lock:
                self._store.pop(key, None)
            self.queue.forget(key)

    def _sync_store_from_list(self, listing: Any) -> str | None:
        """Replace the store with a full listing and enqueue every Document.

        Called at startup and after a ``410 Gone`` re-list. Keys that vanished
        while the watch was disconnected are dropped from the store and queue.
        Returns the list's ``resourceVersion`` to resume the watch from.
        """
        if not isinstance(listing, dict):
            listing = {}
        items = listing.get("items") or []
        fresh: dict[Key, Document] = {}
        for obj in items:
            try:
                document = Document.from_dict(obj)
            except SerializationError as exc:
                self._record_decode_failure(obj, exc)
                continue
            fresh[document.key] = document

        with self._store_lock:
            stale = set(self._store) - set(fresh)
            self._store = fresh

        for key in stale:
            self.queue.forget(key)
        for key in fresh:
            self.queue.add(key)

        self.logger.info("Listed %d Document(s)", len(fresh))
        return (listing.get("metadata") or {}).get("resourceVersion")

    def handle_watch_event(self, event_type: str, obj: Any) -> Key | None:
        """Apply one watch event to the store and queue.

        Returns the affected key, or ``None`` when the event was ignored.
        """
        if event_type == "DELETED":
            key = _key_from_raw(obj)
            if key is None:
                return None
            with self._store_lock:
                self._store.pop(key, None)
            self.queue.forget(key)
            self.logger.debug("Document %s/%s deleted", key[0], key[1])
            return key

        if event_type not in {"ADDED", "MODIFIED"}:
            if event_type == "ERROR":
                self.logger.warning("Watch returned an error event: %s", obj)
            return None

        try:
            document = Document.from_dict(obj)
        except SerializationError as exc:
            self._record_decode_failure(obj, exc)
            return None

        with self._store_lock:
            self._store[document.key] = document
        self.queue.add(document.key)
        return document.key

    def _schedule(self, key: Key, action: Action) -> None:
        if action.requeue_after is None:
            self.logger.debug(
                "Awaiting next change for %s/%s",
                key[0],
                key[1],
                extra={"document": key[1], "namespace": key[0], "action": "await_change"},
            )
            return
        self.logger.debug(
            "Requeueing %s/%s in %ss",
            key[0],
            key[1],
            action.requeue_after,
            extra={"document": key[1], "namespace": key[0], "action": "requeue"},
        )
        self.queue.add(key, delay=action.requeue_after)

    def reconcile_key(self, key: Key) -> Action | None:
        """Reconcile the stored snapshot for ``key`` and schedule the outcome.

        Reconcile errors go through the error policy. Anything else is a bug:
        it is logged with its traceback and counted as an ``unexpectederror``
        failure, then retried after the default backoff.
        """
        document = self.get_document(key)
        if document is None:
            return None

        try:
            action = self.reconcile_fn(document, self.ctx)
        except ReconcileError as exc:
            action = self.error_policy_fn(document, exc, self.ctx)
        except Exception as exc:
            self.logger.exception(
                "Unexpected error reconciling %s/%s", key[0], key[1]
            )
            self.ctx.metrics.set_failure(document.name, UnexpectedError(str(exc)))
            action = Action.requeue(DEFAULT_REQUEUE_SECONDS)

        self._schedule(key, action)
        return action

    def process_next(self, timeout: float | None = None) -> bool:
        """Take one due key off the queue and reconcile it.

        Returns ``False`` when the queue is shutting down or nothing became
        due within ``timeout``.
        """
        key = self.queue.get(timeout=timeout)
        if key is None:
            return False
        try:
            self.reconcile_key(key)  # type: ignore[arg-type]
        finally:
            self.queue.done(key)
        return True

    def _worker_loop(self) -> None:
        while self.process_next():
            pass

    def start_workers(self) -> None:
        for index in range(self.workers):
            thread = threading.Thread(
                target=self._worker_loop, name=f"reconcile-worker-{index}", daemon=True
            )
            thread.start()
            self._worker_threads.append(thread)

    def stop_workers(self) -> bool:
        """Stop handing out keys and wait for in-flight reconciles to finish.

        Returns ``False`` if a worker was still busy when the grace period ran out.
        """
        self.queue.shutdown()
        deadline = time.monotonic() + self.shutdown_grace_seconds
        all_stopped = True
        for thread in self._worker_threads:
            thread.join(timeout=max(0.0, deadline - time.monotonic()))
            if thread.is_alive():
                all_stopped = False
        if not all_stopped:
            self.logger.error(
                "Reconcile workers did not finish within %ss of shutdown",
                self.shutdown_grace_seconds,
            )
        self._worker_threads = [t for t in self._worker_threads if t.is_alive()]
        return all_stopped

    def _list(self, **kwargs: Any) -> Any:
        return list_documents(self.custom_api, self.namespace, **kwargs)

    def _access_denied(self, exc: ApiException, during: str) -> ControllerError:
        self.logger.error(
            "Kubernetes API access denied during %s (status=%s). "
            "Check controller RBAC and service account permissions.",
            during,
            exc.status,
        )
        self.ready.clear()
        return ControllerError(f"access denied during {during} (status={exc.status})")

    def run_forever(self, shutdown_event: threading.Event | None = None) -> None:
        """Main control loop: list then watch Documents until shutdown.

        1. Starts the reconcile workers.
        2. Retries the initial list with jittered exponential backoff so
           transient API startup failures do not crash-loop the controller.
        3. Seeds the store from the list and enqueues every Document.
        4. Opens a streaming watch from the list's ``resourceVersion``.
        5. On ``410 Gone`` (etcd compaction), re-lists and resumes.
        6. On transient errors, backs off with jitter (capped at 30 s).
        7. On shutdown, stops the workers and waits for in-flight
           reconciles (bounded by ``shutdown_grace_seconds``).

        ``401`` / ``403`` responses are configuration errors (RBAC/auth) and
        raise :class:`ControllerError` instead of retrying forever.
        """
        stop = shutdown_event or threading.Event()
        self._external_stop.clear()
        self.start_workers()
        try:
            self._list_and_watch(stop)
        finally:
            self.stop_workers()
            self.ready.clear()

    def _list_and_watch(self, stop: threading.Event) -> None:
        resource_version: str | None = None
        startup_backoff_seconds = 1
        while not self._should_stop(stop):
            try:
                resource_version = self._sync_store_from_list(self._list())
                self.ready.set()
                self.logger.info("Starting watch from resourceVersion %s", resource_version)
                break
            except ApiException as exc:
                if exc.status in {401, 403}:
                    raise self._access_denied(exc, "initial list") from exc
                self.logger.exception("Initial Document list failed")
            except Exception:
                self.logger.exception("Unexpected error during initial Document list")

            jittered = startup_backoff_seconds * (0.5 + random.random())  # noqa: S311
            stop.wait(timeout=jittered)
            startup_backoff_seconds = min(startup_backoff_seconds * 2, 30)

        # Exponential backoff counter (seconds) for transient API errors.
        # Reset to 1 on every successful watch iteration; doubled on error
        # up to a 30 s cap.  Jitter is applied at sleep time.
        backoff_seconds = 1

        while not self._should_stop(stop):
            watcher = watch.Watch()
            with self._watcher_lock:
                self._active_watcher = watcher
            try:
                stream = watcher.stream(
                    self._list,
                    resource_version=resource_version,
                    timeout_seconds=self.watch_timeout_seconds,
                )
                for event in stream:
                    if self._should_stop(stop):
                        break

                    obj = event.get("object")
                    if obj is None:
                        continue

                    metadata = obj.get("metadata") if isinstance(obj, dict) else None
                    if metadata and metadata.get("resourceVersion"):
                        resource_version = metadata["resourceVersion"]

                    self.handle_watch_event(str(event.get("type", "")), obj)

                backoff_seconds = 1
            except ApiException as exc:
                # 410 Gone means etcd compacted past our resourceVersion.
                if exc.status == 410:
                    self.logger.warning("Watch resource version expired, re-listing")
                    try:
                        resource_version = self._sync_store_from_list(self._list())
                    except ApiException as relist_exc:
                        if relist_exc.status in {401, 403}:
                            raise self._access_denied(relist_exc, "410 re-list") from relist_exc
                        self.logger.exception("Failed to re-list after 410")
                        resource_version = None
                    continue

                if exc.status in {401, 403}:
                    raise self._access_denied(exc, "watch") from exc

                self.logger.exception("Kubernetes API watch error")
                jittered = backoff_seconds * (0.5 + random.random())  # noqa: S311
                stop.wait(timeout=jittered)
                backoff_seconds = min(backoff_seconds * 2, 30)
            except Exception:
                self.logger.exception("Unexpected watch error")
                jittered = backoff_seconds * (0.5 + random.random())  # noqa: S311
                stop.wait(timeout=jittered)
                backoff_seconds = min(backoff_seconds * 2, 30)
            finally:
                watcher.stop()
                with self._watcher_lock:
                    if self._active_watcher is watcher:
                        self._active_watcher = None
