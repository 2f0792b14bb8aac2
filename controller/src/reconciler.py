from __future__ import annotations

import logging

from controller.src import telemetry
from controller.src.action import DEFAULT_REQUEUE_SECONDS, Action
from controller.src.diagnostics import Context
from controller.src.document import DOCUMENT_FINALIZER, Document, DocumentStatus
from controller.src.errors import ClientError, IllegalDocument, ReconcileError
from controller.src.finalizer import run_with_finalizer
from controller.src.kube import CLIENT_EXCEPTIONS, patch_document_status

LOGGER = logging.getLogger(__name__)

ILLEGAL_DOCUMENT_NAME = "illegal"


def reconcile(document: Document, ctx: Context) -> Action:
    """Converge one Document snapshot and tell the driver when to come back.

    Diagnostics are touched and the duration timer started before any
    cluster call; the timer observes exactly once however the body exits.
    Raises :class:`ReconcileError` subclasses for the error policy to handle.
    """
    if not document.namespace:
        raise ValueError(f"Document {document.name} has no namespace; Documents are namespaced")

    ctx.diagnostics.touch()
    with ctx.metrics.count_and_measure():
        with telemetry.reconcile_span(document.name, document.namespace) as trace_id:
            LOGGER.info(
                "Reconciling Document %s in %s",
                document.name,
                document.namespace,
                extra={
                    "document": document.name,
                    "namespace": document.namespace,
                    "trace_id": trace_id,
                },
            )
            return run_with_finalizer(
                ctx.custom_api,
                DOCUMENT_FINALIZER,
                document,
                apply=lambda doc: apply_document(doc, ctx),
                cleanup=lambda doc: cleanup_document(doc, ctx),
            )


def apply_document(document: Document, ctx: Context) -> Action:
    """Mirror ``spec.hide`` into ``status.hidden``.

    A ``HideRequested`` event fires only on the transition into hidden, so
    repeated reconciles of an already-hidden document stay quiet. The status
    is overwritten every time; applies from our field manager are idempotent.
    """
    name = document.name
    namespace = document.namespace or ""
    should_hide = document.spec.hide

    if not document.was_hidden() and should_hide:
        recorder = ctx.diagnostics.recorder(ctx.events_api, document)
        try:
            recorder.publish(reason="HideRequested", note=f"Hiding `{name}`", action="Hiding")
        except CLIENT_EXCEPTIONS as exc:
            raise ClientError.from_exception(exc) from exc

    if name == ILLEGAL_DOCUMENT_NAME:
        raise IllegalDocument(f"document {namespace}/{name} is illegal")

    try:
        patch_document_status(
            ctx.custom_api, namespace, name, DocumentStatus(hidden=should_hide).to_dict()
        )
    except CLIENT_EXCEPTIONS as exc:
        raise ClientError.from_exception(exc) from exc

    # Heartbeat: check back even if no watch event arrives.
    return Action.requeue(DEFAULT_REQUEUE_SECONDS)


def cleanup_document(document: Document, ctx: Context) -> Action:
    """Finalizer cleanup. Documents own nothing, so this only records an event."""
    recorder = ctx.diagnostics.recorder(ctx.events_api, document)
    try:
        recorder.publish(
            reason="DeleteRequested", note=f"Delete `{document.name}`", action="Deleting"
        )
    except CLIENT_EXCEPTIONS as exc:
        raise ClientError.from_exception(exc) from exc
    return Action.await_change()


def error_policy(document: Document, error: ReconcileError, ctx: Context) -> Action:
    """Log and count a failed reconcile, then back off for a fixed interval."""
    label = error.metric_label()
    LOGGER.warning(
        "Reconcile of %s/%s failed: %s",
        document.namespace,
        document.name,
        error,
        extra={
            "document": document.name,
            "namespace": document.namespace,
            "error_label": label,
        },
    )
    ctx.metrics.set_failure(document.name, error)
    return Action.requeue(DEFAULT_REQUEUE_SECONDS)
