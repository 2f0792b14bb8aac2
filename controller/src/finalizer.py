from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from kubernetes.client import CustomObjectsApi

from controller.src.action import Action
from controller.src.document import Document
from controller.src.errors import ClientError, FinalizerError, ReconcileError
from controller.src.kube import CLIENT_EXCEPTIONS, patch_document_finalizers

LOGGER = logging.getLogger(__name__)

Body = Callable[[Document], Action]


def add_finalizer_patch(document: Document, token: str) -> list[dict[str, Any]]:
    """Build the JSON patch that attaches ``token``.

    The leading ``test`` operation asserts the finalizer list is exactly what
    this snapshot saw, so a concurrent writer makes the whole patch fail
    instead of being overwritten.
    """
    if not document.finalizers:
        return [
            {"op": "test", "path": "/metadata/finalizers", "value": None},
            {"op": "add", "path": "/metadata/finalizers", "value": [token]},
        ]
    return [
        {"op": "test", "path": "/metadata/finalizers", "value": list(document.finalizers)},
        {"op": "add", "path": "/metadata/finalizers/-", "value": token},
    ]


def remove_finalizer_patch(index: int, token: str) -> list[dict[str, Any]]:
    """Build the JSON patch that removes ``token`` from its known position."""
    path = f"/metadata/finalizers/{index}"
    return [
        {"op": "test", "path": path, "value": token},
        {"op": "remove", "path": path},
    ]


def run_with_finalizer(
    custom_api: CustomObjectsApi,
    token: str,
    document: Document,
    apply: Body,
    cleanup: Body,
) -> Action:
    """Drive one document through the finalizer protocol.

    - no finalizer, not deleting: attach the finalizer and stop; the patch
      produces a new watch event that runs ``apply`` on the next pass.
    - finalizer present, not deleting: run ``apply``.
    - finalizer present, deleting: run ``cleanup``, then remove the finalizer.
    - no finalizer, deleting: nothing left to do.

    Every failure is raised as a :class:`FinalizerError` whose ``cause``
    carries the underlying error.
    """
    if not document.name:
        raise FinalizerError(FinalizerError.UNNAMED_OBJECT)

    namespace = document.namespace or ""
    index = document.finalizer_index(token)
    deleting = document.deletion_timestamp is not None

    if index is not None and not deleting:
        try:
            return apply(document)
        except ReconcileError as exc:
            raise FinalizerError(FinalizerError.APPLY_FAILED, exc) from exc

    if index is not None and deleting:
        try:
            action = cleanup(document)
        except ReconcileError as exc:
            raise FinalizerError(FinalizerError.CLEANUP_FAILED, exc) from exc
        try:
            patch_document_finalizers(
                custom_api, namespace, document.name, remove_finalizer_patch(index, token)
            )
        except CLIENT_EXCEPTIONS as exc:
            error = ClientError.from_exception(exc)
            raise FinalizerError(FinalizerError.REMOVE_FINALIZER, error) from exc
        LOGGER.info("Removed finalizer %s from %s/%s", token, namespace, document.name)
        return action

    if deleting:
        # Someone else removed our finalizer; the object is on its way out.
        return Action.await_change()

    try:
        patch_document_finalizers(
            custom_api, namespace, document.name, add_finalizer_patch(document, token)
        )
    except CLIENT_EXCEPTIONS as exc:
        error = ClientError.from_exception(exc)
        raise FinalizerError(FinalizerError.ADD_FINALIZER, error) from exc
    LOGGER.info("Added finalizer %s to %s/%s", token, namespace, document.name)
    return Action.await_change()
