from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from kubernetes import client, config
from kubernetes.client import ApiException, CustomObjectsApi, EventsV1Api
from kubernetes.config.config_exception import ConfigException
from urllib3.exceptions import HTTPError

from controller.src.document import API_VERSION, GROUP, KIND, PLURAL, VERSION, Document

LOGGER = logging.getLogger(__name__)

# API errors plus transport failures raised by the underlying HTTP pool.
CLIENT_EXCEPTIONS: tuple[type[Exception], ...] = (ApiException, HTTPError)

FIELD_MANAGER = "cntrlr"
APPLY_PATCH_CONTENT_TYPE = "application/apply-patch+yaml"
JSON_PATCH_CONTENT_TYPE = "application/json-patch+json"
EVENT_TYPE_NORMAL = "Normal"
EVENT_TYPE_WARNING = "Warning"


def load_kube_configuration() -> None:
    """Load Kubernetes client configuration.

    Attempts in-cluster config first (running inside a pod), falling back
    to the local kubeconfig for development.
    """
    try:
        config.load_incluster_config()
        LOGGER.info("Loaded in-cluster Kubernetes configuration")
    except ConfigException:
        config.load_kube_config()
        LOGGER.info("Loaded local kubeconfig")


def build_clients() -> tuple[CustomObjectsApi, EventsV1Api]:
    """Return the custom-objects and events.k8s.io API clients."""
    return client.CustomObjectsApi(), client.EventsV1Api()


def list_documents(
    custom_api: CustomObjectsApi,
    namespace: str | None = None,
    **kwargs: Any,
) -> Any:
    """List Documents in one namespace, or cluster-wide when ``namespace`` is empty.

    Extra keyword arguments (``resource_version``, ``timeout_seconds``,
    ``limit``, ``watch``) are passed through, which lets this function double
    as the list function handed to ``kubernetes.watch.Watch.stream``.
    """
    if namespace:
        return custom_api.list_namespaced_custom_object(
            GROUP, VERSION, namespace, PLURAL, **kwargs
        )
    return custom_api.list_cluster_custom_object(GROUP, VERSION, PLURAL, **kwargs)


def documents_queryable(custom_api: CustomObjectsApi, namespace: str | None = None) -> None:
    """Raise the client's exception if Documents cannot be listed (CRD missing, RBAC)."""
    list_documents(custom_api, namespace, limit=1)


def patch_document_status(
    custom_api: CustomObjectsApi,
    namespace: str,
    name: str,
    status: dict[str, Any],
    field_manager: str = FIELD_MANAGER,
) -> Any:
    """Server-side apply the status subresource, forcing ownership of the fields.

    Repeated applies from the same field manager never conflict with each
    other; ``force=True`` takes the fields over from any other writer.
    """
    body = {"apiVersion": API_VERSION, "kind": KIND, "status": status}
    return custom_api.patch_namespaced_custom_object_status(
        GROUP,
        VERSION,
        namespace,
        PLURAL,
        name,
        body,
        field_manager=field_manager,
        force=True,
        _content_type=APPLY_PATCH_CONTENT_TYPE,
    )


def patch_document_finalizers(
    custom_api: CustomObjectsApi,
    namespace: str,
    name: str,
    operations: list[dict[str, Any]],
) -> Any:
    """Send a JSON patch against the document's metadata.

    Callers include a ``test`` operation so the API server rejects the patch
    when the finalizer list changed since the snapshot was taken.
    """
    return custom_api.patch_namespaced_custom_object(
        GROUP,
        VERSION,
        namespace,
        PLURAL,
        name,
        operations,
        _content_type=JSON_PATCH_CONTENT_TYPE,
    )


def utc_now_micro() -> str:
    """Return the current UTC time in the ``MicroTime`` format events.k8s.io expects."""
    return datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class EventRecorder:
    """Publishes ``events.k8s.io/v1`` Events about a single Document.

    ``reporter`` identifies this controller as the event source
    (``reportingController`` / ``reportingInstance``).
    """

    def __init__(self, events_api: EventsV1Api, reporter: str, document: Document) -> None:
        self.events_api = events_api
        self.reporter = reporter
        self.document = document

    def build_event(
        self,
        type_: str,
        reason: str,
        note: str,
        action: str,
    ) -> dict[str, Any]:
        return {
            "apiVersion": "events.k8s.io/v1",
            "kind": "Event",
            "metadata": {"generateName": f"{self.document.name}."},
            "eventTime": utc_now_micro(),
            "type": type_,
            "reason": reason,
            "note": note,
            "action": action,
            "regarding": self.document.object_ref(),
            "reportingController": self.reporter,
            "reportingInstance": self.reporter,
        }

    def publish(
        self,
        reason: str,
        note: str,
        action: str,
        type_: str = EVENT_TYPE_NORMAL,
    ) -> Any:
        body = self.build_event(type_=type_, reason=reason, note=note, action=action)
        return self.events_api.create_namespaced_event(
            namespace=self.document.namespace, body=body
        )
