from __future__ import annotations

import re
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

from controller.src.document import Document
from controller.src.kube import (
    EventRecorder,
    build_clients,
    documents_queryable,
    list_documents,
    load_kube_configuration,
    patch_document_finalizers,
    patch_document_status,
    utc_now_micro,
)
from controller.tests.fakes import make_document


def test_load_kube_configuration_in_cluster() -> None:
    with (
        patch("controller.src.kube.config.load_incluster_config") as mock_incluster,
        patch("controller.src.kube.config.load_kube_config") as mock_kubeconfig,
    ):
        load_kube_configuration()

    mock_incluster.assert_called_once()
    mock_kubeconfig.assert_not_called()


def test_load_kube_configuration_local_fallback() -> None:
    from kubernetes.config.config_exception import ConfigException

    with (
        patch(
            "controller.src.kube.config.load_incluster_config",
            side_effect=ConfigException("not in cluster"),
        ),
        patch("controller.src.kube.config.load_kube_config") as mock_kubeconfig,
    ):
        load_kube_configuration()

    mock_kubeconfig.assert_called_once()


def test_build_clients_returns_tuple() -> None:
    with patch("controller.src.kube.client") as mock_client:
        mock_client.CustomObjectsApi.return_value = SimpleNamespace(name="custom")
        mock_client.EventsV1Api.return_value = SimpleNamespace(name="events")
        custom, events = build_clients()

    assert custom.name == "custom"
    assert events.name == "events"


def test_list_documents_namespaced_and_cluster_wide() -> None:
    custom_api = MagicMock()

    list_documents(custom_api, "team", limit=1)
    list_documents(custom_api, None, watch=True)

    custom_api.list_namespaced_custom_object.assert_called_once_with(
        "kube.rs", "v1", "team", "documents", limit=1
    )
    custom_api.list_cluster_custom_object.assert_called_once_with(
        "kube.rs", "v1", "documents", watch=True
    )


def test_documents_queryable_lists_a_single_item() -> None:
    custom_api = MagicMock()

    documents_queryable(custom_api, "team")

    assert custom_api.list_namespaced_custom_object.call_args.kwargs == {"limit": 1}


def test_patch_document_status_sends_forced_apply() -> None:
    custom_api = MagicMock()

    patch_document_status(custom_api, "team", "doc-a", {"hidden": True})

    call = custom_api.patch_namespaced_custom_object_status.call_args
    assert call.args == (
        "kube.rs",
        "v1",
        "team",
        "documents",
        "doc-a",
        {"apiVersion": "kube.rs/v1", "kind": "Document", "status": {"hidden": True}},
    )
    assert call.kwargs == {
        "field_manager": "cntrlr",
        "force": True,
        "_content_type": "application/apply-patch+yaml",
    }


def test_patch_document_finalizers_uses_json_patch() -> None:
    custom_api = MagicMock()
    operations = [{"op": "remove", "path": "/metadata/finalizers/0"}]

    patch_document_finalizers(custom_api, "team", "doc-a", operations)

    call = custom_api.patch_namespaced_custom_object.call_args
    assert call.args[-1] == operations
    assert call.kwargs == {"_content_type": "application/json-patch+json"}


def test_utc_now_micro_format() -> None:
    assert re.fullmatch(r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{6}Z", utc_now_micro())


class TestEventRecorder:
    def test_build_event_references_document(self) -> None:
        document = Document.from_dict(make_document(name="doc-a", namespace="team"))
        recorder = EventRecorder(MagicMock(), "doc-controller", document)

        with patch("controller.src.kube.utc_now_micro", return_value="2026-01-01T00:00:00.000000Z"):
            event = recorder.build_event("Normal", "HideRequested", "Hiding `doc-a`", "Hiding")

        assert event == {
            "apiVersion": "events.k8s.io/v1",
            "kind": "Event",
            "metadata": {"generateName": "doc-a."},
            "eventTime": "2026-01-01T00:00:00.000000Z",
            "type": "Normal",
            "reason": "HideRequested",
            "note": "Hiding `doc-a`",
            "action": "Hiding",
            "regarding": document.object_ref(),
            "reportingController": "doc-controller",
            "reportingInstance": "doc-controller",
        }

    def test_publish_creates_event_in_document_namespace(self) -> None:
        events_api = MagicMock()
        document = Document.from_dict(make_document(name="doc-a", namespace="team"))

        EventRecorder(events_api, "doc-controller", document).publish(
            reason="DeleteRequested", note="Delete `doc-a`", action="Deleting"
        )

        call = events_api.create_namespaced_event.call_args
        assert call.kwargs["namespace"] == "team"
        assert call.kwargs["body"]["type"] == "Normal"
        assert call.kwargs["body"]["reason"] == "DeleteRequested"
