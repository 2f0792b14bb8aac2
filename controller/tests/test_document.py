from __future__ import annotations

import pytest

from controller.src.action import DEFAULT_REQUEUE_SECONDS, Action
from controller.src.document import DOCUMENT_FINALIZER, Document, DocumentSpec, DocumentStatus
from controller.src.errors import SerializationError
from controller.tests.fakes import make_document


class TestFromDict:
    def test_parses_full_document(self) -> None:
        obj = make_document(
            name="doc-a",
            namespace="team",
            hide=True,
            hidden=False,
            finalizers=["other", DOCUMENT_FINALIZER],
            deletion_timestamp="2026-01-01T00:00:00Z",
            resource_version="42",
        )
        obj["metadata"]["generation"] = 3

        document = Document.from_dict(obj)

        assert document.name == "doc-a"
        assert document.namespace == "team"
        assert document.spec == DocumentSpec(title="Test Document", hide=True, content="hello")
        assert document.status == DocumentStatus(hidden=False)
        assert document.finalizers == ("other", DOCUMENT_FINALIZER)
        assert document.deletion_timestamp == "2026-01-01T00:00:00Z"
        assert document.resource_version == "42"
        assert document.uid == "uid-doc-a"
        assert document.generation == 3
        assert document.key == ("team", "doc-a")

    def test_missing_optional_sections_use_defaults(self) -> None:
        document = Document.from_dict({"metadata": {"name": "bare", "namespace": "ns"}})

        assert document.spec == DocumentSpec()
        assert document.status is None
        assert document.finalizers == ()
        assert document.deletion_timestamp is None

    def test_explicit_nulls_use_defaults(self) -> None:
        document = Document.from_dict(
            {"metadata": {"name": "bare", "finalizers": None}, "spec": None, "status": None}
        )

        assert document.spec == DocumentSpec()
        assert document.finalizers == ()

    @pytest.mark.parametrize(
        "obj",
        [
            [],
            {"spec": {}},
            {"metadata": {"namespace": "ns"}},
            {"metadata": {"name": "x"}, "spec": {"hide": "yes"}},
            {"metadata": {"name": "x"}, "spec": []},
            {"metadata": {"name": "x"}, "status": "hidden"},
            {"metadata": {"name": "x", "finalizers": "documents.kube.rs"}},
            {"metadata": {"name": "x"}, "spec": ""},
            {"metadata": {"name": "x"}, "spec": 0},
            {"metadata": {"name": "x"}, "spec": False},
            {"metadata": {"name": "x", "finalizers": ""}},
        ],
    )
    def test_malformed_payloads_raise_serialization_error(self, obj: object) -> None:
        with pytest.raises(SerializationError):
            Document.from_dict(obj)


class TestHelpers:
    def test_was_hidden(self) -> None:
        assert not Document.from_dict(make_document()).was_hidden()
        assert not Document.from_dict(make_document(hidden=False)).was_hidden()
        assert Document.from_dict(make_document(hidden=True)).was_hidden()

    def test_finalizer_index(self) -> None:
        document = Document.from_dict(make_document(finalizers=["a", DOCUMENT_FINALIZER]))
        assert document.finalizer_index() == 1
        assert document.finalizer_index("missing") is None

    def test_key_for_cluster_scoped_payload(self) -> None:
        document = Document.from_dict(make_document(namespace=None))
        assert document.key == ("", "test")

    def test_object_ref(self) -> None:
        document = Document.from_dict(make_document(resource_version="7"))
        assert document.object_ref() == {
            "apiVersion": "kube.rs/v1",
            "kind": "Document",
            "name": "test",
            "namespace": "default",
            "uid": "uid-test",
            "resourceVersion": "7",
        }


def test_action_constructors() -> None:
    assert Action.requeue(DEFAULT_REQUEUE_SECONDS).requeue_after == 300.0
    assert Action.await_change().requeue_after is None
    assert Action.requeue(5) == Action(requeue_after=5.0)
