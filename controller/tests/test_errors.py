from __future__ import annotations

from kubernetes.client import ApiException
from urllib3.exceptions import ProtocolError

from controller.src.errors import (
    ClientError,
    FinalizerError,
    IllegalDocument,
    ReconcileError,
    SerializationError,
    UnexpectedError,
)


def test_leaf_errors_label_with_their_kind() -> None:
    assert ClientError("boom").metric_label() == "clienterror"
    assert SerializationError("bad").metric_label() == "serializationerror"
    assert IllegalDocument().metric_label() == "illegaldocument"
    assert UnexpectedError("KeyError").metric_label() == "unexpectederror"


def test_finalizer_error_nests_stage_and_cause() -> None:
    error = FinalizerError(FinalizerError.APPLY_FAILED, IllegalDocument("nope"))
    assert error.metric_label() == "finalizererror(applyfailed(illegaldocument))"


def test_finalizer_error_without_cause() -> None:
    error = FinalizerError(FinalizerError.UNNAMED_OBJECT)
    assert error.metric_label() == "finalizererror(unnamedobject)"
    assert str(error) == "unnamedobject"


def test_deep_chain_is_walked_without_recursion() -> None:
    error: ReconcileError = IllegalDocument()
    for _ in range(5000):
        error = FinalizerError(FinalizerError.APPLY_FAILED, error)

    label = error.metric_label()

    assert label.startswith("finalizererror(applyfailed(finalizererror(")
    assert label.endswith("illegaldocument" + ")" * 10000)


def test_messages_never_reach_the_label() -> None:
    cause = ClientError("403: forbidden for user system:serviceaccount:x", status=403)
    error = FinalizerError(FinalizerError.ADD_FINALIZER, cause)

    assert "forbidden" not in error.metric_label()
    assert "forbidden" in str(error)


def test_client_error_from_api_exception_keeps_status() -> None:
    error = ClientError.from_exception(ApiException(status=409, reason="Conflict"))

    assert error.status == 409
    assert str(error) == "409: Conflict"


def test_client_error_from_transport_failure() -> None:
    error = ClientError.from_exception(ProtocolError("connection reset"))

    assert error.status is None
    assert "connection reset" in str(error)
