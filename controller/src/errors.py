from __future__ import annotations

from collections.abc import Iterator


class ReconcileError(Exception):
    """Base of the closed set of failures a reconcile can produce.

    Every error carries a lowercase ``kind`` token. The metrics label is
    built from these tokens only, never from messages, so label cardinality
    stays bounded no matter what the API server returns.
    """

    kind = "reconcileerror"

    def __init__(self, message: str = "", cause: ReconcileError | None = None) -> None:
        super().__init__(message or self.kind)
        self.cause = cause

    def kinds(self) -> Iterator[str]:
        """Yield the kind token of every link in the cause chain, outermost first."""
        error: ReconcileError | None = self
        while error is not None:
            yield from error._own_kinds()
            error = error.cause

    def _own_kinds(self) -> Iterator[str]:
        yield self.kind

    def metric_label(self) -> str:
        tokens = list(self.kinds())
        return "(".join(tokens) + ")" * (len(tokens) - 1)


class ClientError(ReconcileError):
    """A cluster API call failed (transport, auth, conflict, not found)."""

    kind = "clienterror"

    def __init__(self, message: str = "", status: int | None = None) -> None:
        super().__init__(message)
        self.status = status

    @classmethod
    def from_exception(cls, exc: Exception) -> ClientError:
        status = getattr(exc, "status", None)
        reason = getattr(exc, "reason", None) or str(exc)
        if status is not None:
            return cls(f"{status}: {reason}", status=status)
        return cls(reason)


class SerializationError(ReconcileError):
    """A payload could not be encoded or decoded."""

    kind = "serializationerror"


class IllegalDocument(ReconcileError):
    """The document was rejected by domain validation."""

    kind = "illegaldocument"


class FinalizerError(ReconcileError):
    """Wraps a failure that happened while driving the finalizer protocol.

    ``stage`` says where in the protocol it happened (``applyfailed``,
    ``cleanupfailed``, ``addfinalizer``, ``removefinalizer`` or
    ``unnamedobject``); ``cause`` is the nested error, if any.
    """

    kind = "finalizererror"

    APPLY_FAILED = "applyfailed"
    CLEANUP_FAILED = "cleanupfailed"
    ADD_FINALIZER = "addfinalizer"
    REMOVE_FINALIZER = "removefinalizer"
    UNNAMED_OBJECT = "unnamedobject"

    def __init__(self, stage: str, cause: ReconcileError | None = None) -> None:
        message = stage if cause is None else f"{stage}: {cause}"
        super().__init__(message, cause=cause)
        self.stage = stage

    def _own_kinds(self) -> Iterator[str]:
        yield self.kind
        yield self.stage


class UnexpectedError(ReconcileError):
    """A reconcile raised something outside this hierarchy (a bug)."""

    kind = "unexpectederror"
