from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from controller.src.errors import SerializationError

GROUP = "kube.rs"
VERSION = "v1"
KIND = "Document"
PLURAL = "documents"
API_VERSION = f"{GROUP}/{VERSION}"
DOCUMENT_FINALIZER = "documents.kube.rs"


@dataclass(frozen=True)
class DocumentSpec:
    """Desired state of a ``Document``."""

    title: str = ""
    hide: bool = False
    content: str = ""


@dataclass(frozen=True)
class DocumentStatus:
    """Observed state, written only by the controller."""

    hidden: bool = False

    def to_dict(self) -> dict[str, bool]:
        return {"hidden": self.hidden}


@dataclass(frozen=True)
class Document:
    """Immutable snapshot of one ``Document`` custom resource.

    The reconciler works on a single snapshot per invocation and never
    re-reads the object mid-call, so every field here is frozen.
    ``finalizers`` is a tuple to keep the ordering the API server returned.
    """

    name: str
    namespace: str | None
    spec: DocumentSpec = field(default_factory=DocumentSpec)
    status: DocumentStatus | None = None
    finalizers: tuple[str, ...] = ()
    deletion_timestamp: str | None = None
    resource_version: str | None = None
    uid: str | None = None
    generation: int | None = None

    @classmethod
    def from_dict(cls, obj: Any) -> Document:
        """Parse the dict returned by ``CustomObjectsApi`` into a ``Document``.

        Raises :class:`SerializationError` for payloads that do not look like
        a Document (wrong container types, missing name, mistyped fields).
        """
        if not isinstance(obj, Mapping):
            raise SerializationError(f"expected a mapping, got {type(obj).__name__}")

        metadata = obj.get("metadata")
        if not isinstance(metadata, Mapping):
            raise SerializationError("document has no metadata")

        name = metadata.get("name")
        if not isinstance(name, str) or not name:
            raise SerializationError("document metadata.name is missing")

        raw_spec = obj.get("spec")
        if raw_spec is None:
            raw_spec = {}
        if not isinstance(raw_spec, Mapping):
            raise SerializationError(f"document {name} has a non-object spec")
        spec = DocumentSpec(
            title=_typed(raw_spec, "title", str, "", name),
            hide=_typed(raw_spec, "hide", bool, False, name),
            content=_typed(raw_spec, "content", str, "", name),
        )

        raw_status = obj.get("status")
        status: DocumentStatus | None = None
        if raw_status is not None:
            if not isinstance(raw_status, Mapping):
                raise SerializationError(f"document {name} has a non-object status")
            status = DocumentStatus(hidden=_typed(raw_status, "hidden", bool, False, name))

        finalizers = metadata.get("finalizers")
        if finalizers is None:
            finalizers = []
        if not isinstance(finalizers, list) or not all(isinstance(f, str) for f in finalizers):
            raise SerializationError(f"document {name} has malformed finalizers")

        generation = metadata.get("generation")
        return cls(
            name=name,
            namespace=metadata.get("namespace") or None,
            spec=spec,
            status=status,
            finalizers=tuple(finalizers),
            deletion_timestamp=_as_str(metadata.get("deletionTimestamp")),
            resource_version=_as_str(metadata.get("resourceVersion")),
            uid=_as_str(metadata.get("uid")),
            generation=generation if isinstance(generation, int) else None,
        )

    @property
    def key(self) -> tuple[str, str]:
        return (self.namespace or "", self.name)

    def was_hidden(self) -> bool:
        return self.status is not None and self.status.hidden

    def finalizer_index(self, token: str = DOCUMENT_FINALIZER) -> int | None:
        try:
            return self.finalizers.index(token)
        except ValueError:
            return None

    def object_ref(self) -> dict[str, str]:
        """Return an ObjectReference dict suitable for an event's ``regarding``."""
        ref = {"apiVersion": API_VERSION, "kind": KIND, "name": self.name}
        if self.namespace:
            ref["namespace"] = self.namespace
        if self.uid:
            ref["uid"] = self.uid
        if self.resource_version:
            ref["resourceVersion"] = self.resource_version
        return ref


def _typed(source: Mapping[str, Any], key: str, kind: type, default: Any, name: str) -> Any:
    value = source.get(key, default)
    if value is None:
        return default
    if not isinstance(value, kind):
        raise SerializationError(
            f"document {name}: field {key!r} must be {kind.__name__}, got {type(value).__name__}"
        )
    return value


def _as_str(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)
