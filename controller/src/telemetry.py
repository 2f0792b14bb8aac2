from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

_TRACER: Any = None


def configure_tracing(logger: logging.Logger, enabled: bool) -> bool:
    """Enable OpenTelemetry tracing when ``enabled`` (``OTEL_ENABLED=true``).

    The controller stays fully functional when OpenTelemetry packages are
    absent; tracing is then skipped with a warning. Returns whether a tracer
    is active afterwards.
    """
    global _TRACER

    if not enabled:
        return False
    if _TRACER is not None:
        return True

    try:
        from opentelemetry import trace
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import (
            OTLPSpanExporter,
        )
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import (
            BatchSpanProcessor,
        )
    except ImportError:
        logger.warning(
            "OTEL_ENABLED=true but OpenTelemetry packages are not installed; tracing disabled"
        )
        return False

    endpoint_base = os.getenv(
        "OTEL_EXPORTER_OTLP_ENDPOINT",
        "http://otel-collector.monitoring.svc:4318",
    )
    endpoint = os.getenv("OTEL_EXPORTER_OTLP_TRACES_ENDPOINT") or (
        endpoint_base
        if endpoint_base.endswith("/v1/traces")
        else endpoint_base.rstrip("/") + "/v1/traces"
    )

    resource = Resource.create({
        "service.name": os.getenv("OTEL_SERVICE_NAME", "doc-controller"),
    })
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
    trace.set_tracer_provider(provider)
    _TRACER = trace.get_tracer("doc-controller")
    logger.info("OpenTelemetry tracing enabled (OTLP endpoint=%s)", endpoint)
    return True


@contextmanager
def reconcile_span(name: str, namespace: str | None) -> Iterator[str | None]:
    """Run the block inside a ``reconcile`` span and yield its hex trace id.

    Yields ``None`` when tracing is not configured.
    """
    if _TRACER is None:
        yield None
        return

    with _TRACER.start_as_current_span("reconcile") as span:
        span.set_attribute("document.name", name)
        span.set_attribute("document.namespace", namespace or "")
        yield format(span.get_span_context().trace_id, "032x")
