from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass


class ConfigError(RuntimeError):
    """Raised when the controller configuration is invalid."""


@dataclass(frozen=True)
class ControllerConfig:
    """Immutable controller configuration loaded at startup.

    Attributes:
        namespace: Namespace to watch; ``None`` watches every namespace.
        listen_host / listen_port: Bind address of the web server.
        log_level: Log filter expression (see ``configure_logging``).
        workers: Number of reconcile worker threads.
        watch_timeout_seconds: Server-side timeout of one watch request.
        shutdown_grace_seconds: How long shutdown waits for in-flight work.
        otel_enabled: Whether to configure OpenTelemetry tracing.
    """

    namespace: str | None = None
    listen_host: str = "0.0.0.0"  # noqa: S104
    listen_port: int = 8080
    log_level: str = "info"
    workers: int = 4
    watch_timeout_seconds: int = 30
    shutdown_grace_seconds: int = 30
    otel_enabled: bool = False


def parse_bool(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def env_int(
    name: str,
    default: int,
    *,
    minimum: int | None = None,
    maximum: int | None = None,
    env: Mapping[str, str] | None = None,
) -> int:
    values = env if env is not None else os.environ
    raw = values.get(name)
    if raw is None:
        value = default
    else:
        try:
            value = int(raw)
        except ValueError as exc:
            raise ValueError(f"{name} must be an integer") from exc

    if minimum is not None and value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got: {value}")
    if maximum is not None and value > maximum:
        raise ValueError(f"{name} must be <= {maximum}, got: {value}")
    return value


def load_config(env: Mapping[str, str] | None = None) -> ControllerConfig:
    """Load controller config from the environment.

    Environment variables (with defaults):
        ``WATCH_NAMESPACE``        - namespace to watch (all namespaces).
        ``LISTEN_HOST``            - web server bind host (``0.0.0.0``).
        ``LISTEN_PORT``            - web server port (``8080``).
        ``LOG_LEVEL``              - log filter expression (``info``).
        ``RECONCILE_WORKERS``      - reconcile worker threads (``4``).
        ``WATCH_TIMEOUT_SECONDS``  - watch request timeout (``30``).
        ``SHUTDOWN_GRACE_SECONDS`` - shutdown wait for in-flight work (``30``).
        ``OTEL_ENABLED``           - enable tracing (``false``).

    Raises :class:`ConfigError` for any invalid value.
    """
    values = env if env is not None else os.environ

    listen_host = values.get("LISTEN_HOST", "0.0.0.0").strip()  # noqa: S104
    if not listen_host:
        raise ConfigError("LISTEN_HOST must be a non-empty string")

    try:
        return ControllerConfig(
            namespace=values.get("WATCH_NAMESPACE", "").strip() or None,
            listen_host=listen_host,
            listen_port=env_int("LISTEN_PORT", 8080, minimum=1, maximum=65535, env=values),
            log_level=values.get("LOG_LEVEL", "info"),
            workers=env_int("RECONCILE_WORKERS", 4, minimum=1, env=values),
            watch_timeout_seconds=env_int("WATCH_TIMEOUT_SECONDS", 30, minimum=1, env=values),
            shutdown_grace_seconds=env_int("SHUTDOWN_GRACE_SECONDS", 30, minimum=0, env=values),
            otel_enabled=parse_bool(values.get("OTEL_ENABLED")),
        )
    except ValueError as exc:
        raise ConfigError(str(exc)) from exc
