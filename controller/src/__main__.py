from __future__ import annotations

import json
import logging
import re
import signal
import sys
import threading

from controller.src import telemetry
from controller.src.config import ConfigError, ControllerConfig, load_config
from controller.src.controller import DocumentController
from controller.src.diagnostics import State
from controller.src.kube import (
    CLIENT_EXCEPTIONS,
    build_clients,
    documents_queryable,
    load_kube_configuration,
)
from controller.src.web import WebServer, create_app

RUNTIME_VERSION = "0.3.0"
CRD_INSTALL_HINT = "Installation: kubectl apply -f yaml/crd.yaml"
JOIN_MARGIN_SECONDS = 5
_STRUCTURED_FIELDS = ("document", "namespace", "error_label", "trace_id", "action")
_REDACTION_RULES: tuple[tuple[re.Pattern[str], str], ...] = (
    (
        re.compile(r"(?i)(bearer\s+)([A-Za-z0-9._~+/=-]+)"),
        r"\1[REDACTED]",
    ),
    (
        re.compile(
            r"(?i)(\b(?:authorization|token|password|passwd|secret|api[_-]?key)\b\s*[:=]\s*)([^\s,;]+)"
        ),
        r"\1[REDACTED]",
    ),
    (
        re.compile(r"(?i)([?&](?:token|access_token|api_key|password)=)([^&\s]+)"),
        r"\1[REDACTED]",
    ),
)


def redact_sensitive_text(value: str) -> str:
    redacted = value
    for pattern, replacement in _REDACTION_RULES:
        redacted = pattern.sub(replacement, redacted)
    return redacted


class JSONFormatter(logging.Formatter):
    """Emit logs as single-line JSON objects for structured log aggregation.

    Structured fields passed through ``extra=`` (document, namespace,
    error_label, trace_id, action) are copied to top-level keys when set.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": redact_sensitive_text(record.getMessage()),
        }
        for name in _STRUCTURED_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                log_entry[name] = value
        if record.exc_info and record.exc_info[0] is not None:
            log_entry["error"] = redact_sensitive_text(self.formatException(record.exc_info))
        return json.dumps(log_entry)


def parse_log_filter(expression: str) -> tuple[int, dict[str, int]]:
    """Parse a log filter such as ``"info,controller.src.controller=debug"``.

    A bare level sets the root level; ``logger=level`` pairs set per-logger
    levels. Unknown level names fall back to INFO.
    """
    root_level = logging.INFO
    per_logger: dict[str, int] = {}
    for part in expression.split(","):
        part = part.strip()
        if not part:
            continue
        name, separator, level_name = part.partition("=")
        if separator:
            per_logger[name.strip()] = _level(level_name)
        else:
            root_level = _level(name)
    return root_level, per_logger


def _level(name: str) -> int:
    level = logging.getLevelName(name.strip().upper())
    return level if isinstance(level, int) else logging.INFO


def configure_logging(expression: str) -> None:
    """Install the JSON formatter on the root logger and apply the filter expression."""
    root_level, per_logger = parse_log_filter(expression)
    log_handler = logging.StreamHandler()
    log_handler.setFormatter(JSONFormatter())
    logging.root.handlers.clear()
    logging.root.addHandler(log_handler)
    logging.root.setLevel(root_level)
    for name, level in per_logger.items():
        logging.getLogger(name).setLevel(level)


def controller_join_timeout(config: ControllerConfig) -> float:
    """How long shutdown waits for the controller thread.

    ``Watch.stop()`` cannot interrupt a read blocked on the API server, so an
    idle watch may only return when its server-side timeout expires. Must
    exceed the watch timeout plus the worker drain grace period.
    """
    return config.watch_timeout_seconds + config.shutdown_grace_seconds + JOIN_MARGIN_SECONDS


def main() -> int:
    """Controller entrypoint: configure logging, check the CRD, run the controller and web server.

    Returns the process exit code: ``1`` when Documents are not queryable at
    startup, or when either the controller or the web server failed.
    """
    try:
        config = load_config()
    except ConfigError as exc:
        configure_logging("info")
        logging.getLogger(__name__).error("Invalid configuration: %s", exc)
        return 1

    configure_logging(config.log_level)
    logger = logging.getLogger(__name__)
    telemetry.configure_tracing(logger, config.otel_enabled)

    load_kube_configuration()
    custom_api, events_api = build_clients()

    try:
        documents_queryable(custom_api, config.namespace)
    except CLIENT_EXCEPTIONS as exc:
        logger.error("CRD is not queryable; %s. Is the CRD installed?", exc)
        logger.info(CRD_INSTALL_HINT)
        return 1

    state = State()
    controller = DocumentController(
        custom_api=custom_api,
        events_api=events_api,
        state=state,
        namespace=config.namespace,
        workers=config.workers,
        watch_timeout_seconds=config.watch_timeout_seconds,
        shutdown_grace_seconds=config.shutdown_grace_seconds,
    )
    web_server = WebServer(create_app(state), host=config.listen_host, port=config.listen_port)

    shutdown_event = threading.Event()

    def _handle_signal(signum: int, frame: object) -> None:
        logger.info("Received signal %d, shutting down", signum)
        shutdown_event.set()
        controller.request_stop()

    signal.signal(signal.SIGTERM, _handle_signal)
    signal.signal(signal.SIGINT, _handle_signal)

    controller_failed = False

    def _run_controller() -> None:
        nonlocal controller_failed
        try:
            controller.run_forever(shutdown_event=shutdown_event)
        except Exception:
            controller_failed = True
            logger.exception("Controller crashed")
        finally:
            # Either path ending takes the whole process down.
            shutdown_event.set()

    web_server.start()
    controller_thread = threading.Thread(target=_run_controller, name="controller", daemon=True)
    controller_thread.start()

    while not shutdown_event.wait(timeout=1.0):
        if not web_server.running:
            logger.error("Web server exited unexpectedly")
            shutdown_event.set()
    controller.request_stop()

    join_timeout = controller_join_timeout(config)
    controller_thread.join(timeout=join_timeout)
    if controller_thread.is_alive():
        logger.error("Controller did not stop within %ss of shutdown", join_timeout)
        controller_failed = True

    web_ok = web_server.stop(timeout=config.shutdown_grace_seconds + JOIN_MARGIN_SECONDS)

    if controller_failed or not web_ok:
        logger.error(
            "Controller stopped with errors (controller_failed=%s, web_ok=%s)",
            controller_failed,
            web_ok,
        )
        return 1
    logger.info("Controller stopped")
    return 0


if __name__ == "__main__":
    sys.exit(main())
