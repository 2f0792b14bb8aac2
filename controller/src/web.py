from __future__ import annotations

import logging
import threading
from typing import Any

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST

from controller.src.diagnostics import State

APP_VERSION = "0.3.0"


def create_app(state: State) -> FastAPI:
    """Create the controller's web application.

    Endpoints:
        ``GET /``        - Diagnostics snapshot as JSON (``last_event``).
        ``GET /health``  - Liveness probe, always ``"healthy"``.
        ``GET /metrics`` - Prometheus metrics in text exposition format.

    Handlers only read ``state``; reconcile errors never surface here.
    """
    logger = logging.getLogger(__name__)
    app = FastAPI(title="doc-controller", version=APP_VERSION)
    app.state.controller_state = state

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Return a standardized JSON error body for unhandled exceptions."""
        logger.exception("Unhandled error for %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content={"error": "internal_server_error", "detail": "An unexpected error occurred."},
        )

    @app.get("/")
    def index() -> dict[str, str]:
        return state.diagnostics().to_dict()

    @app.get("/health")
    def health() -> str:
        return "healthy"

    @app.get("/metrics")
    def metrics() -> Response:
        return Response(content=state.metrics(), media_type=CONTENT_TYPE_LATEST)

    return app


class WebServer:
    """Runs the FastAPI app under uvicorn on a background thread.

    ``stop()`` asks uvicorn to drain and exit; ``failed`` reports whether the
    server thread ended with an exception.
    """

    def __init__(self, app: FastAPI, host: str, port: int, **config_kwargs: Any) -> None:
        self.config = uvicorn.Config(app, host=host, port=port, log_config=None, **config_kwargs)
        self.server = uvicorn.Server(self.config)
        self.failed = False
        self._thread: threading.Thread | None = None
        self._logger = logging.getLogger(__name__)

    def _serve(self) -> None:
        try:
            self.server.run()
        except BaseException:  # uvicorn raises SystemExit when it cannot bind
            self.failed = True
            self._logger.exception("Web server crashed")

    def start(self) -> None:
        self._thread = threading.Thread(target=self._serve, name="web-server", daemon=True)
        self._thread.start()
        self._logger.info("Web server listening on %s:%d", self.config.host, self.config.port)

    def stop(self, timeout: float | None = None) -> bool:
        """Signal uvicorn to shut down and wait for it. Returns ``False`` on failure."""
        self.server.should_exit = True
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                self._logger.error("Web server did not stop within %ss", timeout)
                return False
        return not self.failed

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
