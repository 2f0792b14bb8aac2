from __future__ import annotations

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from controller.src.diagnostics import State
from controller.src.errors import FinalizerError, IllegalDocument
from controller.src.web import WebServer, create_app
from controller.tests.fakes import FIXED_NOW


@pytest.fixture
def client(state: State) -> TestClient:
    return TestClient(create_app(state))


def test_index_returns_last_event(client: TestClient) -> None:
    response = client.get("/")

    assert response.status_code == 200
    assert response.json() == {"last_event": FIXED_NOW.isoformat()}


def test_index_tracks_reconcile_activity(state: State, client: TestClient) -> None:
    later = FIXED_NOW + timedelta(minutes=1)
    state.diagnostics_store._now_fn = lambda: later
    state.diagnostics_store.touch()

    assert client.get("/").json() == {"last_event": later.isoformat()}


def test_health(client: TestClient) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == "healthy"


def test_metrics(state: State, client: TestClient) -> None:
    ctx = state.to_context(object(), object())  # type: ignore[arg-type]
    ctx.metrics.set_failure(
        "illegal", FinalizerError(FinalizerError.APPLY_FAILED, IllegalDocument())
    )

    response = client.get("/metrics")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert "doc_controller_reconciliations_total" in response.text
    assert "doc_controller_reconcile_duration_seconds_bucket" in response.text
    assert 'error="finalizererror(applyfailed(illegaldocument))"' in response.text


def test_unhandled_error_returns_json_500(state: State) -> None:
    app = create_app(state)

    @app.get("/boom")
    def boom() -> str:
        raise RuntimeError("boom")

    client = TestClient(app, raise_server_exceptions=False)
    response = client.get("/boom")

    assert response.status_code == 500
    assert response.json() == {
        "error": "internal_server_error",
        "detail": "An unexpected error occurred.",
    }


class TestWebServer:
    def test_start_and_stop(self, state: State) -> None:
        server = WebServer(create_app(state), host="127.0.0.1", port=0)

        server.start()
        assert server.stop(timeout=10) is True
        assert not server.running

    def test_crash_is_reported_by_stop(self, state: State) -> None:
        server = WebServer(create_app(state), host="127.0.0.1", port=0)

        def crash() -> None:
            raise OSError("address already in use")

        server.server.run = crash  # type: ignore[method-assign]
        server.start()
        assert server.stop(timeout=5) is False
        assert server.failed
