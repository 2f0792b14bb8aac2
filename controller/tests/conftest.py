from __future__ import annotations

import pytest
from prometheus_client import CollectorRegistry

from controller.src.diagnostics import Context, DiagnosticsStore, State
from controller.tests.fakes import FIXED_NOW, FakeCustomObjectsApi, FakeEventsApi


@pytest.fixture
def custom_api() -> FakeCustomObjectsApi:
    return FakeCustomObjectsApi()


@pytest.fixture
def events_api() -> FakeEventsApi:
    return FakeEventsApi()


@pytest.fixture
def registry() -> CollectorRegistry:
    return CollectorRegistry()


@pytest.fixture
def state(registry: CollectorRegistry) -> State:
    return State(registry=registry, diagnostics=DiagnosticsStore(now_fn=lambda: FIXED_NOW))


@pytest.fixture
def ctx(state: State, custom_api: FakeCustomObjectsApi, events_api: FakeEventsApi) -> Context:
    return state.to_context(custom_api, events_api)  # type: ignore[arg-type]
