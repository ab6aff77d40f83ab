"""Shared fixtures: deterministic orchestrators over mocked transports."""

import dataclasses
import random

import httpx
import pytest
import pytest_asyncio

from web2video.core.runtime_config import ConfigStore, RetrievalConfig, set_config_store
from web2video.services.retrieval import RetrievalOrchestrator


class SleepRecorder:
    """Stand-in for asyncio.sleep that records requested delays (seconds)."""

    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def make_config(**overrides) -> RetrievalConfig:
    """Fast, quiet defaults: one direct attempt, no solver, no bypass, no delays."""
    base = RetrievalConfig(
        normal_retries=1,
        solver_enabled=False,
        bypass_enabled=False,
        retry_delay=0,
        fallback_delay=0,
    )
    return dataclasses.replace(base, **overrides)


def make_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler), follow_redirects=True)


def make_orchestrator(config: RetrievalConfig, handler, sleep=None, seed: int = 7):
    return RetrievalOrchestrator(
        config,
        client=make_client(handler),
        rng=random.Random(seed),
        sleep=sleep or SleepRecorder(),
    )


@pytest.fixture(autouse=True)
def isolated_config_store(tmp_path):
    """Point the process-wide store at a missing file (→ defaults) per test."""
    store = ConfigStore(tmp_path / "config.yml")
    set_config_store(store)
    yield store
    set_config_store(None)


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()


@pytest_asyncio.fixture
async def api_client():
    """Yields (client, install); call install(config, handler) to route the API's
    orchestrator through a mocked transport."""
    from web2video.api.deps import get_orchestrator
    from web2video.main import app

    def install(config: RetrievalConfig, handler):
        app.dependency_overrides[get_orchestrator] = lambda: make_orchestrator(config, handler)

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client, install
    app.dependency_overrides.clear()
