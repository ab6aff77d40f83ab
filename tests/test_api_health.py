"""Tests for health, metrics and root endpoints."""

import httpx
import pytest
from prometheus_client import REGISTRY

from conftest import make_config
from web2video.config import settings
from web2video.core.runtime_config import ConfigStore, set_config_store


@pytest.mark.asyncio
async def test_health_reports_enabled_tiers(api_client, tmp_path):
    path = tmp_path / "tiers.yml"
    path.write_text(
        "flaresolverr:\n  enabled: true\nproxy:\n  enabled: false\nbypass:\n  enabled: false\n",
        encoding="utf-8",
    )
    set_config_store(ConfigStore(path))

    client, _ = api_client
    resp = await client.get("/api/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert data["timestamp"]
    assert data["config"] == {"flaresolverr": True, "proxy": False, "bypass": False}


@pytest.mark.asyncio
async def test_metrics_exposed_after_fetch(api_client):
    def sample(name, labels):
        return REGISTRY.get_sample_value(name, labels) or 0.0

    requests_before = sample("fetch_requests_total", {"status": "success"})
    attempts_before = sample("fetch_attempts_total", {"tier": "direct", "outcome": "success"})
    videos_before = sample("videos_extracted_total", {"kind": "video-tag"})

    client, install = api_client
    install(make_config(), lambda request: httpx.Response(200, text='<video src="a.mp4"></video>'))
    await client.post("/api/fetch-videos", json={"url": "https://site.test/"})

    assert sample("fetch_requests_total", {"status": "success"}) == requests_before + 1
    assert (
        sample("fetch_attempts_total", {"tier": "direct", "outcome": "success"})
        == attempts_before + 1
    )
    assert sample("videos_extracted_total", {"kind": "video-tag"}) == videos_before + 1

    resp = await client.get("/metrics")
    assert resp.status_code == 200
    assert "text/plain" in resp.headers["content-type"]
    for name in ("fetch_requests_total", "fetch_attempts_total", "videos_extracted_total"):
        assert name in resp.text


@pytest.mark.asyncio
async def test_metrics_disabled(api_client, monkeypatch):
    monkeypatch.setattr(settings, "METRICS_ENABLED", False)
    client, _ = api_client
    resp = await client.get("/metrics")
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_root(api_client):
    client, _ = api_client
    resp = await client.get("/")
    assert resp.status_code == 200
    assert resp.json()["app"] == settings.APP_NAME
