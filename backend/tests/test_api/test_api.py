"""Tests for API endpoints."""

from __future__ import annotations

import base64
import json

import pytest
from fastapi.testclient import TestClient

from app.config import Settings
from app.engine.registry import Stage, StageSpec
from app.main import create_app
from tests.conftest import png_bytes


IMAGE = base64.b64encode(png_bytes(32, 24)).decode()


@pytest.fixture
def client(tmp_path):
    settings = Settings(cache_dir=tmp_path / "cache", execution_strategy="sequential", max_concurrency=2)
    return TestClient(create_app(settings))


def _events(body: str) -> list[tuple[str, dict]]:
    out = []
    for block in body.strip().split("\n\n"):
        lines = dict(line.split(": ", 1) for line in block.splitlines())
        out.append((lines["event"], json.loads(lines["data"])))
    return out


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["stages_registered"] == 4
    assert data["execution_strategy"] == "sequential"
    assert "advanced:blue_noise" in data["sampling_strategies"]


def test_generate(client):
    response = client.post("/api/generate", json={"image": IMAGE, "target_count": 100, "strategy": "uniform"})
    assert response.status_code == 200
    data = response.json()
    assert data["sample_count"] == 100
    assert len(data["particles"]) == 100
    assert data["image_width"] == 32
    assert data["image_height"] == 24
    assert data["strategy"] == "uniform"
    assert data["from_cache"] is False
    assert data["analysis"]["complexity_level"] in ("low", "medium", "high")


def test_generate_second_call_hits_cache(client):
    body = {"image": IMAGE, "target_count": 60, "quality": "standard"}
    assert client.post("/api/generate", json=body).json()["from_cache"] is False
    assert client.post("/api/generate", json=body).json()["from_cache"] is True
    stats = client.get("/api/cache").json()
    assert stats["enabled"] is True
    assert stats["entries"] == 1

    cleared = client.delete("/api/cache").json()
    assert cleared["entries"] == 0


def test_generate_advanced_algorithm(client):
    response = client.post(
        "/api/generate",
        json={"image": IMAGE, "target_count": 80, "algorithm": "van_der_corput", "include_particles": False},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["strategy"] == "advanced:van_der_corput"
    assert data["particles"] == []
    assert data["sample_count"] == 80


def test_generate_accepts_data_url(client):
    response = client.post("/api/generate", json={"image": f"data:image/png;base64,{IMAGE}", "target_count": 10})
    assert response.status_code == 200


def test_generate_invalid_image(client):
    response = client.post("/api/generate", json={"image": base64.b64encode(b"nope").decode()})
    assert response.status_code == 422


def test_generate_invalid_target(client):
    response = client.post("/api/generate", json={"image": IMAGE, "target_count": 0})
    assert response.status_code == 422


def test_generate_unknown_strategy(client):
    response = client.post("/api/generate", json={"image": IMAGE, "strategy": "sparkly"})
    assert response.status_code == 422


def test_generate_stream(client):
    response = client.post("/api/generate/stream", json={"image": IMAGE, "target_count": 50, "enable_caching": False})
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    events = _events(response.text)
    names = [name for name, _ in events]
    assert names[-2:] == ["result", "done"]
    progress = [data for name, data in events if name == "progress"]
    assert [p["stage"] for p in progress][-1] == "complete"
    assert progress[-1]["progress"] == 1.0
    result = dict(events)["result"]
    assert result["sample_count"] == 50


def test_generate_stream_error(client):
    response = client.post("/api/generate/stream", json={"image": IMAGE, "target_count": -1})
    events = _events(response.text)
    assert events[-1][0] == "error"
    assert events[-1][1]["status"] == 422


def test_generate_stream_stage_failure(client):
    def broken_assembly(ctx):
        raise RuntimeError("boom")

    coordinator = client.app.state.coordinator
    coordinator.pipeline.registry.replace(StageSpec(Stage.ASSEMBLY, broken_assembly))
    response = client.post("/api/generate/stream", json={"image": IMAGE, "target_count": 30, "enable_caching": False})
    events = _events(response.text)
    names = [name for name, _ in events]
    assert "result" not in names
    assert events[-1][0] == "error"
    assert events[-1][1]["status"] == 500
    # The stream reports the stage that raised
    assert "ASSEMBLY" in events[-1][1]["message"]


def test_cancel_when_idle(client):
    response = client.post("/api/generate/cancel")
    assert response.status_code == 200
    assert response.json() == {"cancelled": False}
