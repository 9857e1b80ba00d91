import json
import logging

import pytest


@pytest.mark.asyncio
async def test_health_endpoint_returns_200(client):
    response = await client.get("/api/v1/health")
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_health_endpoint_has_required_fields(client):
    response = await client.get("/api/v1/health")
    data = response.json()
    assert "status" in data
    assert "transcription" in data
    assert "compliance_policy" in data
    assert "timestamp" in data
    assert "environment" in data
    assert "version" in data


@pytest.mark.asyncio
async def test_health_endpoint_reports_version_and_policy(client):
    response = await client.get("/api/v1/health")
    data = response.json()
    assert data["version"] == "0.1.0"
    assert data["compliance_policy"] == "2024.1"
    assert data["transcription"] == "disabled"


@pytest.mark.asyncio
async def test_request_id_echoed(client):
    response = await client.get("/api/v1/health", headers={"X-Request-ID": "abc123"})
    assert response.headers["X-Request-ID"] == "abc123"


@pytest.mark.asyncio
async def test_request_id_generated_and_access_logged(client, caplog):
    caplog.set_level(logging.INFO, logger="pedimento.access")
    response = await client.get("/api/v1/health")

    request_id = response.headers["X-Request-ID"]
    assert len(request_id) == 8
    assert float(response.headers["X-Process-Time-Ms"]) >= 0

    entries = [json.loads(r.getMessage()) for r in caplog.records if r.name == "pedimento.access"]
    assert entries[-1]["request_id"] == request_id
    assert entries[-1]["path"] == "/api/v1/health"
    assert entries[-1]["status"] == 200
    assert "strategy" not in entries[-1]
