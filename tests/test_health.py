"""Tests for liveness and readiness endpoints."""

from __future__ import annotations

from fastapi.testclient import TestClient

from smlgpt import __version__


def test_health_endpoint_returns_healthy(client: TestClient) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "healthy"
    assert payload["version"] == __version__
    assert payload["timestamp"]


def test_health_is_200_without_any_provider_configured() -> None:
    from smlgpt.main import create_app

    with TestClient(create_app()) as test_client:
        assert test_client.get("/health").status_code == 200
        status = test_client.get("/api/status")

    assert status.status_code == 200
    payload = status.json()
    assert payload["backend"] is True
    assert payload["openai"] is False
    assert payload["vision"] is False
    assert payload["speech"] is False
    assert payload["search"] is False
    assert payload["storageBackend"] == "local"
    assert payload["queue"] is True


def test_status_reports_configured_capabilities(client: TestClient) -> None:
    payload = client.get("/api/status").json()

    assert payload["openai"] is True
    assert payload["vision"] is True
    assert payload["documents"] is True
    assert payload["worker"] is False


def test_status_health_wraps_services(client: TestClient) -> None:
    response = client.get("/api/status/health")

    assert response.status_code == 200
    payload = response.json()
    assert payload["success"] is True
    assert payload["services"]["backend"] is True
