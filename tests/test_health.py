"""
tests/test_health.py -- Integration tests for GET /api/v1/health.

Covers:
  - 200 with status, timestamp, version and per-check results
  - database check reports ok with a latency
  - no identity provider configured -> degraded, database down -> 503 outage
  - no authentication required, never cached
"""

from __future__ import annotations

from unittest.mock import patch

from api.models import HealthCheck


def test_health_reports_checks(hub):
    """Health endpoint returns status, version and the database/auth checks."""
    client, _ = hub
    resp = client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["version"] == "0.1.0"
    assert data["checks"]["database"]["status"] == "ok"
    assert isinstance(data["checks"]["database"]["latencyMs"], int)
    assert resp.headers["cache-control"] == "no-store"


def test_health_degraded_without_provider(hub):
    """The test environment configures no identity provider."""
    client, _ = hub
    data = client.get("/api/health").json()
    assert data["status"] == "degraded"
    assert data["checks"]["auth"] == {"status": "error", "message": "No identity provider configured"}


def test_health_operational_with_provider(hub):
    client, _ = hub
    with patch("api.main.get_enabled_providers", return_value=[{"name": "google", "label": "Google"}]):
        data = client.get("/api/v1/health").json()
    assert data["status"] == "operational"


def test_health_outage_when_database_down(hub):
    client, _ = hub
    down = HealthCheck(status="error", message="Database unreachable")
    with patch("api.main._check_database", return_value=down):
        resp = client.get("/api/v1/health")
    assert resp.status_code == 503
    assert resp.json()["status"] == "outage"


def test_health_no_auth_required(hub):
    """Health endpoint is accessible without any authentication headers."""
    client, _ = hub
    resp = client.get("/api/v1/health", headers={})
    assert resp.status_code == 200
