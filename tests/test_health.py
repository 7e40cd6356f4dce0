"""
tests/test_health.py -- Integration tests for GET /api/health.

Covers:
  - 200 response with status, version and database fields
  - database reflects whether stores are attached
  - No authentication required
"""

from __future__ import annotations


def test_health_returns_200(api_client):
    """Health endpoint returns 200 with status, version, and database flag."""
    client, _, _ = api_client
    resp = client.get("/api/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert data["version"] == "1.0.0"
    assert data["database"] is True


def test_health_no_auth_required(api_client):
    """Health endpoint is accessible without any cookies or headers."""
    client, _, _ = api_client
    resp = client.get("/api/health", headers={})
    assert resp.status_code == 200


def test_unknown_host_rejected(api_client):
    """TrustedHostMiddleware refuses a Host header outside the allow list."""
    client, _, _ = api_client
    resp = client.get("/api/health", headers={"Host": "evil.example.com"})
    assert resp.status_code == 400
