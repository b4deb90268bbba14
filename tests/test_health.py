"""
tests/test_health.py -- Integration tests for GET /api/v1/health.

Covers:
  - 200 response with status, version, and components fields
  - No authentication required (anonymous guard rule)
"""

from __future__ import annotations


def test_health_returns_200_with_components(server):
    """Health endpoint returns 200 with status, version, and components."""
    resp = server.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert data["version"]
    assert data["components"]["app"] == "ok"
    assert data["components"]["token_store"] == "ok"


def test_health_no_auth_required(server):
    """Health endpoint is reachable without a session cookie or bearer token."""
    resp = server.get("/api/v1/health", headers={})
    assert resp.status_code == 200
    assert "location" not in resp.headers


def test_untrusted_host_rejected(server):
    resp = server.get("/api/v1/health", headers={"Host": "evil.example"})
    assert resp.status_code == 400
