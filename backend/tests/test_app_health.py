# ruff: noqa: INP001
"""Probe endpoints and OpenAPI surface of the assembled application."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from agentflow.main import app


@pytest.mark.parametrize("path", ["/health", "/healthz", "/readyz"])
def test_probe_endpoints_report_ok(path: str) -> None:
    resp = TestClient(app).get(path)

    assert resp.status_code == 200
    assert resp.json() == {"ok": True}


def test_openapi_lists_agentflow_routes() -> None:
    schema = TestClient(app).get("/openapi.json").json()

    paths = schema["paths"]
    for expected in (
        "/api/v1/auth/bootstrap",
        "/api/v1/agents/{agent_id}/execute",
        "/api/v1/agents/{agent_id}/generate-tasks",
        "/api/v1/tasks/{task_id}/move-to-workspace",
        "/api/v1/tasks/{task_id}/complete",
        "/api/v1/tasks/{task_id}/settings",
        "/api/v1/api-keys/{provider}",
    ):
        assert expected in paths
    assert {tag["name"] for tag in schema["tags"]} >= {"agents", "tasks", "api-keys"}


def test_protected_routes_reject_anonymous_callers() -> None:
    resp = TestClient(app).get("/api/v1/agents")

    assert resp.status_code == 401
    assert resp.headers.get("X-Request-Id")
