# ruff: noqa: INP001
"""HTTP-level tests for auth, agent, task lifecycle and API key routes."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from typing import Any
from uuid import uuid4

import pytest
import pytest_asyncio
from fastapi import APIRouter, FastAPI
from fastapi_pagination import add_pagination
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel.ext.asyncio.session import AsyncSession

from agentflow.api import agents as agents_module
from agentflow.api.agents import router as agents_router
from agentflow.api.api_keys import router as api_keys_router
from agentflow.api.auth import router as auth_router
from agentflow.api.tasks import router as tasks_router
from agentflow.core import auth as auth_module
from agentflow.core.config import settings
from agentflow.core.error_handling import install_error_handling
from agentflow.db.session import get_session
from agentflow.models.agents import Agent
from agentflow.models.users import User
from agentflow.services.llm.service import NO_PROVIDER_MESSAGE


def _build_test_app(session_maker: async_sessionmaker[AsyncSession]) -> FastAPI:
    app = FastAPI()
    install_error_handling(app)
    api_v1 = APIRouter(prefix="/api/v1")
    for router in (auth_router, agents_router, tasks_router, api_keys_router):
        api_v1.include_router(router)
    app.include_router(api_v1)
    add_pagination(app)

    async def _override_get_session() -> AsyncIterator[AsyncSession]:
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_session] = _override_get_session
    app.dependency_overrides[auth_module.get_session] = _override_get_session
    return app


@pytest_asyncio.fixture
async def client(
    session_maker: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncClient]:
    app = _build_test_app(session_maker)
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://testserver",
        headers={"Authorization": f"Bearer {settings.local_auth_token}"},
    ) as http:
        yield http


async def _create_agent(client: AsyncClient, **overrides: Any) -> dict[str, Any]:
    body = {"name": "Launch planner", "goal": "Ship the beta to first customers"}
    body.update(overrides)
    resp = await client.post("/api/v1/agents", json=body)
    assert resp.status_code == 201
    return resp.json()


@pytest.mark.asyncio
async def test_bootstrap_requires_and_accepts_local_token(
    session_maker: async_sessionmaker[AsyncSession],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    suffix = uuid4().hex
    monkeypatch.setattr(auth_module, "LOCAL_AUTH_USER_ID", f"local-{suffix}")
    monkeypatch.setattr(auth_module, "LOCAL_AUTH_EMAIL", f"local-{suffix}@localhost")
    app = _build_test_app(session_maker)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as http:
        missing = await http.post("/api/v1/auth/bootstrap")
        wrong = await http.post(
            "/api/v1/auth/bootstrap",
            headers={"Authorization": "Bearer wrong-token"},
        )
        first = await http.post(
            "/api/v1/auth/bootstrap",
            headers={"Authorization": f"Bearer {settings.local_auth_token}"},
        )
        second = await http.post(
            "/api/v1/auth/bootstrap",
            headers={"Authorization": f"Bearer {settings.local_auth_token}"},
        )

    assert missing.status_code == 401
    assert wrong.status_code == 401
    assert first.status_code == 200
    assert first.json()["clerk_user_id"] == f"local-{suffix}"
    assert first.json()["email"] == f"local-{suffix}@localhost"
    assert second.json()["id"] == first.json()["id"]


@pytest.mark.asyncio
async def test_agent_crud_and_logs(client: AsyncClient) -> None:
    agent = await _create_agent(client, name="  Researcher  ")
    assert agent["name"] == "Researcher"
    assert agent["status"] == "draft"

    listed = await client.get("/api/v1/agents")
    assert [item["id"] for item in listed.json()] == [agent["id"]]

    patched = await client.patch(f"/api/v1/agents/{agent['id']}", json={"status": "paused"})
    assert patched.status_code == 200
    assert patched.json()["status"] == "paused"

    logs = await client.get(f"/api/v1/agents/{agent['id']}/logs", params={"limit": 10})
    assert logs.status_code == 200
    page = logs.json()
    assert page["total"] == 2
    assert page["limit"] == 10
    assert [item["message"] for item in page["items"]] == [
        "Agent settings updated",
        "Agent created: Researcher",
    ]


@pytest.mark.asyncio
async def test_agent_routes_enforce_ownership(
    client: AsyncClient,
    session_maker: async_sessionmaker[AsyncSession],
) -> None:
    async with session_maker() as session:
        stranger = User(clerk_user_id=f"user-{uuid4().hex}", email="s@example.com")
        session.add(stranger)
        await session.commit()
        foreign = Agent(owner_id=stranger.id, name="Not yours", goal="Something private")
        session.add(foreign)
        await session.commit()
        foreign_id = foreign.id

    forbidden = await client.get(f"/api/v1/agents/{foreign_id}")
    missing = await client.get(f"/api/v1/agents/{uuid4()}")

    assert forbidden.status_code == 403
    assert forbidden.json()["detail"] == "You don't have permission to access this agent"
    assert missing.status_code == 404
    assert missing.json()["detail"] == "Agent not found"


@pytest.mark.asyncio
async def test_dependency_moves_through_views(client: AsyncClient, fake_redis: Any) -> None:
    agent = await _create_agent(client)
    created = await client.post(
        f"/api/v1/agents/{agent['id']}/dependencies",
        json={"title": "Approve launch budget", "reason": "Finance sign-off"},
    )
    assert created.status_code == 201
    task = created.json()
    assert task["status"] == "blocked"
    assert task["phase"] == "dependency"

    pending = await client.get("/api/v1/tasks", params={"view": "dependencies"})
    assert [item["id"] for item in pending.json()] == [task["id"]]

    moved = await client.post(f"/api/v1/tasks/{task['id']}/move-to-workspace")
    assert moved.status_code == 200
    assert moved.json()["success"] is True
    workspace = await client.get("/api/v1/tasks", params={"view": "workspace"})
    assert [item["id"] for item in workspace.json()] == [task["id"]]

    settings_resp = await client.patch(
        f"/api/v1/tasks/{task['id']}/settings",
        json={"estimated_hours": 1.5, "user_notes": "Waiting on CFO"},
    )
    assert settings_resp.status_code == 200

    done = await client.post(
        f"/api/v1/tasks/{task['id']}/complete",
        json={"completion_notes": "Approved at 20k"},
    )
    assert done.status_code == 200
    assert done.json()["success"] is True
    history = (await client.get("/api/v1/tasks", params={"view": "history"})).json()
    assert [item["id"] for item in history] == [task["id"]]
    metadata = history[0]["task_metadata"]
    assert metadata["estimated_hours"] == 1.5
    assert metadata["user_notes"] == "Waiting on CFO"
    assert (await client.get("/api/v1/tasks", params={"view": "dependencies"})).json() == []

    events = [
        json.loads(raw)["payload"]["event_type"]
        for raw in fake_redis.lists.get(settings.rq_queue_name, [])
    ]
    assert "task_moved" in events
    assert "task_completed" in events


@pytest.mark.asyncio
async def test_task_actions_report_errors_as_results(client: AsyncClient) -> None:
    missing_id = uuid4()
    missing = await client.post(f"/api/v1/tasks/{missing_id}/move-to-workspace")

    assert missing.status_code == 404
    assert missing.json()["success"] is False
    assert missing.json()["error"] == f"Task not found (ID: {missing_id})"

    unknown_key = await client.patch(
        f"/api/v1/tasks/{missing_id}/settings",
        json={"color": "red"},
    )
    assert unknown_key.status_code == 422


@pytest.mark.asyncio
async def test_agent_task_creation(client: AsyncClient) -> None:
    agent = await _create_agent(client)

    work = await client.post(
        f"/api/v1/agents/{agent['id']}/tasks",
        json={"title": "Draft the press release", "priority": "high"},
    )
    blocked = await client.post(
        f"/api/v1/agents/{agent['id']}/tasks",
        json={
            "title": "Confirm launch date",
            "is_dependency": True,
            "blocked_reason": "Needs CEO",
        },
    )
    too_short = await client.post(f"/api/v1/agents/{agent['id']}/tasks", json={"title": "Go"})

    assert work.status_code == 201
    assert work.json()["status"] == "todo"
    assert work.json()["phase"] == "agent"
    assert blocked.json()["status"] == "blocked"
    assert blocked.json()["blocked_reason"] == "Needs CEO"
    assert too_short.status_code == 422
    tasks = (await client.get(f"/api/v1/agents/{agent['id']}/tasks")).json()
    assert [item["title"] for item in tasks] == ["Draft the press release", "Confirm launch date"]


@pytest.mark.asyncio
async def test_api_key_routes(client: AsyncClient) -> None:
    stored = await client.put(
        "/api/v1/api-keys/openai",
        json={"api_key": "  sk-proj-abcdefgh1234  ", "preferred_model": "gpt-4o"},
    )
    assert stored.status_code == 200
    assert stored.json()["key_hint"] == "sk-...1234"
    assert "api_key" not in stored.json()
    assert "encrypted_key" not in stored.json()

    providers = {item["id"]: item for item in (await client.get("/api/v1/providers")).json()}
    assert providers["openai"]["configured"] is True
    assert providers["anthropic"]["configured"] is False

    bad_model = await client.put(
        "/api/v1/api-keys/groq",
        json={"api_key": "gsk-0123456789", "preferred_model": "gpt-4o"},
    )
    unknown = await client.put("/api/v1/api-keys/mistral", json={"api_key": "0123456789ab"})
    assert bad_model.status_code == 422
    assert unknown.status_code == 404

    assert (await client.delete("/api/v1/api-keys/openai")).status_code == 204
    assert (await client.delete("/api/v1/api-keys/openai")).status_code == 404
    assert (await client.get("/api/v1/api-keys")).json() == []


@pytest.mark.asyncio
async def test_api_key_storage_without_encryption_key(
    client: AsyncClient,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(settings, "encryption_key", "")

    resp = await client.put("/api/v1/api-keys/openai", json={"api_key": "sk-proj-abcdefgh1234"})

    assert resp.status_code == 503
    assert resp.json()["detail"] == "API key encryption is not configured"


@pytest.mark.asyncio
async def test_execute_requires_provider_then_queues(
    client: AsyncClient,
    fake_redis: Any,
) -> None:
    agent = await _create_agent(client)
    url = f"/api/v1/agents/{agent['id']}/execute"

    no_keys = await client.post(url, json={})
    assert no_keys.status_code == 422
    assert no_keys.json()["detail"] == NO_PROVIDER_MESSAGE

    await client.put("/api/v1/api-keys/groq", json={"api_key": "gsk-0123456789abcdef"})
    wrong_provider = await client.post(url, json={"provider": "openai"})
    assert wrong_provider.status_code == 422

    queued = await client.post(url, json={})
    assert queued.status_code == 202
    assert queued.json()["queued"] is True
    assert queued.json()["providers"] == ["groq"]

    jobs = [
        job
        for job in (json.loads(raw) for raw in fake_redis.lists[settings.rq_queue_name])
        if job["task_type"] == "agent_execution"
    ]
    assert len(jobs) == 1
    assert jobs[0]["payload"]["agent_id"] == agent["id"]
    refreshed = (await client.get(f"/api/v1/agents/{agent['id']}")).json()
    assert refreshed["status"] == "active"


@pytest.mark.asyncio
async def test_execute_reverts_agent_when_queue_is_down(
    client: AsyncClient,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    agent = await _create_agent(client)
    await client.put("/api/v1/api-keys/groq", json={"api_key": "gsk-0123456789abcdef"})
    monkeypatch.setattr(agents_module, "enqueue_agent_execution", lambda _payload: False)

    resp = await client.post(f"/api/v1/agents/{agent['id']}/execute", json={})

    assert resp.status_code == 503
    assert resp.json()["detail"] == "Execution queue is unavailable"
    refreshed = (await client.get(f"/api/v1/agents/{agent['id']}")).json()
    assert refreshed["status"] == agent["status"]
    logs = (await client.get(f"/api/v1/agents/{agent['id']}/logs")).json()["items"]
    messages = {log["message"] for log in logs}
    assert {"Execution started", "Execution could not be queued"} <= messages


@pytest.mark.asyncio
async def test_generate_tasks_validates_goal(client: AsyncClient) -> None:
    agent = await _create_agent(client)

    resp = await client.post(
        f"/api/v1/agents/{agent['id']}/generate-tasks",
        json={"goal": "  tiny  "},
    )

    assert resp.status_code == 422
    assert resp.json()["detail"] == "Goal must be at least 10 characters long"


@pytest.mark.asyncio
async def test_generate_tasks_falls_back_without_keys(client: AsyncClient) -> None:
    agent = await _create_agent(client)

    resp = await client.post(f"/api/v1/agents/{agent['id']}/generate-tasks", json={})

    assert resp.status_code == 200
    body = resp.json()
    assert body["used_fallback"] is True
    assert len(body["tasks"]) == 4
    assert all(task["auto_generated"] for task in body["tasks"])
