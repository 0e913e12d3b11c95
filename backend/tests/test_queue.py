# ruff: noqa: INP001
"""Redis list queue helper tests."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any

import pytest
import redis

from agentflow.services import queue as queue_module
from agentflow.services.queue import (
    QueuedTask,
    dequeue_task,
    enqueue_task,
    publish,
    requeue_if_failed,
    schedule_task,
)


@pytest.mark.parametrize("attempts", [0, 1, 2])
def test_queue_roundtrip(attempts: int) -> None:
    payload = QueuedTask(
        task_type="chat_notification",
        payload={"message": "hello"},
        created_at=datetime.now(UTC),
        attempts=attempts,
    )

    assert enqueue_task(payload, "jobs")
    item = dequeue_task("jobs")
    assert item is not None
    assert item.task_type == payload.task_type
    assert item.payload == payload.payload
    assert item.attempts == attempts
    assert dequeue_task("jobs") is None


@pytest.mark.parametrize("attempts", [0, 1, 2, 3])
def test_requeue_respects_retry_cap(attempts: int, fake_redis: Any) -> None:
    payload = QueuedTask(task_type="agent_execution", payload={}, attempts=attempts)

    if attempts >= 3:
        assert requeue_if_failed(payload, "jobs", max_retries=3) is False
        assert fake_redis.lists.get("jobs", []) == []
    else:
        assert requeue_if_failed(payload, "jobs", max_retries=3) is True
        requeued = dequeue_task("jobs")
        assert requeued is not None
        assert requeued.attempts == attempts + 1


def test_delayed_tasks_wait_until_due(
    monkeypatch: pytest.MonkeyPatch,
    fake_redis: Any,
) -> None:
    now = {"value": 1_000.0}
    monkeypatch.setattr(queue_module, "_now_seconds", lambda: now["value"])
    task = QueuedTask(task_type="chat_notification", payload={"message": "later"})

    assert schedule_task(task, "jobs", delay_seconds=30)
    assert fake_redis.zsets["jobs:scheduled"]
    assert dequeue_task("jobs") is None

    now["value"] = 1_031.0
    due = dequeue_task("jobs")
    assert due is not None
    assert due.payload == {"message": "later"}
    assert fake_redis.zsets["jobs:scheduled"] == {}


def test_enqueue_returns_false_when_redis_is_down(monkeypatch: pytest.MonkeyPatch) -> None:
    class _DownRedis:
        def lpush(self, *_args: object) -> None:
            raise redis.ConnectionError("connection refused")

        def publish(self, *_args: object) -> None:
            raise redis.ConnectionError("connection refused")

    monkeypatch.setattr(queue_module, "_redis_client", lambda redis_url=None: _DownRedis())

    assert enqueue_task(QueuedTask(task_type="x", payload={}), "jobs") is False
    assert publish("views", {"paths": ["/"]}) is False


def test_dequeue_reraises_undecodable_payload(fake_redis: Any) -> None:
    fake_redis.lists["jobs"] = [json.dumps({"no_task_type": True})]

    with pytest.raises(KeyError):
        dequeue_task("jobs")


def test_publish_sends_json_message(fake_redis: Any) -> None:
    assert publish("views", {"paths": ["/dashboard"]}) is True
    channel, message = fake_redis.published[0]
    assert channel == "views"
    assert json.loads(message) == {"paths": ["/dashboard"]}
