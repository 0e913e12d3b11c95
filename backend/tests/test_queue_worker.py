# ruff: noqa: INP001
"""Queue worker dispatch and retry tests."""

from __future__ import annotations

from typing import Any
from uuid import uuid4

import pytest

from agentflow.core.config import settings
from agentflow.services import queue_worker
from agentflow.services.execution_queue import (
    TASK_TYPE as EXECUTION_TASK_TYPE,
)
from agentflow.services.execution_queue import (
    QueuedAgentExecution,
    decode_execution_task,
    enqueue_agent_execution,
)
from agentflow.services.notifications import TASK_TYPE as NOTIFICATION_TASK_TYPE
from agentflow.services.queue import QueuedTask, dequeue_task, enqueue_task
from agentflow.services.queue_worker import _TASK_HANDLERS, _TaskHandler, flush_queue


def test_worker_registers_notification_and_execution_handlers() -> None:
    assert NOTIFICATION_TASK_TYPE in _TASK_HANDLERS
    assert EXECUTION_TASK_TYPE in _TASK_HANDLERS


def test_execution_queue_roundtrip() -> None:
    agent_id = uuid4()

    assert enqueue_agent_execution(QueuedAgentExecution(agent_id=agent_id, provider="groq"))
    queued = dequeue_task()
    assert queued is not None

    decoded = decode_execution_task(queued)
    assert decoded.agent_id == agent_id
    assert decoded.provider == "groq"
    assert decoded.attempts == 0


def test_decode_execution_task_rejects_other_types() -> None:
    with pytest.raises(ValueError, match="Unexpected task_type"):
        decode_execution_task(QueuedTask(task_type=NOTIFICATION_TASK_TYPE, payload={}))


@pytest.mark.asyncio
async def test_flush_queue_dispatches_by_task_type(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "rq_dispatch_throttle_seconds", 0)
    handled: list[dict[str, Any]] = []

    async def _handler(task: QueuedTask) -> None:
        handled.append(task.payload)

    monkeypatch.setitem(
        _TASK_HANDLERS,
        "probe",
        _TaskHandler(handler=_handler, attempts_to_delay=lambda _a: 0, requeue=lambda _t, _d: True),
    )
    enqueue_task(QueuedTask(task_type="probe", payload={"n": 1}))
    enqueue_task(QueuedTask(task_type="probe", payload={"n": 2}))
    enqueue_task(QueuedTask(task_type="unknown", payload={}))

    processed = await flush_queue()

    assert processed == 2
    assert handled == [{"n": 1}, {"n": 2}]


@pytest.mark.asyncio
async def test_flush_queue_requeues_failed_task_with_backoff(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(settings, "rq_dispatch_throttle_seconds", 0)
    monkeypatch.setattr(queue_worker, "_compute_jitter", lambda _base: 0.0)
    requeued: list[tuple[int, float]] = []

    async def _boom(_task: QueuedTask) -> None:
        raise RuntimeError("webhook down")

    def _requeue(task: QueuedTask, delay: float) -> bool:
        requeued.append((task.attempts, delay))
        return False

    monkeypatch.setitem(
        _TASK_HANDLERS,
        "probe",
        _TaskHandler(handler=_boom, attempts_to_delay=lambda a: 5.0 * (2**a), requeue=_requeue),
    )
    enqueue_task(QueuedTask(task_type="probe", payload={}, attempts=2))

    processed = await flush_queue()

    assert processed == 0
    assert requeued == [(2, 20.0)]


def test_backoff_is_capped(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "rq_dispatch_retry_base_seconds", 5.0)
    monkeypatch.setattr(settings, "rq_dispatch_retry_max_seconds", 30.0)

    assert queue_worker._backoff(0) == 5.0
    assert queue_worker._backoff(2) == 20.0
    assert queue_worker._backoff(10) == 30.0
