"""Queue payload helpers for background agent execution runs."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any
from uuid import UUID

from agentflow.core.config import settings
from agentflow.core.logging import get_logger
from agentflow.services.agent_execution import run_agent_execution
from agentflow.services.queue import QueuedTask, enqueue_task
from agentflow.services.queue import requeue_if_failed as generic_requeue_if_failed

logger = get_logger(__name__)
TASK_TYPE = "agent_execution"


@dataclass(frozen=True)
class QueuedAgentExecution:
    """Request to run an agent's execution loop in the worker."""

    agent_id: UUID
    provider: str | None = None
    attempts: int = 0


def _task_from_payload(payload: QueuedAgentExecution) -> QueuedTask:
    return QueuedTask(
        task_type=TASK_TYPE,
        payload={"agent_id": str(payload.agent_id), "provider": payload.provider},
        attempts=payload.attempts,
    )


def decode_execution_task(task: QueuedTask) -> QueuedAgentExecution:
    if task.task_type != TASK_TYPE:
        raise ValueError(f"Unexpected task_type={task.task_type!r}; expected {TASK_TYPE!r}")
    payload: dict[str, Any] = task.payload
    raw_provider = payload.get("provider")
    return QueuedAgentExecution(
        agent_id=UUID(str(payload["agent_id"])),
        provider=str(raw_provider) if raw_provider else None,
        attempts=task.attempts,
    )


def enqueue_agent_execution(payload: QueuedAgentExecution) -> bool:
    """Queue an execution run for the worker. Never raises."""
    ok = enqueue_task(_task_from_payload(payload))
    if ok:
        logger.info(
            "execution.queue.enqueued",
            extra={"agent_id": str(payload.agent_id), "provider": payload.provider},
        )
    return ok


async def process_agent_execution_task(task: QueuedTask) -> None:
    payload = decode_execution_task(task)
    summary = await run_agent_execution(payload.agent_id, provider=payload.provider)
    logger.info(
        "execution.queue.run_complete",
        extra={
            "agent_id": str(payload.agent_id),
            "iterations": summary.iterations,
            "hit_iteration_cap": summary.hit_iteration_cap,
            "next_action": summary.last_result.next_action if summary.last_result else None,
        },
    )


def requeue_execution_task(task: QueuedTask, *, delay_seconds: float = 0) -> bool:
    """Requeue a failed execution run with capped retries."""
    return generic_requeue_if_failed(
        task,
        max_retries=settings.rq_dispatch_max_retries,
        delay_seconds=max(0.0, delay_seconds),
    )
