"""Chat notification queue persistence helpers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from agentflow.core.logging import get_logger
from agentflow.services.queue import QueuedTask, enqueue_task
from agentflow.services.queue import requeue_if_failed as generic_requeue_if_failed

logger = get_logger(__name__)
TASK_TYPE = "chat_notification"


@dataclass(frozen=True)
class ChatNotification:
    """Human-readable message announcing a task lifecycle event."""

    event_type: str  # task_moved | task_completed
    message: str
    context: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    attempts: int = 0


def _task_from_notification(notification: ChatNotification) -> QueuedTask:
    return QueuedTask(
        task_type=TASK_TYPE,
        payload={
            "event_type": notification.event_type,
            "message": notification.message,
            "context": notification.context,
        },
        created_at=notification.created_at,
        attempts=notification.attempts,
    )


def decode_notification_task(task: QueuedTask) -> ChatNotification:
    """Decode a queued job into a ChatNotification."""
    if task.task_type != TASK_TYPE:
        raise ValueError(f"Unexpected task_type={task.task_type!r}; expected {TASK_TYPE!r}")
    payload = task.payload
    return ChatNotification(
        event_type=str(payload["event_type"]),
        message=str(payload["message"]),
        context=dict(payload.get("context") or {}),
        created_at=task.created_at,
        attempts=task.attempts,
    )


def enqueue_notification(notification: ChatNotification) -> bool:
    """Queue a notification for the worker. Never raises."""
    queued = enqueue_task(_task_from_notification(notification))
    if queued:
        logger.info(
            "notification.enqueued",
            extra={"event_type": notification.event_type},
        )
    else:
        logger.warning(
            "notification.enqueue_failed",
            extra={"event_type": notification.event_type},
        )
    return queued


def requeue_if_failed(notification: ChatNotification, *, delay_seconds: float = 0) -> bool:
    """Requeue a failed notification with capped retries."""
    return generic_requeue_if_failed(
        _task_from_notification(notification),
        delay_seconds=delay_seconds,
    )
