"""Deliver queued chat notifications to the configured webhook."""

from __future__ import annotations

import httpx

from agentflow.core.config import settings
from agentflow.core.logging import get_logger
from agentflow.services.notifications.queue import (
    ChatNotification,
    decode_notification_task,
    requeue_if_failed,
)
from agentflow.services.queue import QueuedTask

logger = get_logger(__name__)


async def send_chat_message(
    message: str,
    *,
    client: httpx.AsyncClient | None = None,
) -> bool:
    """POST ``{"text": message}`` to the notification webhook.

    Returns False when no webhook is configured. Non-2xx responses and
    transport errors raise so the worker can retry.
    """
    url = settings.notification_webhook_url.strip()
    if not url:
        logger.info("notification.dispatch.skipped", extra={"reason": "webhook_not_configured"})
        return False

    owns_client = client is None
    http = client or httpx.AsyncClient(timeout=settings.notification_timeout_seconds)
    try:
        response = await http.post(url, json={"text": message})
        response.raise_for_status()
    finally:
        if owns_client:
            await http.aclose()
    return True


async def _dispatch(notification: ChatNotification) -> None:
    delivered = await send_chat_message(notification.message)
    logger.info(
        "notification.dispatch",
        extra={
            "event_type": notification.event_type,
            "delivered": delivered,
            "attempt": notification.attempts,
        },
    )


async def process_notification_task(task: QueuedTask) -> None:
    """Decode and deliver a queued notification."""
    await _dispatch(decode_notification_task(task))


def requeue_notification_task(task: QueuedTask, *, delay_seconds: float = 0) -> bool:
    """Requeue a failed notification job."""
    return requeue_if_failed(decode_notification_task(task), delay_seconds=delay_seconds)
