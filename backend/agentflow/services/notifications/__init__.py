"""Chat notification queueing and webhook dispatch."""

from agentflow.services.notifications.queue import (
    TASK_TYPE,
    ChatNotification,
    decode_notification_task,
    enqueue_notification,
)

__all__ = [
    "TASK_TYPE",
    "ChatNotification",
    "decode_notification_task",
    "enqueue_notification",
]
