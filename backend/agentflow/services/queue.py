"""Redis list-backed job queue shared by the API and the worker process.

Jobs are JSON envelopes pushed onto a list; delayed retries sit in a sorted
set keyed by due time and are moved back onto the list when they come due.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Any, cast

import redis

from agentflow.core.config import settings
from agentflow.core.logging import get_logger

logger = get_logger(__name__)

_SCHEDULED_SUFFIX = ":scheduled"
_DRAIN_BATCH_SIZE = 100


@dataclass(frozen=True)
class QueuedTask:
    """Job envelope persisted on the queue."""

    task_type: str
    payload: dict[str, Any]
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    attempts: int = 0

    def to_json(self) -> str:
        return json.dumps(
            {
                "task_type": self.task_type,
                "payload": self.payload,
                "created_at": self.created_at.isoformat(),
                "attempts": self.attempts,
            },
            sort_keys=True,
        )

    @classmethod
    def from_json(cls, raw: str | bytes) -> QueuedTask:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        data: dict[str, Any] = json.loads(raw)
        return cls(
            task_type=str(data["task_type"]),
            payload=dict(data.get("payload") or {}),
            created_at=datetime.fromisoformat(data["created_at"]),
            attempts=int(data.get("attempts", 0)),
        )


def _redis_client(redis_url: str | None = None) -> redis.Redis:
    return redis.Redis.from_url(redis_url or settings.rq_redis_url)


def _scheduled_queue_name(queue_name: str) -> str:
    return f"{queue_name}{_SCHEDULED_SUFFIX}"


def _now_seconds() -> float:
    return time.time()


def _drain_ready_scheduled_tasks(client: redis.Redis, queue_name: str) -> float | None:
    """Move due jobs onto the list; return seconds until the next scheduled job."""
    scheduled_queue = _scheduled_queue_name(queue_name)
    now = _now_seconds()

    ready_items = cast(
        list[str | bytes],
        client.zrangebyscore(scheduled_queue, "-inf", now, start=0, num=_DRAIN_BATCH_SIZE),
    )
    if ready_items:
        client.lpush(queue_name, *ready_items)
        client.zrem(scheduled_queue, *ready_items)
        logger.debug(
            "queue.scheduled.drained",
            extra={"queue_name": queue_name, "count": len(ready_items)},
        )

    next_item = cast(
        list[tuple[str | bytes, float]],
        client.zrangebyscore(scheduled_queue, now, "+inf", start=0, num=1, withscores=True),
    )
    if not next_item:
        return None
    return max(0.0, float(next_item[0][1]) - now)


def enqueue_task(
    task: QueuedTask,
    queue_name: str | None = None,
    *,
    redis_url: str | None = None,
) -> bool:
    """Push a job onto the queue. Returns False when Redis is unreachable."""
    queue_name = queue_name or settings.rq_queue_name
    try:
        _redis_client(redis_url=redis_url).lpush(queue_name, task.to_json())
    except redis.RedisError as exc:
        logger.warning(
            "queue.enqueue_failed",
            extra={"task_type": task.task_type, "queue_name": queue_name, "error": str(exc)},
        )
        return False
    logger.info(
        "queue.enqueued",
        extra={"task_type": task.task_type, "queue_name": queue_name, "attempt": task.attempts},
    )
    return True


def schedule_task(
    task: QueuedTask,
    queue_name: str | None = None,
    *,
    delay_seconds: float,
    redis_url: str | None = None,
) -> bool:
    """Enqueue now when ``delay_seconds`` is zero, otherwise park it until due."""
    queue_name = queue_name or settings.rq_queue_name
    delay = max(0.0, float(delay_seconds))
    if delay == 0:
        return enqueue_task(task, queue_name, redis_url=redis_url)
    try:
        _redis_client(redis_url=redis_url).zadd(
            _scheduled_queue_name(queue_name),
            {task.to_json(): _now_seconds() + delay},
        )
    except redis.RedisError as exc:
        logger.warning(
            "queue.schedule_failed",
            extra={
                "task_type": task.task_type,
                "queue_name": queue_name,
                "delay_seconds": delay,
                "error": str(exc),
            },
        )
        return False
    logger.info(
        "queue.scheduled",
        extra={"task_type": task.task_type, "queue_name": queue_name, "delay_seconds": delay},
    )
    return True


def dequeue_task(
    queue_name: str | None = None,
    *,
    redis_url: str | None = None,
    block: bool = False,
    block_timeout: float = 0,
) -> QueuedTask | None:
    """Pop one job from the queue, draining due scheduled jobs first."""
    queue_name = queue_name or settings.rq_queue_name
    client = _redis_client(redis_url=redis_url)
    next_delay = _drain_ready_scheduled_tasks(client, queue_name)
    raw: str | bytes | None
    if block:
        timeout = max(0.0, float(block_timeout))
        if next_delay is not None:
            timeout = min(timeout, next_delay) if timeout else next_delay
        result = cast(
            tuple[bytes | str, bytes | str] | None,
            client.brpop([queue_name], timeout=timeout),
        )
        raw = result[1] if result is not None else None
    else:
        raw = cast(str | bytes | None, client.rpop(queue_name))
    if raw is None:
        return None
    try:
        return QueuedTask.from_json(raw)
    except (KeyError, TypeError, ValueError):
        logger.error(
            "queue.decode_failed",
            extra={"queue_name": queue_name, "raw_payload": str(raw)[:500]},
        )
        raise


def requeue_if_failed(
    task: QueuedTask,
    queue_name: str | None = None,
    *,
    max_retries: int | None = None,
    redis_url: str | None = None,
    delay_seconds: float = 0,
) -> bool:
    """Requeue a failed job with one more attempt; drop it past ``max_retries``."""
    queue_name = queue_name or settings.rq_queue_name
    limit = settings.rq_dispatch_max_retries if max_retries is None else max_retries
    retried = replace(task, attempts=task.attempts + 1)
    if retried.attempts > limit:
        logger.warning(
            "queue.drop_failed_task",
            extra={
                "task_type": task.task_type,
                "queue_name": queue_name,
                "attempts": retried.attempts,
            },
        )
        return False
    return schedule_task(retried, queue_name, delay_seconds=delay_seconds, redis_url=redis_url)


def publish(channel: str, message: dict[str, Any], *, redis_url: str | None = None) -> bool:
    """Publish a JSON message on a Redis pub/sub channel. Returns False on failure."""
    try:
        _redis_client(redis_url=redis_url).publish(channel, json.dumps(message, sort_keys=True))
    except redis.RedisError as exc:
        logger.warning("queue.publish_failed", extra={"channel": channel, "error": str(exc)})
        return False
    return True
