"""Append-only agent activity log writes."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import SQLAlchemyError

from agentflow.core.logging import get_logger
from agentflow.core.time import utcnow
from agentflow.models.agent_logs import LOG_TYPES, AgentLog

if TYPE_CHECKING:
    from uuid import UUID

    from sqlmodel.ext.asyncio.session import AsyncSession

logger = get_logger(__name__)


async def record_agent_log(
    session: AsyncSession,
    *,
    agent_id: UUID,
    log_type: str,
    message: str,
    user_id: UUID | None = None,
    metadata: dict[str, Any] | None = None,
    commit: bool = True,
) -> AgentLog:
    """Create an agent log row."""
    if log_type not in LOG_TYPES:
        raise ValueError(f"Unknown agent log type: {log_type!r}")
    entry = AgentLog(
        agent_id=agent_id,
        user_id=user_id,
        log_type=log_type,
        message=message,
        log_metadata=metadata,
        created_at=utcnow(),
    )
    session.add(entry)
    if commit:
        await session.commit()
        await session.refresh(entry)
    return entry


async def try_record_agent_log(
    session: AsyncSession,
    *,
    agent_id: UUID,
    log_type: str,
    message: str,
    user_id: UUID | None = None,
    metadata: dict[str, Any] | None = None,
) -> AgentLog | None:
    """Write a log row inside a savepoint; a failed write never affects the caller."""
    try:
        async with session.begin_nested():
            entry = await record_agent_log(
                session,
                agent_id=agent_id,
                log_type=log_type,
                message=message,
                user_id=user_id,
                metadata=metadata,
                commit=False,
            )
            await session.flush()
    except SQLAlchemyError:
        logger.warning(
            "agent_log.write_failed",
            extra={"agent_id": str(agent_id), "log_type": log_type},
            exc_info=True,
        )
        return None
    return entry
