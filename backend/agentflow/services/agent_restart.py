"""Reactivate an agent once none of its dependencies block it any more."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlmodel import col

from agentflow.core.logging import get_logger
from agentflow.core.time import utcnow, utcnow_iso
from agentflow.models.agents import Agent, AgentStatus
from agentflow.models.tasks import PENDING_DEPENDENCY_STATUSES, Task
from agentflow.services.agent_logs import record_agent_log

if TYPE_CHECKING:
    from uuid import UUID

    from sqlmodel.ext.asyncio.session import AsyncSession

logger = get_logger(__name__)

DEFAULT_RESTART_REASON = "All dependencies completed by user or task completion unblocked agent."


async def count_blocking_dependencies(session: AsyncSession, agent_id: UUID) -> int:
    """Count dependencies of ``agent_id`` that are still todo or blocked."""
    return await (
        Task.objects.filter_by(agent_id=agent_id, is_dependency=True)
        .filter(col(Task.status).in_(PENDING_DEPENDENCY_STATUSES))
        .count(session)
    )


async def check_agent_restart(
    session: AsyncSession,
    agent_id: UUID,
    *,
    reason: str = DEFAULT_RESTART_REASON,
    user_id: UUID | None = None,
    commit: bool = False,
) -> bool:
    """Set the agent ``active`` when it has no blocking dependencies left.

    Returns True when the agent was (re)activated. Re-running on an already
    active agent re-stamps the restart metadata. Pending changes in the
    session are flushed by the count query, so a dependency completed in the
    same transaction is not counted as blocking.
    """
    agent = await Agent.objects.by_id(agent_id).first(session)
    if agent is None:
        logger.warning("agent.restart.agent_missing", extra={"agent_id": str(agent_id)})
        return False

    remaining = await count_blocking_dependencies(session, agent.id)
    if remaining:
        logger.info(
            "agent.restart.still_blocked",
            extra={"agent_id": str(agent.id), "remaining_dependencies": remaining},
        )
        return False

    previous_status = agent.status
    agent.status = AgentStatus.ACTIVE.value
    agent.merge_json(
        "agent_metadata",
        {
            "auto_restarted": True,
            "restart_reason": reason,
            "restarted_at": utcnow_iso(),
        },
    )
    agent.updated_at = utcnow()
    session.add(agent)
    await record_agent_log(
        session,
        agent_id=agent.id,
        user_id=user_id,
        log_type="milestone",
        message="Agent automatically restarted - all dependencies resolved.",
        metadata={
            "auto_restart": True,
            "trigger": "dependency_resolution",
            "previous_status": previous_status,
        },
        commit=False,
    )
    if commit:
        await session.commit()
    else:
        await session.flush()
    logger.info(
        "agent.restart.activated",
        extra={"agent_id": str(agent.id), "previous_status": previous_status},
    )
    return True


async def try_agent_restart(
    session: AsyncSession,
    agent_id: UUID,
    *,
    reason: str = DEFAULT_RESTART_REASON,
    user_id: UUID | None = None,
) -> bool | None:
    """Run the restart check in a savepoint of the caller's transaction.

    Any failure rolls back only the check's own writes and returns None.
    """
    try:
        async with session.begin_nested():
            return await check_agent_restart(session, agent_id, reason=reason, user_id=user_id)
    except Exception:
        logger.exception("agent.restart.failed", extra={"agent_id": str(agent_id)})
        return None
