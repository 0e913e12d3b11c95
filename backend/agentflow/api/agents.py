"""Agent CRUD, agent logs, agent tasks, execution, and goal decomposition routes."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, HTTPException, status
from sqlmodel import col, select

from agentflow.api.deps import OWNED_AGENT_DEP, SESSION_DEP, USER_DEP
from agentflow.core.logging import get_logger
from agentflow.core.time import utcnow
from agentflow.db.pagination import paginate
from agentflow.models.agent_logs import AgentLog
from agentflow.models.agents import Agent, AgentStatus
from agentflow.models.tasks import Task
from agentflow.schemas.agent_logs import AgentLogRead
from agentflow.schemas.agents import (
    AgentCreate,
    AgentExecuteRequest,
    AgentExecuteResponse,
    AgentRead,
    AgentUpdate,
    GenerateTasksRequest,
    GenerateTasksResponse,
)
from agentflow.schemas.pagination import DefaultLimitOffsetPage
from agentflow.schemas.tasks import DependencyCreate, TaskCreate, TaskRead
from agentflow.services.agent_logs import record_agent_log, try_record_agent_log
from agentflow.services.api_keys import configured_providers
from agentflow.services.execution_queue import QueuedAgentExecution, enqueue_agent_execution
from agentflow.services.llm.service import NO_PROVIDER_MESSAGE
from agentflow.services.task_generation import GoalValidationError, generate_agent_tasks
from agentflow.services.task_lifecycle import create_agent_dependency, create_task
from agentflow.services.view_invalidation import (
    DASHBOARD_PATH,
    DEPENDENCIES_PATH,
    agent_path,
    invalidate_views,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from fastapi_pagination.limit_offset import LimitOffsetPage
    from sqlmodel.ext.asyncio.session import AsyncSession

    from agentflow.models.users import User

router = APIRouter(prefix="/agents", tags=["agents"])
logger = get_logger(__name__)


def _to_log_reads(items: Sequence[Any]) -> list[AgentLogRead]:
    logs: list[AgentLogRead] = []
    for item in items:
        if not isinstance(item, AgentLog):
            msg = "Expected AgentLog items from paginated query"
            raise TypeError(msg)
        logs.append(AgentLogRead.model_validate(item, from_attributes=True))
    return logs


@router.post("", response_model=AgentRead, status_code=status.HTTP_201_CREATED)
async def create_agent(
    payload: AgentCreate,
    user: User = USER_DEP,
    session: AsyncSession = SESSION_DEP,
) -> Agent:
    """Create an agent owned by the caller."""
    agent = Agent(owner_id=user.id, **payload.model_dump())
    session.add(agent)
    await session.flush()
    await record_agent_log(
        session,
        agent_id=agent.id,
        user_id=user.id,
        log_type="milestone",
        message=f"Agent created: {agent.name}",
        metadata={"agent_type": agent.agent_type},
        commit=False,
    )
    await session.commit()
    await session.refresh(agent)
    logger.info("agent.created", extra={"agent_id": str(agent.id), "user_id": str(user.id)})
    invalidate_views([DASHBOARD_PATH])
    return agent


@router.get("", response_model=list[AgentRead])
async def list_agents(
    user: User = USER_DEP,
    session: AsyncSession = SESSION_DEP,
) -> list[Agent]:
    """List the caller's agents, newest first."""
    return await (
        Agent.objects.filter_by(owner_id=user.id)
        .order_by(col(Agent.created_at).desc())
        .all(session)
    )


@router.get("/{agent_id}", response_model=AgentRead)
async def get_agent(agent: Agent = OWNED_AGENT_DEP) -> Agent:
    """Return one of the caller's agents."""
    return agent


@router.patch("/{agent_id}", response_model=AgentRead)
async def update_agent(
    payload: AgentUpdate,
    agent: Agent = OWNED_AGENT_DEP,
    session: AsyncSession = SESSION_DEP,
) -> Agent:
    """Update an agent's name, goal, type or status."""
    updates = payload.model_dump(exclude_unset=True, exclude_none=True)
    if "status" in updates:
        updates["status"] = AgentStatus(updates["status"]).value
    for key, value in updates.items():
        setattr(agent, key, value)
    if updates:
        agent.updated_at = utcnow()
        session.add(agent)
        await try_record_agent_log(
            session,
            agent_id=agent.id,
            user_id=agent.owner_id,
            log_type="info",
            message="Agent settings updated",
            metadata={"fields": sorted(updates)},
        )
        await session.commit()
        await session.refresh(agent)
        invalidate_views([agent_path(agent.id), DASHBOARD_PATH])
    return agent


@router.get("/{agent_id}/logs", response_model=DefaultLimitOffsetPage[AgentLogRead])
async def list_agent_logs(
    agent: Agent = OWNED_AGENT_DEP,
    session: AsyncSession = SESSION_DEP,
) -> LimitOffsetPage[AgentLogRead]:
    """List an agent's activity log, newest first."""
    statement = (
        select(AgentLog)
        .where(col(AgentLog.agent_id) == agent.id)
        .order_by(col(AgentLog.created_at).desc())
    )
    return await paginate(session, statement, transformer=_to_log_reads)


@router.get("/{agent_id}/tasks", response_model=list[TaskRead])
async def list_agent_tasks(
    agent: Agent = OWNED_AGENT_DEP,
    session: AsyncSession = SESSION_DEP,
) -> list[Task]:
    """List every task of an agent in creation order."""
    return await (
        Task.objects.filter_by(agent_id=agent.id)
        .order_by(col(Task.created_at).asc())
        .all(session)
    )


@router.post(
    "/{agent_id}/tasks",
    response_model=TaskRead,
    status_code=status.HTTP_201_CREATED,
)
async def create_agent_task(
    payload: TaskCreate,
    agent: Agent = OWNED_AGENT_DEP,
    session: AsyncSession = SESSION_DEP,
) -> Task:
    """Add a task to an agent; dependencies start blocked."""
    task = await create_task(
        session,
        agent=agent,
        title=payload.title,
        description=payload.description,
        priority=payload.priority,
        is_dependency=payload.is_dependency,
        blocked_reason=payload.blocked_reason,
    )
    await session.flush()
    await try_record_agent_log(
        session,
        agent_id=agent.id,
        user_id=agent.owner_id,
        log_type="dependency" if payload.is_dependency else "info",
        message=f"Task created: {task.title}",
        metadata={"task_id": str(task.id), "is_dependency": payload.is_dependency},
    )
    await session.commit()
    await session.refresh(task)
    paths = [agent_path(agent.id)]
    if payload.is_dependency:
        paths.append(DEPENDENCIES_PATH)
    invalidate_views(paths)
    return task


@router.post(
    "/{agent_id}/dependencies",
    response_model=TaskRead,
    status_code=status.HTTP_201_CREATED,
)
async def create_dependency(
    payload: DependencyCreate,
    agent: Agent = OWNED_AGENT_DEP,
    user: User = USER_DEP,
    session: AsyncSession = SESSION_DEP,
) -> Task:
    """Raise a human-input dependency that blocks the agent."""
    task = await create_agent_dependency(
        session,
        agent=agent,
        title=payload.title,
        reason=payload.reason,
        priority=payload.priority,
        user_id=user.id,
    )
    await session.refresh(task)
    return task


@router.post(
    "/{agent_id}/execute",
    response_model=AgentExecuteResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def execute_agent(
    payload: AgentExecuteRequest,
    agent: Agent = OWNED_AGENT_DEP,
    session: AsyncSession = SESSION_DEP,
) -> AgentExecuteResponse:
    """Queue a background execution run for the agent."""
    providers = await configured_providers(session, agent.owner_id)
    if not providers:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=NO_PROVIDER_MESSAGE,
        )
    if payload.provider is not None and payload.provider not in providers:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"No API key stored for provider {payload.provider}",
        )

    agent_id = agent.id
    previous_status = agent.status
    agent.status = AgentStatus.ACTIVE.value
    agent.updated_at = utcnow()
    session.add(agent)
    await try_record_agent_log(
        session,
        agent_id=agent_id,
        user_id=agent.owner_id,
        log_type="info",
        message="Execution started",
        metadata={"providers": providers, "provider": payload.provider},
    )
    await session.commit()

    if not enqueue_agent_execution(
        QueuedAgentExecution(agent_id=agent_id, provider=payload.provider),
    ):
        agent.status = previous_status
        agent.updated_at = utcnow()
        session.add(agent)
        await try_record_agent_log(
            session,
            agent_id=agent_id,
            user_id=agent.owner_id,
            log_type="error",
            message="Execution could not be queued",
            metadata={"provider": payload.provider},
        )
        await session.commit()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Execution queue is unavailable",
        )

    invalidate_views([agent_path(agent_id)])
    return AgentExecuteResponse(
        queued=True,
        agent_id=agent_id,
        providers=providers,
        message="Agent execution queued.",
    )


@router.post("/{agent_id}/generate-tasks", response_model=GenerateTasksResponse)
async def generate_tasks(
    payload: GenerateTasksRequest,
    agent: Agent = OWNED_AGENT_DEP,
    session: AsyncSession = SESSION_DEP,
) -> GenerateTasksResponse:
    """Break the agent goal (or ``payload.goal``) into tasks."""
    try:
        outcome = await generate_agent_tasks(
            session,
            agent=agent,
            goal=payload.goal,
            provider=payload.provider,
        )
    except GoalValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(exc),
        ) from exc
    return GenerateTasksResponse(
        tasks=[TaskRead.model_validate(task, from_attributes=True) for task in outcome.tasks],
        used_fallback=outcome.used_fallback,
        provider=outcome.provider,
        error=outcome.error,
    )
