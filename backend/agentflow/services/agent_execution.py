"""Minimal execution engine: advance an agent's task list one LLM call at a time."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import col

from agentflow.core.config import settings
from agentflow.core.logging import get_logger
from agentflow.core.time import utcnow
from agentflow.db.session import async_session_maker
from agentflow.models.agents import Agent, AgentStatus
from agentflow.models.tasks import Task, TaskPhase, TaskPriority, TaskStatus
from agentflow.services.agent_logs import try_record_agent_log
from agentflow.services.api_keys import configured_providers
from agentflow.services.llm.service import generate_json
from agentflow.services.task_lifecycle import create_agent_dependency, create_task
from agentflow.services.view_invalidation import DEPENDENCIES_PATH, agent_path, invalidate_views

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence
    from uuid import UUID

    from sqlalchemy.ext.asyncio import async_sessionmaker
    from sqlmodel.ext.asyncio.session import AsyncSession

    from agentflow.services.llm.providers import LLMClient

logger = get_logger(__name__)

NextAction = Literal["continue", "pause", "wait_for_dependency", "complete"]
VALID_NEXT_ACTIONS: frozenset[str] = frozenset(
    {"continue", "pause", "wait_for_dependency", "complete"},
)
NEXT_ACTION_AGENT_STATUS: dict[str, AgentStatus] = {
    "complete": AgentStatus.COMPLETED,
    "pause": AgentStatus.PAUSED,
    "wait_for_dependency": AgentStatus.BLOCKED,
    "continue": AgentStatus.ACTIVE,
}
PRIORITY_RANK: dict[str, int] = {
    TaskPriority.URGENT.value: 4,
    TaskPriority.HIGH.value: 3,
    TaskPriority.MEDIUM.value: 2,
    TaskPriority.LOW.value: 1,
}
EXECUTION_SYSTEM_PROMPT = (
    "You are an intelligent AI agent working on behalf of the user. "
    "Be helpful, thorough, and create actionable next steps."
)
CONFIGURE_PROVIDER_TITLE = "Configure LLM Provider"
CONFIGURE_PROVIDER_REASON = (
    "No API keys found. Please add OpenAI, Anthropic, Groq, or xAI API keys "
    "in Settings to enable AI execution."
)
PARSE_FALLBACK_RESULT = "Task processed (response parsing failed)"
_COMPLETED_CONTEXT_LIMIT = 10


@dataclass(frozen=True)
class ProposedTask:
    title: str
    description: str = ""
    priority: str = TaskPriority.MEDIUM.value
    is_dependency: bool = False
    blocked_reason: str | None = None


@dataclass(frozen=True)
class ProposedDependency:
    title: str
    reason: str
    priority: str = TaskPriority.HIGH.value


@dataclass
class ExecutionResult:
    """Outcome of one execution step."""

    success: bool
    next_action: NextAction
    result: str | None = None
    new_tasks: list[ProposedTask] = field(default_factory=list)
    dependencies: list[ProposedDependency] = field(default_factory=list)
    error: str | None = None
    tokens_used: int | None = None
    task_id: UUID | None = None


@dataclass(frozen=True)
class ExecutionRunSummary:
    iterations: int
    last_result: ExecutionResult | None
    hit_iteration_cap: bool


def select_next_task(tasks: Sequence[Task]) -> Task | None:
    """Highest-priority ``todo`` task; ties go to the oldest."""
    todo = [task for task in tasks if task.status == TaskStatus.TODO.value]
    if not todo:
        return None
    return min(todo, key=lambda task: (-PRIORITY_RANK.get(task.priority, 0), task.created_at))


def build_execution_prompt(
    agent: Agent,
    task: Task,
    *,
    completed: Sequence[Task],
    remaining: Sequence[Task],
) -> str:
    completed_lines = "\n".join(f"- {t.title}" for t in completed) or "None"
    remaining_lines = (
        "\n".join(f"- {t.title} ({t.status})" for t in remaining if t.id != task.id) or "None"
    )
    reply_format = json.dumps(
        {
            "result": "Detailed description of what you accomplished or found",
            "nextAction": "continue|pause|wait_for_dependency|complete",
            "newTasks": [
                {
                    "title": "New task title",
                    "description": "Detailed task description",
                    "priority": "low|medium|high|urgent",
                    "isDependency": False,
                },
            ],
            "dependencies": [
                {
                    "title": "Dependency title",
                    "reason": "Why human input is needed",
                    "priority": "low|medium|high|urgent",
                },
            ],
        },
        indent=2,
    )
    return (
        f'You are an AI agent named "{agent.name}" with the goal: "{agent.goal}"\n\n'
        f"Current Task: {task.title}\n"
        f"Task Description: {task.description or 'No description provided'}\n"
        f"Task Priority: {task.priority}\n\n"
        "Context:\n"
        f"- Agent Type: {agent.agent_type}\n"
        f"- Completed Tasks:\n{completed_lines}\n"
        f"- Remaining Tasks:\n{remaining_lines}\n\n"
        "Work on the current task. You can complete it with results, create subtasks "
        "when it is complex, or create dependencies when you need human input or approval.\n\n"
        f"Return ONLY valid JSON in this exact format:\n{reply_format}"
    )


def _clean_priority(value: object, default: str) -> str:
    return value if isinstance(value, str) and value in PRIORITY_RANK else default


def _parse_new_tasks(raw: object) -> list[ProposedTask]:
    if not isinstance(raw, list):
        return []
    tasks: list[ProposedTask] = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        title = str(item.get("title") or "").strip()[:100]
        if not title:
            continue
        is_dependency = bool(item.get("isDependency", False))
        reason = item.get("blockedReason")
        tasks.append(
            ProposedTask(
                title=title,
                description=str(item.get("description") or "").strip()[:500],
                priority=_clean_priority(item.get("priority"), TaskPriority.MEDIUM.value),
                is_dependency=is_dependency,
                blocked_reason=str(reason)[:200] if is_dependency and reason else None,
            ),
        )
    return tasks


def _parse_dependencies(raw: object) -> list[ProposedDependency]:
    if not isinstance(raw, list):
        return []
    dependencies: list[ProposedDependency] = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        title = str(item.get("title") or "").strip()[:100]
        if not title:
            continue
        dependencies.append(
            ProposedDependency(
                title=title,
                reason=str(item.get("reason") or "Human input required").strip()[:200],
                priority=_clean_priority(item.get("priority"), TaskPriority.HIGH.value),
            ),
        )
    return dependencies


def parse_execution_response(data: Any) -> ExecutionResult:
    """Normalize an LLM reply; unusable replies become a generic ``continue``."""
    parsed = data
    if isinstance(data, str):
        try:
            parsed = json.loads(data)
        except json.JSONDecodeError:
            parsed = None
    if not isinstance(parsed, dict):
        return ExecutionResult(success=True, next_action="continue", result=PARSE_FALLBACK_RESULT)

    action = parsed.get("nextAction")
    next_action: NextAction = action if action in VALID_NEXT_ACTIONS else "continue"
    return ExecutionResult(
        success=True,
        next_action=next_action,
        result=str(parsed.get("result") or "Task processing completed"),
        new_tasks=_parse_new_tasks(parsed.get("newTasks")),
        dependencies=_parse_dependencies(parsed.get("dependencies")),
    )


async def _load_context(session: AsyncSession, agent: Agent) -> tuple[list[Task], list[Task]]:
    current = await (
        Task.objects.filter_by(agent_id=agent.id, phase=TaskPhase.AGENT.value)
        .filter(col(Task.status).in_((TaskStatus.TODO.value, TaskStatus.IN_PROGRESS.value)))
        .order_by(col(Task.created_at).asc())
        .all(session)
    )
    completed = await (
        Task.objects.filter_by(agent_id=agent.id, status=TaskStatus.DONE.value)
        .order_by(col(Task.completed_at).desc())
        .limit(_COMPLETED_CONTEXT_LIMIT)
        .all(session)
    )
    return current, completed


def _set_agent_status(agent: Agent, next_action: str, **metadata: Any) -> None:
    status = NEXT_ACTION_AGENT_STATUS.get(next_action)
    if status is not None:
        agent.status = status.value
    agent.last_execution_at = utcnow()
    agent.updated_at = utcnow()
    agent.merge_json("agent_metadata", {"last_execution_result": next_action, **metadata})


async def _block_on_dependency(
    session: AsyncSession,
    agent: Agent,
    *,
    title: str,
    reason: str,
    task_id: UUID | None,
    error: str | None = None,
) -> ExecutionResult:
    await create_agent_dependency(
        session,
        agent=agent,
        title=title[:100],
        reason=reason[:200],
        priority=TaskPriority.HIGH,
        metadata={
            "dependency_type": "human_input",
            "generated_by_task": str(task_id) if task_id else None,
            "ai_generated": True,
            "requires_approval": True,
        },
        commit=False,
    )
    _set_agent_status(agent, "wait_for_dependency")
    session.add(agent)
    await session.commit()
    invalidate_views([agent_path(agent.id), DEPENDENCIES_PATH])
    return ExecutionResult(
        success=True,
        next_action="wait_for_dependency",
        dependencies=[ProposedDependency(title=title, reason=reason)],
        error=error,
        task_id=task_id,
    )


async def _apply_result(
    session: AsyncSession,
    agent: Agent,
    task: Task,
    result: ExecutionResult,
) -> None:
    task.status = TaskStatus.DONE.value
    task.result = result.result
    task.completed_at = utcnow()
    task.updated_at = utcnow()
    task.merge_json(
        "task_metadata",
        {"ai_executed": True, "tokens_used": result.tokens_used, "executed_by_user_llm": True},
    )
    session.add(task)

    for proposed in result.new_tasks:
        await create_task(
            session,
            agent=agent,
            title=proposed.title,
            description=proposed.description,
            priority=TaskPriority(proposed.priority),
            is_dependency=proposed.is_dependency,
            blocked_reason=proposed.blocked_reason,
            auto_generated=True,
            metadata={"generated_by_task": str(task.id), "ai_generated": True},
        )
    if result.new_tasks:
        await try_record_agent_log(
            session,
            agent_id=agent.id,
            log_type="info",
            message=f"Generated {len(result.new_tasks)} new tasks",
            metadata={"new_tasks_count": len(result.new_tasks), "parent_task": str(task.id)},
        )

    for dependency in result.dependencies:
        await create_agent_dependency(
            session,
            agent=agent,
            title=dependency.title,
            reason=dependency.reason,
            priority=TaskPriority(dependency.priority),
            metadata={
                "dependency_type": "human_input",
                "generated_by_task": str(task.id),
                "ai_generated": True,
                "requires_approval": True,
            },
            commit=False,
        )
    # A run that raised blocking dependencies cannot keep going on its own.
    if result.dependencies and result.next_action == "continue":
        result.next_action = "wait_for_dependency"

    previous_tokens = int((agent.agent_metadata or {}).get("tokens_used_total") or 0)
    _set_agent_status(
        agent,
        result.next_action,
        last_task_completed=str(task.id),
        tokens_used_total=previous_tokens + (result.tokens_used or 0),
    )
    session.add(agent)
    await try_record_agent_log(
        session,
        agent_id=agent.id,
        log_type="success",
        message=f"Completed: {task.title}",
        metadata={
            "task_id": str(task.id),
            "result_summary": (result.result or "")[:100],
            "tokens_used": result.tokens_used,
        },
    )


async def execute_agent_task(
    session: AsyncSession,
    agent: Agent,
    *,
    provider: str | None = None,
    client: LLMClient | None = None,
) -> ExecutionResult:
    """Run the agent's next task through the user's LLM and persist the outcome."""
    current, completed = await _load_context(session, agent)
    task = select_next_task(current)
    if task is None:
        _set_agent_status(agent, "complete")
        session.add(agent)
        await try_record_agent_log(
            session,
            agent_id=agent.id,
            log_type="milestone",
            message="All tasks completed successfully",
        )
        await session.commit()
        return ExecutionResult(
            success=True,
            next_action="complete",
            result="All tasks completed successfully",
        )

    task_id, task_title = task.id, task.title
    await try_record_agent_log(
        session,
        agent_id=agent.id,
        log_type="progress",
        message=f"Working on: {task_title}",
        metadata={"task_id": str(task_id), "task_title": task_title},
    )

    if not await configured_providers(session, agent.owner_id):
        await try_record_agent_log(
            session,
            agent_id=agent.id,
            log_type="warning",
            message="No LLM providers configured. Please add API keys in Settings.",
            metadata={"available_providers": 0},
        )
        return await _block_on_dependency(
            session,
            agent,
            title=CONFIGURE_PROVIDER_TITLE,
            reason=CONFIGURE_PROVIDER_REASON,
            task_id=task_id,
        )

    response = await generate_json(
        session,
        user_id=agent.owner_id,
        prompt=build_execution_prompt(agent, task, completed=completed, remaining=current),
        system_prompt=EXECUTION_SYSTEM_PROMPT,
        provider=provider,
        client=client,
    )
    if not response.success:
        logger.warning(
            "agent.execution.llm_failed",
            extra={"agent_id": str(agent.id), "task_id": str(task_id), "error": response.error},
        )
        return await _block_on_dependency(
            session,
            agent,
            title=f"Review and resolve: {task_title}",
            reason=(
                f"AI execution encountered an issue: {response.error}. "
                "Please check your API keys or review this task manually."
            ),
            task_id=task_id,
            error=response.error,
        )

    result = parse_execution_response(response.data)
    result.tokens_used = response.tokens_used
    result.task_id = task_id
    try:
        await _apply_result(session, agent, task, result)
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.exception(
            "agent.execution.persist_failed",
            extra={"agent_id": str(agent.id), "task_id": str(task_id)},
        )
        return ExecutionResult(
            success=False,
            next_action="pause",
            error=str(exc),
            task_id=task_id,
        )

    invalidate_views([agent_path(agent.id), DEPENDENCIES_PATH])
    logger.info(
        "agent.execution.step_complete",
        extra={
            "agent_id": str(agent.id),
            "task_id": str(task_id),
            "next_action": result.next_action,
            "new_tasks": len(result.new_tasks),
            "dependencies": len(result.dependencies),
        },
    )
    return result


async def run_agent_execution(
    agent_id: UUID,
    *,
    provider: str | None = None,
    session_maker: async_sessionmaker[Any] | Callable[[], Any] = async_session_maker,
    max_iterations: int | None = None,
    delay_seconds: float | None = None,
    client: LLMClient | None = None,
) -> ExecutionRunSummary:
    """Execute tasks until the agent completes, pauses, blocks, or hits the cap."""
    cap = max_iterations or settings.agent_execution_max_iterations
    delay = (
        settings.agent_execution_iteration_delay_seconds if delay_seconds is None else delay_seconds
    )
    iterations = 0
    last: ExecutionResult | None = None

    while iterations < cap:
        iterations += 1
        async with session_maker() as session:
            agent = await Agent.objects.by_id(agent_id).first(session)
            if agent is None:
                logger.warning("agent.execution.agent_missing", extra={"agent_id": str(agent_id)})
                break
            last = await execute_agent_task(session, agent, provider=provider, client=client)
            if last.next_action == "wait_for_dependency":
                await try_record_agent_log(
                    session,
                    agent_id=agent_id,
                    log_type="info",
                    message="Agent paused - waiting for dependency resolution",
                    metadata={"iteration": iterations, "reason": "dependencies_created"},
                )
                await session.commit()
        if not last.success or last.next_action != "continue":
            break
        if iterations < cap and delay > 0:
            await asyncio.sleep(delay)

    hit_cap = (
        iterations >= cap
        and last is not None
        and last.success
        and last.next_action == "continue"
    )
    if hit_cap:
        logger.warning(
            "agent.execution.max_iterations",
            extra={"agent_id": str(agent_id), "max_iterations": cap},
        )
        async with session_maker() as session:
            await try_record_agent_log(
                session,
                agent_id=agent_id,
                log_type="warning",
                message="Agent execution stopped - maximum iterations reached",
                metadata={"max_iterations": cap},
            )
            await session.commit()
    return ExecutionRunSummary(iterations=iterations, last_result=last, hit_iteration_cap=hit_cap)
