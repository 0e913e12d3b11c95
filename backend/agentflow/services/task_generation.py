"""Break an agent goal into concrete tasks with the user's LLM.

The LLM is asked for a JSON array of 3-10 task objects. Each item is cleaned
before insert; items that still lack a usable title are skipped. When no
provider is configured, the call fails, or nothing usable comes back, a
fixed research/plan/execute/review plan is inserted instead.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from agentflow.core.logging import get_logger
from agentflow.models.tasks import TaskPriority
from agentflow.schemas.tasks import TASK_TITLE_MIN_LENGTH
from agentflow.services.agent_logs import try_record_agent_log
from agentflow.services.llm.service import generate_json
from agentflow.services.task_lifecycle import create_task
from agentflow.services.view_invalidation import (
    DASHBOARD_PATH,
    DEPENDENCIES_PATH,
    agent_path,
    invalidate_views,
)

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession

    from agentflow.models.agents import Agent
    from agentflow.models.tasks import Task
    from agentflow.services.llm.providers import LLMClient

logger = get_logger(__name__)

GOAL_MIN_LENGTH = 10
GOAL_MAX_LENGTH = 2000
MIN_GENERATED_TASKS = 3
MAX_GENERATED_TASKS = 10
TITLE_MAX_LENGTH = 100
DESCRIPTION_MAX_LENGTH = 500
CATEGORY_MAX_LENGTH = 50
HOURS_MIN = 0.5
HOURS_MAX = 40.0
HOURS_DEFAULT = 2.0
HUMAN_INPUT_REASON = "Requires human input before the agent can continue."
GENERATION_SYSTEM_PROMPT = "You are an expert project manager who writes actionable task lists."


class GoalValidationError(ValueError):
    """Raised when a goal is too short or too long to decompose."""


@dataclass(frozen=True)
class GeneratedTask:
    title: str
    description: str = ""
    priority: str = TaskPriority.MEDIUM.value
    estimated_hours: float = HOURS_DEFAULT
    category: str = "General"
    requires_human_input: bool = False


@dataclass
class GenerationOutcome:
    tasks: list[Task] = field(default_factory=list)
    used_fallback: bool = False
    provider: str | None = None
    error: str | None = None


def validate_goal(goal: str | None) -> str:
    text = (goal or "").strip()
    if len(text) < GOAL_MIN_LENGTH:
        raise GoalValidationError(
            f"Goal must be at least {GOAL_MIN_LENGTH} characters long",
        )
    if len(text) > GOAL_MAX_LENGTH:
        raise GoalValidationError(
            f"Goal is too long (max {GOAL_MAX_LENGTH} characters)",
        )
    return text


def build_generation_prompt(goal: str, *, agent_type: str = "general") -> str:
    return (
        "Generate a comprehensive list of tasks for the following objective:\n\n"
        f'Objective: "{goal}"\n'
        f"Agent type: {agent_type}\n\n"
        "For each task, provide:\n"
        f"1. title: clear, actionable task name (max {TITLE_MAX_LENGTH} characters)\n"
        "2. description: requirements and acceptance criteria "
        f"(max {DESCRIPTION_MAX_LENGTH} characters)\n"
        f"3. estimatedHours: realistic estimate between {HOURS_MIN} and {HOURS_MAX:g}\n"
        '4. priority: one of "low", "medium", "high", "urgent"\n'
        "5. category: task category\n"
        "6. requiresHumanInput: true when a person must act before the agent can continue\n\n"
        f"Generate {MIN_GENERATED_TASKS}-{MAX_GENERATED_TASKS} tasks that cover the objective.\n"
        "Return ONLY a JSON array of task objects with no additional text."
    )


def _clean_string(value: object, max_length: int) -> str:
    if not isinstance(value, str):
        return ""
    return value.strip()[:max_length]


def _clean_hours(value: object) -> float:
    if isinstance(value, bool) or not isinstance(value, int | float | str):
        return HOURS_DEFAULT
    try:
        hours = float(value)
    except ValueError:
        return HOURS_DEFAULT
    if math.isnan(hours):
        return HOURS_DEFAULT
    return min(max(hours, HOURS_MIN), HOURS_MAX)


def _clean_priority(value: object) -> str:
    allowed = {priority.value for priority in TaskPriority}
    return value if isinstance(value, str) and value in allowed else TaskPriority.MEDIUM.value


def clean_generated_tasks(raw: Any) -> list[GeneratedTask]:
    """Validate and normalize LLM task items, keeping at most ten."""
    if isinstance(raw, dict):
        raw = raw.get("tasks")
    if not isinstance(raw, list):
        return []
    cleaned: list[GeneratedTask] = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        title = _clean_string(item.get("title"), TITLE_MAX_LENGTH)
        if len(title) < TASK_TITLE_MIN_LENGTH:
            continue
        human = item.get("requiresHumanInput", item.get("requires_human_input", False))
        cleaned.append(
            GeneratedTask(
                title=title,
                description=_clean_string(item.get("description"), DESCRIPTION_MAX_LENGTH),
                priority=_clean_priority(item.get("priority")),
                estimated_hours=_clean_hours(
                    item.get("estimatedHours", item.get("estimated_hours")),
                ),
                category=_clean_string(item.get("category"), CATEGORY_MAX_LENGTH) or "General",
                requires_human_input=human is True,
            ),
        )
        if len(cleaned) == MAX_GENERATED_TASKS:
            break
    return cleaned


def fallback_plan(goal: str) -> list[GeneratedTask]:
    """Rule-based plan used when the LLM gives nothing usable."""
    return [
        GeneratedTask(
            title="Research and Analysis",
            description=f"Research the requirements for: {goal[:100]}",
            priority=TaskPriority.HIGH.value,
            estimated_hours=6,
            category="research",
        ),
        GeneratedTask(
            title="Project Planning and Setup",
            description="Plan the approach, milestones and resources for the goal",
            priority=TaskPriority.HIGH.value,
            estimated_hours=4,
            category="planning",
        ),
        GeneratedTask(
            title="Implementation",
            description="Execute the main work needed to reach the goal",
            priority=TaskPriority.MEDIUM.value,
            estimated_hours=12,
            category="implementation",
        ),
        GeneratedTask(
            title="Review and Documentation",
            description="Review the results and document what was delivered",
            priority=TaskPriority.LOW.value,
            estimated_hours=3,
            category="review",
        ),
    ]


async def generate_agent_tasks(
    session: AsyncSession,
    *,
    agent: Agent,
    goal: str | None = None,
    provider: str | None = None,
    client: LLMClient | None = None,
) -> GenerationOutcome:
    """Insert tasks decomposing ``goal`` (default: the agent's goal) and commit.

    Raises :class:`GoalValidationError` before any LLM call for an invalid goal.
    """
    text = validate_goal(goal if goal is not None else agent.goal)
    outcome = GenerationOutcome()

    response = await generate_json(
        session,
        user_id=agent.owner_id,
        prompt=build_generation_prompt(text, agent_type=agent.agent_type),
        system_prompt=GENERATION_SYSTEM_PROMPT,
        provider=provider,
        max_tokens=3000,
        client=client,
    )
    outcome.provider = response.provider
    items = clean_generated_tasks(response.data) if response.success else []
    if len(items) < MIN_GENERATED_TASKS:
        outcome.error = response.error or (
            f"LLM returned {len(items)} usable tasks; expected at least {MIN_GENERATED_TASKS}"
        )
        outcome.used_fallback = True
        items = fallback_plan(text)
        logger.warning(
            "task.generation.fallback",
            extra={"agent_id": str(agent.id), "error": outcome.error},
        )

    for item in items:
        task = await create_task(
            session,
            agent=agent,
            title=item.title,
            description=item.description or None,
            priority=TaskPriority(item.priority),
            is_dependency=item.requires_human_input,
            blocked_reason=HUMAN_INPUT_REASON if item.requires_human_input else None,
            auto_generated=True,
            metadata={
                "estimated_hours": item.estimated_hours,
                "category": item.category,
                "ai_generated": not outcome.used_fallback,
                "requires_human_input": item.requires_human_input,
            },
        )
        outcome.tasks.append(task)

    dependency_count = sum(1 for item in items if item.requires_human_input)
    await try_record_agent_log(
        session,
        agent_id=agent.id,
        user_id=agent.owner_id,
        log_type="milestone",
        message=(
            f"Generated {len(items) - dependency_count} tasks and "
            f"{dependency_count} dependencies from goal"
        ),
        metadata={
            "used_fallback": outcome.used_fallback,
            "provider": outcome.provider,
            "tasks_created": len(items),
        },
    )
    await session.commit()
    for task in outcome.tasks:
        await session.refresh(task)

    logger.info(
        "task.generation.complete",
        extra={
            "agent_id": str(agent.id),
            "count": len(outcome.tasks),
            "used_fallback": outcome.used_fallback,
        },
    )
    invalidate_views([agent_path(agent.id), DEPENDENCIES_PATH, DASHBOARD_PATH])
    return outcome
