"""Task lifecycle routes: dependency views, promotion, completion, and settings."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

from fastapi import APIRouter, Query, status
from fastapi.responses import JSONResponse
from sqlmodel import col, select

from agentflow.api.deps import SESSION_DEP, USER_DEP
from agentflow.models.agents import Agent
from agentflow.models.tasks import Task, TaskPhase
from agentflow.schemas.tasks import (
    TaskActionResult,
    TaskCompletePayload,
    TaskRead,
    TaskSettingsUpdate,
)
from agentflow.services.task_lifecycle import (
    TaskActionError,
    complete_task_to_history,
    move_to_workspace,
    update_task_settings,
)

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession

    from agentflow.models.users import User

router = APIRouter(prefix="/tasks", tags=["tasks"])


class TaskView(str, Enum):
    """User-facing task lists, one per lifecycle phase."""

    DEPENDENCIES = "dependencies"
    WORKSPACE = "workspace"
    HISTORY = "history"


_VIEW_PHASES: dict[TaskView, TaskPhase] = {
    TaskView.DEPENDENCIES: TaskPhase.DEPENDENCY,
    TaskView.WORKSPACE: TaskPhase.WORKSPACE,
    TaskView.HISTORY: TaskPhase.HISTORY,
}
VIEW_QUERY = Query(default=TaskView.DEPENDENCIES)
ACTION_RESPONSES: dict[int | str, dict[str, object]] = {
    status.HTTP_403_FORBIDDEN: {"model": TaskActionResult},
    status.HTTP_404_NOT_FOUND: {"model": TaskActionResult},
    status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": TaskActionResult},
}


def _error_response(exc: TaskActionError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_result().model_dump(mode="json"),
    )


@router.get("", response_model=list[TaskRead])
async def list_tasks(
    view: TaskView = VIEW_QUERY,
    user: User = USER_DEP,
    session: AsyncSession = SESSION_DEP,
) -> list[Task]:
    """List the caller's tasks in one lifecycle view."""
    phase = _VIEW_PHASES[view]
    order = (
        col(Task.completed_at).desc()
        if view == TaskView.HISTORY
        else col(Task.created_at).desc()
    )
    statement = (
        select(Task)
        .join(Agent, col(Agent.id) == col(Task.agent_id))
        .where(col(Agent.owner_id) == user.id)
        .where(col(Task.phase) == phase.value)
        .order_by(order)
    )
    return list(await session.exec(statement))


@router.post(
    "/{task_id}/move-to-workspace",
    response_model=TaskActionResult,
    responses=ACTION_RESPONSES,
)
async def move_task_to_workspace(
    task_id: UUID,
    user: User = USER_DEP,
    session: AsyncSession = SESSION_DEP,
) -> TaskActionResult | JSONResponse:
    """Take ownership of a pending dependency."""
    try:
        return await move_to_workspace(session, task_id=task_id, user=user)
    except TaskActionError as exc:
        return _error_response(exc)


@router.post(
    "/{task_id}/complete",
    response_model=TaskActionResult,
    responses=ACTION_RESPONSES,
)
async def complete_task(
    task_id: UUID,
    payload: TaskCompletePayload | None = None,
    user: User = USER_DEP,
    session: AsyncSession = SESSION_DEP,
) -> TaskActionResult | JSONResponse:
    """Complete a task into history and re-check whether its agent can restart."""
    try:
        return await complete_task_to_history(
            session,
            task_id=task_id,
            user=user,
            completion_notes=payload.completion_notes if payload else None,
        )
    except TaskActionError as exc:
        return _error_response(exc)


@router.patch(
    "/{task_id}/settings",
    response_model=TaskActionResult,
    responses=ACTION_RESPONSES,
)
async def patch_task_settings(
    task_id: UUID,
    payload: TaskSettingsUpdate,
    user: User = USER_DEP,
    session: AsyncSession = SESSION_DEP,
) -> TaskActionResult | JSONResponse:
    """Merge user settings into a task's metadata."""
    try:
        return await update_task_settings(session, task_id=task_id, user=user, update=payload)
    except TaskActionError as exc:
        return _error_response(exc)
