"""Task lifecycle transitions between dependency, workspace, and history.

Every transition writes the task's ``phase`` together with the legacy flags
(``status``, ``is_dependency``, ``metadata.workflow_status``, ...) that older
readers still look at. :func:`classify_task_phase` derives the phase from those
flags and is used to validate each transition before it is persisted.

Side effects (agent log rows, chat notifications, view invalidation, the
agent restart check) never fail the primary mutation.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import col

from agentflow.core.logging import get_logger
from agentflow.core.time import utcnow, utcnow_iso
from agentflow.models.agents import Agent
from agentflow.models.tasks import (
    PENDING_DEPENDENCY_STATUSES,
    Task,
    TaskPhase,
    TaskPriority,
    TaskStatus,
)
from agentflow.schemas.tasks import TaskActionResult
from agentflow.services.agent_logs import try_record_agent_log
from agentflow.services.agent_restart import try_agent_restart
from agentflow.services.notifications import ChatNotification, enqueue_notification
from agentflow.services.view_invalidation import (
    DASHBOARD_PATH,
    DEPENDENCIES_PATH,
    ROOT_PATH,
    agent_path,
    invalidate_views,
)

if TYPE_CHECKING:
    from collections.abc import Mapping

    from sqlmodel.ext.asyncio.session import AsyncSession

    from agentflow.models.users import User
    from agentflow.schemas.tasks import TaskSettingsUpdate

logger = get_logger(__name__)

WORKFLOW_USER_WORKING = "user_working"
WORKFLOW_COMPLETED = "completed"
DEFAULT_COMPLETION_NOTES = "Task completed by user."


class TaskActionError(Exception):
    """Lifecycle failure carrying the HTTP status and the caller-facing message."""

    def __init__(self, status_code: int, message: str, task_id: UUID | str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.task_id = task_id

    def to_result(self) -> TaskActionResult:
        task_id = self.task_id if isinstance(self.task_id, UUID) else None
        return TaskActionResult(success=False, error=self.message, task_id=task_id)


@dataclass(frozen=True)
class _OwnedTask:
    task: Task
    agent: Agent


def classify_task_phase(
    *,
    status: str,
    is_dependency: bool,
    metadata: Mapping[str, Any] | None,
) -> TaskPhase:
    """Derive the lifecycle phase implied by a task's status and flags."""
    meta = metadata or {}
    if is_dependency and status in PENDING_DEPENDENCY_STATUSES:
        return TaskPhase.DEPENDENCY
    if (
        not is_dependency
        and status == TaskStatus.IN_PROGRESS.value
        and meta.get("workflow_status") == WORKFLOW_USER_WORKING
    ):
        return TaskPhase.WORKSPACE
    if is_dependency and status == TaskStatus.DONE.value and meta.get("in_history") is True:
        return TaskPhase.HISTORY
    return TaskPhase.AGENT


def _classify(task: Task) -> TaskPhase:
    return classify_task_phase(
        status=task.status,
        is_dependency=task.is_dependency,
        metadata=task.task_metadata,
    )


def _set_phase(task: Task, expected: TaskPhase) -> None:
    actual = _classify(task)
    if actual != expected:
        raise ValueError(
            f"Task {task.id} flags describe phase {actual.value!r}, expected {expected.value!r}",
        )
    task.phase = expected.value


async def find_phase_inconsistencies(
    session: AsyncSession,
    *,
    agent_id: UUID | None = None,
) -> list[Task]:
    """Return tasks whose stored phase disagrees with their status flags."""
    query = Task.objects.all()
    if agent_id is not None:
        query = query.filter(col(Task.agent_id) == agent_id)
    tasks = await query.all(session)
    return [task for task in tasks if task.phase != _classify(task).value]


async def _load_owned_task(
    session: AsyncSession,
    *,
    task_id: UUID | str | None,
    user: User,
) -> _OwnedTask:
    if not task_id:
        raise TaskActionError(422, "Task ID is required")
    task = await Task.objects.by_id(task_id).first(session)
    if task is None:
        raise TaskActionError(404, f"Task not found (ID: {task_id})", task_id)
    agent = await Agent.objects.by_id(task.agent_id).first(session)
    if agent is None or agent.owner_id != user.id:
        logger.warning(
            "task.lifecycle.unauthorized",
            extra={"task_id": str(task.id), "user_id": str(user.id)},
        )
        raise TaskActionError(403, "Unauthorized to modify this task", task.id)
    return _OwnedTask(task=task, agent=agent)


async def _flush_or_fail(session: AsyncSession, task_id: UUID, message: str) -> None:
    try:
        await session.flush()
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.exception("task.lifecycle.write_failed", extra={"task_id": str(task_id)})
        raise TaskActionError(500, message, task_id) from exc


async def _commit_or_fail(session: AsyncSession, task_id: UUID, message: str) -> None:
    try:
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.exception("task.lifecycle.commit_failed", extra={"task_id": str(task_id)})
        raise TaskActionError(500, message, task_id) from exc


def _notify(event_type: str, message: str, **context: Any) -> None:
    try:
        enqueue_notification(
            ChatNotification(
                event_type=event_type,
                message=message,
                context={key: str(value) for key, value in context.items()},
            ),
        )
    except Exception:
        logger.warning(
            "task.lifecycle.notification_failed",
            extra={"event_type": event_type},
            exc_info=True,
        )


async def move_to_workspace(
    session: AsyncSession,
    *,
    task_id: UUID | str | None,
    user: User,
) -> TaskActionResult:
    """Promote a pending dependency into the user's active workspace."""
    owned = await _load_owned_task(session, task_id=task_id, user=user)
    task, agent = owned.task, owned.agent
    task_id, title = task.id, task.title
    agent_id, agent_name = agent.id, agent.name
    message = f'"{title}" is now in "Your Workspace" on the Home Dashboard.'
    failure = "Failed to move task to your tasks"

    task.status = TaskStatus.IN_PROGRESS.value
    task.is_dependency = False
    task.blocked_reason = None
    task.merge_json(
        "task_metadata",
        {
            "moved_to_tasks": True,
            "moved_at": utcnow_iso(),
            "moved_by": str(user.id),
            "workflow_status": WORKFLOW_USER_WORKING,
            "original_dependency": True,
            "in_history": False,
        },
    )
    _set_phase(task, TaskPhase.WORKSPACE)
    task.updated_at = utcnow()
    session.add(task)
    await _flush_or_fail(session, task_id, failure)

    await try_record_agent_log(
        session,
        agent_id=agent_id,
        user_id=user.id,
        log_type="action",
        message=f'User took ownership of dependency: "{title}" and moved it to their active tasks.',
        metadata={"task_id": str(task_id), "action": "move_to_tasks", "user_id": str(user.id)},
    )
    await _commit_or_fail(session, task_id, failure)

    logger.info(
        "task.lifecycle.moved_to_workspace",
        extra={"task_id": str(task_id), "agent_id": str(agent_id), "user_id": str(user.id)},
    )
    _notify(
        "task_moved",
        f'User took ownership of dependency "{title}" for {agent_name}',
        task_id=task_id,
        agent_id=agent_id,
    )
    paths = invalidate_views([DASHBOARD_PATH, DEPENDENCIES_PATH, agent_path(agent_id)])
    return TaskActionResult(
        success=True,
        message=message,
        task_id=task_id,
        invalidated_paths=paths,
    )


async def complete_task_to_history(
    session: AsyncSession,
    *,
    task_id: UUID | str | None,
    user: User,
    completion_notes: str | None = None,
) -> TaskActionResult:
    """Mark a task permanently complete and try to unblock its agent.

    The task update, its log row, and the restart check commit together. The
    restart check runs in its own savepoint, so its failure is logged and the
    completion still commits.
    """
    owned = await _load_owned_task(session, task_id=task_id, user=user)
    task, agent = owned.task, owned.agent
    task_id, title = task.id, task.title
    agent_id, agent_name = agent.id, agent.name or "Agent"
    notes = (completion_notes or "").strip()
    failure = "Failed to complete task"

    task.status = TaskStatus.DONE.value
    task.is_dependency = True
    task.blocked_reason = None
    task.completed_at = utcnow()
    task.merge_json(
        "task_metadata",
        {
            "completion_notes": notes or DEFAULT_COMPLETION_NOTES,
            "completed_at": utcnow_iso(),
            "completed_by": str(user.id),
            "workflow_status": WORKFLOW_COMPLETED,
            "in_history": True,
            "moved_to_tasks": False,
        },
    )
    _set_phase(task, TaskPhase.HISTORY)
    task.updated_at = utcnow()
    session.add(task)
    await _flush_or_fail(session, task_id, failure)

    await try_record_agent_log(
        session,
        agent_id=agent_id,
        user_id=user.id,
        log_type="success",
        message=f'User completed task: "{title}" (formerly a dependency).',
        metadata={
            "task_id": str(task_id),
            "action": "complete_task_from_workspace",
            "user_id": str(user.id),
            "completion_notes": notes,
        },
    )
    restarted = await try_agent_restart(session, agent_id, user_id=user.id)
    await _commit_or_fail(session, task_id, failure)

    logger.info(
        "task.lifecycle.completed",
        extra={
            "task_id": str(task_id),
            "agent_id": str(agent_id),
            "agent_restarted": restarted,
        },
    )
    _notify(
        "task_completed",
        f'Task "{title}" completed by user! {agent_name} may now proceed if unblocked.',
        task_id=task_id,
        agent_id=agent_id,
    )
    paths = invalidate_views(
        [DASHBOARD_PATH, DEPENDENCIES_PATH, agent_path(agent_id), ROOT_PATH],
    )
    return TaskActionResult(
        success=True,
        message=f'"{title}" completed! It has been moved to your completed history.',
        task_id=task_id,
        invalidated_paths=paths,
    )


async def update_task_settings(
    session: AsyncSession,
    *,
    task_id: UUID | str | None,
    user: User,
    update: TaskSettingsUpdate,
) -> TaskActionResult:
    """Shallow-merge allow-listed user settings into the task metadata."""
    owned = await _load_owned_task(session, task_id=task_id, user=user)
    task = owned.task
    patch = update.to_metadata_patch()
    failure = "Failed to update task settings"
    if patch:
        task.merge_json("task_metadata", patch)
        task.updated_at = utcnow()
        session.add(task)
        await _flush_or_fail(session, task.id, failure)
        await _commit_or_fail(session, task.id, failure)
        logger.info(
            "task.lifecycle.settings_updated",
            extra={"task_id": str(task.id), "keys": sorted(patch)},
        )
    paths = invalidate_views([DEPENDENCIES_PATH])
    return TaskActionResult(
        success=True,
        message="Task settings updated successfully.",
        task_id=task.id,
        invalidated_paths=paths,
    )


async def create_agent_dependency(
    session: AsyncSession,
    *,
    agent: Agent,
    title: str,
    reason: str,
    priority: TaskPriority = TaskPriority.HIGH,
    user_id: UUID | None = None,
    metadata: dict[str, Any] | None = None,
    commit: bool = True,
) -> Task:
    """Insert a blocked human-input dependency for ``agent``."""
    task = Task(
        agent_id=agent.id,
        title=title,
        description=reason,
        status=TaskStatus.BLOCKED.value,
        priority=TaskPriority(priority).value,
        is_dependency=True,
        blocked_reason=reason,
        auto_generated=False,
        task_metadata={
            "blocked_by": "user_input",
            "workflow_type": "dependency",
            "dependency_type": "user_input",
            "requires_human_input": True,
            "manually_created": metadata is None,
            **(metadata or {}),
        },
    )
    _set_phase(task, TaskPhase.DEPENDENCY)
    session.add(task)
    await session.flush()
    await try_record_agent_log(
        session,
        agent_id=agent.id,
        user_id=user_id,
        log_type="dependency",
        message=f"New dependency created: {title}",
        metadata={
            "dependency_id": str(task.id),
            "dependency_title": title,
            "dependency_reason": reason,
            "manually_created": metadata is None,
        },
    )
    if commit:
        await session.commit()
        invalidate_views([agent_path(agent.id), DEPENDENCIES_PATH])
    logger.info(
        "task.lifecycle.dependency_created",
        extra={"task_id": str(task.id), "agent_id": str(agent.id)},
    )
    return task


async def create_task(
    session: AsyncSession,
    *,
    agent: Agent,
    title: str,
    description: str | None = None,
    priority: TaskPriority = TaskPriority.MEDIUM,
    is_dependency: bool = False,
    blocked_reason: str | None = None,
    auto_generated: bool = False,
    metadata: dict[str, Any] | None = None,
) -> Task:
    """Insert an agent task; dependencies start ``blocked``, other tasks ``todo``.

    The caller owns the transaction.
    """
    status = TaskStatus.BLOCKED if is_dependency else TaskStatus.TODO
    task = Task(
        agent_id=agent.id,
        title=title,
        description=description,
        status=status.value,
        priority=TaskPriority(priority).value,
        is_dependency=is_dependency,
        blocked_reason=blocked_reason if is_dependency else None,
        auto_generated=auto_generated,
        task_metadata=metadata,
    )
    _set_phase(task, TaskPhase.DEPENDENCY if is_dependency else TaskPhase.AGENT)
    session.add(task)
    return task
