"""Task model covering agent work items and user-facing dependencies."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column, Text
from sqlmodel import Field

from agentflow.core.time import utcnow
from agentflow.models.base import QueryModel

RUNTIME_ANNOTATION_TYPES = (datetime,)


class TaskStatus(str, Enum):
    """Persisted task status values."""

    TODO = "todo"
    IN_PROGRESS = "in_progress"
    BLOCKED = "blocked"
    DONE = "done"


class TaskPriority(str, Enum):
    """Task priority values, lowest first."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class TaskPhase(str, Enum):
    """Lifecycle view a task belongs to.

    ``dependency`` tasks block their agent until a human acts on them,
    ``workspace`` tasks are being worked by the user, ``history`` holds
    completed dependencies and ``agent`` is ordinary agent work.
    """

    AGENT = "agent"
    DEPENDENCY = "dependency"
    WORKSPACE = "workspace"
    HISTORY = "history"


PENDING_DEPENDENCY_STATUSES = (TaskStatus.TODO.value, TaskStatus.BLOCKED.value)


class Task(QueryModel, table=True):
    """Agent-scoped task with lifecycle phase, flags, and a free-form metadata bag."""

    __tablename__ = "tasks"  # pyright: ignore[reportAssignmentType]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    agent_id: UUID = Field(foreign_key="agents.id", index=True)

    title: str
    description: str | None = Field(default=None, sa_column=Column(Text))
    status: str = Field(default=TaskStatus.TODO.value, index=True)
    priority: str = Field(default=TaskPriority.MEDIUM.value, index=True)
    phase: str = Field(default=TaskPhase.AGENT.value, index=True)
    is_dependency: bool = Field(default=False, index=True)
    blocked_reason: str | None = None
    result: str | None = Field(default=None, sa_column=Column(Text))
    auto_generated: bool = Field(default=False)
    task_metadata: dict[str, Any] | None = Field(
        default=None,
        sa_column=Column("metadata", JSON),
    )

    completed_at: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
