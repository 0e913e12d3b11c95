"""Schemas for task lifecycle payloads and action results."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any
from uuid import UUID

from pydantic import Field, field_validator
from sqlmodel import SQLModel
from sqlmodel._compat import SQLModelConfig

from agentflow.models.tasks import TaskPriority

RUNTIME_ANNOTATION_TYPES = (date, datetime, UUID, TaskPriority)

TASK_TITLE_MIN_LENGTH = 5
TASK_TITLE_MAX_LENGTH = 100
TASK_DESCRIPTION_MAX_LENGTH = 500
BLOCKED_REASON_MAX_LENGTH = 200
USER_NOTES_MAX_LENGTH = 2000


def _strip_text(value: object) -> object:
    if isinstance(value, str):
        return value.strip()
    return value


class TaskRead(SQLModel):
    """Task payload returned by API responses."""

    id: UUID
    agent_id: UUID
    title: str
    description: str | None = None
    status: str
    priority: str
    phase: str
    is_dependency: bool
    blocked_reason: str | None = None
    result: str | None = None
    auto_generated: bool
    task_metadata: dict[str, Any] | None = None
    completed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class TaskCreate(SQLModel):
    """Payload for creating a task under an agent."""

    title: str = Field(min_length=TASK_TITLE_MIN_LENGTH, max_length=TASK_TITLE_MAX_LENGTH)
    description: str | None = Field(default=None, max_length=TASK_DESCRIPTION_MAX_LENGTH)
    priority: TaskPriority = TaskPriority.MEDIUM
    is_dependency: bool = False
    blocked_reason: str | None = Field(default=None, max_length=BLOCKED_REASON_MAX_LENGTH)

    @field_validator("title", "description", "blocked_reason", mode="before")
    @classmethod
    def strip_text(cls, value: object) -> object:
        """Trim surrounding whitespace from text fields."""
        return _strip_text(value)


class DependencyCreate(SQLModel):
    """Payload for manually raising a human-input dependency on an agent."""

    title: str = Field(min_length=TASK_TITLE_MIN_LENGTH, max_length=TASK_TITLE_MAX_LENGTH)
    reason: str = Field(min_length=1, max_length=BLOCKED_REASON_MAX_LENGTH)
    priority: TaskPriority = TaskPriority.HIGH

    @field_validator("title", "reason", mode="before")
    @classmethod
    def strip_text(cls, value: object) -> object:
        """Trim surrounding whitespace from text fields."""
        return _strip_text(value)


class TaskCompletePayload(SQLModel):
    """Optional notes captured when the user completes a workspace task."""

    completion_notes: str | None = Field(default=None, max_length=USER_NOTES_MAX_LENGTH)


class TaskSettingsUpdate(SQLModel):
    """Allow-listed user settings merged into a task's metadata bag.

    Blank form values are treated as "not provided" and leave the stored
    value untouched.
    """

    model_config = SQLModelConfig(extra="forbid")

    priority: TaskPriority | None = None
    deadline: date | None = None
    estimated_hours: float | None = Field(default=None, ge=0)
    user_notes: str | None = Field(default=None, max_length=USER_NOTES_MAX_LENGTH)

    @field_validator("priority", "deadline", "estimated_hours", "user_notes", mode="before")
    @classmethod
    def blank_to_none(cls, value: object) -> object:
        """Map empty strings to ``None`` before type coercion."""
        if isinstance(value, str) and not value.strip():
            return None
        return value

    def to_metadata_patch(self) -> dict[str, Any]:
        """Return provided, non-empty fields in their JSON-storable form."""
        patch: dict[str, Any] = {}
        for key, value in self.model_dump(mode="json", exclude_unset=True).items():
            if value is None or value == "":
                continue
            # Whole hours are stored as integers, e.g. "4" -> 4.
            if isinstance(value, float) and value.is_integer():
                value = int(value)
            patch[key] = value
        return patch


class TaskActionResult(SQLModel):
    """Outcome envelope for lifecycle actions."""

    success: bool
    message: str | None = None
    error: str | None = None
    task_id: UUID | None = None
    invalidated_paths: list[str] = Field(default_factory=list)
