"""Schemas for agent CRUD, execution, and goal decomposition payloads."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import Field, field_validator
from sqlmodel import SQLModel

from agentflow.models.agents import AgentStatus
from agentflow.schemas.tasks import TaskRead

RUNTIME_ANNOTATION_TYPES = (datetime, UUID, AgentStatus, TaskRead)


def _strip_text(value: object) -> object:
    if isinstance(value, str):
        return value.strip()
    return value


class AgentCreate(SQLModel):
    """Payload for creating an agent owned by the caller."""

    name: str = Field(
        min_length=1,
        max_length=100,
        description="Human-readable agent display name.",
        examples=["Launch planner"],
    )
    goal: str = Field(
        default="",
        max_length=2000,
        description="Goal the agent works towards; used for task generation.",
        examples=["Plan and ship the beta launch of our mobile app."],
    )
    agent_type: str = Field(default="general", max_length=50, examples=["general"])

    @field_validator("name", "goal", "agent_type", mode="before")
    @classmethod
    def strip_text(cls, value: object) -> object:
        """Trim surrounding whitespace from text fields."""
        return _strip_text(value)


class AgentUpdate(SQLModel):
    """Partial agent update payload."""

    name: str | None = Field(default=None, min_length=1, max_length=100)
    goal: str | None = Field(default=None, max_length=2000)
    agent_type: str | None = Field(default=None, max_length=50)
    status: AgentStatus | None = None

    @field_validator("name", "goal", "agent_type", mode="before")
    @classmethod
    def strip_text(cls, value: object) -> object:
        """Trim surrounding whitespace from text fields."""
        return _strip_text(value)


class AgentRead(SQLModel):
    """Agent payload returned by API responses."""

    id: UUID
    owner_id: UUID
    name: str
    goal: str
    agent_type: str
    status: str
    agent_metadata: dict[str, Any] | None = None
    last_execution_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class AgentExecuteRequest(SQLModel):
    """Request body for queueing an execution run."""

    provider: str | None = Field(
        default=None,
        description="LLM provider id to use; defaults to the first provider with a stored key.",
        examples=["openai"],
    )


class AgentExecuteResponse(SQLModel):
    """Acknowledgement that an execution run was queued."""

    queued: bool
    agent_id: UUID
    providers: list[str] = Field(default_factory=list)
    message: str


class GenerateTasksRequest(SQLModel):
    """Request body for breaking a goal into tasks."""

    goal: str | None = Field(
        default=None,
        description="Goal to decompose; defaults to the agent's stored goal.",
    )
    provider: str | None = None

    @field_validator("goal", mode="before")
    @classmethod
    def strip_goal(cls, value: object) -> object:
        """Trim surrounding whitespace from the goal."""
        return _strip_text(value)


class GenerateTasksResponse(SQLModel):
    """Tasks inserted by goal decomposition."""

    tasks: list[TaskRead]
    used_fallback: bool = False
    provider: str | None = None
    error: str | None = None
