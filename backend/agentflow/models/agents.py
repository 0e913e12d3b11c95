"""Agent model representing a goal-driven worker owned by one user."""

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


class AgentStatus(str, Enum):
    """Persisted agent lifecycle states."""

    DRAFT = "draft"
    ACTIVE = "active"
    BLOCKED = "blocked"
    PAUSED = "paused"
    COMPLETED = "completed"
    ERROR = "error"


class Agent(QueryModel, table=True):
    """Agent configuration and lifecycle state persisted in the database."""

    __tablename__ = "agents"  # pyright: ignore[reportAssignmentType]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    owner_id: UUID = Field(foreign_key="profiles.id", index=True)
    name: str = Field(index=True)
    goal: str = Field(default="", sa_column=Column(Text, nullable=False, default=""))
    agent_type: str = Field(default="general")
    status: str = Field(default=AgentStatus.DRAFT.value, index=True)
    # Column is named `metadata`; the attribute avoids clashing with SQLModel.metadata.
    agent_metadata: dict[str, Any] | None = Field(
        default=None,
        sa_column=Column("metadata", JSON),
    )
    last_execution_at: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
