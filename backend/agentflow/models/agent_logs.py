"""Append-only activity log rows scoped to an agent."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column, Text
from sqlmodel import Field

from agentflow.core.time import utcnow
from agentflow.models.base import QueryModel

RUNTIME_ANNOTATION_TYPES = (datetime,)

LOG_TYPES = frozenset(
    {
        "action",
        "success",
        "milestone",
        "progress",
        "info",
        "warning",
        "error",
        "dependency",
    },
)


class AgentLog(QueryModel, table=True):
    """Audit trail entry for agent and task lifecycle events."""

    __tablename__ = "agent_logs"  # pyright: ignore[reportAssignmentType]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    agent_id: UUID = Field(foreign_key="agents.id", index=True)
    user_id: UUID | None = Field(default=None, index=True)
    log_type: str = Field(index=True)
    message: str = Field(sa_column=Column(Text, nullable=False))
    log_metadata: dict[str, Any] | None = Field(
        default=None,
        sa_column=Column("metadata", JSON),
    )
    created_at: datetime = Field(default_factory=utcnow, index=True)
