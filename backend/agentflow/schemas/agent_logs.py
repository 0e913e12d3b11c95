"""Agent activity log response schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlmodel import SQLModel

RUNTIME_ANNOTATION_TYPES = (datetime, UUID)


class AgentLogRead(SQLModel):
    """One agent log row as returned by the API."""

    id: UUID
    agent_id: UUID
    user_id: UUID | None = None
    log_type: str
    message: str
    log_metadata: dict[str, Any] | None = None
    created_at: datetime
