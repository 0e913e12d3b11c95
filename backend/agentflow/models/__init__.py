"""Model exports for SQLAlchemy/SQLModel metadata discovery."""

from agentflow.models.agent_logs import AgentLog
from agentflow.models.agents import Agent
from agentflow.models.api_keys import UserApiKey
from agentflow.models.tasks import Task
from agentflow.models.users import User

__all__ = [
    "Agent",
    "AgentLog",
    "Task",
    "User",
    "UserApiKey",
]
