"""Initial AgentFlow schema: profiles, agents, tasks, agent logs, API keys.

Revision ID: 1a7e3c9d2b4f
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from __future__ import annotations

import sqlalchemy as sa
import sqlmodel
from alembic import op

# revision identifiers, used by Alembic.
revision = "1a7e3c9d2b4f"
down_revision = None
branch_labels = None
depends_on = None

_STR = sqlmodel.sql.sqltypes.AutoString


def upgrade() -> None:
    """Create the base tables and their lookup indexes."""
    op.create_table(
        "profiles",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("clerk_user_id", _STR(), nullable=False),
        sa.Column("email", _STR(), nullable=True),
        sa.Column("name", _STR(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_profiles_clerk_user_id", "profiles", ["clerk_user_id"], unique=True)
    op.create_index("ix_profiles_email", "profiles", ["email"])

    op.create_table(
        "agents",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("owner_id", sa.Uuid(), nullable=False),
        sa.Column("name", _STR(), nullable=False),
        sa.Column("goal", sa.Text(), nullable=False),
        sa.Column("agent_type", _STR(), nullable=False),
        sa.Column("status", _STR(), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("last_execution_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["owner_id"], ["profiles.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_agents_owner_id", "agents", ["owner_id"])
    op.create_index("ix_agents_name", "agents", ["name"])
    op.create_index("ix_agents_status", "agents", ["status"])

    op.create_table(
        "tasks",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("agent_id", sa.Uuid(), nullable=False),
        sa.Column("title", _STR(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", _STR(), nullable=False),
        sa.Column("priority", _STR(), nullable=False),
        sa.Column("phase", _STR(), nullable=False),
        sa.Column("is_dependency", sa.Boolean(), nullable=False),
        sa.Column("blocked_reason", _STR(), nullable=True),
        sa.Column("result", sa.Text(), nullable=True),
        sa.Column("auto_generated", sa.Boolean(), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["agent_id"], ["agents.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    for column in ("agent_id", "status", "priority", "phase", "is_dependency"):
        op.create_index(f"ix_tasks_{column}", "tasks", [column])

    op.create_table(
        "agent_logs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("agent_id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=True),
        sa.Column("log_type", _STR(), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["agent_id"], ["agents.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    for column in ("agent_id", "user_id", "log_type", "created_at"):
        op.create_index(f"ix_agent_logs_{column}", "agent_logs", [column])

    op.create_table(
        "user_api_keys",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("provider", _STR(), nullable=False),
        sa.Column("encrypted_key", sa.Text(), nullable=False),
        sa.Column("key_hint", _STR(), nullable=False),
        sa.Column("preferred_model", _STR(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["profiles.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "provider", name="uq_user_api_keys_provider"),
    )
    op.create_index("ix_user_api_keys_user_id", "user_api_keys", ["user_id"])
    op.create_index("ix_user_api_keys_provider", "user_api_keys", ["provider"])


def downgrade() -> None:
    """Drop all AgentFlow tables."""
    op.drop_table("user_api_keys")
    op.drop_table("agent_logs")
    op.drop_table("tasks")
    op.drop_table("agents")
    op.drop_table("profiles")
