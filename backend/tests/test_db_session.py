# ruff: noqa: INP001
"""Engine construction and database URL normalization."""

from __future__ import annotations

import pytest
from sqlalchemy import text

from agentflow.db.session import build_engine, build_session_maker, normalize_database_url


@pytest.mark.parametrize(
    ("raw", "async_driver", "expected"),
    [
        ("postgres://u:p@db/agentflow", True, "postgresql+psycopg://u:p@db/agentflow"),
        ("postgresql://u:p@db/agentflow", False, "postgresql+psycopg://u:p@db/agentflow"),
        ("sqlite:///agentflow.db", True, "sqlite+aiosqlite:///agentflow.db"),
        ("sqlite:///agentflow.db", False, "sqlite:///agentflow.db"),
        ("postgresql+asyncpg://u@db/x", True, "postgresql+asyncpg://u@db/x"),
        ("not-a-url", True, "not-a-url"),
    ],
)
def test_normalize_database_url(raw: str, async_driver: bool, expected: str) -> None:
    assert normalize_database_url(raw, async_driver=async_driver) == expected


@pytest.mark.asyncio
async def test_sqlite_engine_rolls_back_savepoint_only() -> None:
    engine = build_engine("sqlite:///:memory:")
    maker = build_session_maker(engine)
    try:
        async with maker() as session:
            await session.execute(text("CREATE TABLE notes (body TEXT)"))
            await session.execute(text("INSERT INTO notes VALUES ('kept')"))
            savepoint = await session.begin_nested()
            await session.execute(text("INSERT INTO notes VALUES ('dropped')"))
            await savepoint.rollback()
            await session.commit()

            rows = (await session.execute(text("SELECT body FROM notes"))).scalars().all()
    finally:
        await engine.dispose()

    assert rows == ["kept"]
