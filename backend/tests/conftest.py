# ruff: noqa: INP001
"""Pytest configuration shared across backend tests."""

import os
import sys
from collections.abc import AsyncIterator
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel.ext.asyncio.session import AsyncSession

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Deterministic settings during import-time initialization, regardless of shell env.
os.environ["AUTH_MODE"] = "local"
os.environ["LOCAL_AUTH_TOKEN"] = "test-local-token-0123456789-0123456789-0123456789x"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["ENVIRONMENT"] = "test"
os.environ["NOTIFICATION_WEBHOOK_URL"] = ""
# base64 of "0123456789abcdef0123456789abcdef", a valid Fernet key.
os.environ["ENCRYPTION_KEY"] = "MDEyMzQ1Njc4OWFiY2RlZjAxMjM0NTY3ODlhYmNkZWY="


class FakeRedis:
    """In-memory stand-in covering the list, sorted-set and pub/sub calls the app makes."""

    def __init__(self) -> None:
        self.lists: dict[str, list[str]] = {}
        self.zsets: dict[str, dict[str, float]] = {}
        self.published: list[tuple[str, str]] = []

    def lpush(self, key: str, *values: str) -> int:
        items = self.lists.setdefault(key, [])
        for value in values:
            items.insert(0, value)
        return len(items)

    def rpop(self, key: str) -> str | None:
        items = self.lists.get(key) or []
        return items.pop() if items else None

    def brpop(self, keys: list[str], timeout: float = 0) -> tuple[str, str] | None:
        del timeout
        for key in keys:
            value = self.rpop(key)
            if value is not None:
                return key, value
        return None

    def zadd(self, key: str, mapping: dict[str, float]) -> int:
        self.zsets.setdefault(key, {}).update(mapping)
        return len(mapping)

    def zrem(self, key: str, *values: str) -> int:
        zset = self.zsets.get(key, {})
        return sum(1 for value in values if zset.pop(value, None) is not None)

    def zrangebyscore(
        self,
        key: str,
        low: float | str,
        high: float | str,
        start: int = 0,
        num: int | None = None,
        withscores: bool = False,
    ) -> list[object]:
        lo = float("-inf") if low == "-inf" else float(low)
        hi = float("inf") if high == "+inf" else float(high)
        ordered = sorted(
            ((member, score) for member, score in self.zsets.get(key, {}).items() if lo <= score <= hi),
            key=lambda item: item[1],
        )
        window = ordered[start : start + num if num is not None else None]
        if withscores:
            return list(window)
        return [member for member, _score in window]

    def publish(self, channel: str, message: str) -> int:
        self.published.append((channel, message))
        return 1


@pytest.fixture(autouse=True)
def fake_redis(monkeypatch: pytest.MonkeyPatch) -> FakeRedis:
    fake = FakeRedis()

    def _fake_redis(redis_url: str | None = None) -> FakeRedis:
        del redis_url
        return fake

    monkeypatch.setattr("agentflow.services.queue._redis_client", _fake_redis)
    return fake


@pytest_asyncio.fixture
async def session_maker() -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    from agentflow.db.session import build_engine, build_session_maker, create_schema

    engine = build_engine("sqlite+aiosqlite:///:memory:")
    await create_schema(engine)
    try:
        yield build_session_maker(engine)
    finally:
        await engine.dispose()
