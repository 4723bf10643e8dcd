"""
Pytest configuration and fixtures for adapter tests.

Unit tests run against FakePool, an in-memory stand-in for asyncpg.Pool that
records every statement and whether each transaction committed or rolled back.
Integration tests use a real PostgreSQL and are skipped when DATABASE_URL is
not set.
"""

from __future__ import annotations

import os
import uuid
from contextlib import asynccontextmanager
from typing import Any

import asyncpg
import pytest
from casbin.model import Model

from casbin_asyncpg_adapter import Adapter

RBAC_MODEL = """
[request_definition]
r = sub, obj, act

[policy_definition]
p = sub, obj, act

[role_definition]
g = _, _

[policy_effect]
e = some(where (p.eft == allow))

[matchers]
m = g(r.sub, p.sub) && r.obj == p.obj && r.act == p.act
"""


class FakeTransaction:
    def __init__(self, conn: FakeConnection):
        self.conn = conn

    async def __aenter__(self) -> FakeTransaction:
        self.conn.log.append(("begin",))
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        self.conn.log.append(("rollback",) if exc_type else ("commit",))
        return False


class FakeConnection:
    """
    Records statements instead of running them.

    `results` is a list of row lists handed out by successive fetch() calls.
    `fail_on` makes the statement whose text contains that substring raise.
    """

    def __init__(self) -> None:
        self.log: list[tuple[Any, ...]] = []
        self.results: list[list[dict[str, Any]]] = []
        self.status = "OK"
        self.fail_on: str | None = None

    def _check(self, sql: str) -> None:
        if self.fail_on and self.fail_on in sql:
            raise asyncpg.PostgresError("simulated failure")

    def transaction(self) -> FakeTransaction:
        return FakeTransaction(self)

    async def execute(self, sql: str, *args: Any) -> str:
        self.log.append(("execute", sql, args))
        self._check(sql)
        return self.status

    async def executemany(self, sql: str, args: list) -> None:
        self.log.append(("executemany", sql, list(args)))
        self._check(sql)

    async def fetch(self, sql: str, *args: Any) -> list[dict[str, Any]]:
        self.log.append(("fetch", sql, args))
        self._check(sql)
        return self.results.pop(0) if self.results else []

    def statements(self) -> list[tuple[Any, ...]]:
        """Logged statements without transaction markers."""
        return [entry for entry in self.log if entry[0] in ("execute", "executemany", "fetch")]


class FakePool:
    def __init__(self) -> None:
        self.conn = FakeConnection()
        self.closed = False

    @asynccontextmanager
    async def acquire(self):
        yield self.conn

    async def close(self) -> None:
        self.closed = True


def make_record(ptype: str, *values: str, id: str = "x") -> dict[str, Any]:
    """A row as returned by fetch(); missing slots are NULL."""
    record: dict[str, Any] = {"id": id, "ptype": ptype}
    for i in range(6):
        record[f"v{i}"] = values[i] if i < len(values) else None
    return record


def new_model() -> Model:
    model = Model()
    model.load_model_from_text(RBAC_MODEL)
    return model


@pytest.fixture
def fake_pool() -> FakePool:
    return FakePool()


@pytest.fixture
def adapter(fake_pool) -> Adapter:
    """Adapter over FakePool, without table bootstrap."""
    return Adapter(fake_pool, table_name="casbin_rules", skip_table_create=True)


@pytest.fixture
def model() -> Model:
    return new_model()


@pytest.fixture
async def pg_pool():
    """Connection pool on a real database."""
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        pytest.skip("DATABASE_URL not set")

    pool = await asyncpg.create_pool(database_url)
    yield pool
    await pool.close()


@pytest.fixture
async def pg_adapter(pg_pool):
    """Adapter on its own throwaway table."""
    table = f"casbin_rules_test_{uuid.uuid4().hex[:8]}"
    adapter = await Adapter.from_pool(pg_pool, table_name=table)
    yield adapter
    async with pg_pool.acquire() as conn:
        await conn.execute(f'DROP TABLE IF EXISTS "{table}"')
