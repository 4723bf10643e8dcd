"""
Connection pool setup and transaction scoping for the adapter.

All statements the adapter issues go through a pool created here or handed
in by the caller. Multi-statement work always runs inside transaction().
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from contextlib import asynccontextmanager
from typing import Any

import asyncpg

from casbin_asyncpg_adapter.config import settings
from casbin_asyncpg_adapter.exceptions import ConfigurationError
from casbin_asyncpg_adapter.query import quote_ident

logger = logging.getLogger(__name__)


def pool_options(arg: str | Mapping[str, Any] | None) -> dict[str, Any]:
    """
    Normalize a construction argument into asyncpg.create_pool() kwargs.

    Args:
        arg: A PostgreSQL URL, a mapping of create_pool() keyword arguments,
            or None to use CASBIN_DATABASE_URL

    Returns:
        Fresh dict of pool keyword arguments

    Raises:
        ConfigurationError: arg has another type, or no URL is configured
    """
    if arg is None:
        if not settings.DATABASE_URL:
            raise ConfigurationError("no connection given and CASBIN_DATABASE_URL is not set")
        return {"dsn": settings.DATABASE_URL, **settings.pool_kwargs()}
    if isinstance(arg, str):
        return {"dsn": arg, **settings.pool_kwargs()}
    if isinstance(arg, Mapping):
        return dict(arg)
    raise ConfigurationError(
        f"must pass in a PostgreSQL URL string or a mapping of pool options, "
        f"received {type(arg).__name__} instead"
    )


async def create_database(options: Mapping[str, Any], dbname: str) -> None:
    """
    Create the target database unless it already exists.

    Connects with the given options (i.e. to whatever database they name),
    issues CREATE DATABASE and closes that pool again.
    """
    pool = await asyncpg.create_pool(**options)
    try:
        await pool.execute(f"CREATE DATABASE {quote_ident(dbname)}")
        logger.info("created database %s", dbname)
    except asyncpg.exceptions.DuplicateDatabaseError:
        logger.info("database %s already exists", dbname)
    finally:
        await pool.close()


async def open_pool(arg: str | Mapping[str, Any] | None, dbname: str) -> asyncpg.Pool:
    """
    Open a pool on `dbname`, creating that database first if needed.

    Returns:
        asyncpg.Pool connected to `dbname`
    """
    options = pool_options(arg)
    await create_database(options, dbname)
    options["database"] = dbname
    return await asyncpg.create_pool(**options)


@asynccontextmanager
async def transaction(pool: asyncpg.Pool):
    """
    Acquire a connection and run one transaction on it.

    Commits when the block exits normally. Any exception rolls the
    transaction back and is re-raised unchanged.

    Usage:
        async with transaction(pool) as conn:
            await conn.execute("DELETE FROM casbin_rules")

    Yields:
        asyncpg.Connection inside an open transaction
    """
    async with pool.acquire() as conn:
        try:
            async with conn.transaction():
                yield conn
        except Exception as e:
            logger.warning("transaction rolled back: %s", e)
            raise
