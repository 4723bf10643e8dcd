"""
Casbin async adapter storing policy rules in PostgreSQL through asyncpg.

Implements the load/save, batch, filtered and update adapter interfaces used
by casbin.AsyncEnforcer. All SQL for the rules table lives in this module and
query.py.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping, Sequence
from typing import Any

import asyncpg
from casbin.model import Model
from casbin.persist.adapter import load_policy_line
from casbin.persist.adapters.asyncio import (
    AsyncAdapter,
    AsyncBatchAdapter,
    AsyncFilteredAdapter,
    AsyncUpdateAdapter,
)

from casbin_asyncpg_adapter import db
from casbin_asyncpg_adapter.config import settings
from casbin_asyncpg_adapter.exceptions import BootstrapError, PolicyValidationError
from casbin_asyncpg_adapter.models import CasbinRule, Filter
from casbin_asyncpg_adapter.query import (
    SELECT_COLUMNS,
    create_table_statement,
    field_pairs,
    insert_statement,
    quote_ident,
    rule_pairs,
    set_clause,
    where_clause,
)

logger = logging.getLogger(__name__)


def _affected(status: str | None) -> int:
    """Row count from an asyncpg command status such as "DELETE 3"."""
    if not status:
        return 0
    last = status.rsplit(" ", 1)[-1]
    return int(last) if last.isdigit() else 0


def _model_rows(model: Model) -> Iterator[CasbinRule]:
    """Rows for every rule held by the model, "p" section first, then "g"."""
    for sec in ("p", "g"):
        assertions = model.model.get(sec) or {}
        for ptype, ast in assertions.items():
            for rule in ast.policy:
                yield CasbinRule.from_rule(ptype, rule)


class Adapter(AsyncAdapter, AsyncBatchAdapter, AsyncFilteredAdapter, AsyncUpdateAdapter):
    """
    PostgreSQL-backed policy storage.

    Every rule is one row keyed by policy_id(ptype, rule), so adding a rule
    that is already stored changes nothing. Statements that must apply
    together run in a single transaction and roll back as a unit.

    Construct with Adapter.create() to let the adapter open its own pool, or
    Adapter.from_pool() to reuse an application pool.
    """

    def __init__(
        self,
        pool: asyncpg.Pool,
        table_name: str | None = None,
        skip_table_create: bool | None = None,
    ):
        self.pool = pool
        self.table_name = table_name or settings.TABLE_NAME
        self.skip_table_create = settings.SKIP_TABLE_CREATE if skip_table_create is None else skip_table_create
        self._filtered = False

    @classmethod
    async def create(
        cls,
        arg: str | Mapping[str, Any] | None = None,
        dbname: str | None = None,
        *,
        table_name: str | None = None,
        skip_table_create: bool | None = None,
    ) -> Adapter:
        """
        Open a pool on `dbname` (created if missing) and bootstrap the table.

        Args:
            arg: PostgreSQL URL, mapping of asyncpg.create_pool() options, or
                None to use CASBIN_DATABASE_URL. Any database named in `arg`
                is only used to issue CREATE DATABASE.
            dbname: Database holding the rules (default: CASBIN_DATABASE_NAME)
            table_name: Rules table (default: CASBIN_TABLE_NAME)
            skip_table_create: Assume the table already exists

        Raises:
            ConfigurationError: `arg` is neither a string nor a mapping
            BootstrapError: the rules table could not be created
        """
        pool = await db.open_pool(arg, dbname or settings.DATABASE_NAME)
        adapter = cls(pool, table_name=table_name, skip_table_create=skip_table_create)
        try:
            if not adapter.skip_table_create:
                await adapter.create_table()
        except BaseException:
            await pool.close()
            raise
        return adapter

    @classmethod
    async def from_pool(
        cls,
        pool: asyncpg.Pool,
        *,
        table_name: str | None = None,
        skip_table_create: bool | None = None,
    ) -> Adapter:
        """Wrap an already-open pool and bootstrap the table unless skipped."""
        adapter = cls(pool, table_name=table_name, skip_table_create=skip_table_create)
        if not adapter.skip_table_create:
            await adapter.create_table()
        return adapter

    async def close(self) -> None:
        """Close the connection pool. Safe to call more than once."""
        if self.pool is not None:
            await self.pool.close()
            self.pool = None

    async def __aenter__(self) -> Adapter:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    @property
    def _table(self) -> str:
        return quote_ident(self.table_name)

    async def create_table(self) -> None:
        """Create the rules table if it does not exist yet."""
        try:
            async with self.pool.acquire() as conn:
                await conn.execute(create_table_statement(self.table_name))
        except (asyncpg.exceptions.DuplicateTableError, asyncpg.exceptions.UniqueViolationError):
            # Lost a race with a concurrent CREATE TABLE IF NOT EXISTS.
            logger.info("table %s already exists", self.table_name)
        except (asyncpg.PostgresError, OSError) as e:
            raise BootstrapError(f"could not create table {self.table_name}: {e}") from e
        else:
            logger.info("ensured table %s", self.table_name)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def load_policy(self, model: Model) -> None:
        """Load every stored rule into the model. Row order is unspecified."""
        async with self.pool.acquire() as conn:
            records = await conn.fetch(f"SELECT {SELECT_COLUMNS} FROM {self._table}")

        for record in records:
            load_policy_line(str(CasbinRule.from_record(record)), model)

        self._filtered = False
        logger.debug("load_policy: loaded %d rules from %s", len(records), self.table_name)

    async def load_filtered_policy(self, model: Model, filter: Filter | Mapping | None) -> None:
        """
        Load only the rules matching `filter` into the model.

        A None filter loads everything, exactly like load_policy().

        Raises:
            ConfigurationError: `filter` is not a Filter or mapping
            PolicyValidationError: a group has more than six values
        """
        if filter is None:
            await self.load_policy(model)
            return

        flt = Filter.coerce(filter)
        # Validate every group before running any query.
        queries = []
        for ptype, values in flt.groups():
            clause, args = where_clause(ptype, field_pairs(values))
            queries.append((f"SELECT {SELECT_COLUMNS} FROM {self._table} WHERE {clause}", args))

        lines: list[str] = []
        async with self.pool.acquire() as conn:
            for sql, args in queries:
                records = await conn.fetch(sql, *args)
                lines.extend(str(CasbinRule.from_record(record)) for record in records)

        for line in lines:
            load_policy_line(line, model)

        self._filtered = True
        logger.debug("load_filtered_policy: loaded %d rules from %s", len(lines), self.table_name)

    def is_filtered(self) -> bool:
        """True when the most recent load was a filtered one."""
        return self._filtered

    # ------------------------------------------------------------------
    # Saving
    # ------------------------------------------------------------------

    async def save_policy(self, model: Model) -> bool:
        """Replace the whole table with the rules held by the model."""
        rows = list(_model_rows(model))

        async with db.transaction(self.pool) as conn:
            await conn.execute(f"DELETE FROM {self._table}")
            if rows:
                await conn.executemany(insert_statement(self.table_name), [row.values() for row in rows])

        logger.debug("save_policy: wrote %d rules to %s", len(rows), self.table_name)
        return True

    async def add_policy(self, sec: str, ptype: str, rule: Sequence[str]) -> bool:
        """Store one rule. Already stored rules are left as they are."""
        row = CasbinRule.from_rule(ptype, rule)
        async with db.transaction(self.pool) as conn:
            await conn.execute(insert_statement(self.table_name), *row.values())
        return True

    async def add_policies(self, sec: str, ptype: str, rules: Sequence[Sequence[str]]) -> bool:
        """Store several rules in one transaction; all or none are written."""
        rows = [CasbinRule.from_rule(ptype, rule) for rule in rules]
        if not rows:
            return True

        async with db.transaction(self.pool) as conn:
            await conn.executemany(insert_statement(self.table_name), [row.values() for row in rows])

        logger.debug("add_policies: inserted up to %d %s rules", len(rows), ptype)
        return True

    # ------------------------------------------------------------------
    # Removing
    # ------------------------------------------------------------------

    async def remove_policy(self, sec: str, ptype: str, rule: Sequence[str]) -> bool:
        """Delete one rule by id. Deleting a missing rule is not an error."""
        row = CasbinRule.from_rule(ptype, rule)
        async with db.transaction(self.pool) as conn:
            await conn.execute(f"DELETE FROM {self._table} WHERE id = $1", row.id)
        return True

    async def remove_policies(self, sec: str, ptype: str, rules: Sequence[Sequence[str]]) -> bool:
        """Delete several rules by id in one transaction."""
        ids = [(CasbinRule.from_rule(ptype, rule).id,) for rule in rules]
        if not ids:
            return True

        async with db.transaction(self.pool) as conn:
            await conn.executemany(f"DELETE FROM {self._table} WHERE id = $1", ids)
        return True

    async def remove_filtered_policy(self, sec: str, ptype: str, field_index: int, *field_values: str) -> bool:
        """
        Delete every `ptype` rule whose column v{field_index + i} equals
        field_values[i]. Empty values match anything; no values deletes every
        rule of `ptype`.
        """
        clause, args = where_clause(ptype, field_pairs(field_values, field_index))

        async with db.transaction(self.pool) as conn:
            status = await conn.execute(f"DELETE FROM {self._table} WHERE {clause}", *args)

        logger.debug("remove_filtered_policy: deleted %d %s rules", _affected(status), ptype)
        return True

    # ------------------------------------------------------------------
    # Updating
    # ------------------------------------------------------------------

    async def update_policy(self, sec: str, ptype: str, old_rule: Sequence[str], new_rule: Sequence[str]) -> bool:
        """Rewrite the row holding `old_rule` so that it holds `new_rule`."""
        return await self.update_policies(sec, ptype, [old_rule], [new_rule])

    async def update_policies(
        self,
        sec: str,
        ptype: str,
        old_rules: Sequence[Sequence[str]],
        new_rules: Sequence[Sequence[str]],
    ) -> bool:
        """
        Rewrite old_rules[i] into new_rules[i] for every i, in one transaction.

        A row matches when its ptype and every non-empty column of the old
        rule are equal. Old rules that match nothing are skipped silently.

        Raises:
            PolicyValidationError: the two lists differ in length
        """
        if len(old_rules) != len(new_rules):
            raise PolicyValidationError(
                f"old and new rules differ in length: {len(old_rules)} != {len(new_rules)}"
            )

        statements = []
        for old_rule, new_rule in zip(old_rules, new_rules):
            old = CasbinRule.from_rule(ptype, old_rule)
            new = CasbinRule.from_rule(ptype, new_rule)
            where, args = where_clause(old.ptype, rule_pairs(old))
            assignments, values = set_clause(new, start=len(args) + 1)
            statements.append((f"UPDATE {self._table} SET {assignments} WHERE {where}", args + values))

        updated = 0
        async with db.transaction(self.pool) as conn:
            for sql, args in statements:
                updated += _affected(await conn.execute(sql, *args))

        logger.debug("update_policies: updated %d of %d %s rules", updated, len(statements), ptype)
        return True

    async def update_filtered_policies(
        self,
        sec: str,
        ptype: str,
        new_rules: Sequence[Sequence[str]],
        field_index: int,
        *field_values: str,
    ) -> list[list[str]]:
        """
        Replace the `ptype` rules matching the filter with `new_rules`.

        The filter is built once from field_index/field_values, the same way
        remove_filtered_policy() builds it. Matching rows are deleted once,
        before any new rule is inserted, so a new rule that matches the filter
        is kept. Both steps run in one transaction.

        Returns:
            The deleted rules, as token lists without the ptype
        """
        clause, args = where_clause(ptype, field_pairs(field_values, field_index))
        rows = [CasbinRule.from_rule(ptype, rule) for rule in new_rules]
        if not rows:
            return []

        async with db.transaction(self.pool) as conn:
            records = await conn.fetch(
                f"DELETE FROM {self._table} WHERE {clause} RETURNING {SELECT_COLUMNS}",
                *args,
            )
            await conn.executemany(insert_statement(self.table_name), [row.values() for row in rows])

        removed = [CasbinRule.from_record(record).to_rule() for record in records]
        logger.debug(
            "update_filtered_policies: replaced %d %s rules with %d",
            len(removed),
            ptype,
            len(rows),
        )
        return removed
