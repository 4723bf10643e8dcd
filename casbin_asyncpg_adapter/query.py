"""
SQL fragment builders for the rules table.

Pure string/argument construction, no database access. Conditions are built
from ordered (column, value) pairs and rendered with asyncpg's $n
placeholders, so values never end up inside the SQL text.
"""

from __future__ import annotations

from collections.abc import Sequence

from casbin_asyncpg_adapter.exceptions import PolicyValidationError
from casbin_asyncpg_adapter.models import COLUMNS, MAX_FIELDS, CasbinRule

SELECT_COLUMNS = "id, ptype, v0, v1, v2, v3, v4, v5"


def quote_ident(name: str) -> str:
    """Quote a table name for use in SQL text."""
    return '"' + name.replace('"', '""') + '"'


def field_pairs(values: Sequence[str | None], field_index: int = 0) -> list[tuple[str, str]]:
    """
    Map filter values onto value columns.

    values[i] constrains column v{field_index + i}. Empty or None values
    leave their column unconstrained and produce no pair.

    Raises:
        PolicyValidationError: a value would land outside v0..v5
    """
    if field_index < 0 or field_index + len(values) > MAX_FIELDS:
        raise PolicyValidationError(
            f"filter has more values than expected: field_index={field_index}, "
            f"{len(values)} values, should not exceed {MAX_FIELDS} columns"
        )
    return [(COLUMNS[field_index + i], v) for i, v in enumerate(values) if v]


def rule_pairs(row: CasbinRule) -> list[tuple[str, str]]:
    """Pairs for every non-empty slot of a stored row."""
    return [(col, v) for col, v in zip(COLUMNS, row.fields()) if v]


def where_clause(ptype: str, pairs: Sequence[tuple[str, str]]) -> tuple[str, list[str]]:
    """
    Render `ptype = $1 AND col = $2 ...`.

    Returns:
        (clause, args) where args line up with the placeholders
    """
    args = [ptype]
    clause = "ptype = $1"
    for col, value in pairs:
        args.append(value)
        clause += f" AND {col} = ${len(args)}"
    return clause, args


def set_clause(row: CasbinRule, start: int) -> tuple[str, list[str]]:
    """Render the SET list that rewrites every column of a row, numbering from $start."""
    names = ("id", "ptype", *COLUMNS)
    clause = ", ".join(f"{name} = ${start + i}" for i, name in enumerate(names))
    return clause, list(row.values())


def insert_statement(table: str) -> str:
    """INSERT of one full row; a no-op when the id already exists."""
    return (
        f"INSERT INTO {quote_ident(table)} ({SELECT_COLUMNS}) VALUES ($1, $2, $3, $4, $5, $6, $7, $8) "
        "ON CONFLICT (id) DO NOTHING"
    )


def create_table_statement(table: str) -> str:
    return f"""
        CREATE TABLE IF NOT EXISTS {quote_ident(table)} (
            id TEXT PRIMARY KEY,
            ptype TEXT NOT NULL,
            v0 TEXT,
            v1 TEXT,
            v2 TEXT,
            v3 TEXT,
            v4 TEXT,
            v5 TEXT
        )
    """
