"""Row and filter models for the casbin rules table.

A rule is a ptype plus up to six string tokens. On disk it becomes one row
with a fixed slot per token (v0..v5), "" standing in for an absent token, and
an id derived from the ptype and tokens so that the same rule always lands on
the same primary key.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

import asyncpg
import xxhash
from pydantic import BaseModel, ValidationError

from casbin_asyncpg_adapter.exceptions import ConfigurationError, PolicyValidationError

MAX_FIELDS = 6
COLUMNS = ("v0", "v1", "v2", "v3", "v4", "v5")


def policy_id(ptype: str, rule: Sequence[str]) -> str:
    """
    Compute the primary key of a rule.

    The ptype and tokens are joined with "," and hashed with XXH3-64. The
    digest is rendered as 16 lowercase hex characters, so the same rule yields
    the same id on every platform and run.

    Args:
        ptype: Policy type, e.g. "p" or "g"
        rule: Ordered rule tokens

    Returns:
        Fixed-width hex identity string
    """
    data = ",".join([ptype, *rule])
    return xxhash.xxh3_64_hexdigest(data.encode("utf-8"))


class CasbinRule(BaseModel):
    """One stored policy rule. Maps 1:1 to a row of the rules table."""

    id: str = ""
    ptype: str
    v0: str = ""
    v1: str = ""
    v2: str = ""
    v3: str = ""
    v4: str = ""
    v5: str = ""

    @classmethod
    def from_rule(cls, ptype: str, rule: Sequence[str]) -> CasbinRule:
        """
        Encode a rule into a row, computing its id.

        Raises:
            PolicyValidationError: the rule has more than six tokens
        """
        if len(rule) > MAX_FIELDS:
            raise PolicyValidationError(
                f"too many values in rule: got {len(rule)}, should not exceed {MAX_FIELDS}"
            )
        slots = dict(zip(COLUMNS, rule))
        return cls(id=policy_id(ptype, rule), ptype=ptype, **slots)

    @classmethod
    def from_record(cls, record: asyncpg.Record) -> CasbinRule:
        """Convert a database row to a CasbinRule. NULL columns become ""."""
        slots = {col: record[col] or "" for col in COLUMNS}
        return cls(id=record["id"] or "", ptype=record["ptype"], **slots)

    def fields(self) -> list[str]:
        """The six slot values, empty ones included."""
        return [self.v0, self.v1, self.v2, self.v3, self.v4, self.v5]

    def to_rule(self) -> list[str]:
        """The rule tokens, without the ptype. Empty slots are omitted."""
        return [v for v in self.fields() if v]

    def values(self) -> tuple[str, ...]:
        """Column values in table order, for INSERT."""
        return (self.id, self.ptype, *self.fields())

    def __str__(self) -> str:
        """Policy line as understood by casbin's load_policy_line."""
        return ", ".join([self.ptype, *self.to_rule()])


class Filter(BaseModel):
    """
    Criteria for a filtered load.

    `p` constrains "p" rows and `g` constrains "g" rows. Position i of a list
    matches column v{i}; an empty string or None leaves that column
    unconstrained. A group left as None is not loaded at all.
    """

    model_config = {"extra": "forbid"}

    p: list[str | None] | None = None
    g: list[str | None] | None = None

    def groups(self) -> list[tuple[str, list[str | None]]]:
        """(ptype, values) for every group present, "p" first."""
        result: list[tuple[str, list[str | None]]] = []
        if self.p is not None:
            result.append(("p", self.p))
        if self.g is not None:
            result.append(("g", self.g))
        return result

    @classmethod
    def coerce(cls, value: Any) -> Filter:
        """Accept a Filter, or a mapping with "p"/"g" keys."""
        if isinstance(value, cls):
            return value
        if isinstance(value, Mapping):
            try:
                return cls.model_validate(dict(value))
            except ValidationError as e:
                raise ConfigurationError(f"invalid filter: {e}") from e
        raise ConfigurationError(f"invalid filter type: {type(value).__name__}")
