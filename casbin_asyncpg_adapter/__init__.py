"""
PostgreSQL policy storage for casbin's AsyncEnforcer, built on asyncpg.
"""

from casbin_asyncpg_adapter.adapter import Adapter
from casbin_asyncpg_adapter.config import DEFAULT_DATABASE_NAME, DEFAULT_TABLE_NAME
from casbin_asyncpg_adapter.exceptions import (
    AdapterError,
    BootstrapError,
    ConfigurationError,
    PolicyValidationError,
)
from casbin_asyncpg_adapter.models import CasbinRule, Filter, policy_id

__all__ = [
    "Adapter",
    "CasbinRule",
    "Filter",
    "policy_id",
    "DEFAULT_TABLE_NAME",
    "DEFAULT_DATABASE_NAME",
    "AdapterError",
    "ConfigurationError",
    "BootstrapError",
    "PolicyValidationError",
]
