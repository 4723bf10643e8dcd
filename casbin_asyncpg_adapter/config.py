"""
Adapter configuration: defaults and environment variables in one place.

Read from environment at import time. Never hardcode credentials.
"""

from __future__ import annotations

import os

DEFAULT_TABLE_NAME = "casbin_rules"
DEFAULT_DATABASE_NAME = "casbin"


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings:
    """Adapter settings from environment variables."""

    # Database
    DATABASE_URL: str = os.environ.get("CASBIN_DATABASE_URL", "")
    DATABASE_NAME: str = os.environ.get("CASBIN_DATABASE_NAME", DEFAULT_DATABASE_NAME)

    # Rules table
    TABLE_NAME: str = os.environ.get("CASBIN_TABLE_NAME", DEFAULT_TABLE_NAME)
    SKIP_TABLE_CREATE: bool = _env_bool("CASBIN_SKIP_TABLE_CREATE")

    # Pool
    POOL_MIN_SIZE: int = int(os.environ.get("CASBIN_POOL_MIN_SIZE", "1"))
    POOL_MAX_SIZE: int = int(os.environ.get("CASBIN_POOL_MAX_SIZE", "10"))
    COMMAND_TIMEOUT: float = float(os.environ.get("CASBIN_COMMAND_TIMEOUT", "60"))

    def pool_kwargs(self) -> dict:
        """Keyword arguments passed to asyncpg.create_pool()."""
        return {
            "min_size": self.POOL_MIN_SIZE,
            "max_size": self.POOL_MAX_SIZE,
            "command_timeout": self.COMMAND_TIMEOUT,
        }


# Singleton instance
settings = Settings()
