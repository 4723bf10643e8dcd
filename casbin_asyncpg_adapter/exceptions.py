"""Errors raised by the adapter itself.

Driver errors (asyncpg.PostgresError and friends) are never wrapped once the
adapter is constructed; they reach the caller unchanged.
"""

from __future__ import annotations


class AdapterError(Exception):
    """Base class for adapter errors."""
    pass


class ConfigurationError(AdapterError, TypeError):
    """Construction argument or filter has the wrong type or is missing."""
    pass


class BootstrapError(AdapterError):
    """The rules table could not be created."""
    pass


class PolicyValidationError(AdapterError, ValueError):
    """A rule or filter does not fit the six value columns."""
    pass
