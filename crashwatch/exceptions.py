from __future__ import annotations

"""Custom exceptions used across :mod:`crashwatch`.

Every error is caught at the boundary where it happens and turned into a log
record; none of them is meant to escape the event loop.
"""

__all__ = [
    "CrashwatchError",
    "TransportError",
    "ParseError",
    "PersistenceError",
    "ValidationError",
    "MissingDependencyError",
]


class CrashwatchError(Exception):
    """Base class for all crashwatch errors."""


class TransportError(CrashwatchError):
    """Socket-level failure. Non-fatal, the reconnect policy takes over."""


class ParseError(CrashwatchError, ValueError):
    """Inbound payload could not be decoded. The message is dropped."""


class PersistenceError(CrashwatchError):
    """Reading or writing a data file failed. In-memory state is unaffected."""


class ValidationError(CrashwatchError):
    """User input is missing required fields."""


class MissingDependencyError(ImportError):
    """Raised when a required optional dependency is absent."""
