"""
Global test fixtures to isolate logging side-effects and ensure clean state.
"""

import logging

import pytest

from crashwatch.events import CrashEvent


@pytest.fixture(autouse=True)
def disable_logging() -> None:
    """Clear and close all logging handlers before and after each test."""
    root = logging.getLogger()
    for h in root.handlers:
        h.close()
    root.handlers.clear()
    root.setLevel(logging.CRITICAL)
    yield
    for h in root.handlers:
        h.close()
    root.handlers.clear()


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def make_event():
    """Factory for crash events with readable defaults."""

    counter = iter(range(1, 1_000_000))

    def _make(multiplier: float = 1.5, timestamp: int = 1_700_000_000_000, game_id: str | None = None) -> CrashEvent:
        return CrashEvent(multiplier, timestamp, game_id or f"g{next(counter)}")

    return _make
