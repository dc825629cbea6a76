"""Synthetic crash events for demos and offline runs.

:class:`CrashSimulator` is a tick source: the feed's periodic ticker calls it
once per update interval while a session is connected. It is only wired in
when simulation is requested, so keep-alive and fake data stay separate.
"""

from __future__ import annotations

import random
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Optional

import anyio

from .events import CrashEvent, new_game_id, now_ms

__all__ = ["CrashSimulator", "OFFLINE_URL", "offline_connector"]

OFFLINE_URL = "simulator://local"


class CrashSimulator:
    """Draw multipliers from a typical crash-game distribution.

    50% land in ``[1, 2)``, 30% in ``[2, 5)``, 15% in ``[5, 10)`` and the
    remaining 5% in ``[10, 50)``.
    """

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._rng = rng or random.Random()
        self._clock = clock

    def next_multiplier(self) -> float:
        roll = self._rng.random()
        if roll < 0.5:
            return 1.0 + self._rng.random()
        if roll < 0.8:
            return 2.0 + self._rng.random() * 3
        if roll < 0.95:
            return 5.0 + self._rng.random() * 5
        return 10.0 + self._rng.random() * 40

    def __call__(self) -> CrashEvent:
        return CrashEvent(
            multiplier=self.next_multiplier(),
            timestamp=self._clock(),
            game_id=new_game_id(),
        )


class _SilentTransport:
    """A transport that stays open and never delivers a message."""

    def __aiter__(self) -> "_SilentTransport":
        return self

    async def __anext__(self) -> str:
        await anyio.sleep_forever()
        raise StopAsyncIteration  # pragma: no cover - unreachable


@asynccontextmanager
async def offline_connector(url: str) -> AsyncIterator[_SilentTransport]:
    """Connector for simulation without a real feed; the ticker does the work."""

    yield _SilentTransport()
