"""
Typed crash event model and the retention-bounded event buffer.
"""

from __future__ import annotations

import math
import secrets
import string
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Deque, Iterable, Iterator, Mapping, Tuple

__all__ = ["CrashEvent", "EventBuffer", "new_game_id", "now_ms"]


def now_ms() -> int:
    """Current wall-clock time as integer epoch milliseconds."""

    return int(time.time() * 1000)


def new_game_id() -> str:
    """Return a random 9-character id for events that arrive without one."""

    alphabet = string.ascii_lowercase + string.digits
    return "".join(secrets.choice(alphabet) for _ in range(9))


@dataclass(frozen=True)
class CrashEvent:
    """Single finished game: the multiplier it crashed at and when."""

    multiplier: float
    timestamp: int  # epoch ms
    game_id: str

    @property
    def is_win(self) -> bool:
        return self.multiplier >= 2.0

    def to_dict(self) -> dict[str, Any]:
        """Return the wire / file representation."""

        return {
            "multiplier": self.multiplier,
            "timestamp": self.timestamp,
            "gameId": self.game_id,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CrashEvent":
        """Build an event from its wire / file representation.

        A missing timestamp defaults to *now*, a missing game id gets a fresh
        random one. Raises ``ValueError`` when the multiplier is absent,
        non-numeric, non-finite or not strictly positive.
        """

        if not isinstance(data, Mapping):
            raise ValueError("crash record must be an object")
        raw = data.get("multiplier")
        if isinstance(raw, bool) or raw is None:
            raise ValueError(f"invalid multiplier: {raw!r}")
        try:
            multiplier = float(raw)
        except (TypeError, ValueError):
            raise ValueError(f"invalid multiplier: {raw!r}") from None
        if not math.isfinite(multiplier) or multiplier <= 0:
            raise ValueError(f"multiplier must be positive: {raw!r}")

        ts_raw = data.get("timestamp")
        if ts_raw is None or isinstance(ts_raw, bool):
            timestamp = now_ms()
        else:
            try:
                timestamp = int(ts_raw)
            except (TypeError, ValueError):
                raise ValueError(f"invalid timestamp: {ts_raw!r}") from None

        game_id = data.get("gameId") or data.get("id") or new_game_id()
        return cls(multiplier=multiplier, timestamp=timestamp, game_id=str(game_id))


class EventBuffer:
    """
    Newest-first sequence of crash events bounded by a retention window.

    The head is always the most recently inserted event; insertion never
    re-sorts, so callers insert in arrival order. Snapshots are tuples and
    never alias the internal deque.
    """

    def __init__(self, events: Iterable[CrashEvent] = ()) -> None:
        self._events: Deque[CrashEvent] = deque(events)

    def insert(self, event: CrashEvent) -> None:
        self._events.appendleft(event)

    def prepend(self, events: Iterable[CrashEvent]) -> None:
        """Put a newest-first run of events in front, keeping its order."""

        self._events.extendleft(reversed(list(events)))

    def evict_expired(self, now: int, retention_ms: int) -> int:
        """Drop every event with ``timestamp <= now - retention_ms``.

        Returns the number of events removed.
        """

        cutoff = now - retention_ms
        before = len(self._events)
        self._events = deque(e for e in self._events if e.timestamp > cutoff)
        return before - len(self._events)

    def clear(self) -> None:
        self._events.clear()

    def snapshot(self) -> Tuple[CrashEvent, ...]:
        return tuple(self._events)

    def filter_since(self, cutoff_ms: int) -> Tuple[CrashEvent, ...]:
        """Events strictly newer than *cutoff_ms*, newest first."""

        return tuple(e for e in self._events if e.timestamp > cutoff_ms)

    def recent(self, n: int) -> Tuple[CrashEvent, ...]:
        return tuple(e for _, e in zip(range(n), self._events))

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self) -> Iterator[CrashEvent]:
        return iter(tuple(self._events))
