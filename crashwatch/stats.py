"""Aggregate and windowed statistics over crash events.

Every function here is pure: the same input sequence always yields the same
output and nothing reads the clock. Callers that need "now" pass it in as
epoch milliseconds.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from .events import CrashEvent

__all__ = [
    "WIN_MULTIPLIER",
    "HOUR_MS",
    "BUCKETS",
    "TIME_WINDOWS",
    "Summary",
    "RiskLevel",
    "HourlyRow",
    "summary",
    "histogram",
    "group_by_hour",
    "risk_level",
    "hourly_breakdown",
    "window_cutoff",
    "format_duration",
    "events_per_minute",
]

WIN_MULTIPLIER = 2.0
HOUR_MS = 3_600_000

# (label, lower, upper, lower_inclusive). Upper bounds are always inclusive.
BUCKETS: Tuple[Tuple[str, float, float, bool], ...] = (
    ("1-2x", 1.0, 2.0, True),
    ("2-5x", 2.0, 5.0, False),
    ("5-10x", 5.0, 10.0, False),
    ("10x-plus", 10.0, math.inf, False),
)

TIME_WINDOWS: Mapping[str, Optional[int]] = {
    "1h": HOUR_MS,
    "6h": 6 * HOUR_MS,
    "24h": 24 * HOUR_MS,
    "7d": 7 * 24 * HOUR_MS,
    "all": None,
}


@dataclass(frozen=True)
class Summary:
    count: int
    average: float
    max: float
    win_rate: float  # percent


class RiskLevel(str, Enum):
    """Display annotation for a win rate. Not a risk model."""

    SAFE = "safe"
    RISKY = "risky"
    DANGEROUS = "dangerous"


@dataclass(frozen=True)
class HourlyRow:
    """One row of the hourly statistics table."""

    hour: int  # hour-aligned epoch ms
    count: int
    average: float
    win_rate: float
    max: float
    risk: RiskLevel


def summary(events: Iterable[CrashEvent]) -> Summary:
    """Count, mean, max and win rate (percent of multipliers >= 2.0).

    An empty input yields all zeros.
    """
    multipliers = [e.multiplier for e in events]
    count = len(multipliers)
    if count == 0:
        return Summary(count=0, average=0.0, max=0.0, win_rate=0.0)
    wins = sum(1 for m in multipliers if m >= WIN_MULTIPLIER)
    return Summary(
        count=count,
        average=sum(multipliers) / count,
        max=max(multipliers),
        win_rate=wins / count * 100,
    )


def _bucket_for(multiplier: float) -> Optional[str]:
    for label, lower, upper, lower_inclusive in BUCKETS:
        above = multiplier >= lower if lower_inclusive else multiplier > lower
        if above and multiplier <= upper:
            return label
    return None


def histogram(events: Iterable[CrashEvent]) -> Dict[str, int]:
    """Count events per fixed multiplier bucket.

    Buckets are ``[1, 2]``, ``(2, 5]``, ``(5, 10]`` and ``(10, inf)``; all
    four labels are always present. Multipliers below 1.0 are not counted.
    """
    counts = {label: 0 for label, *_ in BUCKETS}
    for event in events:
        label = _bucket_for(event.multiplier)
        if label is not None:
            counts[label] += 1
    return counts


def group_by_hour(events: Iterable[CrashEvent]) -> Dict[int, List[CrashEvent]]:
    grouped: Dict[int, List[CrashEvent]] = {}
    for event in events:
        hour = (event.timestamp // HOUR_MS) * HOUR_MS
        grouped.setdefault(hour, []).append(event)
    return grouped


def risk_level(win_rate: float) -> RiskLevel:
    if win_rate >= 45:
        return RiskLevel.SAFE
    if win_rate >= 35:
        return RiskLevel.RISKY
    return RiskLevel.DANGEROUS


def hourly_breakdown(events: Iterable[CrashEvent]) -> List[HourlyRow]:
    """Per-hour summary rows, newest hour first."""

    rows: List[HourlyRow] = []
    for hour, games in sorted(group_by_hour(events).items(), reverse=True):
        s = summary(games)
        rows.append(
            HourlyRow(
                hour=hour,
                count=s.count,
                average=s.average,
                win_rate=s.win_rate,
                max=s.max,
                risk=risk_level(s.win_rate),
            )
        )
    return rows


def window_cutoff(window: str, now: int) -> int:
    """Cutoff timestamp for a relative window such as ``"6h"``.

    ``"all"`` and unknown windows return 0, which keeps every event.
    """
    span = TIME_WINDOWS.get(window)
    if span is None:
        return 0
    return now - span


def format_duration(elapsed_ms: int) -> str:
    elapsed_ms = max(0, elapsed_ms)
    hours = elapsed_ms // HOUR_MS
    minutes = (elapsed_ms % HOUR_MS) // 60_000
    seconds = (elapsed_ms % 60_000) // 1000
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


def events_per_minute(count: int, start_ms: Optional[int], now: int) -> float:
    """Throughput since *start_ms*; 0 before a session starts."""

    if start_ms is None or count == 0:
        return 0.0
    minutes = (now - start_ms) / 60_000
    if minutes <= 0:
        return 0.0
    return count / minutes

