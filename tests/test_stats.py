from __future__ import annotations

import pytest

from crashwatch.stats import (
    HOUR_MS,
    RiskLevel,
    events_per_minute,
    format_duration,
    group_by_hour,
    histogram,
    hourly_breakdown,
    risk_level,
    summary,
    window_cutoff,
)

NOW = 1_700_000_000_000


def test_summary_empty():
    s = summary([])
    assert (s.count, s.average, s.max, s.win_rate) == (0, 0.0, 0.0, 0.0)


def test_summary_and_histogram_scenario(make_event):
    events = [make_event(m, NOW) for m in (1.5, 2.0, 2.01, 10.0, 10.01)]
    s = summary(events)
    assert s.count == 5
    assert s.average == pytest.approx(5.104)
    assert s.max == pytest.approx(10.01)
    # 2.0, 2.01, 10.0 and 10.01 are wins (>= 2.0)
    assert s.win_rate == pytest.approx(80.0)
    assert histogram(events) == {"1-2x": 2, "2-5x": 1, "5-10x": 1, "10x-plus": 1}


@pytest.mark.parametrize(
    "multiplier, label",
    [(1.0, "1-2x"), (2.0, "1-2x"), (2.01, "2-5x"), (5.0, "2-5x"), (10.0, "5-10x"), (10.01, "10x-plus")],
)
def test_histogram_boundaries(make_event, multiplier, label):
    counts = histogram([make_event(multiplier)])
    assert counts[label] == 1
    assert sum(counts.values()) == 1


def test_histogram_ignores_sub_one(make_event):
    assert sum(histogram([make_event(0.5)]).values()) == 0
    assert set(histogram([])) == {"1-2x", "2-5x", "5-10x", "10x-plus"}


def test_risk_level_thresholds():
    assert risk_level(45) is RiskLevel.SAFE
    assert risk_level(44.9) is RiskLevel.RISKY
    assert risk_level(35) is RiskLevel.RISKY
    assert risk_level(34.9) is RiskLevel.DANGEROUS


def test_group_by_hour_alignment(make_event):
    hour = (NOW // HOUR_MS) * HOUR_MS
    a = make_event(timestamp=hour)
    b = make_event(timestamp=hour + HOUR_MS - 1)
    c = make_event(timestamp=hour + HOUR_MS)
    grouped = group_by_hour([a, b, c])
    assert grouped == {hour: [a, b], hour + HOUR_MS: [c]}


def test_hourly_breakdown_newest_first(make_event):
    hour = (NOW // HOUR_MS) * HOUR_MS
    events = [
        make_event(3.0, hour + HOUR_MS + 10),
        make_event(1.2, hour + 5),
        make_event(2.5, hour + 6),
    ]
    rows = hourly_breakdown(events)
    assert [r.hour for r in rows] == [hour + HOUR_MS, hour]
    assert rows[0].risk is RiskLevel.SAFE
    assert rows[1].count == 2
    assert rows[1].win_rate == pytest.approx(50.0)
    assert rows[1].max == pytest.approx(2.5)


def test_window_cutoff():
    assert window_cutoff("1h", NOW) == NOW - HOUR_MS
    assert window_cutoff("7d", NOW) == NOW - 7 * 24 * HOUR_MS
    assert window_cutoff("all", NOW) == 0
    assert window_cutoff("bogus", NOW) == 0


def test_format_duration():
    assert format_duration(0) == "00:00:00"
    assert format_duration(HOUR_MS + 61_000) == "01:01:01"
    assert format_duration(-5) == "00:00:00"


def test_events_per_minute():
    assert events_per_minute(10, None, NOW) == 0
    assert events_per_minute(0, NOW - 60_000, NOW) == 0
    assert events_per_minute(5, NOW, NOW) == 0
    assert events_per_minute(10, NOW - 120_000, NOW) == pytest.approx(5.0)
