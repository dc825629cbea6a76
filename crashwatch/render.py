"""Terminal presentation of a :class:`~crashwatch.controller.DashboardView`."""

from __future__ import annotations

from datetime import datetime
from typing import Dict, Iterable, Optional

from rich.columns import Columns
from rich.console import Console, Group, RenderableType
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .connection import ConnectionState
from .controller import DashboardView
from .events import CrashEvent
from .stats import HourlyRow, RiskLevel, Summary

__all__ = [
    "ConsolePresenter",
    "build_dashboard",
    "summary_table",
    "histogram_table",
    "hourly_table",
]

_STATE_STYLE = {
    ConnectionState.CONNECTED: ("●", "green", "Connected"),
    ConnectionState.CONNECTING: ("●", "yellow", "Connecting..."),
    ConnectionState.DISCONNECTED: ("●", "red", "Disconnected"),
}

_RISK_STYLE = {
    RiskLevel.SAFE: "green",
    RiskLevel.RISKY: "yellow",
    RiskLevel.DANGEROUS: "red",
}

_LOG_STYLE = {
    "success": "green",
    "warning": "yellow",
    "error": "red",
    "crash": "magenta",
}


def _fmt_time(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000).strftime("%Y-%m-%d %H:%M")


def summary_table(s: Summary) -> Table:
    table = Table(title="Summary", expand=True)
    table.add_column("Total Games", justify="right")
    table.add_column("Avg Multiplier", justify="right")
    table.add_column("Max Multiplier", justify="right")
    table.add_column("Win Rate (≥2x)", justify="right")
    table.add_row(f"{s.count:,}", f"{s.average:.2f}x", f"{s.max:.2f}x", f"{s.win_rate:.1f}%")
    return table


def histogram_table(counts: Dict[str, int]) -> Table:
    table = Table(title="Multiplier Ranges", expand=True)
    for label in counts:
        table.add_column(label, justify="right")
    table.add_row(*(f"{n:,}" for n in counts.values()))
    return table


def hourly_table(rows: Iterable[HourlyRow], window: str = "all") -> Table:
    table = Table(title=f"Hourly Statistics ({window})", expand=True)
    table.add_column("Hour")
    table.add_column("Games", justify="right")
    table.add_column("Avg", justify="right")
    table.add_column("Win Rate", justify="right")
    table.add_column("Max", justify="right")
    table.add_column("Risk")
    for row in rows:
        style = _RISK_STYLE[row.risk]
        table.add_row(
            _fmt_time(row.hour),
            str(row.count),
            f"{row.average:.2f}x",
            Text(f"{row.win_rate:.1f}%", style=style),
            f"{row.max:.2f}x",
            Text(row.risk.value, style=style),
        )
    return table


def _recent_strip(events: Iterable[CrashEvent]) -> Text:
    text = Text()
    for event in events:
        style = "bold green" if event.is_win else "red"
        text.append(f"{event.multiplier:.2f}x ", style=style)
    return text


def build_dashboard(view: DashboardView) -> RenderableType:
    dot, colour, label = _STATE_STYLE[view.state]
    status = Text.assemble((dot + " ", colour), label)
    session = Text(
        f"Session {view.session_duration or '--:--:--'} · "
        f"{view.events_per_minute:.1f} games/min · "
        f"{view.data_points:,} data points · "
        f"updated {datetime.fromtimestamp(view.last_update / 1000):%H:%M:%S}",
        style="dim",
    )
    logs = Text()
    for entry in view.logs:
        logs.append(f"{entry}\n", style=_LOG_STYLE.get(entry.kind, ""))

    return Group(
        Columns([status, session]),
        summary_table(view.summary),
        histogram_table(view.histogram),
        Panel(_recent_strip(view.recent), title="Recent Crashes"),
        hourly_table(view.hourly, view.window),
        Panel(logs, title="Log"),
    )


class ConsolePresenter:
    """Draw dashboard views with *rich*.

    Inside ``with presenter:`` views update a :class:`rich.live.Live` region
    in place; outside it each view is printed once.
    """

    def __init__(self, console: Optional[Console] = None, refresh_per_second: float = 4) -> None:
        self.console = console or Console()
        self._refresh_per_second = refresh_per_second
        self._live: Optional[Live] = None

    def __enter__(self) -> "ConsolePresenter":
        self._live = Live(console=self.console, refresh_per_second=self._refresh_per_second)
        self._live.__enter__()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._live is not None:
            self._live.__exit__(exc_type, exc, tb)
            self._live = None

    def render(self, view: DashboardView) -> None:
        renderable = build_dashboard(view)
        if self._live is not None:
            self._live.update(renderable)
        else:
            self.console.print(renderable)
