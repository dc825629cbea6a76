"""crashwatch.cli – Typer-powered command-line interface.

``run`` opens the live dashboard; ``export`` / ``import`` are the statistics
menu actions working on the persisted data; ``stats``, ``probe`` and
``reset`` cover the remaining buttons of the dashboard.
"""

from __future__ import annotations

import json
import logging
import signal
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import anyio
import typer
from rich.console import Console

from .connection import probe_connection
from .controller import DashboardController
from .events import CrashEvent, EventBuffer, now_ms
from .exceptions import PersistenceError
from .logging_utils import LogPanel, configure_logging
from .render import ConsolePresenter, histogram_table, hourly_table, summary_table
from .settings import LOG_PANEL_CAP, PROBE_TIMEOUT, SettingsStore
from .simulator import OFFLINE_URL, CrashSimulator, offline_connector
from .stats import TIME_WINDOWS, histogram, hourly_breakdown, summary, window_cutoff
from .storage import CrashDataStore, FileStore, parse_events

logger = logging.getLogger(__name__)

app = typer.Typer(add_completion=False, pretty_exceptions_enable=False, no_args_is_help=True)

_DATA_DIR_OPTION = typer.Option(
    None,
    "--data-dir",
    envvar="CRASHWATCH_HOME",
    help="Directory holding settings, crash data and logs (default ~/.crashwatch).",
)


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


def _setup(data_dir: Optional[Path], debug: bool = False) -> Tuple[FileStore, LogPanel]:
    """Create the file store and route logging into files plus a log panel."""

    files = FileStore(data_dir)
    panel = LogPanel(LOG_PANEL_CAP)
    configure_logging(debug=debug, panel=panel, log_dir=files.root / "logs", console=False)
    return files, panel


def _last_error(panel: LogPanel) -> str:
    for entry in panel.entries():
        if entry.kind == "error":
            return entry.message
    return "unknown error"


def _check_window(window: str) -> str:
    if window not in TIME_WINDOWS:
        raise typer.BadParameter(f"choose one of {', '.join(TIME_WINDOWS)}")
    return window


# ---------------------------------------------------------------------------
# run
# ---------------------------------------------------------------------------


async def _wait_for_shutdown() -> None:
    with anyio.open_signal_receiver(signal.SIGINT, signal.SIGTERM) as signals:
        async for _ in signals:
            return


async def _run_dashboard(
    files: FileStore,
    panel: LogPanel,
    overrides: Dict[str, Any],
    simulate: bool,
    window: str,
    presenter: Optional[ConsolePresenter] = None,
) -> None:
    offline = simulate and not overrides.get("feed_url")
    presenter = presenter or ConsolePresenter()
    with presenter:
        async with DashboardController(
            files,
            presenter=presenter,
            panel=panel,
            connector=offline_connector if offline else None,
            tick_source=CrashSimulator() if simulate else None,
            window=window,
        ) as ctl:
            await ctl.load()
            if overrides:
                ctl.update_settings(**overrides)
            if offline:
                # Run-only target; never written to the settings file.
                ctl.feed.connect(OFFLINE_URL, "simulator")
            elif ctl.settings.feed_url:
                ctl.connect()
            await _wait_for_shutdown()


@app.command("run")
def run_dashboard(
    url: Optional[str] = typer.Option(None, "-u", "--url", help="Feed WebSocket URL (http/https are rewritten)."),
    hub: Optional[str] = typer.Option(None, "--hub", help="Hub name."),
    token: Optional[str] = typer.Option(None, "--token", help="Auth token."),
    simulate: bool = typer.Option(False, "--simulate", help="Generate synthetic crashes on every tick."),
    retention: Optional[int] = typer.Option(None, "--retention", min=1, help="Data retention in hours."),
    interval: Optional[int] = typer.Option(None, "--interval", min=1, help="Update interval in ms."),
    no_reconnect: bool = typer.Option(False, "--no-reconnect", help="Disable automatic reconnect."),
    window: str = typer.Option("all", "-w", "--window", help="Hourly table window: 1h, 6h, 24h, 7d, all."),
    data_dir: Optional[Path] = _DATA_DIR_OPTION,
    debug: bool = typer.Option(False, "-d", "--debug", help="Log at TRACE level."),
):
    """Show the live dashboard until Ctrl-C."""

    _check_window(window)
    files, panel = _setup(data_dir, debug)
    overrides: Dict[str, Any] = {}
    for key, value in (
        ("feed_url", url),
        ("hub_name", hub),
        ("auth_token", token),
        ("data_retention_hours", retention),
        ("update_interval_ms", interval),
    ):
        if value is not None:
            overrides[key] = value
    if no_reconnect:
        overrides["auto_reconnect"] = False
    anyio.run(_run_dashboard, files, panel, overrides, simulate, window)


# ---------------------------------------------------------------------------
# probe
# ---------------------------------------------------------------------------


@app.command()
def probe(
    url: str = typer.Argument(..., help="Feed URL to test."),
    timeout: float = typer.Option(PROBE_TIMEOUT, "-t", "--timeout", help="Seconds to wait for the socket to open."),
):
    """Open and close a transient connection to URL."""

    async def _probe() -> bool:
        return await probe_connection(url, timeout=timeout)

    configure_logging(console=True, log_dir=FileStore().root / "logs")
    if not anyio.run(_probe):
        typer.secho("Connection test failed", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    typer.secho("Connection test successful", fg=typer.colors.GREEN)


# ---------------------------------------------------------------------------
# export / import
# ---------------------------------------------------------------------------


@app.command("export")
def export_(
    path: Path = typer.Argument(..., help="Destination JSON file."),
    data_dir: Optional[Path] = _DATA_DIR_OPTION,
):
    """Export settings, crash data and session info to PATH."""

    files, panel = _setup(data_dir)

    async def _export() -> bool:
        async with DashboardController(files, panel=panel) as ctl:
            await ctl.load()
            return await ctl.export_to(path)

    if not anyio.run(_export):
        typer.secho(f"Export Error: {_last_error(panel)}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    typer.echo(f"Statistics exported to {path}")


@app.command("import")
def import_(
    path: Path = typer.Argument(..., help="Export file to merge into the local data."),
    data_dir: Optional[Path] = _DATA_DIR_OPTION,
):
    """Prepend the crash data of PATH and merge its settings."""

    files, panel = _setup(data_dir)

    async def _import() -> Optional[int]:
        async with DashboardController(files, panel=panel) as ctl:
            await ctl.load()
            return await ctl.import_from(path)

    count = anyio.run(_import)
    if count is None:
        typer.secho(f"Import Error: {_last_error(panel)}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    typer.echo(f"Imported {count} crash data points")


# ---------------------------------------------------------------------------
# stats
# ---------------------------------------------------------------------------


async def _load_events(files: FileStore, source: Optional[Path]) -> List[CrashEvent]:
    if source is None:
        settings = await SettingsStore(files).load()
        buffer = EventBuffer(await CrashDataStore(files).load())
        buffer.evict_expired(now_ms(), settings.retention_ms)
        return list(buffer)
    result = await files.read(source)
    if not result.ok:
        raise typer.BadParameter(result.error or "unreadable", param_hint="--file")
    try:
        doc = json.loads(result.data or "")
    except json.JSONDecodeError as exc:
        raise typer.BadParameter(str(exc), param_hint="--file") from exc
    return parse_events(doc.get("crashData") if isinstance(doc, dict) else None)


@app.command()
def stats(
    source: Optional[Path] = typer.Option(None, "-f", "--file", help="Export file instead of the persisted data."),
    window: str = typer.Option("all", "-w", "--window", help="Hourly table window: 1h, 6h, 24h, 7d, all."),
    data_dir: Optional[Path] = _DATA_DIR_OPTION,
):
    """Print summary, multiplier ranges and the hourly table."""

    _check_window(window)
    files, panel = _setup(data_dir)
    try:
        events = anyio.run(_load_events, files, source)
    except PersistenceError as exc:
        logger.error("Failed to load crash data: %s", exc)
        typer.secho(f"Stats Error: {_last_error(panel)}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    cutoff = window_cutoff(window, now_ms())
    windowed = [e for e in events if e.timestamp > cutoff]

    console = Console()
    console.print(summary_table(summary(events)))
    console.print(histogram_table(histogram(events)))
    console.print(hourly_table(hourly_breakdown(windowed), window))


# ---------------------------------------------------------------------------
# reset
# ---------------------------------------------------------------------------


@app.command()
def reset(
    yes: bool = typer.Option(False, "-y", "--yes", help="Do not ask for confirmation."),
    data_dir: Optional[Path] = _DATA_DIR_OPTION,
):
    """Delete all stored crash data."""

    if not yes:
        typer.confirm("Are you sure you want to reset all data? This cannot be undone.", abort=True)
    files, panel = _setup(data_dir)

    async def _reset() -> None:
        async with DashboardController(files, panel=panel) as ctl:
            await ctl.load()
            ctl.reset_data()

    anyio.run(_reset)
    typer.echo("All data has been reset")


# Entrypoint ------------------------------------------------------------------


def run() -> None:
    """Console-script entrypoint for the ``crashwatch`` command."""

    app()
