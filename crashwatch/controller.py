"""Dashboard orchestration.

:class:`DashboardController` owns the event buffer, the current settings, the
session clock and the feed connection. It reacts to feed callbacks and user
actions by mutating the buffer, recomputing statistics and handing a fresh
:class:`DashboardView` to the presenter. It is an async context manager: the
task group it opens hosts the feed, the debounced settings save and every
fire-and-forget file write.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Tuple, Union

import anyio
import anyio.abc

from .connection import ConnectionState, Connector, FeedConnection, TickSource, probe_connection
from .debounce import Debouncer
from .events import CrashEvent, EventBuffer, now_ms
from .exceptions import PersistenceError, ValidationError
from .json_utils import to_json
from .logging_utils import LogPanel, PanelEntry, trace
from .settings import (
    RECENT_CRASHES,
    RECONNECT_DELAY,
    SAVE_DEBOUNCE,
    Settings,
    SettingsStore,
)
from .stats import (
    HourlyRow,
    Summary,
    events_per_minute,
    format_duration,
    histogram,
    hourly_breakdown,
    summary,
    window_cutoff,
)
from .storage import CrashDataStore, FileStore, parse_events

__all__ = ["DashboardController", "DashboardView", "Presenter", "Session"]

logger = logging.getLogger(__name__)


@dataclass
class Session:
    """Start of the current connected session; not persisted."""

    start_time: Optional[int] = None


@dataclass(frozen=True)
class DashboardView:
    """Everything the presentation layer draws, computed in one pass."""

    state: ConnectionState
    summary: Summary
    histogram: Dict[str, int]
    recent: Tuple[CrashEvent, ...]
    window: str
    hourly: List[HourlyRow]
    session_duration: Optional[str]
    events_per_minute: float
    data_points: int
    last_update: int
    logs: List[PanelEntry] = field(default_factory=list)


class Presenter(Protocol):
    def render(self, view: DashboardView) -> None: ...


class DashboardController:
    """Wire feed → buffer → statistics → presenter.

    Example
    -------
    >>> async with DashboardController(FileStore(), presenter=ConsolePresenter()) as ctl:
    ...     await ctl.load()
    ...     ctl.connect()
    ...     await anyio.sleep_forever()
    """

    def __init__(
        self,
        files: Optional[FileStore] = None,
        *,
        presenter: Optional[Presenter] = None,
        connector: Optional[Connector] = None,
        panel: Optional[LogPanel] = None,
        tick_source: Optional[TickSource] = None,
        clock: Callable[[], int] = now_ms,
        window: str = "all",
        save_debounce: float = SAVE_DEBOUNCE,
        reconnect_delay: float = RECONNECT_DELAY,
        log_lines: int = 10,
    ) -> None:
        self.files = files or FileStore()
        self.settings_store = SettingsStore(self.files)
        self.crash_store = CrashDataStore(self.files)
        self.presenter = presenter
        self.panel = panel
        self.buffer = EventBuffer()
        self.session = Session()
        self.settings = Settings()
        self.window = window
        self._connector = connector
        self._tick_source = tick_source
        self._clock = clock
        self._save_debounce = save_debounce
        self._reconnect_delay = reconnect_delay
        self._log_lines = log_lines
        self._tg: Optional[anyio.abc.TaskGroup] = None
        self._feed: Optional[FeedConnection] = None
        self._debouncer: Optional[Debouncer] = None
        self._unsaved: Optional[Tuple[CrashEvent, ...]] = None
        self._writing = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> "DashboardController":
        self._tg = anyio.create_task_group()
        await self._tg.__aenter__()
        self._feed = FeedConnection(
            self._tg,
            connector=self._connector,
            on_state_change=self._on_state_change,
            on_event=self._on_event,
            on_error=self._on_error,
            auto_reconnect=self.settings.auto_reconnect,
            update_interval=self.settings.update_interval,
            tick_source=self._tick_source,
            reconnect_delay=self._reconnect_delay,
        )
        self._debouncer = Debouncer(self._tg, self._save_debounce, self._persist_settings)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> Optional[bool]:
        assert self._tg is not None
        self.feed.disconnect()
        if self._debouncer is not None:
            self._debouncer.flush()
        try:
            return await self._tg.__aexit__(exc_type, exc, tb)
        finally:
            self._tg = None

    @property
    def feed(self) -> FeedConnection:
        if self._feed is None:
            raise RuntimeError("DashboardController is not running; use 'async with'")
        return self._feed

    @property
    def is_connected(self) -> bool:
        return self._feed is not None and self._feed.is_connected

    def _spawn(self, func: Callable[..., Any], *args: Any) -> None:
        if self._tg is None:
            raise RuntimeError("DashboardController is not running; use 'async with'")
        self._tg.start_soon(func, *args)

    async def load(self) -> None:
        """Load persisted settings and crash history."""

        self.settings = await self.settings_store.load()
        self._apply_settings_to_feed()
        try:
            events = await self.crash_store.load()
        except PersistenceError as exc:
            logger.error("Failed to load crash data: %s", exc)
            events = []
        self.buffer = EventBuffer(events)
        expired = self.buffer.evict_expired(self._clock(), self.settings.retention_ms)
        if expired:
            logger.info("Dropped %d crash data points older than the retention window", expired)
            self._persist_events()
        if self.buffer:
            logger.info("Loaded %d crash data points", len(self.buffer))
        self.refresh()

    # ------------------------------------------------------------------
    # Connection actions
    # ------------------------------------------------------------------

    def _validate_connection(self) -> None:
        if not self.settings.feed_url.strip() or not self.settings.hub_name.strip():
            raise ValidationError("Please enter valid WebSocket URL and Hub Name")

    def connect(self) -> bool:
        """Validate the connection settings and start the feed."""

        try:
            self._validate_connection()
        except ValidationError as exc:
            logger.error("%s", exc)
            return False
        self.feed.connect(
            self.settings.feed_url, self.settings.hub_name, self.settings.auth_token
        )
        return True

    def disconnect(self) -> None:
        self.feed.disconnect()
        self.refresh()

    async def test_connection(self) -> bool:
        url = self.settings.feed_url.strip()
        if not url:
            logger.error("Please enter a WebSocket URL to test")
            return False
        return await probe_connection(url, connector=self._connector)

    # ------------------------------------------------------------------
    # Feed callbacks
    # ------------------------------------------------------------------

    def _on_state_change(self, state: ConnectionState) -> None:
        if state is ConnectionState.CONNECTED:
            self.session.start_time = self._clock()
        self.refresh()

    def _on_event(self, event: CrashEvent) -> None:
        self.add_event(event)

    def _on_error(self, message: str) -> None:
        # FeedConnection already logged it; only the panel needs redrawing.
        self.refresh()

    def add_event(self, event: CrashEvent) -> None:
        """Insert, evict expired, recompute and persist."""

        self.buffer.insert(event)
        self.buffer.evict_expired(self._clock(), self.settings.retention_ms)
        logger.info("Game crashed at %.2fx", event.multiplier, extra={"kind": "crash"})
        self.refresh()
        self._persist_events()

    # ------------------------------------------------------------------
    # Recompute / render
    # ------------------------------------------------------------------

    @trace
    def recompute(self, now: Optional[int] = None) -> DashboardView:
        now = self._clock() if now is None else now
        events = self.buffer.snapshot()
        windowed = self.buffer.filter_since(window_cutoff(self.window, now))
        start = self.session.start_time
        return DashboardView(
            state=self._feed.state if self._feed is not None else ConnectionState.DISCONNECTED,
            summary=summary(events),
            histogram=histogram(events),
            recent=self.buffer.recent(RECENT_CRASHES),
            window=self.window,
            hourly=hourly_breakdown(windowed),
            session_duration=format_duration(now - start) if start is not None else None,
            events_per_minute=events_per_minute(len(events), start, now),
            data_points=len(events),
            last_update=now,
            logs=self.panel.entries(self._log_lines) if self.panel is not None else [],
        )

    def refresh(self) -> Optional[DashboardView]:
        if self.presenter is None:
            return None
        view = self.recompute()
        try:
            self.presenter.render(view)
        except Exception:  # noqa: BLE001 – a broken renderer must not stop ingestion
            logger.exception("Render failed", extra={"code_path": __name__})
        return view

    def refresh_statistics(self, window: str) -> None:
        """Switch the hourly table to a relative window (1h/6h/24h/7d/all)."""

        self.window = window
        self.refresh()

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def _apply_settings_to_feed(self) -> None:
        if self._feed is None:
            return
        self._feed.auto_reconnect = self.settings.auto_reconnect
        self._feed.update_interval = self.settings.update_interval

    def update_settings(self, **changes: Any) -> Settings:
        """Apply field changes now and persist after the debounce period."""

        self.settings = self.settings.replace(**changes)
        self._apply_settings_to_feed()
        if self._debouncer is not None:
            self._debouncer.trigger()
        return self.settings

    def save_settings(self) -> None:
        """Persist the current settings right away (fire-and-forget)."""

        if self._debouncer is not None:
            self._debouncer.cancel()
        self._apply_settings_to_feed()
        self._spawn(self._persist_settings)

    async def _persist_settings(self) -> None:
        try:
            await self.settings_store.save(self.settings)
        except PersistenceError as exc:
            logger.error("Failed to save settings: %s", exc)
            return
        logger.info("Settings saved", extra={"kind": "success"})

    def _persist_events(self) -> None:
        self._unsaved = self.buffer.snapshot()
        if not self._writing:
            self._spawn(self._write_events)
            self._writing = True

    async def _write_events(self) -> None:
        # One writer at a time; snapshots queued meanwhile collapse to the newest.
        try:
            while self._unsaved is not None:
                events, self._unsaved = self._unsaved, None
                try:
                    await self.crash_store.save(events)
                except PersistenceError as exc:
                    logger.error("Failed to save crash data: %s", exc)
        finally:
            self._writing = False

    # ------------------------------------------------------------------
    # Destructive actions (callers confirm first)
    # ------------------------------------------------------------------

    def reset_data(self) -> None:
        self.buffer.clear()
        self.session.start_time = None
        self._persist_events()
        logger.warning("All data has been reset")
        self.refresh()

    def clear_history(self) -> None:
        self.buffer.clear()
        self._persist_events()
        logger.info("Crash history cleared")
        self.refresh()

    def clear_logs(self) -> None:
        if self.panel is not None:
            self.panel.clear()
        logger.info("Logs cleared")
        self.refresh()

    # ------------------------------------------------------------------
    # Export / import
    # ------------------------------------------------------------------

    def export_snapshot(self) -> Dict[str, Any]:
        events = self.buffer.snapshot()
        return {
            "settings": self.settings.preferences(),
            "crashData": [e.to_dict() for e in events],
            "sessionInfo": {
                "startTime": self.session.start_time,
                "totalGames": len(events),
                "isConnected": self.is_connected,
            },
            "exportTime": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        }

    def import_snapshot(self, data: Mapping[str, Any]) -> int:
        """Prepend imported events and merge imported settings.

        No de-duplication: importing the same snapshot twice doubles the
        imported events. Returns the number of events imported.
        """
        imported = 0
        records = data.get("crashData")
        if isinstance(records, list):
            events = parse_events(records)
            self.buffer.prepend(events)
            imported = len(events)
            self._persist_events()
            logger.info("Imported %d crash data points", imported, extra={"kind": "success"})
            self.refresh()

        prefs = data.get("settings")
        if isinstance(prefs, Mapping):
            self.settings = self.settings.merge_preferences(prefs)
            self.save_settings()
        return imported

    async def export_to(self, path: Union[str, Path]) -> bool:
        result = await self.files.write(path, to_json(self.export_snapshot(), indent=2))
        if not result.ok:
            logger.error("Failed to export: %s", result.error)
            return False
        logger.info("Statistics exported to %s", path, extra={"kind": "success"})
        return True

    async def import_from(self, path: Union[str, Path]) -> Optional[int]:
        result = await self.files.read(path)
        if not result.ok:
            logger.error("Failed to import: %s", result.error)
            return None
        try:
            data = json.loads(result.data or "")
        except json.JSONDecodeError as exc:
            logger.error("Import error: %s", exc)
            return None
        if not isinstance(data, Mapping):
            logger.error("Import error: %s is not an export file", path)
            return None
        return self.import_snapshot(data)

    async def export_logs(self, path: Union[str, Path]) -> bool:
        if self.panel is None:
            logger.warning("No log panel attached; nothing to export")
            return False
        result = await self.files.write(path, to_json(self.panel.export(), indent=2))
        if not result.ok:
            logger.error("Failed to export logs: %s", result.error)
            return False
        logger.info("Logs exported to %s", path, extra={"kind": "success"})
        return True
