from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager

import anyio
import pytest
import trio
from trio.testing import MockClock

from crashwatch.connection import ConnectionState
from crashwatch.controller import DashboardController, DashboardView
from crashwatch.events import CrashEvent
from crashwatch.logging_utils import LogPanel
from crashwatch.settings import SETTINGS_FILE
from crashwatch.storage import CRASH_DATA_FILE, FileStore

NOW = 1_700_000_000_000
HOUR = 3_600_000


class RecordingPresenter:
    def __init__(self) -> None:
        self.views: list[DashboardView] = []

    def render(self, view: DashboardView) -> None:
        self.views.append(view)


def scripted(*messages):
    @asynccontextmanager
    async def connector(url):
        async def frames():
            for m in messages:
                yield json.dumps(m)

        yield frames()

    return connector


@pytest.fixture
def panel():
    p = LogPanel()
    root = logging.getLogger()
    root.addHandler(p)
    root.setLevel(logging.INFO)
    yield p
    root.removeHandler(p)


def test_feed_to_view_end_to_end(tmp_path, panel):
    presenter = RecordingPresenter()
    connector = scripted(
        {"type": "crash", "multiplier": 1.5, "timestamp": NOW - 2000, "gameId": "a"},
        {"type": "status"},
        {"type": "crash", "multiplier": 4.0, "timestamp": NOW - 1000, "gameId": "b"},
        {"type": "crash", "multiplier": 9.0, "timestamp": NOW - 25 * HOUR, "gameId": "old"},
    )

    async def main():
        async with DashboardController(
            FileStore(tmp_path),
            presenter=presenter,
            connector=connector,
            panel=panel,
            clock=lambda: NOW,
        ) as ctl:
            await ctl.load()
            ctl.update_settings(feed_url="https://feed.test", hub_name="crash", auto_reconnect=False)
            assert ctl.connect()
            await anyio.sleep(1)
        return ctl

    ctl = trio.run(main, clock=MockClock(autojump_threshold=0))

    assert [e.game_id for e in ctl.buffer] == ["b", "a"]
    assert ctl.session.start_time == NOW
    last = presenter.views[-1]
    assert last.state is ConnectionState.DISCONNECTED
    assert last.data_points == 2
    assert last.summary.max == pytest.approx(4.0)
    assert last.histogram["2-5x"] == 1
    assert last.session_duration == "00:00:00"

    saved = json.loads((tmp_path / CRASH_DATA_FILE).read_text())
    assert [r["gameId"] for r in saved["crashData"]] == ["b", "a"]
    settings = json.loads((tmp_path / SETTINGS_FILE).read_text())
    assert settings["connection"]["url"] == "https://feed.test"
    assert settings["settings"]["autoReconnect"] is False

    messages = [e.message for e in panel.entries()]
    assert "Game crashed at 4.00x" in messages
    assert any(e.kind == "crash" for e in panel.entries())
    assert any(e.kind == "success" and e.message == "Settings saved" for e in panel.entries())


@pytest.mark.anyio
async def test_connect_requires_url_and_hub(tmp_path, panel):
    async with DashboardController(FileStore(tmp_path), panel=panel) as ctl:
        ctl.update_settings(feed_url="wss://feed.test")
        assert ctl.connect() is False
        assert ctl.feed.state is ConnectionState.DISCONNECTED
        ctl.save_settings()
    assert any(
        e.kind == "error" and e.message == "Please enter valid WebSocket URL and Hub Name"
        for e in panel.entries()
    )


@pytest.mark.anyio
async def test_load_restores_persisted_events(tmp_path, panel):
    (tmp_path / CRASH_DATA_FILE).write_text(
        json.dumps({"crashData": [{"multiplier": 3.0, "timestamp": NOW, "gameId": "x"}], "lastUpdate": NOW})
    )
    async with DashboardController(FileStore(tmp_path), clock=lambda: NOW) as ctl:
        await ctl.load()
        assert len(ctl.buffer) == 1
    assert "Loaded 1 crash data points" in [e.message for e in panel.entries()]


@pytest.mark.anyio
async def test_add_event_evicts_expired(tmp_path):
    async with DashboardController(FileStore(tmp_path), clock=lambda: NOW) as ctl:
        ctl.update_settings(data_retention_hours=1)
        ctl.add_event(CrashEvent(2.0, NOW - 2 * HOUR, "old"))
        ctl.add_event(CrashEvent(3.0, NOW, "new"))
        assert [e.game_id for e in ctl.buffer] == ["new"]


@pytest.mark.anyio
async def test_export_shape(tmp_path):
    target = tmp_path / "export.json"
    async with DashboardController(FileStore(tmp_path), clock=lambda: NOW) as ctl:
        ctl.add_event(CrashEvent(1.5, NOW, "a"))
        ctl.add_event(CrashEvent(2.5, NOW, "b"))
        assert await ctl.export_to(target)

    doc = json.loads(target.read_text())
    assert set(doc) == {"settings", "crashData", "sessionInfo", "exportTime"}
    assert [r["gameId"] for r in doc["crashData"]] == ["b", "a"]
    assert doc["sessionInfo"] == {"startTime": None, "totalGames": 2, "isConnected": False}
    assert doc["settings"]["dataRetention"] == 24
    assert doc["exportTime"].endswith("Z")


@pytest.mark.anyio
async def test_import_twice_doubles_events(tmp_path):
    snapshot = {
        "settings": {"dataRetention": 48},
        "crashData": [
            {"multiplier": 1.2, "timestamp": NOW, "gameId": "i1"},
            {"multiplier": 6.0, "timestamp": NOW - 1, "gameId": "i2"},
        ],
    }
    source = tmp_path / "import.json"
    source.write_text(json.dumps(snapshot))

    async with DashboardController(FileStore(tmp_path), clock=lambda: NOW) as ctl:
        ctl.add_event(CrashEvent(3.0, NOW, "live"))
        assert await ctl.import_from(source) == 2
        assert await ctl.import_from(source) == 2
        ids = [e.game_id for e in ctl.buffer]
        assert ids == ["i1", "i2", "i1", "i2", "live"]
        assert ctl.settings.data_retention_hours == 48

    persisted = json.loads((tmp_path / SETTINGS_FILE).read_text())
    assert persisted["settings"]["dataRetention"] == 48


@pytest.mark.anyio
async def test_import_rejects_bad_file(tmp_path):
    bad = tmp_path / "bad.json"
    bad.write_text("nope")
    async with DashboardController(FileStore(tmp_path)) as ctl:
        assert await ctl.import_from(bad) is None
        assert await ctl.import_from(tmp_path / "missing.json") is None
        assert len(ctl.buffer) == 0


@pytest.mark.anyio
async def test_reset_clears_everything(tmp_path, panel):
    async with DashboardController(FileStore(tmp_path), panel=panel, clock=lambda: NOW) as ctl:
        ctl.add_event(CrashEvent(3.0, NOW, "a"))
        ctl.session.start_time = NOW
        ctl.reset_data()
        assert len(ctl.buffer) == 0
        assert ctl.session.start_time is None
    saved = json.loads((tmp_path / CRASH_DATA_FILE).read_text())
    assert saved["crashData"] == []
    assert panel.entries()[0].message == "All data has been reset"


@pytest.mark.anyio
async def test_refresh_statistics_window(tmp_path):
    presenter = RecordingPresenter()
    async with DashboardController(FileStore(tmp_path), presenter=presenter, clock=lambda: NOW) as ctl:
        ctl.add_event(CrashEvent(3.0, NOW - 3 * HOUR, "a"))
        ctl.add_event(CrashEvent(1.1, NOW, "b"))
        ctl.refresh_statistics("1h")
    view = presenter.views[-1]
    assert view.window == "1h"
    assert sum(row.count for row in view.hourly) == 1
    assert view.summary.count == 2


@pytest.mark.anyio
async def test_export_logs(tmp_path, panel):
    target = tmp_path / "logs.json"
    async with DashboardController(FileStore(tmp_path), panel=panel) as ctl:
        ctl.clear_logs()
        assert await ctl.export_logs(target)
    doc = json.loads(target.read_text())
    assert doc["totalEntries"] == 1
    assert doc["logs"].endswith("Logs cleared")


@pytest.mark.anyio
async def test_clear_history_keeps_session(tmp_path):
    async with DashboardController(FileStore(tmp_path), clock=lambda: NOW) as ctl:
        ctl.add_event(CrashEvent(3.0, NOW, "a"))
        ctl.session.start_time = NOW
        ctl.clear_history()
        assert len(ctl.buffer) == 0
        assert ctl.session.start_time == NOW


@pytest.mark.anyio
async def test_test_connection_uses_connector(tmp_path):
    async with DashboardController(FileStore(tmp_path), connector=scripted()) as ctl:
        assert await ctl.test_connection() is False
        ctl.update_settings(feed_url="ws://feed.test")
        assert await ctl.test_connection() is True


def test_feed_requires_running_controller(tmp_path):
    ctl = DashboardController(FileStore(tmp_path))
    with pytest.raises(RuntimeError):
        ctl.feed


@pytest.mark.anyio
async def test_write_outside_context_does_not_block_later_writes(tmp_path):
    ctl = DashboardController(FileStore(tmp_path), clock=lambda: NOW)
    with pytest.raises(RuntimeError):
        ctl.add_event(CrashEvent(2.0, NOW, "early"))

    async with ctl:
        ctl.add_event(CrashEvent(3.0, NOW, "late"))

    saved = json.loads((tmp_path / CRASH_DATA_FILE).read_text())
    assert [r["gameId"] for r in saved["crashData"]] == ["late", "early"]


@pytest.mark.anyio
async def test_load_drops_events_past_retention(tmp_path, panel):
    (tmp_path / CRASH_DATA_FILE).write_text(
        json.dumps(
            {
                "crashData": [
                    {"multiplier": 3.0, "timestamp": NOW, "gameId": "fresh"},
                    {"multiplier": 1.1, "timestamp": NOW - 25 * HOUR, "gameId": "stale"},
                ],
                "lastUpdate": NOW,
            }
        )
    )
    presenter = RecordingPresenter()
    async with DashboardController(FileStore(tmp_path), presenter=presenter, clock=lambda: NOW) as ctl:
        await ctl.load()
        assert [e.game_id for e in ctl.buffer] == ["fresh"]
        assert presenter.views[-1].data_points == 1

    saved = json.loads((tmp_path / CRASH_DATA_FILE).read_text())
    assert [r["gameId"] for r in saved["crashData"]] == ["fresh"]
    assert "Loaded 1 crash data points" in [e.message for e in panel.entries()]
