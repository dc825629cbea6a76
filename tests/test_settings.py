from __future__ import annotations

import json

import pytest

from crashwatch.exceptions import PersistenceError
from crashwatch.settings import SETTINGS_FILE, Settings, SettingsStore
from crashwatch.storage import FileStore


def test_defaults():
    s = Settings()
    assert s.auto_reconnect is True
    assert s.retention_ms == 24 * 3_600_000
    assert s.update_interval == 1.0
    assert s.preferences() == {"autoReconnect": True, "dataRetention": 24, "updateInterval": 1000}


def test_merge_preferences_field_by_field():
    merged = Settings().merge_preferences(
        {"autoReconnect": "yes", "dataRetention": 48, "updateInterval": -5}
    )
    assert merged.auto_reconnect is True
    assert merged.data_retention_hours == 48
    assert merged.update_interval_ms == 1000


def test_from_document_overlays_defaults():
    doc = {
        "settings": {"dataRetention": "6"},
        "connection": {"url": "wss://feed", "hubName": "crash", "authToken": 7},
    }
    s = Settings.from_document(doc)
    assert s.data_retention_hours == 6
    assert (s.feed_url, s.hub_name, s.auth_token) == ("wss://feed", "crash", "")
    assert Settings.from_document(["not", "a", "dict"]) == Settings()


@pytest.mark.anyio
async def test_store_round_trip(tmp_path):
    store = SettingsStore(FileStore(tmp_path))
    saved = Settings(auto_reconnect=False, feed_url="wss://feed", hub_name="crash")
    await store.save(saved)
    doc = json.loads((tmp_path / SETTINGS_FILE).read_text())
    assert doc["connection"]["hubName"] == "crash"
    assert doc["settings"]["autoReconnect"] is False
    assert await store.load() == saved


@pytest.mark.anyio
async def test_load_never_raises(tmp_path):
    store = SettingsStore(FileStore(tmp_path))
    assert await store.load() == Settings()
    (tmp_path / SETTINGS_FILE).write_text("{oops")
    assert await store.load() == Settings()


@pytest.mark.anyio
async def test_save_failure_raises(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("")
    store = SettingsStore(FileStore(tmp_path), filename="file/sub.json")
    with pytest.raises(PersistenceError):
        await store.save(Settings())
