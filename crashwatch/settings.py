"""User settings, their on-disk document, and project-wide constants."""

from __future__ import annotations

import dataclasses
import json
import logging
from dataclasses import dataclass
from typing import Any, Mapping

from .exceptions import PersistenceError
from .json_utils import to_json
from .storage import FileStore

__all__ = [
    "MAX_RECONNECT_ATTEMPTS",
    "RECONNECT_DELAY",
    "PROBE_TIMEOUT",
    "PERSISTED_EVENT_CAP",
    "LOG_PANEL_CAP",
    "SAVE_DEBOUNCE",
    "RECENT_CRASHES",
    "SETTINGS_FILE",
    "Settings",
    "SettingsStore",
]

logger = logging.getLogger(__name__)

MAX_RECONNECT_ATTEMPTS = 5
# Fixed delay between automatic reconnects, in seconds. Not exponential.
RECONNECT_DELAY = 5.0
PROBE_TIMEOUT = 5.0
PERSISTED_EVENT_CAP = 10_000
LOG_PANEL_CAP = 1000
SAVE_DEBOUNCE = 1.0
RECENT_CRASHES = 50

SETTINGS_FILE = "crashwatch-settings.json"


@dataclass(frozen=True)
class Settings:
    """Dashboard configuration.

    Persisted as ``{"settings": {...}, "connection": {...}}``; see
    :meth:`to_document`.
    """

    auto_reconnect: bool = True
    data_retention_hours: int = 24
    update_interval_ms: int = 1000
    feed_url: str = ""
    hub_name: str = ""
    auth_token: str = ""

    @property
    def retention_ms(self) -> int:
        return self.data_retention_hours * 60 * 60 * 1000

    @property
    def update_interval(self) -> float:
        """Tick interval in seconds."""

        return self.update_interval_ms / 1000

    def replace(self, **changes: Any) -> "Settings":
        return dataclasses.replace(self, **changes)

    def preferences(self) -> dict[str, Any]:
        """The ``settings`` section, also used verbatim in exports."""

        return {
            "autoReconnect": self.auto_reconnect,
            "dataRetention": self.data_retention_hours,
            "updateInterval": self.update_interval_ms,
        }

    def to_document(self) -> dict[str, Any]:
        return {
            "settings": self.preferences(),
            "connection": {
                "url": self.feed_url,
                "hubName": self.hub_name,
                "authToken": self.auth_token,
            },
        }

    def merge_preferences(self, payload: Mapping[str, Any]) -> "Settings":
        """Apply a ``settings`` section over this instance, field by field.

        Wrongly typed values keep the current value.
        """
        changes: dict[str, Any] = {}
        auto = payload.get("autoReconnect")
        if isinstance(auto, bool):
            changes["auto_reconnect"] = auto
        retention = _positive_int(payload.get("dataRetention"))
        if retention is not None:
            changes["data_retention_hours"] = retention
        interval = _positive_int(payload.get("updateInterval"))
        if interval is not None:
            changes["update_interval_ms"] = interval
        return self.replace(**changes)

    def merge_connection(self, payload: Mapping[str, Any]) -> "Settings":
        changes: dict[str, Any] = {}
        for key, attr in (("url", "feed_url"), ("hubName", "hub_name"), ("authToken", "auth_token")):
            value = payload.get(key)
            if isinstance(value, str):
                changes[attr] = value
        return self.replace(**changes)

    @classmethod
    def from_document(cls, doc: Any) -> "Settings":
        """Defaults overlaid with whatever is usable in *doc*."""

        settings = cls()
        if not isinstance(doc, Mapping):
            return settings
        prefs = doc.get("settings")
        if isinstance(prefs, Mapping):
            settings = settings.merge_preferences(prefs)
        conn = doc.get("connection")
        if isinstance(conn, Mapping):
            settings = settings.merge_connection(conn)
        return settings


def _positive_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int) and value > 0:
        return value
    if isinstance(value, str) and value.strip().isdigit() and int(value) > 0:
        return int(value)
    return None


class SettingsStore:
    """Load / save :class:`Settings` through a :class:`FileStore`."""

    def __init__(self, files: FileStore, filename: str = SETTINGS_FILE) -> None:
        self._files = files
        self._filename = filename

    async def _path(self):
        return (await self._files.app_data_path()) / self._filename

    async def load(self) -> Settings:
        """Return persisted settings merged over defaults.

        Never raises: a missing file or unreadable content yields defaults.
        """
        path = await self._path()
        result = await self._files.read(path)
        if not result.ok:
            logger.debug("No settings at %s: %s", path, result.error)
            return Settings()
        try:
            doc = json.loads(result.data or "")
        except json.JSONDecodeError as exc:
            logger.warning("Ignoring malformed settings file %s: %s", path, exc)
            return Settings()
        return Settings.from_document(doc)

    async def save(self, settings: Settings) -> None:
        """Overwrite the settings file with the full document.

        Raises:
            PersistenceError: if the write fails.
        """
        path = await self._path()
        result = await self._files.write(path, to_json(settings.to_document()))
        if not result.ok:
            raise PersistenceError(f"could not write {path}: {result.error}")
        logger.debug("Settings written to %s", path, extra={"code_path": __name__})
