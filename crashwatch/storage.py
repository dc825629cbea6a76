"""File I/O collaborator and the persisted crash-data file.

:class:`FileStore` is the only place that touches the filesystem. Its
operations are asynchronous (``anyio`` worker threads under the hood) and
report failures as :class:`FileResult` values instead of raising.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Union

import anyio

from .events import CrashEvent, now_ms
from .exceptions import PersistenceError
from .json_utils import to_json

__all__ = [
    "FileResult",
    "FileStore",
    "CrashDataStore",
    "parse_events",
    "CRASH_DATA_FILE",
    "DEFAULT_EVENT_CAP",
]

logger = logging.getLogger(__name__)

CRASH_DATA_FILE = "crashwatch-crashdata.json"
DEFAULT_EVENT_CAP = 10_000

PathLike = Union[str, os.PathLike]


@dataclass(frozen=True)
class FileResult:
    """Outcome of a read or write. ``data`` is set for successful reads."""

    ok: bool
    data: Optional[str] = None
    error: Optional[str] = None


class FileStore:
    """Async UTF-8 text file access rooted at an application data directory.

    The directory is *root* when given, else ``$CRASHWATCH_HOME``, else
    ``~/.crashwatch``.
    """

    def __init__(self, root: Optional[PathLike] = None) -> None:
        if root is None:
            root = os.getenv("CRASHWATCH_HOME") or Path("~/.crashwatch").expanduser()
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    async def app_data_path(self) -> Path:
        await anyio.Path(self._root).mkdir(parents=True, exist_ok=True)
        return self._root

    async def write(self, path: PathLike, text: str) -> FileResult:
        try:
            await anyio.Path(path).write_text(text, encoding="utf-8")
        except OSError as exc:
            return FileResult(ok=False, error=str(exc))
        return FileResult(ok=True)

    async def read(self, path: PathLike) -> FileResult:
        try:
            data = await anyio.Path(path).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            return FileResult(ok=False, error=str(exc))
        return FileResult(ok=True, data=data)


def parse_events(records: object) -> List[CrashEvent]:
    """Decode a list of crash records, skipping unusable ones."""

    if not isinstance(records, list):
        return []
    events: List[CrashEvent] = []
    skipped = 0
    for record in records:
        try:
            events.append(CrashEvent.from_dict(record))
        except ValueError:
            skipped += 1
    if skipped:
        logger.warning("Skipped %d malformed crash records", skipped)
    return events


class CrashDataStore:
    """The ``{"crashData": [...], "lastUpdate": ms}`` snapshot file."""

    def __init__(
        self,
        files: FileStore,
        filename: str = CRASH_DATA_FILE,
        cap: int = DEFAULT_EVENT_CAP,
    ) -> None:
        self._files = files
        self._filename = filename
        self._cap = cap

    async def _path(self) -> Path:
        return (await self._files.app_data_path()) / self._filename

    async def load(self) -> List[CrashEvent]:
        """Return persisted events, newest first.

        A missing file is an empty history.

        Raises:
            PersistenceError: if the file exists but is not valid JSON.
        """
        path = await self._path()
        if not await anyio.Path(path).exists():
            return []
        result = await self._files.read(path)
        if not result.ok:
            raise PersistenceError(f"could not read {path}: {result.error}")
        try:
            doc = json.loads(result.data or "")
        except json.JSONDecodeError as exc:
            raise PersistenceError(f"malformed crash data in {path}: {exc}") from exc
        if not isinstance(doc, dict):
            raise PersistenceError(f"malformed crash data in {path}")
        return parse_events(doc.get("crashData"))

    async def save(self, events: Sequence[CrashEvent]) -> None:
        """Overwrite the file with at most ``cap`` newest events.

        Raises:
            PersistenceError: if the write fails.
        """
        path = await self._path()
        doc = {
            "crashData": [e.to_dict() for e in events[: self._cap]],
            "lastUpdate": now_ms(),
        }
        result = await self._files.write(path, to_json(doc))
        if not result.ok:
            raise PersistenceError(f"could not write {path}: {result.error}")
