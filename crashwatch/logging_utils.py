"""crashwatch.logging_utils – project-wide logging helpers.

1.  A custom **TRACE** level (numeric value 5).
2.  `configure_logging()` that sets up:
    • Console – `rich.logging.RichHandler`.
    • Timestamped human-readable file `logs/crashwatch-YYYYMMDD-HHMMSS.log`.
    • `JsonLinesHandler` writing structured records to the matching `.jsonl`.
    • Optionally a `LogPanel`, the capped in-memory log shown on the
      dashboard and the only user-facing error surface.
3.  A lightweight `@trace` decorator that logs function entry/exit at TRACE.

Every record carries a *code_path* attribute, injected by a filter when the
caller did not pass one via `extra={"code_path": …}`.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import traceback
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple, TypeVar

from rich.console import Console
from rich.logging import RichHandler

# ---------------------------------------------------------------------------
# Public constants & helpers
# ---------------------------------------------------------------------------


TRACE_LEVEL = 5

if logging.getLevelName(TRACE_LEVEL) != "TRACE":
    logging.addLevelName(TRACE_LEVEL, "TRACE")


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------


class _EnsureCodePathFilter(logging.Filter):
    """Guarantee that *record.code_path* exists."""

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: D401 – logging callback
        if not hasattr(record, "code_path"):
            record.code_path = record.pathname  # type: ignore[attr-defined]
        return True


# ---------------------------------------------------------------------------
# JSONL handler
# ---------------------------------------------------------------------------


class JsonLinesHandler(logging.Handler):
    """Write one JSON object per line."""

    def __init__(self, file_path: Path):
        super().__init__(level=logging.NOTSET)
        self._fp = open(file_path, "a", encoding="utf-8")

    def emit(self, record: logging.LogRecord):  # noqa: D401 – logging callback
        try:
            log_obj: Dict[str, Any] = {
                "ts_epoch": record.created,
                "level": record.levelname,
                "logger": record.name,
                "msg": record.getMessage(),
                "code_path": getattr(record, "code_path", record.pathname),
            }
            if kind := getattr(record, "kind", None):
                log_obj["kind"] = kind
            if record.exc_info:
                exc_type, exc_value, tb = record.exc_info
                log_obj["exc_type"] = exc_type.__name__ if exc_type else None
                log_obj["exc_msg"] = str(exc_value) if exc_value else None
                log_obj["exc_trace"] = "".join(
                    traceback.format_exception(exc_type, exc_value, tb)
                ).rstrip()

            self._fp.write(json.dumps(log_obj, separators=(",", ":"), ensure_ascii=False) + "\n")
            self._fp.flush()
        except Exception:  # noqa: BLE001 – must not propagate
            self.handleError(record)

    def close(self):  # noqa: D401 – logging callback
        try:
            self._fp.close()
        finally:
            super().close()


# ---------------------------------------------------------------------------
# Dashboard log panel
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PanelEntry:
    created: float
    kind: str  # info | success | warning | error | crash | debug
    message: str

    @property
    def clock(self) -> str:
        return datetime.fromtimestamp(self.created).strftime("%H:%M:%S")

    def __str__(self) -> str:
        return f"[{self.clock}]{self.message}"


class LogPanel(logging.Handler):
    """Newest-first, capped log of user-facing messages.

    The entry *kind* comes from ``extra={"kind": ...}`` when present
    (``"success"``, ``"crash"``) and from the level name otherwise.
    """

    def __init__(self, capacity: int = 1000, level: int = logging.INFO) -> None:
        super().__init__(level=level)
        self._entries: Deque[PanelEntry] = deque(maxlen=capacity)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            kind = getattr(record, "kind", None) or record.levelname.lower()
            if kind == "critical":
                kind = "error"
            self._entries.appendleft(PanelEntry(record.created, kind, record.getMessage()))
        except Exception:  # noqa: BLE001 – must not propagate
            self.handleError(record)

    def entries(self, limit: Optional[int] = None) -> List[PanelEntry]:
        items = list(self._entries)
        return items if limit is None else items[:limit]

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def export(self) -> Dict[str, Any]:
        """Export document ``{logs, exportTime, totalEntries}``."""

        return {
            "logs": "\n".join(str(e) for e in self._entries),
            "exportTime": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "totalEntries": len(self._entries),
        }


# ---------------------------------------------------------------------------
# configure_logging
# ---------------------------------------------------------------------------


def _make_timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")


def _purge_old_logs(log_dir: Path, keep: int = 10):
    """Keep only the *latest* <keep> pairs of .log + .jsonl files."""

    files = sorted(log_dir.glob("crashwatch-*.log"), key=lambda p: p.stat().st_mtime, reverse=True)
    for stale in files[keep:]:
        try:
            stale.unlink(missing_ok=True)
            stale.with_suffix(".jsonl").unlink(missing_ok=True)
        except OSError:
            logging.getLogger(__name__).debug("Could not remove %s", stale, exc_info=True)


def _update_symlink(link: Path, target: Path):
    try:
        if link.exists() or link.is_symlink():
            link.unlink(missing_ok=True)
        link.symlink_to(target.name)
    except OSError:
        # Filesystems without symlink support get a copy instead.
        shutil.copy2(target, link)


def configure_logging(
    *,
    debug: bool = False,
    debug_module: str | None = None,
    panel: LogPanel | None = None,
    log_dir: Path | str = "logs",
    console: bool = True,
) -> Tuple[Path, Path]:
    """Set up project-wide logging.

    Returns
    -------
    tuple(Path, Path)
        Paths to the newly created ``.log`` and ``.jsonl`` files.
    """

    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    ts = _make_timestamp()
    log_path = log_dir / f"crashwatch-{ts}.log"
    json_path = log_dir / f"crashwatch-{ts}.jsonl"

    _purge_old_logs(log_dir)

    env_level = os.getenv("CW_LOG_LEVEL", "").upper()
    if env_level == "TRACE":
        root_level = TRACE_LEVEL
    elif env_level and isinstance(logging.getLevelName(env_level), int):
        root_level = logging.getLevelName(env_level)
    else:
        root_level = TRACE_LEVEL if debug else logging.INFO

    handlers: list[logging.Handler] = []

    if console:
        handlers.append(
            RichHandler(
                console=Console(stderr=True),
                level=root_level,
                rich_tracebacks=False,
                omit_repeated_times=False,
            )
        )

    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setFormatter(
        logging.Formatter("%(asctime)s | %(levelname)-8s | %(name)s | %(funcName)s:%(lineno)d - %(message)s")
    )
    handlers.append(file_handler)
    handlers.append(JsonLinesHandler(json_path))

    if panel is not None:
        handlers.append(panel)

    _update_symlink(log_dir / "latest.log", log_path)
    _update_symlink(log_dir / "latest.jsonl", json_path)

    root_logger = logging.getLogger()
    for old in list(root_logger.handlers):
        root_logger.removeHandler(old)
        if old is not panel:
            old.close()
    root_logger.setLevel(root_level)

    for h in handlers:
        h.addFilter(_EnsureCodePathFilter())
        root_logger.addHandler(h)

    if debug_module:
        logging.getLogger(debug_module).setLevel(logging.DEBUG)

    return log_path, json_path


# ---------------------------------------------------------------------------
# @trace decorator
# ---------------------------------------------------------------------------


F = TypeVar("F", bound=Callable[..., Any])


def trace(func: F) -> F:  # type: ignore[misc]
    """Decorator that logs function entry / exit at *TRACE* level."""

    logger = logging.getLogger(func.__module__)

    def _wrapper(*args: Any, **kwargs: Any):  # type: ignore[override]
        logger.log(TRACE_LEVEL, f"→ {func.__qualname__}()", extra={"code_path": func.__code__.co_filename})
        try:
            return func(*args, **kwargs)
        finally:
            logger.log(TRACE_LEVEL, f"← {func.__qualname__}()", extra={"code_path": func.__code__.co_filename})

    _wrapper.__name__ = func.__name__
    _wrapper.__qualname__ = func.__qualname__
    _wrapper.__doc__ = func.__doc__
    _wrapper.__module__ = func.__module__

    return _wrapper  # type: ignore[return-value]
