"""crashwatch package.

Live crash-game statistics: a WebSocket feed client, an in-memory event
buffer with retention, pure statistics, JSON persistence and a terminal
dashboard.

Public API
----------
* ``DashboardController`` – owns the buffer, settings and feed; drives the view.
* ``FeedConnection``      – crash feed client with bounded automatic reconnect.
* ``CrashEvent`` / ``EventBuffer`` – the event record and its newest-first store.
* ``configure_logging``   – console + timestamped file + JSONL logging.
* ``trace``               – decorator logging entry/exit at the TRACE level (5).

Anything else is internal and may change without notice.
"""

from importlib import metadata as _metadata

from .connection import ConnectionState, FeedConnection, probe_connection
from .controller import DashboardController, DashboardView
from .events import CrashEvent, EventBuffer
from .logging_utils import LogPanel, configure_logging, trace

__all__ = [
    "ConnectionState",
    "CrashEvent",
    "DashboardController",
    "DashboardView",
    "EventBuffer",
    "FeedConnection",
    "LogPanel",
    "configure_logging",
    "probe_connection",
    "trace",
]

# Single-source versioning ----------------------------------------------------

try:
    __version__: str = _metadata.version(__name__)
except _metadata.PackageNotFoundError:  # pragma: no cover – source checkout only
    import pathlib as _pl

    _toml_path = _pl.Path(__file__).resolve().parents[1] / "pyproject.toml"
    if _toml_path.exists():
        try:
            import tomllib as _tomllib  # Python 3.11+
        except ModuleNotFoundError:  # pragma: no cover – older runtime
            import tomli as _tomllib  # type: ignore

        with _toml_path.open("rb") as _fp:
            __version__ = _tomllib.load(_fp)["project"]["version"]
    else:
        __version__ = "0.0.0.dev0"
