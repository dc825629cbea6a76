"""Feed connection: one logical WebSocket to the crash event source.

:class:`FeedConnection` runs entirely inside an ``anyio`` task group supplied
by its owner. Each session (open → read → close → maybe reconnect) is one task
wrapped in its own cancel scope, and so is the periodic ticker that polls an
optional tick source. :meth:`FeedConnection.disconnect` cancels both scopes
and bumps a generation counter, so nothing from an old session is delivered
after it returns.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, AsyncContextManager, Callable, Optional, Union

import anyio
import anyio.abc

from .decoder import decode_crash_message, normalize_feed_url
from .events import CrashEvent
from .exceptions import MissingDependencyError, ParseError, TransportError
from .logging_utils import TRACE_LEVEL
from .settings import MAX_RECONNECT_ATTEMPTS, PROBE_TIMEOUT, RECONNECT_DELAY

__all__ = [
    "ConnectionState",
    "Connector",
    "FeedConnection",
    "probe_connection",
    "websocket_connector",
]

logger = logging.getLogger(__name__)

websockets: Any = None

# Opens a transport for a URL. Entering the context manager is the "open"
# event; async iteration over the entered object yields raw messages and
# ends on close.
Connector = Callable[[str], AsyncContextManager[Any]]
TickSource = Callable[[], Optional[CrashEvent]]


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


def _ensure_websockets() -> None:
    global websockets
    if websockets is not None:
        return
    try:
        import websockets as _ws  # type: ignore
    except ModuleNotFoundError as exc:  # pragma: no cover
        raise MissingDependencyError(
            "The live feed requires the 'websockets' package.  Try: pip install websockets"
        ) from exc
    websockets = _ws


def websocket_connector(url: str) -> AsyncContextManager[Any]:
    """Default :data:`Connector` backed by :func:`websockets.connect`."""

    _ensure_websockets()
    return websockets.connect(url, open_timeout=PROBE_TIMEOUT)


class FeedConnection:
    """Crash feed client with bounded, fixed-delay automatic reconnect.

    Callbacks run on the event loop and must not block:

    * ``on_state_change(ConnectionState)`` on every transition;
    * ``on_event(CrashEvent)`` for every crash from the socket or the ticker;
    * ``on_error(str)`` for transport failures and unparseable messages.

    Example
    -------
    >>> async with anyio.create_task_group() as tg:
    ...     feed = FeedConnection(tg, on_event=print)
    ...     feed.connect("https://example.org/crash")
    ...     await anyio.sleep(60)
    ...     feed.disconnect()
    """

    def __init__(
        self,
        task_group: anyio.abc.TaskGroup,
        *,
        connector: Connector | None = None,
        on_state_change: Callable[[ConnectionState], Any] | None = None,
        on_event: Callable[[CrashEvent], Any] | None = None,
        on_error: Callable[[str], Any] | None = None,
        auto_reconnect: bool = True,
        update_interval: float = 1.0,
        tick_source: TickSource | None = None,
        max_reconnect_attempts: int = MAX_RECONNECT_ATTEMPTS,
        reconnect_delay: float = RECONNECT_DELAY,
    ) -> None:
        self._tg = task_group
        self._connector: Connector = connector or websocket_connector
        self._on_state_change = on_state_change
        self._on_event = on_event
        self._on_error = on_error
        self.auto_reconnect = auto_reconnect
        self.update_interval = update_interval
        self.tick_source = tick_source
        self.max_reconnect_attempts = max_reconnect_attempts
        self.reconnect_delay = reconnect_delay

        self._state = ConnectionState.DISCONNECTED
        self._generation = 0
        self._reconnect_attempts = 0
        self._url: str | None = None
        self._session_scope: anyio.CancelScope | None = None
        self._tick_scope: anyio.CancelScope | None = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    @property
    def url(self) -> str | None:
        return self._url

    def connect(self, url: str, hub_name: str = "", auth_token: str = "") -> None:
        """Start a session against *url* and return immediately.

        Any running session is cancelled first and the retry budget is reset.
        *hub_name* and *auth_token* are kept for logging only; the feed is a
        plain socket tunnel without a hub handshake.
        """
        self._cancel_scopes()
        self._generation += 1
        self._reconnect_attempts = 0
        self._url = normalize_feed_url(url)
        logger.info("Connecting to %s%s...", self._url, f" ({hub_name})" if hub_name else "")
        self._set_state(ConnectionState.CONNECTING)
        scope = anyio.CancelScope()
        self._session_scope = scope
        self._tg.start_soon(self._run_session, scope, self._generation)

    def disconnect(self) -> None:
        """Stop the session, any pending reconnect and the ticker. Idempotent."""

        if self._session_scope is None and self._state is ConnectionState.DISCONNECTED:
            return
        self._generation += 1
        self._cancel_scopes()
        self._set_state(ConnectionState.DISCONNECTED)
        logger.info("Disconnected")

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def _cancel_scopes(self) -> None:
        for scope in (self._session_scope, self._tick_scope):
            if scope is not None:
                scope.cancel()
        self._session_scope = None
        self._tick_scope = None

    async def _run_session(self, scope: anyio.CancelScope, generation: int) -> None:
        with scope:
            while True:
                await self._open_and_read(generation)
                self._set_state(ConnectionState.DISCONNECTED)
                logger.warning("Connection closed")
                if not self._schedule_reconnect():
                    break
                await anyio.sleep(self.reconnect_delay)
                self._set_state(ConnectionState.CONNECTING)
        if self._session_scope is scope:
            self._session_scope = None

    def _schedule_reconnect(self) -> bool:
        if not self.auto_reconnect:
            return False
        if self._reconnect_attempts >= self.max_reconnect_attempts:
            logger.error(
                "Giving up after %d reconnect attempts", self._reconnect_attempts
            )
            return False
        self._reconnect_attempts += 1
        logger.info(
            "Attempting to reconnect... (%d/%d)",
            self._reconnect_attempts,
            self.max_reconnect_attempts,
        )
        return True

    async def _open_and_read(self, generation: int) -> None:
        assert self._url is not None
        try:
            async with self._connector(self._url) as ws:
                ticker = self._on_open(generation)
                try:
                    async for raw in ws:
                        self._handle_message(raw, generation)
                finally:
                    self._stop_ticker(ticker)
        except Exception as exc:  # noqa: BLE001 – every transport failure ends the session
            self._report_error(TransportError(f"Connection error: {str(exc) or type(exc).__name__}"))

    def _on_open(self, generation: int) -> anyio.CancelScope | None:
        self._reconnect_attempts = 0
        self._set_state(ConnectionState.CONNECTED)
        logger.info("Connected successfully", extra={"kind": "success"})
        if self.tick_source is not None:
            scope = anyio.CancelScope()
            self._tick_scope = scope
            self._tg.start_soon(self._tick_loop, scope, generation)
            return scope
        return None

    def _stop_ticker(self, scope: anyio.CancelScope | None) -> None:
        if scope is None:
            return
        scope.cancel()
        if self._tick_scope is scope:
            self._tick_scope = None

    async def _tick_loop(self, scope: anyio.CancelScope, generation: int) -> None:
        with scope:
            while True:
                await anyio.sleep(self.update_interval)
                source = self.tick_source
                if source is None:
                    continue
                try:
                    event = source()
                except Exception:  # noqa: BLE001
                    logger.exception("Tick source failed", extra={"code_path": __name__})
                    continue
                if event is not None:
                    self._emit(event, generation)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def _handle_message(self, raw: Union[str, bytes], generation: int) -> None:
        logger.log(TRACE_LEVEL, "RX %s", raw, extra={"code_path": __name__})
        try:
            event = decode_crash_message(raw)
        except ParseError as exc:
            self._report_error(f"Failed to parse message: {exc}")
            return
        if event is not None:
            self._emit(event, generation)

    def _emit(self, event: CrashEvent, generation: int) -> None:
        if generation != self._generation or self._on_event is None:
            return
        try:
            self._on_event(event)
        except Exception:  # noqa: BLE001
            logger.exception("Event callback failed", extra={"code_path": __name__})

    def _report_error(self, error: Union[str, Exception]) -> None:
        message = str(error)
        logger.error(message)
        if self._on_error is None:
            return
        try:
            self._on_error(message)
        except Exception:  # noqa: BLE001
            logger.exception("Error callback failed", extra={"code_path": __name__})

    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        self._state = state
        logger.log(TRACE_LEVEL, "state -> %s", state.value, extra={"code_path": __name__})
        if self._on_state_change is None:
            return
        try:
            self._on_state_change(state)
        except Exception:  # noqa: BLE001
            logger.exception("State callback failed", extra={"code_path": __name__})


async def probe_connection(
    url: str,
    *,
    connector: Connector | None = None,
    timeout: float = PROBE_TIMEOUT,
) -> bool:
    """Open and immediately close a transient socket to *url*.

    Returns ``True`` when the socket opened within *timeout* seconds. The
    socket is closed on every path.
    """
    connector = connector or websocket_connector
    target = normalize_feed_url(url)
    logger.info("Testing connection to %s...", target)
    try:
        with anyio.fail_after(timeout):
            async with connector(target):
                pass
    except TimeoutError:
        logger.error("Connection test timed out")
        return False
    except Exception as exc:  # noqa: BLE001
        logger.error("Connection test failed: %s", exc)
        return False
    logger.info("Connection test successful", extra={"kind": "success"})
    return True
