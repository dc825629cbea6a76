"""Cancellable delayed call restarted on every trigger."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Optional

import anyio
import anyio.abc

from .logging_utils import TRACE_LEVEL

__all__ = ["Debouncer"]

logger = logging.getLogger(__name__)


class Debouncer:
    """Run *func* once after *delay* seconds without a new :meth:`trigger`.

    Each trigger cancels the pending call and schedules a fresh one in
    *task_group*, so a burst of triggers fires at most once per quiet period.
    A call that has already started is not cancelled by later triggers.

    Example
    -------
    >>> async with anyio.create_task_group() as tg:
    ...     save = Debouncer(tg, 1.0, store.flush)
    ...     save.trigger()
    ...     save.trigger()  # only one flush, one second after this line
    """

    def __init__(
        self,
        task_group: anyio.abc.TaskGroup,
        delay: float,
        func: Callable[[], Awaitable[None]],
    ) -> None:
        self._tg = task_group
        self._delay = delay
        self._func = func
        self._scope: Optional[anyio.CancelScope] = None

    @property
    def pending(self) -> bool:
        return self._scope is not None

    def trigger(self) -> None:
        self.cancel()
        scope = anyio.CancelScope()
        self._scope = scope
        self._tg.start_soon(self._fire, scope, self._delay)

    def cancel(self) -> None:
        if self._scope is not None:
            self._scope.cancel()
            self._scope = None

    def flush(self) -> None:
        """Run a pending call now instead of after the quiet period."""

        if self._scope is None:
            return
        self._scope.cancel()
        scope = anyio.CancelScope()
        self._scope = scope
        self._tg.start_soon(self._fire, scope, 0)

    async def _fire(self, scope: anyio.CancelScope, delay: float) -> None:
        with scope:
            await anyio.sleep(delay)
        if scope.cancel_called or self._scope is not scope:
            return
        self._scope = None
        logger.log(TRACE_LEVEL, "debounce fired", extra={"code_path": __name__})
        await self._func()
