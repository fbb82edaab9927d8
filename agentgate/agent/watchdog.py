"""Idle timer for streamed responses."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

from loguru import logger

AbortCallback = Callable[[], Awaitable[None]]

DEFAULT_IDLE_TIMEOUT_MS = 60_000


class StreamWatchdog:
    """Fires *on_abort* once if no event arrives for ``idle_timeout_ms``.

    ``ping()`` after every stream event; ``stop()`` on every exit path.
    """

    def __init__(self, on_abort: AbortCallback, idle_timeout_ms: int = DEFAULT_IDLE_TIMEOUT_MS) -> None:
        self._on_abort = on_abort
        self.idle_timeout_ms = idle_timeout_ms
        self._handle: asyncio.TimerHandle | None = None
        self._abort_task: asyncio.Task[None] | None = None
        self._stopped = False
        self.fired = False

    @property
    def armed(self) -> bool:
        return self._handle is not None

    def start(self) -> None:
        self._stopped = False
        self._arm()

    def ping(self) -> None:
        if self._stopped or self.fired:
            return
        self._arm()

    def stop(self) -> None:
        self._stopped = True
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    async def wait_aborted(self) -> None:
        """Await the abort callback if it has been scheduled."""
        if self._abort_task is not None:
            await asyncio.gather(self._abort_task, return_exceptions=True)

    def _arm(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.idle_timeout_ms / 1000, self._fire)

    def _fire(self) -> None:
        self._handle = None
        if self._stopped or self.fired:
            return
        self.fired = True
        self._stopped = True
        logger.warning(f"[Watchdog] No stream activity for {self.idle_timeout_ms} ms, aborting")
        self._abort_task = asyncio.ensure_future(self._run_abort())

    async def _run_abort(self) -> None:
        try:
            await self._on_abort()
        except Exception as exc:
            logger.warning(f"[Watchdog] Abort callback failed: {exc}")
