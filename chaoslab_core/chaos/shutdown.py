from __future__ import annotations

import asyncio
import logging
import os
import signal
from typing import Callable

from chaoslab_core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_FLUSH_DELAY_S = 0.15

ExitFn = Callable[[int], None]
KillFn = Callable[[int, int], None]


def hard_exit(code: int) -> None:
    logging.shutdown()
    os._exit(code)


class ShutdownSequencer:
    """Delayed process termination.

    A SIGTERM starts a grace timer and the process keeps serving until it
    fires, then exits 0. Operator exits wait only ``flush_delay`` so the HTTP
    response can leave before the process goes away.
    """

    def __init__(
        self,
        grace_seconds: float,
        *,
        exit_fn: ExitFn = hard_exit,
        kill_fn: KillFn = os.kill,
        flush_delay: float = DEFAULT_FLUSH_DELAY_S,
        pid: int | None = None,
    ) -> None:
        self.grace_seconds = grace_seconds
        self.flush_delay = flush_delay
        self.pid = pid if pid is not None else os.getpid()
        self._exit_fn = exit_fn
        self._kill_fn = kill_fn
        self.terminating = False
        self._handles: list[asyncio.TimerHandle] = []

    def install_signal_handlers(
        self,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        loop = loop or asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGTERM, self.on_signal)
        except NotImplementedError:
            # No loop signal support on this platform.
            signal.signal(
                signal.SIGTERM,
                lambda *_: loop.call_soon_threadsafe(self.on_signal),
            )

    def on_signal(self) -> bool:
        if self.terminating:
            logger.info(
                "SIGTERM received again, grace period already running",
                extra={"signal": "SIGTERM"},
            )
            return False
        self.terminating = True
        logger.info(
            "SIGTERM received, waiting before exit",
            extra={"signal": "SIGTERM", "grace_seconds": self.grace_seconds},
        )
        self._later(self.grace_seconds, self._exit, 0)
        return True

    def schedule_exit(self, code: int) -> None:
        logger.info("Operator exit requested", extra={"exit_code": code})
        self._later(self.flush_delay, self._exit, code)

    def schedule_signal(self) -> None:
        logger.info("Operator SIGTERM requested", extra={"signal": "SIGTERM"})
        self._later(self.flush_delay, self._kill_self)

    def cancel_pending(self) -> None:
        for handle in self._handles:
            handle.cancel()
        self._handles.clear()

    def _later(self, delay: float, callback: Callable[..., None], *args: object) -> None:
        loop = asyncio.get_running_loop()
        self._handles.append(loop.call_later(delay, callback, *args))

    def _exit(self, code: int) -> None:
        logger.info("Exiting process", extra={"exit_code": code})
        self._exit_fn(code)

    def _kill_self(self) -> None:
        self._kill_fn(self.pid, signal.SIGTERM)
