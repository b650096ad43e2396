from __future__ import annotations

from chaoslab_core.chaos.registry import Clock, now_ms
from chaoslab_core.logging import get_logger

logger = get_logger(__name__)


class ProbeState:
    """Liveness flag plus a readiness deadline.

    Readiness is derived: the process is ready once the clock reaches
    ``ready_until``. A new unready window replaces the previous one.
    """

    def __init__(self, clock: Clock = now_ms) -> None:
        self._clock = clock
        self.healthy = True
        self.ready_until = clock()

    def mark_unhealthy(self) -> None:
        self.healthy = False
        logger.info("Liveness forced to fail", extra={"status": "unhealthy"})

    def mark_healthy(self) -> None:
        self.healthy = True
        logger.info("Liveness restored", extra={"status": "healthy"})

    def mark_unready(self, seconds: int) -> int:
        self.ready_until = self._clock() + int(seconds) * 1000
        logger.info(
            "Readiness forced to fail",
            extra={"seconds": seconds, "ready_until": self.ready_until},
        )
        return self.ready_until

    def mark_ready(self) -> None:
        self.ready_until = self._clock()
        logger.info("Readiness restored", extra={"ready_until": self.ready_until})

    def is_ready(self) -> bool:
        return self._clock() >= self.ready_until

    def snapshot(self) -> dict[str, object]:
        return {
            "healthy": self.healthy,
            "ready": self.is_ready(),
            "readyUntil": self.ready_until,
        }
