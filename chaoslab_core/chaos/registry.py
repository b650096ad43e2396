from __future__ import annotations

import secrets
import time
from typing import Callable

from chaoslab_core.chaos.types import ChaosJob

Clock = Callable[[], int]


def now_ms() -> int:
    return int(time.time() * 1000)


def make_job_id(prefix: str, clock: Clock = now_ms) -> str:
    return f"{prefix}-{secrets.token_hex(6)}-{clock():x}"


class JobRegistry:
    """In-memory catalog of active chaos jobs.

    Jobs are append-only; the only removal path is pruning of expired
    entries, which happens lazily whenever the active list is read.
    """

    def __init__(self, clock: Clock = now_ms) -> None:
        self._clock = clock
        self._jobs: list[ChaosJob] = []

    def create_job(
        self,
        kind: str,
        duration_seconds: int,
        detail: dict[str, object] | None = None,
    ) -> ChaosJob:
        started_at = self._clock()
        # ends_at must stay strictly after started_at.
        duration_ms = max(1, int(duration_seconds * 1000))
        job = ChaosJob(
            id=make_job_id(kind, self._clock),
            kind=kind,
            started_at=started_at,
            ends_at=started_at + duration_ms,
            detail=dict(detail or {}),
        )
        self._jobs.append(job)
        return job

    def list_active(self) -> list[ChaosJob]:
        self.prune()
        return list(self._jobs)

    def prune(self) -> int:
        now = self._clock()
        removed = 0
        for index in range(len(self._jobs) - 1, -1, -1):
            if self._jobs[index].ends_at <= now:
                del self._jobs[index]
                removed += 1
        return removed

    def __len__(self) -> int:
        return len(self._jobs)
