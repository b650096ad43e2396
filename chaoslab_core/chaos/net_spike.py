from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Callable, Mapping

import httpx

from chaoslab_core.chaos.registry import make_job_id
from chaoslab_core.chaos.types import AttackParams, ChaosJob
from chaoslab_core.errors import ValidationError
from chaoslab_core.logging import get_logger

if TYPE_CHECKING:
    from chaoslab_core.chaos.context import ChaosContext

logger = get_logger(__name__)

DEFAULT_REQUEST_TIMEOUT_S = 1.5
DEFAULT_BACKLOG_FACTOR = 1
DEFAULT_BURST_INTERVAL_S = 0.01

ClientFactory = Callable[[int, float], httpx.AsyncClient]


def default_client_factory(concurrency: int, timeout: float) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        limits=httpx.Limits(
            max_connections=concurrency,
            max_keepalive_connections=concurrency,
        ),
        timeout=httpx.Timeout(timeout),
    )


class NetSpike:
    """Self-directed request flood bound to a deadline.

    Each loop iteration fires ``concurrency`` GET requests at the target and
    then sleeps ``burst_interval`` so other handlers on the loop get served.
    In-flight requests never exceed ``concurrency * backlog_factor``: a burst
    only starts once enough earlier requests have finished to make room.
    """

    def __init__(
        self,
        job_id: str,
        target_url: str,
        concurrency: int,
        seconds: float,
        *,
        client_factory: ClientFactory = default_client_factory,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT_S,
        backlog_factor: int = DEFAULT_BACKLOG_FACTOR,
        burst_interval: float = DEFAULT_BURST_INTERVAL_S,
    ) -> None:
        if concurrency < 1:
            raise ValidationError("concurrency must be >= 1")
        self.job_id = job_id
        self.target_url = target_url
        self.concurrency = concurrency
        self.seconds = seconds
        self.request_timeout = request_timeout
        self.backlog_factor = max(1, backlog_factor)
        self.burst_interval = max(0.0, burst_interval)
        self._client_factory = client_factory
        self._client: httpx.AsyncClient | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._task: asyncio.Task | None = None
        self._close_task: asyncio.Task | None = None
        self._in_flight: set[asyncio.Task] = set()
        self.deadline: float | None = None
        self.cancelled = False
        self.released = False
        self.iterations = 0
        self.requests_issued = 0
        self.responses = 0
        self.failures = 0

    @property
    def task(self) -> asyncio.Task | None:
        return self._task

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def start(self) -> asyncio.Task:
        if self._task is not None:
            return self._task
        loop = asyncio.get_running_loop()
        self._loop = loop
        self.deadline = loop.time() + self.seconds
        self._client = self._client_factory(self.concurrency, self.request_timeout)
        self._task = loop.create_task(
            self._run(self.deadline),
            name=f"net-spike-{self.job_id}",
        )
        return self._task

    def stop(self) -> None:
        self.cancelled = True
        self._release()

    async def wait_closed(self) -> None:
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)
        if self._close_task is not None:
            await asyncio.gather(self._close_task, return_exceptions=True)

    def snapshot(self) -> dict[str, object]:
        remaining_ms = 0
        if self._loop is not None and self.deadline is not None:
            remaining_ms = max(0, int((self.deadline - self._loop.time()) * 1000))
        return {
            "netId": self.job_id,
            "target": self.target_url,
            "concurrency": self.concurrency,
            "remainingMs": remaining_ms,
            "iterations": self.iterations,
            "requestsIssued": self.requests_issued,
            "inFlight": self.in_flight,
            "cancelled": self.cancelled,
        }

    async def _run(self, deadline: float) -> None:
        loop = asyncio.get_running_loop()
        backlog = self.concurrency * (self.backlog_factor - 1)
        while True:
            if self.cancelled or loop.time() >= deadline:
                self._release()
                return
            if len(self._in_flight) > backlog:
                await asyncio.wait(
                    set(self._in_flight),
                    timeout=max(0.0, deadline - loop.time()),
                    return_when=asyncio.FIRST_COMPLETED,
                )
                continue
            for _ in range(self.concurrency):
                request = loop.create_task(self._hit())
                self._in_flight.add(request)
                request.add_done_callback(self._in_flight.discard)
            self.iterations += 1
            self.requests_issued += self.concurrency
            await asyncio.sleep(self.burst_interval)

    async def _hit(self) -> None:
        client = self._client
        if client is None or self.released:
            return
        try:
            await client.get(self.target_url)
        except Exception:
            # Refused, timed out or closed mid-flight: the spike keeps going.
            self.failures += 1
        else:
            self.responses += 1

    def _release(self) -> None:
        if self.released:
            return
        self.released = True
        for request in list(self._in_flight):
            request.cancel()
        client = self._client
        if client is None or self._loop is None or self._loop.is_closed():
            return
        self._close_task = self._loop.create_task(client.aclose())
        logger.info(
            "Net spike released",
            extra={
                "net_id": self.job_id,
                "concurrency": self.concurrency,
                "status": "cancelled" if self.cancelled else "expired",
            },
        )


class NetSpikeTable:
    """Running net spikes keyed by id, each with its own expiry timer."""

    def __init__(
        self,
        *,
        client_factory: ClientFactory = default_client_factory,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT_S,
        backlog_factor: int = DEFAULT_BACKLOG_FACTOR,
        burst_interval: float = DEFAULT_BURST_INTERVAL_S,
    ) -> None:
        self.client_factory = client_factory
        self.request_timeout = request_timeout
        self.backlog_factor = backlog_factor
        self.burst_interval = burst_interval
        self._spikes: dict[str, NetSpike] = {}
        self._timers: dict[str, asyncio.TimerHandle] = {}

    def start(
        self,
        job_id: str,
        target_url: str,
        concurrency: int,
        seconds: float,
    ) -> NetSpike:
        if job_id in self._spikes:
            raise ValidationError(f"net spike already running: {job_id}")
        spike = NetSpike(
            job_id,
            target_url,
            concurrency,
            seconds,
            client_factory=self.client_factory,
            request_timeout=self.request_timeout,
            backlog_factor=self.backlog_factor,
            burst_interval=self.burst_interval,
        )
        spike.start()
        loop = asyncio.get_running_loop()
        self._spikes[job_id] = spike
        self._timers[job_id] = loop.call_later(seconds, self.expire, job_id)
        return spike

    def get(self, job_id: str) -> NetSpike | None:
        return self._spikes.get(job_id)

    def stop(self, job_id: str) -> bool:
        timer = self._timers.pop(job_id, None)
        if timer is not None:
            timer.cancel()
        spike = self._spikes.pop(job_id, None)
        if spike is None:
            return False
        spike.stop()
        return True

    def expire(self, job_id: str) -> bool:
        self._timers.pop(job_id, None)
        spike = self._spikes.pop(job_id, None)
        if spike is None:
            return False
        spike.stop()
        return True

    def stop_all(self) -> int:
        stopped = 0
        for job_id in list(self._spikes):
            if self.stop(job_id):
                stopped += 1
        return stopped

    def active_ids(self) -> list[str]:
        return list(self._spikes)

    def snapshot(self) -> list[dict[str, object]]:
        return [spike.snapshot() for spike in self._spikes.values()]

    def __contains__(self, job_id: object) -> bool:
        return job_id in self._spikes

    def __len__(self) -> int:
        return len(self._spikes)


def launch_net_attack(
    context: "ChaosContext",
    raw: Mapping[str, object] | None,
) -> tuple[ChaosJob, AttackParams]:
    params = context.policy.resolve("net", raw)
    concurrency = params.values["concurrency"]
    net_id = make_job_id("net", context.clock)
    context.net_spikes.start(net_id, context.target_url, concurrency, params.seconds)
    job = context.registry.create_job(
        "net",
        params.seconds,
        {
            "concurrency": concurrency,
            "netId": net_id,
            "target": context.target_label,
        },
    )
    logger.info(
        "Net spike started",
        extra={
            "job_id": job.id,
            "net_id": net_id,
            "kind": "net",
            "seconds": params.seconds,
            "concurrency": concurrency,
            "defaulted": list(params.defaulted) or None,
        },
    )
    return job, params
