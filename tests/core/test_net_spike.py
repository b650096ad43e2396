from __future__ import annotations

import asyncio

import httpx
import pytest

from chaoslab_core.chaos import NetSpike, NetSpikeTable
from chaoslab_core.errors import ValidationError

TARGET = "http://127.0.0.1:3000/health"


class CountingClient(httpx.AsyncClient):
    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.close_calls = 0

    async def aclose(self) -> None:
        self.close_calls += 1
        await super().aclose()


def _factory(handler, created: list[CountingClient]):
    def _make(concurrency: int, timeout: float) -> CountingClient:
        client = CountingClient(transport=httpx.MockTransport(handler), timeout=timeout)
        created.append(client)
        return client

    return _make


def _ok(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, text="ok")


@pytest.mark.core
def test_spike_runs_until_deadline_and_releases_once():
    created: list[CountingClient] = []
    paths: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        paths.append(request.url.path)
        return httpx.Response(200, text="ok")

    async def scenario() -> NetSpike:
        spike = NetSpike("net-a", TARGET, 3, 0.2, client_factory=_factory(handler, created))
        spike.start()
        await asyncio.wait_for(spike.task, timeout=2.0)
        await spike.wait_closed()
        return spike

    spike = asyncio.run(scenario())

    assert spike.released is True
    assert spike.cancelled is False
    assert spike.iterations >= 1
    assert spike.requests_issued == spike.iterations * 3
    assert len(created) == 1
    assert created[0].close_calls == 1
    assert paths
    assert set(paths) == {"/health"}


@pytest.mark.core
def test_request_failures_never_abort_the_spike():
    created: list[CountingClient] = []

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async def scenario() -> NetSpike:
        spike = NetSpike("net-b", TARGET, 2, 0.15, client_factory=_factory(handler, created))
        spike.start()
        await asyncio.wait_for(spike.task, timeout=2.0)
        await spike.wait_closed()
        return spike

    spike = asyncio.run(scenario())

    assert spike.task.exception() is None
    assert spike.failures > 0
    assert spike.responses == 0
    assert created[0].close_calls == 1


@pytest.mark.core
def test_in_flight_requests_are_bounded():
    created: list[CountingClient] = []

    async def stuck(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(30)
        return httpx.Response(200)

    async def scenario() -> tuple[NetSpike, int]:
        spike = NetSpike(
            "net-c",
            TARGET,
            2,
            0.2,
            client_factory=_factory(stuck, created),
            backlog_factor=4,
        )
        spike.start()
        await asyncio.sleep(0.1)
        peak = spike.in_flight
        await asyncio.wait_for(spike.task, timeout=2.0)
        await spike.wait_closed()
        await asyncio.sleep(0.01)
        return spike, peak

    spike, peak = asyncio.run(scenario())

    assert peak == 8
    assert spike.requests_issued == 8
    assert spike.in_flight == 0
    assert created[0].close_calls == 1


@pytest.mark.core
def test_default_backlog_keeps_in_flight_at_one_burst():
    created: list[CountingClient] = []

    async def stuck(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(30)
        return httpx.Response(200)

    async def scenario() -> tuple[NetSpike, int]:
        spike = NetSpike("net-k", TARGET, 3, 0.2, client_factory=_factory(stuck, created))
        spike.start()
        await asyncio.sleep(0.1)
        peak = spike.in_flight
        await asyncio.wait_for(spike.task, timeout=2.0)
        await spike.wait_closed()
        return spike, peak

    spike, peak = asyncio.run(scenario())

    assert peak == 3
    assert spike.requests_issued == 3
    assert spike.iterations == 1


@pytest.mark.core
def test_loop_stays_responsive_during_max_concurrency_spike():
    created: list[CountingClient] = []

    async def slow_ok(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(0.005)
        return httpx.Response(200, text="ok")

    async def scenario() -> tuple[NetSpike, float]:
        loop = asyncio.get_running_loop()
        spike = NetSpike("net-l", TARGET, 150, 0.6, client_factory=_factory(slow_ok, created))
        spike.start()
        worst = 0.0
        while not spike.task.done():
            started = loop.time()
            await asyncio.sleep(0.01)
            worst = max(worst, loop.time() - started - 0.01)
        await spike.wait_closed()
        return spike, worst

    spike, worst = asyncio.run(scenario())

    assert spike.iterations >= 2
    assert spike.responses > 0
    assert worst < 0.25


@pytest.mark.core
def test_explicit_stop_then_expiry_releases_once():
    created: list[CountingClient] = []

    async def scenario() -> tuple[NetSpikeTable, NetSpike, bool]:
        table = NetSpikeTable(client_factory=_factory(_ok, created))
        spike = table.start("net-d", TARGET, 2, 0.3)
        await asyncio.sleep(0.05)
        spike.stop()
        spike.stop()
        still_listed = "net-d" in table
        await asyncio.sleep(0.4)
        await spike.wait_closed()
        return table, spike, still_listed

    table, spike, still_listed = asyncio.run(scenario())

    assert still_listed is True
    assert "net-d" not in table
    assert spike.cancelled is True
    assert created[0].close_calls == 1


@pytest.mark.core
def test_table_removes_handle_after_duration():
    created: list[CountingClient] = []

    async def scenario() -> tuple[bool, bool, NetSpike]:
        table = NetSpikeTable(client_factory=_factory(_ok, created))
        spike = table.start("net-e", TARGET, 1, 0.2)
        await asyncio.sleep(0.1)
        during = "net-e" in table
        await asyncio.sleep(0.3)
        after = "net-e" in table
        await spike.wait_closed()
        return during, after, spike

    during, after, spike = asyncio.run(scenario())

    assert during is True
    assert after is False
    assert spike.released is True
    assert created[0].close_calls == 1


@pytest.mark.core
def test_table_stop_is_idempotent_and_disarms_timer():
    created: list[CountingClient] = []

    async def scenario() -> tuple[list[bool], bool, NetSpike]:
        table = NetSpikeTable(client_factory=_factory(_ok, created))
        spike = table.start("net-f", TARGET, 2, 5)
        await asyncio.sleep(0.02)
        results = [table.stop("net-f"), table.stop("net-f"), table.stop("missing")]
        expired = table.expire("net-f")
        await spike.wait_closed()
        return results, expired, spike

    results, expired, spike = asyncio.run(scenario())

    assert results == [True, False, False]
    assert expired is False
    assert spike.cancelled is True
    assert created[0].close_calls == 1


@pytest.mark.core
def test_concurrent_spikes_own_separate_clients():
    created: list[CountingClient] = []

    async def scenario() -> tuple[list[str], NetSpikeTable]:
        table = NetSpikeTable(client_factory=_factory(_ok, created))
        first = table.start("net-g", TARGET, 1, 5)
        second = table.start("net-h", TARGET, 1, 5)
        await asyncio.sleep(0.02)
        ids = table.active_ids()
        assert table.stop_all() == 2
        await first.wait_closed()
        await second.wait_closed()
        return ids, table

    ids, table = asyncio.run(scenario())

    assert ids == ["net-g", "net-h"]
    assert len(table) == 0
    assert len(created) == 2
    assert created[0] is not created[1]
    assert [client.close_calls for client in created] == [1, 1]


@pytest.mark.core
def test_duplicate_id_rejected():
    created: list[CountingClient] = []

    async def scenario() -> None:
        table = NetSpikeTable(client_factory=_factory(_ok, created))
        table.start("net-i", TARGET, 1, 5)
        try:
            with pytest.raises(ValidationError):
                table.start("net-i", TARGET, 1, 5)
        finally:
            table.stop_all()

    asyncio.run(scenario())


@pytest.mark.core
def test_snapshot_describes_spike():
    created: list[CountingClient] = []

    async def scenario() -> dict[str, object]:
        table = NetSpikeTable(client_factory=_factory(_ok, created))
        spike = table.start("net-j", TARGET, 4, 5)
        await asyncio.sleep(0.01)
        snapshot = table.snapshot()[0]
        table.stop("net-j")
        await spike.wait_closed()
        return snapshot

    snapshot = asyncio.run(scenario())

    assert snapshot["netId"] == "net-j"
    assert snapshot["concurrency"] == 4
    assert snapshot["target"] == TARGET
    assert 0 < snapshot["remainingMs"] <= 5_000
    assert snapshot["cancelled"] is False
