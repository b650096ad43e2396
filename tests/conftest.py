import os
from dataclasses import replace

import pytest

from chaoslab_core.chaos import ChaosContext, NetSpikeTable, RecordingSpawner
from chaoslab_core.chaos.shutdown import ShutdownSequencer
from chaoslab_core.config import Config, get_config

_CHAOS_ENV_VARS = (
    "PORT",
    "HOST",
    "SIGTERM_SECONDS",
    "OPERATOR_TOKEN",
    "SAFE_MODE",
    "MAX_SECONDS",
    "MAX_CPU_WORKERS",
    "MAX_MEM_MB",
    "MAX_VM_WORKERS",
    "MAX_DISK_WORKERS",
    "MAX_IO_WORKERS",
    "MAX_FORK_WORKERS",
    "MAX_NET_CONCURRENCY",
    "APP_NAME",
    "APP_VERSION",
    "APP_MODE",
)


@pytest.fixture(autouse=True)
def _chaos_env(monkeypatch: pytest.MonkeyPatch):
    for name in _CHAOS_ENV_VARS:
        monkeypatch.delenv(name, raising=False)

    def set_default(name: str, value: str) -> None:
        if not os.getenv(name):
            monkeypatch.setenv(name, value)

    set_default("ENV", "test")
    set_default("LOG_LEVEL", "INFO")
    set_default("CHAOS_DRY_RUN", "1")
    get_config.cache_clear()
    yield
    get_config.cache_clear()


class FakeClock:
    def __init__(self, start: int = 1_700_000_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class RecordingSequencer(ShutdownSequencer):
    def __init__(self, grace_seconds: float = 20) -> None:
        super().__init__(
            grace_seconds,
            exit_fn=self._record_exit,
            kill_fn=self._record_kill,
        )
        self.exits: list[int] = []
        self.signals = 0
        self.installed = False

    def install_signal_handlers(self, loop=None) -> None:
        self.installed = True

    def schedule_exit(self, code: int) -> None:
        self.exits.append(code)

    def schedule_signal(self) -> None:
        self.signals += 1

    def _record_exit(self, code: int) -> None:
        self.exits.append(code)

    def _record_kill(self, pid: int, signum: int) -> None:
        self.signals += 1


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_config():
    def _factory(**overrides) -> Config:
        return replace(Config.from_env(), **overrides)

    return _factory


@pytest.fixture
def make_context(clock, make_config):
    def _factory(
        config: Config | None = None,
        *,
        net_spikes: NetSpikeTable | None = None,
        **overrides,
    ) -> ChaosContext:
        resolved = config or make_config(**overrides)
        return ChaosContext.from_config(
            resolved,
            clock=clock,
            spawner=RecordingSpawner(),
            net_spikes=net_spikes,
            sequencer=RecordingSequencer(resolved.sigterm_seconds),
        )

    return _factory
