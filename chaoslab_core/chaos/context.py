from __future__ import annotations

import time
from dataclasses import dataclass, field

from chaoslab_core.chaos.generators import (
    ProcessSpawner,
    RecordingSpawner,
    SubprocessSpawner,
)
from chaoslab_core.chaos.limits import LimitPolicy
from chaoslab_core.chaos.net_spike import NetSpikeTable
from chaoslab_core.chaos.probes import ProbeState
from chaoslab_core.chaos.registry import Clock, JobRegistry, now_ms
from chaoslab_core.chaos.shutdown import ShutdownSequencer
from chaoslab_core.config import Config


@dataclass
class ChaosContext:
    """Process-wide chaos state, built once and handed to every handler."""

    config: Config
    policy: LimitPolicy
    registry: JobRegistry
    probes: ProbeState
    net_spikes: NetSpikeTable
    spawner: ProcessSpawner
    sequencer: ShutdownSequencer
    clock: Clock = now_ms
    started_at: int = field(default_factory=now_ms)
    started_monotonic: float = field(default_factory=time.monotonic)

    @property
    def target_url(self) -> str:
        return self.config.self_health_url()

    @property
    def target_label(self) -> str:
        return "127.0.0.1:/health"

    def uptime_seconds(self) -> int:
        return int(time.monotonic() - self.started_monotonic)

    @classmethod
    def from_config(
        cls,
        config: Config,
        *,
        clock: Clock = now_ms,
        spawner: ProcessSpawner | None = None,
        net_spikes: NetSpikeTable | None = None,
        sequencer: ShutdownSequencer | None = None,
    ) -> "ChaosContext":
        if spawner is None:
            spawner = RecordingSpawner() if config.dry_run else SubprocessSpawner()
        if net_spikes is None:
            net_spikes = NetSpikeTable()
        if sequencer is None:
            sequencer = ShutdownSequencer(config.sigterm_seconds)
        return cls(
            config=config,
            policy=LimitPolicy(config.limits, safe_mode=config.safe_mode),
            registry=JobRegistry(clock=clock),
            probes=ProbeState(clock=clock),
            net_spikes=net_spikes,
            spawner=spawner,
            sequencer=sequencer,
            clock=clock,
            started_at=clock(),
        )
