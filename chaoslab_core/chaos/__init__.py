from chaoslab_core.chaos.context import ChaosContext
from chaoslab_core.chaos.generators import (
    ProcessSpawner,
    RecordingSpawner,
    SubprocessSpawner,
    build_stress_command,
    launch_params,
    launch_resource_attack,
)
from chaoslab_core.chaos.limits import LimitPolicy, clamp_int, parse_int
from chaoslab_core.chaos.net_spike import NetSpike, NetSpikeTable, launch_net_attack
from chaoslab_core.chaos.probes import ProbeState
from chaoslab_core.chaos.registry import JobRegistry, make_job_id, now_ms
from chaoslab_core.chaos.shutdown import ShutdownSequencer
from chaoslab_core.chaos.types import AttackParams, ChaosJob

__all__ = [
    "AttackParams",
    "ChaosContext",
    "ChaosJob",
    "JobRegistry",
    "LimitPolicy",
    "NetSpike",
    "NetSpikeTable",
    "ProbeState",
    "ProcessSpawner",
    "RecordingSpawner",
    "ShutdownSequencer",
    "SubprocessSpawner",
    "build_stress_command",
    "clamp_int",
    "launch_net_attack",
    "launch_params",
    "launch_resource_attack",
    "make_job_id",
    "now_ms",
    "parse_int",
]
