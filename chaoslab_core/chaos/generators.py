from __future__ import annotations

import shlex
import subprocess
from typing import TYPE_CHECKING, Mapping, Protocol

from chaoslab_core.chaos.types import AttackParams, ChaosJob
from chaoslab_core.errors import ValidationError
from chaoslab_core.logging import get_logger

if TYPE_CHECKING:
    from chaoslab_core.chaos.context import ChaosContext

logger = get_logger(__name__)


class ProcessSpawner(Protocol):
    def spawn(self, command: str) -> None: ...


class SubprocessSpawner:
    """Launches a detached process and never looks at it again."""

    def spawn(self, command: str) -> None:
        try:
            subprocess.Popen(
                shlex.split(command),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
            )
        except OSError as exc:
            logger.warning(
                "Stress command failed to launch",
                extra={"command": command, "error_message": str(exc)},
            )


class RecordingSpawner:
    def __init__(self) -> None:
        self.commands: list[str] = []

    def spawn(self, command: str) -> None:
        self.commands.append(command)
        logger.info("Dry run, command not launched", extra={"command": command})


def build_stress_command(params: AttackParams) -> str:
    seconds = params.seconds
    values = params.values
    if params.kind == "cpu":
        return f"stress -c {values['workers']} -t {seconds}s"
    if params.kind == "memory":
        return (
            f"stress --vm {values['workers']} "
            f"--vm-bytes {values['mb']}M -t {seconds}s"
        )
    if params.kind == "disk":
        return f"stress --hdd {values['workers']} -t {seconds}s"
    if params.kind == "io":
        return f"stress --io {values['workers']} -t {seconds}s"
    if params.kind == "fork":
        return f"stress --fork {values['workers']} -t {seconds}s"
    raise ValidationError(f"no stress command for kind: {params.kind}")


def launch_resource_attack(
    context: "ChaosContext",
    kind: str,
    raw: Mapping[str, object] | None,
) -> tuple[ChaosJob, AttackParams]:
    params = context.policy.resolve(kind, raw)
    return launch_params(context, params)


def launch_params(
    context: "ChaosContext",
    params: AttackParams,
) -> tuple[ChaosJob, AttackParams]:
    command = build_stress_command(params)
    context.spawner.spawn(command)
    detail: dict[str, object] = dict(params.values)
    detail["cmd"] = command
    job = context.registry.create_job(params.kind, params.seconds, detail)
    logger.info(
        "Resource attack launched",
        extra={
            "job_id": job.id,
            "kind": params.kind,
            "seconds": params.seconds,
            "workers": params.values.get("workers"),
            "command": command,
            "defaulted": list(params.defaulted) or None,
        },
    )
    return job, params
