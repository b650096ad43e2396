from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Mapping

from chaoslab_core.chaos.types import AttackParams
from chaoslab_core.config import Limits
from chaoslab_core.errors import ValidationError

_INT_PREFIX = re.compile(r"^\s*([+-]?)0*(\d+)")
# Longer digit runs saturate instead of hitting the int() digit limit.
_MAX_DIGITS = 18
_SATURATED = 10**_MAX_DIGITS

MAX_ATTACK_SECONDS = 600
MAX_UNREADY_SECONDS = 3600
DEFAULT_UNREADY_SECONDS = 60


def parse_int(value: object) -> int | None:
    """Lenient integer parse; returns None when nothing usable is found."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        return int(value)
    if isinstance(value, (bytes, bytearray)):
        value = value.decode("utf-8", errors="ignore")
    if isinstance(value, str):
        match = _INT_PREFIX.match(value)
        if match is None:
            return None
        sign, digits = match.groups()
        value = int(digits) if len(digits) <= _MAX_DIGITS else _SATURATED
        return -value if sign == "-" else value
    return None


def clamp_int(value: object, floor: int, ceiling: int, fallback: int) -> int:
    parsed = parse_int(value)
    if parsed is None:
        return fallback
    return max(floor, min(ceiling, parsed))


@dataclass(frozen=True)
class ParamRule:
    name: str
    floor: int
    fallback: int
    limit_attr: str | None
    unsafe_ceiling: int


# Second entry per kind is the default duration.
_KIND_RULES: dict[str, tuple[int, tuple[ParamRule, ...]]] = {
    "cpu": (30, (ParamRule("workers", 1, 2, "max_cpu_workers", 4096),)),
    "memory": (
        30,
        (
            ParamRule("workers", 1, 1, "max_vm_workers", 4096),
            ParamRule("mb", 64, 512, "max_mem_mb", 1024 * 128),
        ),
    ),
    "disk": (30, (ParamRule("workers", 1, 1, "max_disk_workers", 1024),)),
    "io": (30, (ParamRule("workers", 1, 1, "max_io_workers", 1024),)),
    "fork": (20, (ParamRule("workers", 1, 25, "max_fork_workers", 20000),)),
    "net": (20, (ParamRule("concurrency", 1, 80, "max_net_concurrency", 20000),)),
}


class LimitPolicy:
    """Clamps operator-supplied attack parameters against configured ceilings.

    With safe mode on, each parameter is capped by its configured limit and
    every duration by ``max_seconds``. With safe mode off a fixed absolute
    ceiling still applies so garbage input cannot request unbounded work.
    """

    def __init__(self, limits: Limits, safe_mode: bool = True) -> None:
        self.limits = limits
        self.safe_mode = safe_mode

    def ceiling_for(self, rule: ParamRule) -> int:
        if self.safe_mode and rule.limit_attr is not None:
            return int(getattr(self.limits, rule.limit_attr))
        return rule.unsafe_ceiling

    def safe_seconds(self, seconds: int) -> int:
        if not self.safe_mode:
            return seconds
        return min(seconds, self.limits.max_seconds)

    def resolve(self, kind: str, raw: Mapping[str, object] | None) -> AttackParams:
        if kind not in _KIND_RULES:
            raise ValidationError(f"unsupported attack kind: {kind}")
        payload = raw or {}
        default_seconds, rules = _KIND_RULES[kind]
        defaulted: list[str] = []
        clamped: list[str] = []

        seconds = self._resolve_one(
            "seconds",
            payload.get("seconds"),
            1,
            MAX_ATTACK_SECONDS,
            default_seconds,
            defaulted,
            clamped,
        )
        capped = self.safe_seconds(seconds)
        if capped != seconds and "seconds" not in clamped:
            clamped.append("seconds")

        values: dict[str, int] = {}
        for rule in rules:
            values[rule.name] = self._resolve_one(
                rule.name,
                payload.get(rule.name),
                rule.floor,
                self.ceiling_for(rule),
                rule.fallback,
                defaulted,
                clamped,
            )

        return AttackParams(
            kind=kind,
            seconds=capped,
            values=values,
            defaulted=tuple(defaulted),
            clamped=tuple(clamped),
        )

    def unready_seconds(self, raw: object) -> int:
        return clamp_int(raw, 1, MAX_UNREADY_SECONDS, DEFAULT_UNREADY_SECONDS)

    @staticmethod
    def _resolve_one(
        name: str,
        raw: object,
        floor: int,
        ceiling: int,
        fallback: int,
        defaulted: list[str],
        clamped: list[str],
    ) -> int:
        parsed = parse_int(raw)
        if parsed is None:
            defaulted.append(name)
            # A low configured ceiling still wins over the default.
            return max(floor, min(ceiling, fallback))
        value = max(floor, min(ceiling, parsed))
        if value != parsed:
            clamped.append(name)
        return value
