from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class ChaosJob:
    id: str
    kind: str
    started_at: int
    ends_at: int
    detail: dict[str, object] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "kind": self.kind,
            "startedAt": self.started_at,
            "endsAt": self.ends_at,
            "detail": dict(self.detail),
        }


@dataclass(frozen=True)
class AttackParams:
    kind: str
    seconds: int
    values: dict[str, int]
    defaulted: tuple[str, ...] = ()
    clamped: tuple[str, ...] = ()
