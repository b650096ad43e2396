import os
from dataclasses import dataclass
from functools import lru_cache

_FALSE_VALUES = {"false", "0", "no", "n", "off"}


@dataclass(frozen=True)
class Limits:
    max_seconds: int = 45
    max_cpu_workers: int = 4
    max_mem_mb: int = 1024
    max_vm_workers: int = 2
    max_disk_workers: int = 2
    max_io_workers: int = 2
    max_fork_workers: int = 50
    max_net_concurrency: int = 150

    def as_dict(self) -> dict[str, int]:
        return {
            "maxSeconds": self.max_seconds,
            "maxCpuWorkers": self.max_cpu_workers,
            "maxMemMB": self.max_mem_mb,
            "maxVmWorkers": self.max_vm_workers,
            "maxDiskWorkers": self.max_disk_workers,
            "maxIoWorkers": self.max_io_workers,
            "maxForkWorkers": self.max_fork_workers,
            "maxNetConcurrency": self.max_net_concurrency,
        }


@dataclass(frozen=True)
class Config:
    host: str
    port: int
    env: str
    log_level: str
    safe_mode: bool
    limits: Limits
    sigterm_seconds: int
    operator_token: str
    app_name: str
    app_version: str
    app_mode: str
    dry_run: bool

    @property
    def requires_token(self) -> bool:
        return bool(self.operator_token)

    def self_health_url(self) -> str:
        return f"http://127.0.0.1:{self.port}/health"

    @classmethod
    def from_env(cls) -> "Config":
        def env_int(name: str, default: int) -> int:
            value = os.getenv(name)
            if value is None or value.strip() == "":
                return default
            try:
                return int(value)
            except ValueError as exc:
                raise ValueError(f"{name} must be an integer") from exc

        port = env_int("PORT", 3000)
        if port <= 0 or port > 65535:
            raise ValueError("PORT must be between 1 and 65535")
        sigterm_seconds = env_int("SIGTERM_SECONDS", 20)
        if sigterm_seconds < 0:
            raise ValueError("SIGTERM_SECONDS must be >= 0")

        limits = Limits(
            max_seconds=env_int("MAX_SECONDS", 45),
            max_cpu_workers=env_int("MAX_CPU_WORKERS", 4),
            max_mem_mb=env_int("MAX_MEM_MB", 1024),
            max_vm_workers=env_int("MAX_VM_WORKERS", 2),
            max_disk_workers=env_int("MAX_DISK_WORKERS", 2),
            max_io_workers=env_int("MAX_IO_WORKERS", 2),
            max_fork_workers=env_int("MAX_FORK_WORKERS", 50),
            max_net_concurrency=env_int("MAX_NET_CONCURRENCY", 150),
        )
        too_small = [
            name for name, value in limits.as_dict().items() if value < 1
        ]
        if too_small:
            raise ValueError(f"Limits must be >= 1: {', '.join(too_small)}")

        return cls(
            host=os.getenv("HOST", "0.0.0.0"),
            port=port,
            env=os.getenv("ENV", "dev").strip().lower(),
            log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper(),
            safe_mode=_parse_safe_mode(os.getenv("SAFE_MODE")),
            limits=limits,
            sigterm_seconds=sigterm_seconds,
            operator_token=os.getenv("OPERATOR_TOKEN", "").strip(),
            app_name=os.getenv("APP_NAME", "CHAOS OPS CONSOLE"),
            app_version=os.getenv("APP_VERSION", "2.0.0"),
            app_mode=os.getenv("APP_MODE", "red-team-sim"),
            dry_run=_parse_bool(os.getenv("CHAOS_DRY_RUN"), False),
        )


def _parse_safe_mode(value: str | None) -> bool:
    # Anything but an explicit "off" keeps the ceilings on.
    if value is None or value.strip() == "":
        return True
    return value.strip().lower() not in _FALSE_VALUES


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None or value == "":
        return default
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}


@lru_cache(maxsize=1)
def get_config() -> Config:
    return Config.from_env()
