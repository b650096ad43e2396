import json
import os
import platform
import resource
import socket
import threading
from contextlib import asynccontextmanager
from urllib.parse import parse_qsl

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, ConfigDict, Field

from chaoslab_core.auth import OPERATOR_TOKEN_HEADER, check_operator_token
from chaoslab_core.chaos import (
    AttackParams,
    ChaosContext,
    ChaosJob,
    launch_net_attack,
    launch_resource_attack,
)
from chaoslab_core.config import get_config
from chaoslab_core.errors import AuthError
from chaoslab_core.logging import configure_logging, get_logger
from chaoslab_core.services.fastapi_scaffolding import (
    add_correlation_id_middleware,
    add_unhealthy_gate_middleware,
    apply_cors_middleware,
)

SERVICE_NAME = "chaoslab-console"

_startup_config = get_config()
configure_logging(
    service=SERVICE_NAME,
    env=_startup_config.env,
    version=_startup_config.app_version,
    level=_startup_config.log_level,
)
logger = get_logger(__name__)


class ChaosJobPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    kind: str
    started_at: int = Field(alias="startedAt")
    ends_at: int = Field(alias="endsAt")
    detail: dict[str, object]


class AttackResponse(BaseModel):
    ok: bool = True
    message: str
    job: ChaosJobPayload
    defaulted: list[str] = []


class ControlResponse(BaseModel):
    ok: bool = True
    message: str


class UnreadyResponse(ControlResponse):
    model_config = ConfigDict(populate_by_name=True)

    ready_until: int = Field(alias="readyUntil")


def _context(request: Request) -> ChaosContext:
    return request.app.state.context


def require_operator(request: Request) -> None:
    context = _context(request)
    try:
        check_operator_token(
            context.config.operator_token,
            request.headers.get(OPERATOR_TOKEN_HEADER),
        )
    except AuthError as exc:
        logger.warning(
            "Operator token rejected",
            extra={
                "path": request.url.path,
                "status": 403,
                "correlation_id": getattr(request.state, "correlation_id", None),
            },
        )
        raise HTTPException(status_code=403, detail=str(exc)) from exc


async def _read_params(request: Request) -> dict[str, object]:
    body = await request.body()
    if not body:
        return {}
    content_type = request.headers.get("content-type", "")
    if "application/x-www-form-urlencoded" in content_type:
        return dict(parse_qsl(body.decode("utf-8", errors="ignore")))
    try:
        payload = json.loads(body)
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}


def _job_payload(job: ChaosJob) -> ChaosJobPayload:
    return ChaosJobPayload(
        id=job.id,
        kind=job.kind,
        started_at=job.started_at,
        ends_at=job.ends_at,
        detail=dict(job.detail),
    )


def _attack_response(job: ChaosJob, params: AttackParams, message: str) -> AttackResponse:
    return AttackResponse(
        message=message,
        job=_job_payload(job),
        defaulted=list(params.defaulted),
    )


def _loadavg() -> list[float]:
    if not hasattr(os, "getloadavg"):
        return []
    return [round(value, 2) for value in os.getloadavg()]


def _unready(context: ChaosContext, raw_seconds: str) -> tuple[int, int]:
    seconds = context.policy.unready_seconds(raw_seconds)
    ready_until = context.probes.mark_unready(seconds)
    return seconds, ready_until


def create_app(
    context: ChaosContext | None = None,
    *,
    install_signals: bool = True,
) -> FastAPI:
    if context is None:
        context = ChaosContext.from_config(get_config())

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        if install_signals and threading.current_thread() is threading.main_thread():
            context.sequencer.install_signal_handlers()
        logger.info(
            "Chaos console started",
            extra={
                "status": "safe_mode" if context.config.safe_mode else "unsafe",
                "grace_seconds": context.sequencer.grace_seconds,
            },
        )
        yield

    app = FastAPI(lifespan=lifespan)
    app.state.context = context
    add_unhealthy_gate_middleware(app, lambda: context.probes.healthy)
    add_correlation_id_middleware(app)
    apply_cors_middleware(app, env=context.config.env)

    # ---------- probes ----------

    @app.get("/health", response_class=PlainTextResponse)
    async def health() -> PlainTextResponse:
        if not context.probes.healthy:
            return PlainTextResponse("Internal Server Error", status_code=500)
        return PlainTextResponse("ok")

    @app.get("/ready", response_class=PlainTextResponse)
    async def ready() -> PlainTextResponse:
        if not context.probes.is_ready():
            return PlainTextResponse("", status_code=500)
        return PlainTextResponse("Ok")

    # ---------- observability ----------

    @app.get("/api/config")
    async def api_config() -> dict[str, object]:
        config = context.config
        return {
            "ok": True,
            "requiresToken": config.requires_token,
            "safeMode": config.safe_mode,
            "limits": config.limits.as_dict(),
            "sigtermSeconds": config.sigterm_seconds,
            "runtime": {
                "hostname": socket.gethostname(),
                "platform": platform.system().lower(),
                "arch": platform.machine(),
                "python": platform.python_version(),
            },
        }

    @app.get("/api/status")
    async def api_status() -> dict[str, object]:
        config = context.config
        usage = resource.getrusage(resource.RUSAGE_SELF)
        active = context.registry.list_active()
        return {
            "ok": True,
            "app": {
                "name": config.app_name,
                "version": config.app_version,
                "mode": config.app_mode,
            },
            "runtime": {
                "pid": os.getpid(),
                "uptimeSeconds": context.uptime_seconds(),
                "startedAt": context.started_at,
                "hostname": socket.gethostname(),
                "loadavg": _loadavg(),
                "memory": {"maxRssKb": int(usage.ru_maxrss)},
            },
            "probes": context.probes.snapshot(),
            "chaos": {
                "activeJobs": [job.to_dict() for job in active],
                "netSpikes": context.net_spikes.snapshot(),
            },
        }

    # ---------- state control ----------

    @app.put(
        "/control/unhealth",
        response_model=ControlResponse,
        dependencies=[Depends(require_operator)],
    )
    async def control_unhealth() -> ControlResponse:
        context.probes.mark_unhealthy()
        return ControlResponse(message="Marked UNHEALTHY (liveness should fail).")

    @app.put(
        "/control/health",
        response_model=ControlResponse,
        dependencies=[Depends(require_operator)],
    )
    async def control_health() -> ControlResponse:
        context.probes.mark_healthy()
        return ControlResponse(message="Marked HEALTHY (liveness should pass).")

    @app.put(
        "/control/unreadyfor/{seconds}",
        response_model=UnreadyResponse,
        dependencies=[Depends(require_operator)],
    )
    async def control_unready(seconds: str) -> UnreadyResponse:
        applied, ready_until = _unready(context, seconds)
        return UnreadyResponse(
            message=f"Readiness failing for {applied}s.",
            ready_until=ready_until,
        )

    @app.put(
        "/control/ready",
        response_model=ControlResponse,
        dependencies=[Depends(require_operator)],
    )
    async def control_ready() -> ControlResponse:
        context.probes.mark_ready()
        return ControlResponse(message="Ready again (readiness OK).")

    # ---------- attacks ----------

    async def _resource_attack(request: Request, kind: str, message: str) -> AttackResponse:
        raw = await _read_params(request)
        job, params = launch_resource_attack(context, kind, raw)
        return _attack_response(job, params, message)

    @app.put(
        "/attack/cpu",
        response_model=AttackResponse,
        dependencies=[Depends(require_operator)],
    )
    async def attack_cpu(request: Request) -> AttackResponse:
        return await _resource_attack(request, "cpu", "CPU surge triggered.")

    @app.put(
        "/attack/memory",
        response_model=AttackResponse,
        dependencies=[Depends(require_operator)],
    )
    async def attack_memory(request: Request) -> AttackResponse:
        return await _resource_attack(request, "memory", "RAM flood triggered.")

    @app.put(
        "/attack/disk",
        response_model=AttackResponse,
        dependencies=[Depends(require_operator)],
    )
    async def attack_disk(request: Request) -> AttackResponse:
        return await _resource_attack(request, "disk", "Disk thrash triggered.")

    @app.put(
        "/attack/io",
        response_model=AttackResponse,
        dependencies=[Depends(require_operator)],
    )
    async def attack_io(request: Request) -> AttackResponse:
        return await _resource_attack(request, "io", "IO storm triggered.")

    @app.put(
        "/attack/fork",
        response_model=AttackResponse,
        dependencies=[Depends(require_operator)],
    )
    async def attack_fork(request: Request) -> AttackResponse:
        return await _resource_attack(request, "fork", "Fork swarm triggered.")

    @app.put(
        "/attack/net",
        response_model=AttackResponse,
        dependencies=[Depends(require_operator)],
    )
    async def attack_net(request: Request) -> AttackResponse:
        raw = await _read_params(request)
        job, params = launch_net_attack(context, raw)
        return _attack_response(job, params, "Network spike triggered (self-target).")

    @app.put(
        "/attack/net/{net_id}/stop",
        response_model=ControlResponse,
        dependencies=[Depends(require_operator)],
    )
    async def attack_net_stop(net_id: str) -> ControlResponse:
        if not context.net_spikes.stop(net_id):
            raise HTTPException(status_code=404, detail="Net spike not found")
        logger.info("Net spike stopped by operator", extra={"net_id": net_id})
        return ControlResponse(message=f"Network spike {net_id} stopped.")

    # ---------- shutdown ----------

    @app.put(
        "/control/exit/success",
        response_model=ControlResponse,
        dependencies=[Depends(require_operator)],
    )
    async def exit_success() -> ControlResponse:
        context.sequencer.schedule_exit(0)
        return ControlResponse(message="Exiting with success (exit 0).")

    @app.put(
        "/control/exit/fail",
        response_model=ControlResponse,
        dependencies=[Depends(require_operator)],
    )
    async def exit_fail() -> ControlResponse:
        context.sequencer.schedule_exit(1)
        return ControlResponse(message="Exiting with failure (exit 1).")

    @app.put(
        "/control/sigterm",
        response_model=ControlResponse,
        dependencies=[Depends(require_operator)],
    )
    async def self_sigterm() -> ControlResponse:
        context.sequencer.schedule_signal()
        return ControlResponse(message="Sending SIGTERM to own process.")

    # ---------- legacy endpoints ----------

    @app.put(
        "/unhealth",
        response_class=PlainTextResponse,
        dependencies=[Depends(require_operator)],
    )
    async def legacy_unhealth() -> PlainTextResponse:
        context.probes.mark_unhealthy()
        return PlainTextResponse("The application is now down.")

    @app.put(
        "/unreadfor/{seconds}",
        response_class=PlainTextResponse,
        dependencies=[Depends(require_operator)],
    )
    async def legacy_unready(seconds: str) -> PlainTextResponse:
        applied, _ = _unready(context, seconds)
        return PlainTextResponse(f"The application is unavailable for {applied} seconds.")

    @app.put(
        "/stress/cpu",
        response_class=PlainTextResponse,
        dependencies=[Depends(require_operator)],
    )
    async def legacy_stress_cpu() -> PlainTextResponse:
        launch_resource_attack(context, "cpu", {"seconds": 30, "workers": 2})
        return PlainTextResponse("Application under CPU stress.")

    @app.put(
        "/stress/memory",
        response_class=PlainTextResponse,
        dependencies=[Depends(require_operator)],
    )
    async def legacy_stress_memory() -> PlainTextResponse:
        launch_resource_attack(
            context,
            "memory",
            {"seconds": 30, "workers": 1, "mb": 512},
        )
        return PlainTextResponse("Application under memory stress.")

    @app.put(
        "/exit/success",
        response_class=PlainTextResponse,
        dependencies=[Depends(require_operator)],
    )
    async def legacy_exit_success() -> PlainTextResponse:
        context.sequencer.schedule_exit(0)
        return PlainTextResponse("Application exiting successfully.")

    @app.put(
        "/exit/fail",
        response_class=PlainTextResponse,
        dependencies=[Depends(require_operator)],
    )
    async def legacy_exit_fail() -> PlainTextResponse:
        context.sequencer.schedule_exit(1)
        return PlainTextResponse("Application exiting with failure.")

    return app


app = create_app()
