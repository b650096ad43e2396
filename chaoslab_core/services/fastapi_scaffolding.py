from __future__ import annotations

import os
import re
import uuid
from typing import Callable, Iterable

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response

PROBE_PATHS: tuple[str, ...] = ("/health", "/ready")
GATE_EXEMPT_PREFIXES: tuple[str, ...] = ("/api/", "/control/")
# Stopping a running net spike must work while unhealthy.
_NET_STOP_PATH = re.compile(r"^/attack/net/[^/]+/stop$")


def cors_origins(
    *,
    raw: str | None = None,
    env: str | None = None,
    default_allow_all: bool = False,
) -> list[str]:
    raw_value = raw if raw is not None else os.getenv("CORS_ALLOW_ORIGINS", "")
    if raw_value:
        return [origin.strip() for origin in raw_value.split(",") if origin.strip()]
    if default_allow_all:
        return ["*"]
    env_value = (env or os.getenv("ENV", "dev")).lower()
    if env_value in {"dev", "local", "test"}:
        return ["*"]
    return []


def apply_cors_middleware(
    app: FastAPI,
    *,
    allow_credentials: bool = False,
    allow_methods: list[str] | None = None,
    allow_headers: list[str] | None = None,
    raw_origins: str | None = None,
    env: str | None = None,
    default_allow_all: bool = False,
) -> list[str]:
    origins = cors_origins(
        raw=raw_origins,
        env=env,
        default_allow_all=default_allow_all,
    )
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=allow_credentials,
            allow_methods=allow_methods or ["*"],
            allow_headers=allow_headers or ["*"],
        )
    return origins


def correlation_id(header_value: str | None) -> str:
    if header_value:
        return header_value
    return str(uuid.uuid4())


def add_correlation_id_middleware(app: FastAPI) -> None:
    @app.middleware("http")
    async def _add_correlation_id(request: Request, call_next):
        corr = correlation_id(request.headers.get("x-correlation-id"))
        request.state.correlation_id = corr
        response = await call_next(request)
        response.headers["x-correlation-id"] = corr
        return response


def gate_exempt(
    path: str,
    *,
    exact: Iterable[str] = PROBE_PATHS,
    prefixes: Iterable[str] = GATE_EXEMPT_PREFIXES,
) -> bool:
    if path in tuple(exact):
        return True
    if any(path.startswith(prefix) for prefix in prefixes):
        return True
    return _NET_STOP_PATH.match(path) is not None


def add_unhealthy_gate_middleware(
    app: FastAPI,
    is_healthy: Callable[[], bool],
) -> None:
    """Answer 503 with an empty body while the process reports unhealthy.

    Probes, the status/control API and the net spike stop route stay
    reachable so the state can be inspected and reversed.
    """

    @app.middleware("http")
    async def _unhealthy_gate(request: Request, call_next):
        if not is_healthy() and not gate_exempt(request.url.path):
            return Response(content=b"", status_code=503)
        return await call_next(request)
