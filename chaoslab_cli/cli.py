from __future__ import annotations

import argparse
import json
import os
import shutil
import sys
import urllib.error
import urllib.request
from typing import Any

DEFAULT_CONSOLE_URL = "http://localhost:3000"
SERVICE_TARGET = "chaoslab_service.console_service:app"
CONTROL_PATHS: dict[str, str] = {
    "unhealthy": "/control/unhealth",
    "healthy": "/control/health",
    "ready": "/control/ready",
}
EXIT_PATHS: dict[str, str] = {
    "success": "/control/exit/success",
    "fail": "/control/exit/fail",
    "sigterm": "/control/sigterm",
}
ATTACK_KINDS = ("cpu", "memory", "disk", "io", "fork", "net")


def _resolve_url(value: str | None) -> str:
    return (value or os.getenv("CHAOSLAB_URL", DEFAULT_CONSOLE_URL)).rstrip("/")


def _resolve_token(value: str | None) -> str | None:
    return value or os.getenv("OPERATOR_TOKEN") or None


def _request_json(
    method: str,
    url: str,
    payload: dict[str, Any] | None = None,
    timeout: int = 30,
    token: str | None = None,
) -> dict[str, Any]:
    data = None
    if payload is not None:
        data = json.dumps(payload).encode("utf-8")
    headers = {"Content-Type": "application/json"}
    if token:
        headers["X-Operator-Token"] = token
    req = urllib.request.Request(
        url,
        data=data,
        method=method,
        headers=headers,
    )
    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            raw = resp.read()
            if not raw:
                return {}
            try:
                return json.loads(raw.decode("utf-8"))
            except json.JSONDecodeError:
                return {"body": raw.decode("utf-8", errors="ignore")}
    except urllib.error.HTTPError as exc:
        body = exc.read().decode("utf-8", errors="ignore")
        detail: str | dict[str, Any] = body
        try:
            detail = json.loads(body)
        except json.JSONDecodeError:
            detail = body or exc.reason
        raise RuntimeError(f"HTTP {exc.code} {detail}") from exc


def _print_json(payload: dict[str, Any]) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True))


def _attack_payload(args: argparse.Namespace) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    for name in ("seconds", "workers", "mb", "concurrency"):
        value = getattr(args, name, None)
        if value is not None:
            payload[name] = value
    return payload


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    from chaoslab_core.config import get_config

    if args.port is not None:
        # The net spike targets the configured port, so keep them in sync.
        os.environ["PORT"] = str(args.port)
    if args.host is not None:
        os.environ["HOST"] = args.host
    get_config.cache_clear()
    config = get_config()
    uvicorn.run(
        SERVICE_TARGET,
        host=config.host,
        port=config.port,
        log_level=args.log_level,
        access_log=args.access_log,
    )
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    _print_json(_request_json("GET", f"{_resolve_url(args.url)}/api/status"))
    return 0


def cmd_config(args: argparse.Namespace) -> int:
    _print_json(_request_json("GET", f"{_resolve_url(args.url)}/api/config"))
    return 0


def cmd_control(args: argparse.Namespace) -> int:
    base = _resolve_url(args.url)
    if args.action == "unready":
        path = f"/control/unreadyfor/{args.seconds}"
    else:
        path = CONTROL_PATHS[args.action]
    response = _request_json("PUT", f"{base}{path}", token=_resolve_token(args.token))
    _print_json(response)
    return 0


def cmd_attack(args: argparse.Namespace) -> int:
    response = _request_json(
        "PUT",
        f"{_resolve_url(args.url)}/attack/{args.kind}",
        payload=_attack_payload(args),
        token=_resolve_token(args.token),
    )
    _print_json(response)
    return 0


def cmd_stop_net(args: argparse.Namespace) -> int:
    response = _request_json(
        "PUT",
        f"{_resolve_url(args.url)}/attack/net/{args.net_id}/stop",
        token=_resolve_token(args.token),
    )
    _print_json(response)
    return 0


def cmd_exit(args: argparse.Namespace) -> int:
    response = _request_json(
        "PUT",
        f"{_resolve_url(args.url)}{EXIT_PATHS[args.mode]}",
        token=_resolve_token(args.token),
    )
    _print_json(response)
    return 0


def cmd_doctor(args: argparse.Namespace) -> int:
    from chaoslab_core.config import Config

    checks: list[tuple[str, bool, str]] = []

    available = shutil.which("stress") is not None
    checks.append(("stress", available, "ok" if available else "missing"))

    try:
        config = Config.from_env()
    except ValueError as exc:
        checks.append(("config", False, str(exc)))
    else:
        checks.append(("config", True, f"port={config.port}"))
        checks.append(("SAFE_MODE", True, str(config.safe_mode).lower()))
        checks.append(("OPERATOR_TOKEN", True, "set" if config.requires_token else "unset"))

    ok = True
    for name, passed, info in checks:
        status = "ok" if passed else "fail"
        if not passed:
            ok = False
        print(f"{name}: {status} ({info})")

    return 0 if ok else 1


def _add_client_args(parser: argparse.ArgumentParser, *, token: bool = True) -> None:
    parser.add_argument("--url", help="Console base URL (default $CHAOSLAB_URL)")
    if token:
        parser.add_argument("--token", help="Operator token (default $OPERATOR_TOKEN)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="chaoslab")
    subparsers = parser.add_subparsers(dest="command")

    serve_parser = subparsers.add_parser("serve", help="Run the chaos console")
    serve_parser.add_argument("--host")
    serve_parser.add_argument("--port", type=int)
    serve_parser.add_argument("--log-level", default="info")
    serve_parser.add_argument(
        "--access-log",
        action=argparse.BooleanOptionalAction,
        default=False,
    )
    serve_parser.set_defaults(func=cmd_serve)

    status_parser = subparsers.add_parser("status", help="Show probes and active jobs")
    _add_client_args(status_parser, token=False)
    status_parser.set_defaults(func=cmd_status)

    config_parser = subparsers.add_parser("config", help="Show effective limits")
    _add_client_args(config_parser, token=False)
    config_parser.set_defaults(func=cmd_config)

    control_parser = subparsers.add_parser("control", help="Flip liveness/readiness")
    control_parser.add_argument(
        "action",
        choices=sorted([*CONTROL_PATHS, "unready"]),
    )
    control_parser.add_argument("--seconds", type=int, default=60)
    _add_client_args(control_parser)
    control_parser.set_defaults(func=cmd_control)

    attack_parser = subparsers.add_parser("attack", help="Start a chaos job")
    attack_parser.add_argument("kind", choices=ATTACK_KINDS)
    attack_parser.add_argument("--seconds", type=int)
    attack_parser.add_argument("--workers", type=int)
    attack_parser.add_argument("--mb", type=int)
    attack_parser.add_argument("--concurrency", type=int)
    _add_client_args(attack_parser)
    attack_parser.set_defaults(func=cmd_attack)

    stop_parser = subparsers.add_parser("stop-net", help="Stop a running net spike")
    stop_parser.add_argument("net_id")
    _add_client_args(stop_parser)
    stop_parser.set_defaults(func=cmd_stop_net)

    exit_parser = subparsers.add_parser("exit", help="Terminate the console process")
    exit_parser.add_argument("mode", choices=sorted(EXIT_PATHS))
    _add_client_args(exit_parser)
    exit_parser.set_defaults(func=cmd_exit)

    doctor_parser = subparsers.add_parser("doctor", help="Check local prerequisites")
    doctor_parser.set_defaults(func=cmd_doctor)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "command", None):
        parser.print_help()
        return 2
    try:
        return args.func(args)
    except Exception as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
