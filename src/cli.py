from __future__ import annotations

import argparse
import asyncio
import json
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import IO, Any

import structlog

from src.config.settings import Settings, get_settings
from src.coord.service import CoordService
from src.infra.errors import CoordError, RecordValidationError
from src.infra.logging import bind_agent, setup_logging
from src.render.status import render_status
from src.roles.directory import RoleDirectory, RoleKind
from src.store.base import RecordStore
from src.store.factory import open_store
from src.tools.builtins import register_builtins
from src.tools.context import ToolContext
from src.tools.registry import ToolRegistry

logger = structlog.get_logger()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="agentcoord", description="Agent task coordination control plane"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    tools_parser = subparsers.add_parser("tools", help="List tools and their JSON schemas")
    tools_parser.add_argument("--role", choices=[r.value for r in RoleKind])

    call_parser = subparsers.add_parser("call", help="Invoke a tool as an agent")
    call_parser.add_argument("tool")
    call_parser.add_argument("--agent", required=True)
    payload = call_parser.add_mutually_exclusive_group()
    payload.add_argument("--args", dest="payload", default=None, help="JSON object")
    payload.add_argument("--args-file", dest="payload_file", default=None)

    subparsers.add_parser("status", help="Render coordination status as markdown")
    return parser


def build_service(settings: Settings, store: RecordStore) -> CoordService:
    return CoordService(
        store=store,
        roles=RoleDirectory(settings.roles.as_mapping()),
        default_check_interval=settings.loop.check_interval,
        default_loop_iterations=settings.loop.max_iterations,
        default_mission_iterations=settings.mission.max_iterations,
        stall_threshold=settings.loop.stall_threshold,
    )


def run_cli(
    argv: Sequence[str] | None = None,
    *,
    settings: Settings | None = None,
    store: RecordStore | None = None,
    stdout: IO[str] | None = None,
) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    resolved_settings = settings or get_settings()
    out = stdout or sys.stdout
    setup_logging(
        json_output=resolved_settings.log.json_output, log_level=resolved_settings.log.level
    )
    try:
        return asyncio.run(_dispatch(args, resolved_settings, store, out))
    except CoordError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1


def main() -> int:
    return run_cli()


async def _dispatch(
    args: argparse.Namespace,
    settings: Settings,
    store: RecordStore | None,
    out: IO[str],
) -> int:
    logger.debug("cli_command", command=args.command)
    resolved_store = store or await open_store(settings)
    service = build_service(settings, resolved_store)
    registry = ToolRegistry()
    register_builtins(registry, service)
    try:
        if args.command == "tools":
            role = RoleKind(args.role) if args.role else None
            _write_json(out, registry.get_tools_schema(role))
            return 0
        if args.command == "status":
            unit = await service.snapshot()
            out.write(
                render_status(
                    tasks=unit.graph.tasks(),
                    missions=unit.tracker.missions(),
                    plans=unit.sequencer.plans(),
                    loops=unit.loops.states(),
                )
            )
            return 0
        role = service.roles.role_of(args.agent)
        bind_agent(args.agent)
        result = await registry.call(
            args.tool,
            _load_payload(args),
            ToolContext(agent_id=args.agent, role=role.value),
        )
        _write_json(out, result)
        return 1 if "error_code" in result else 0
    finally:
        if store is None:
            await resolved_store.close()


def _load_payload(args: argparse.Namespace) -> dict[str, Any]:
    if args.payload_file:
        raw = Path(args.payload_file).read_text("utf-8")
    elif args.payload:
        raw = args.payload
    else:
        return {}
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise RecordValidationError(f"invalid JSON arguments: {exc}") from exc
    if not isinstance(payload, dict):
        raise RecordValidationError("tool arguments must be a JSON object")
    return payload


def _write_json(out: IO[str], payload: Any) -> None:
    out.write(json.dumps(payload, ensure_ascii=False, indent=2))
    out.write("\n")


if __name__ == "__main__":
    raise SystemExit(main())
