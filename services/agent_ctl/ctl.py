from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path

from agentlink.client import AgentClient
from agentlink.config import AgentConfig
from agentlink.connection import AgentConnection, default_registry
from agentlink.models import ExecuteRecipeParams, StaticEditor, StaticRecipeContext
from shared.errors import AgentLinkError
from shared.paths import default_trace_path


def _debug_enabled(args) -> bool:
    return bool(args.debug) or os.getenv("AGENTLINK_DEBUG", "0") in {"1", "true", "yes"}


def _config(args) -> AgentConfig:
    if args.agent:
        cfg = AgentConfig(executable=args.agent, args=list(args.arg or []), trace_path=default_trace_path())
    else:
        cfg = AgentConfig.from_env()
        if args.arg:
            cfg.args = list(args.arg)
    if args.trace is not None:
        cfg.trace_path = Path(args.trace) if args.trace else None
    if args.timeout is not None:
        cfg.request_timeout = args.timeout if args.timeout > 0 else None
    if args.client_name:
        cfg.client_name = args.client_name
    return cfg


async def _with_agent(args, body, client: AgentClient | None = None) -> None:
    registry = default_registry()
    conn = await registry.start(_config(args), client)
    try:
        await body(conn)
    finally:
        await registry.stop()


def cmd_info(args) -> None:
    async def _body(conn: AgentConnection) -> None:
        assert conn.server_info is not None
        print(json.dumps({"name": conn.server_info.name, "pid": conn.supervisor.pid}))

    asyncio.run(_with_agent(args, _body))


def cmd_recipes(args) -> None:
    async def _body(conn: AgentConnection) -> None:
        for recipe in await conn.server.recipes_list():
            print(f"{recipe.id}\t{recipe.title}")

    asyncio.run(_with_agent(args, _body))


def cmd_execute(args) -> None:
    def _print_transcript(transcript) -> None:
        print(json.dumps(transcript, ensure_ascii=False))

    client = AgentClient(on_transcript=_print_transcript, on_warning=lambda msg: print(f"[WARN] {msg}", file=sys.stderr))

    async def _body(conn: AgentConnection) -> None:
        params = ExecuteRecipeParams(
            id=args.recipe,
            human_chat_input=args.text,
            context=StaticRecipeContext(
                editor=StaticEditor(workspace_root=args.workspace_root),
                first_interaction=True,
            ),
        )
        await conn.server.recipes_execute(params)

    asyncio.run(_with_agent(args, _body, client))


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="agent-ctl")
    p.add_argument("--agent", default=None, help="Agent executable (default: $AGENTLINK_AGENT)")
    p.add_argument("--arg", action="append", default=None, help="Argument passed to the agent; repeatable")
    p.add_argument("--trace", default=None, help="JSON-RPC trace file; empty string disables tracing")
    p.add_argument("--timeout", type=float, default=None, help="Per-request timeout in seconds")
    p.add_argument("--client-name", default=None)
    p.add_argument("--debug", action="store_true")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("info").set_defaults(func=cmd_info)
    sub.add_parser("recipes").set_defaults(func=cmd_recipes)

    ex = sub.add_parser("execute")
    ex.add_argument("recipe", help="Recipe id, e.g. chat-question")
    ex.add_argument("text")
    ex.add_argument("--workspace-root", default=None)
    ex.set_defaults(func=cmd_execute)
    return p


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if _debug_enabled(args) else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        args.func(args)
    except (AgentLinkError, ValueError) as exc:
        print(f"agent-ctl: {exc}", file=sys.stderr)
        return 1
    return 0
