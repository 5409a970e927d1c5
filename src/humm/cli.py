# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Humm CLI: run, serve and health commands.

Usage:
    humm run TYPE [--url URL] [--query TEXT] [--description TEXT] [--selector CSS] [--live] [--params JSON]
    humm serve [--host HOST] [--port PORT]
    humm health
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from .config import HummConfig
from .errors import HummError
from .logging_config import configure
from .tasks import Task, TaskType

logger = logging.getLogger(__name__)


async def _run_task(config: HummConfig, task: Task) -> dict:
    from .orchestrator import create_orchestrator

    orchestrator = create_orchestrator(config)
    try:
        await orchestrator.initialize()
        result = await orchestrator.execute_task(task)
    finally:
        await orchestrator.shutdown()
    return result.to_dict()


def cmd_run(args: argparse.Namespace, config: HummConfig) -> int:
    try:
        parameters = json.loads(args.params) if args.params else {}
    except json.JSONDecodeError as e:
        print(f"--params is not valid JSON: {e.msg}", file=sys.stderr)
        return 2
    if not isinstance(parameters, dict):
        print("--params must be a JSON object", file=sys.stderr)
        return 2

    task = Task(
        type=TaskType(args.type),
        description=args.description or f"{args.type} task",
        user_query=args.query or "",
        target_url=args.url,
        selector=args.selector,
        parameters=parameters,
        enable_live_view=args.live,
    )
    result = asyncio.run(_run_task(config, task))
    print(json.dumps(result, indent=2, ensure_ascii=False, default=str))
    return 0 if result["success"] else 1


def cmd_serve(args: argparse.Namespace, config: HummConfig) -> int:
    import uvicorn

    from .http_api import create_app
    from .orchestrator import create_orchestrator

    app = create_app(create_orchestrator(config))
    logger.info("Serving agent API on %s:%d", args.host, args.port)
    uvicorn.run(app, host=args.host, port=args.port, log_config=None)
    return 0


def cmd_health(args: argparse.Namespace, config: HummConfig) -> int:
    from .gateways.llm import build_language_model_gateway

    gateway = build_language_model_gateway(config.groq_api_key, config.huggingface_api_key)
    results = asyncio.run(gateway.health_check())
    print(json.dumps({"providers": results, "automation_disabled": config.automation_disabled}, indent=2))
    return 0 if any(results.values()) else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Humm browser agent", prog="humm")
    parser.add_argument("-v", "--verbose", action="store_true")
    subparsers = parser.add_subparsers(dest="command", required=True)

    p_run = subparsers.add_parser(
        "run",
        help="Execute one task and print the result as JSON",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""\
examples:
  %(prog)s navigate --url https://example.com
  %(prog)s research --query "latest market trends"
  %(prog)s scrape --url https://example.com --selector h1
  %(prog)s generate_image --query 'bar chart of quarterly revenue'""",
    )
    p_run.add_argument("type", choices=[t.value for t in TaskType], help="Task type")
    p_run.add_argument("--url", type=str, metavar="URL", help="Target URL")
    p_run.add_argument("--query", type=str, metavar="TEXT", help="User query")
    p_run.add_argument("--description", type=str, metavar="TEXT", help="Task description")
    p_run.add_argument("--selector", type=str, metavar="CSS", help="CSS selector for scrape/monitor")
    p_run.add_argument("--live", action="store_true", help="Stream frames during live_demo")
    p_run.add_argument("--params", type=str, metavar="JSON", help="Extra task parameters as a JSON object")

    p_serve = subparsers.add_parser("serve", help="Start the HTTP agent API")
    p_serve.add_argument("--host", type=str, default="127.0.0.1")
    p_serve.add_argument("--port", type=int, default=8000)

    subparsers.add_parser("health", help="Probe language-model providers")
    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    config = HummConfig.from_env()
    level = "DEBUG" if args.verbose else config.log_level
    configure(json_output=config.log_json or args.command == "serve", level=level)

    commands = {"run": cmd_run, "serve": cmd_serve, "health": cmd_health}
    try:
        code = commands[args.command](args, config)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(130)
    except HummError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    sys.exit(code)


if __name__ == "__main__":
    main()
