from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
from dataclasses import asdict
from pathlib import Path

from dotenv import load_dotenv

from newsletter_digester.config import Config, load_config
from newsletter_digester.errors import ConfigurationError, FetchError, ParseError
from newsletter_digester.extract.rules import load_rules_file
from newsletter_digester.jobs.app import (
    build_app_context,
    close_app_context,
    start_background_jobs,
    stop_background_jobs,
)
from newsletter_digester.jobs.scheduler import parse_schedule
from newsletter_digester.logging_setup import setup_logging
from newsletter_digester.normalize import normalize_post
from newsletter_digester.storage.db import CONF_SCHEDULE
from newsletter_digester.storage.types import SOURCE_TYPES, Source


logger = logging.getLogger(__name__)


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="newsletter-digester")
    parser.add_argument(
        "--env",
        default=".env",
        help="Path to .env file (default: .env).",
    )
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("run", help="Run the scheduler until interrupted (default).")
    sub.add_parser("check", help="Run one check of all active sources now.")

    preview = sub.add_parser("preview", help="Dry-run one extraction strategy against a URL.")
    preview.add_argument("type", choices=SOURCE_TYPES)
    preview.add_argument("url")
    preview.add_argument("--rules", type=Path, help="YAML or JSON file with extraction rules.")
    preview.add_argument("--instructions", default=None, help="Extra instructions for html_llm.")

    set_schedule = sub.add_parser("set-schedule", help="Validate and persist the check schedule.")
    set_schedule.add_argument("expr", help='Cron expression, e.g. "0 9 * * *".')

    return parser.parse_args(argv)


async def _run(config: Config) -> None:
    ctx = await build_app_context(config)
    stop = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # not available on Windows event loops
            pass

    try:
        await start_background_jobs(ctx)
        logger.info("digester started")
        await stop.wait()
    finally:
        await stop_background_jobs(ctx)
        await close_app_context(ctx)
        logger.info("digester stopped")


async def _check(config: Config) -> int:
    ctx = await build_app_context(config)
    try:
        status = await ctx.pipeline.run_check()
    finally:
        await close_app_context(ctx)
    if status is None:
        return 1
    print(json.dumps(status.to_dict(), ensure_ascii=False, indent=2))
    return 0


async def _preview(config: Config, args: argparse.Namespace) -> int:
    rules_json = None
    if args.rules is not None:
        rules_json = json.dumps([asdict(r) for r in load_rules_file(args.rules)])

    source = Source(
        id=None,
        url=args.url,
        title=args.url,
        type=args.type,
        extraction_rules=rules_json,
        extraction_instructions=args.instructions,
    )

    ctx = await build_app_context(config)
    try:
        extractor = ctx.router.get(args.type)
        posts = await extractor.extract(source)
    finally:
        await close_app_context(ctx)

    out = []
    for raw in posts:
        post = normalize_post(raw)
        item = asdict(post)
        item["date"] = post.date.isoformat() if post.date else None
        out.append(item)
    print(json.dumps(out, ensure_ascii=False, indent=2))
    return 0


async def _set_schedule(config: Config, expr: str) -> int:
    parse_schedule(expr, config.schedule_timezone)

    ctx = await build_app_context(config)
    try:
        await ctx.storage.set_config(CONF_SCHEDULE, expr.strip())
    finally:
        await close_app_context(ctx)
    print(f"schedule set to {expr.strip()}")
    return 0


def main(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)
    env_path = Path(args.env)
    if env_path.exists():
        load_dotenv(env_path)
    else:
        load_dotenv()

    config = load_config()
    setup_logging(config.log_level, config.log_file)

    command = args.command or "run"
    try:
        if command == "run":
            asyncio.run(_run(config))
            code = 0
        elif command == "check":
            code = asyncio.run(_check(config))
        elif command == "preview":
            code = asyncio.run(_preview(config, args))
        else:
            code = asyncio.run(_set_schedule(config, args.expr))
    except ConfigurationError as e:
        logger.error("%s", e)
        code = 2
    except (FetchError, ParseError) as e:
        logger.error("%s failed: %s", command, e)
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    main()
