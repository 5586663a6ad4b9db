"""Command line entry point.

Usage:
    python -m accumulation_tracker run
    python -m accumulation_tracker detect
    python -m accumulation_tracker discover
    python -m accumulation_tracker process-alerts
    python -m accumulation_tracker broad-monitor
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import sys
from collections.abc import Sequence
from typing import Any

from accumulation_tracker.config import get_settings
from accumulation_tracker.pipeline import Pipeline

logger = logging.getLogger("accumulation_tracker")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="accumulation_tracker",
        description="Token accumulation detection and alerting",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        default=None,
        help="Format alerts without sending them (overrides DRY_RUN)",
    )
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("run", help="Run all recurring jobs until interrupted")
    sub.add_parser("detect", help="Run one detection pass and print its summary")
    sub.add_parser("discover", help="Register tokens seen in recent transactions")
    sub.add_parser("process-alerts", help="Retry delivery of PENDING alerts")
    sub.add_parser("broad-monitor", help="Scan large transfers across networks once")
    return parser


async def _run_command(command: str, pipeline: Pipeline) -> dict[str, Any] | None:
    if command == "run":
        await pipeline.run()
        return None

    async with pipeline:
        if command == "detect":
            return (await pipeline.run_detection()).to_dict()
        if command == "discover":
            discovery = await pipeline.run_discovery()
            return {"success": True, "message": "Token discovery completed", **discovery.to_dict()}
        if command == "process-alerts":
            return {"success": True, **(await pipeline.process_pending_alerts()).to_dict()}
        if command == "broad-monitor":
            return {"success": True, **(await pipeline.run_broad_monitoring()).to_dict()}
    raise ValueError(f"Unknown command: {command}")


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    settings = get_settings()
    logging.basicConfig(
        level=settings.get_logging_level(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info("Configuration: %s", json.dumps(settings.redacted_summary()))

    pipeline = Pipeline(settings, dry_run=args.dry_run)
    try:
        result = asyncio.run(_run_command(args.command, pipeline))
    except KeyboardInterrupt:
        return 0
    except Exception as e:
        logger.error("Command %s failed: %s", args.command, e)
        print(json.dumps({"success": False, "message": str(e)}))
        return 1

    if result is not None:
        with contextlib.suppress(BrokenPipeError):
            print(json.dumps(result, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
