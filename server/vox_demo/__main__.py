"""Command line entry point: ``python -m vox_demo <command>``."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from .app_state import state
from .config import config

logger = logging.getLogger("vox_demo")


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="vox_demo",
        description="Maintenance tools for the shared demo account.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the maintenance gateway")
    serve.add_argument("--host", default=config.host)
    serve.add_argument("--port", type=int, default=config.port)

    reset = sub.add_parser("reset", help="Force a full demo reset with the admin key")
    reset.add_argument("--no-sweep", action="store_true", help="Skip sweeping untracked demo documents")

    purge = sub.add_parser("purge", help="Delete tracking records older than the retention window")
    purge.add_argument("--days", type=int, default=config.retention_days)

    sub.add_parser("setup-tracking", help="Create the tracking collection and schema")
    return parser.parse_args(argv)


async def _run(args: argparse.Namespace) -> dict:
    housekeeping = state.housekeeping()
    try:
        if args.command == "reset":
            report = await housekeeping.admin_reset_demo_user(sweep=not args.no_sweep)
            return report.model_dump()
        if args.command == "purge":
            report = await housekeeping.purge_stale_changes(args.days)
            return report.model_dump()
        return {"created": await housekeeping.setup_tracking_store()}
    finally:
        await state.close()


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(name)s] %(levelname)s: %(message)s")

    if args.command == "serve":
        import uvicorn

        uvicorn.run("vox_demo.app:app", host=args.host, port=args.port)
        return 0

    if not state.has_admin_key:
        logger.error("VOX_BACKEND_API_KEY must be set for %s", args.command)
        return 2

    result = asyncio.run(_run(args))
    print(json.dumps(result, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
