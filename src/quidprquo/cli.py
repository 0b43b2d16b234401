"""Command-line entry point: ``quid-pr-quo serve | pledges <partition>``."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

from quidprquo import __version__
from quidprquo.config import Settings
from quidprquo.escrow.ledger import PledgeLedger
from quidprquo.escrow.partition import PartitionRouter
from quidprquo.server.cli import run_server


def parse_cli_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments."""
    parser = argparse.ArgumentParser(prog="quid-pr-quo", description="PR approval escrow")
    parser.add_argument("--version", action="version", version=__version__)
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the webhook/API server")
    serve.add_argument("--host", default=None, help="Bind host (default: $QPQ_HOST)")
    serve.add_argument("--port", type=int, default=None, help="Bind port (default: $QPQ_PORT)")

    pledges = subparsers.add_parser("pledges", help="Print outstanding pledges as JSON")
    pledges.add_argument("partition", help="Partition key (installation id)")
    return parser.parse_args(argv if argv is not None else sys.argv[1:])


def _configure_logging() -> None:
    level = os.getenv("QPQ_LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


async def _list_pledges(settings: Settings, partition_key: str) -> list[dict[str, object]]:
    partition = PartitionRouter(settings.data_dir).find(partition_key)
    if partition is None:
        return []
    return [pledge.to_dict() for pledge in await PledgeLedger(partition).list_pledges()]


def main(argv: list[str] | None = None) -> None:
    load_dotenv()
    _configure_logging()
    args = parse_cli_args(argv)
    settings = Settings.from_env(base_dir=Path.cwd())

    if args.command == "serve":
        run_server(settings, host=args.host, port=args.port)
        return
    if args.command == "pledges":
        pledges = asyncio.run(_list_pledges(settings, args.partition))
        print(json.dumps(pledges, indent=2))


if __name__ == "__main__":
    main()
