"""
Explorer RPC - Command Line Interface.

============================================================
RESPONSIBILITY
============================================================
Operator entry point for the explorer data layer.

- Resolves search queries against a live node
- Fetches normalized entities and prints them as JSON
- Serves the explorer HTTP API

============================================================
USAGE
============================================================
    python -m explorer_rpc search "#12034"
    python -m explorer_rpc status --rpc-base http://node:8080
    python -m explorer_rpc blocks --limit 10
    python -m explorer_rpc serve --port 8081

============================================================
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from aiohttp import web
from dotenv import load_dotenv

from explorer_rpc.api import ExplorerEncoder, create_explorer_app
from explorer_rpc.config import GatewayConfig
from explorer_rpc.exceptions import ConfigurationError
from explorer_rpc.gateway import GatewayProxy
from explorer_rpc.resolver import EntityResolver
from explorer_rpc.service import ExplorerService


logger = logging.getLogger("explorer_rpc.cli")


# ============================================================
# ARGUMENT PARSER
# ============================================================

def create_parser() -> argparse.ArgumentParser:
    """
    Create argument parser for CLI.

    Returns:
        Configured ArgumentParser
    """
    parser = argparse.ArgumentParser(
        prog="explorer-rpc",
        description="IPPAN explorer RPC normalization and search layer",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Resolve a search query
  python -m explorer_rpc search 0xABCDEF0123456789abcdef0123456789ABCDEF01

  # Fetch a round by number
  python -m explorer_rpc round 12034

  # Recent blocks (falls back to transaction-derived blocks)
  python -m explorer_rpc blocks --limit 10

  # Run the HTTP API against a specific node
  python -m explorer_rpc serve --rpc-base http://node:8080 --port 8081
        """,
    )

    # --------------------------------------------------------
    # Connection Options
    # --------------------------------------------------------
    conn_group = parser.add_argument_group("Connection Options")

    conn_group.add_argument(
        "--rpc-base",
        type=str,
        default=None,
        help="Upstream node RPC base URL (overrides IPPAN_RPC_BASE_URL)",
    )

    # --------------------------------------------------------
    # Logging Options
    # --------------------------------------------------------
    log_group = parser.add_argument_group("Logging Options")

    log_group.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="WARNING",
        help="Logging level (default: WARNING)",
    )

    parser.add_argument(
        "--version",
        action="version",
        version="%(prog)s 1.0.0",
    )

    # --------------------------------------------------------
    # Commands
    # --------------------------------------------------------
    commands = parser.add_subparsers(dest="command", metavar="COMMAND")
    commands.required = True

    search = commands.add_parser("search", help="Resolve a search query to an explorer route")
    search.add_argument("query", help="Hash, height, #round, HT-<hash>, address or handle")

    commands.add_parser("status", help="Normalized node status snapshot")

    blocks = commands.add_parser("blocks", help="Recent blocks")
    blocks.add_argument("--limit", type=int, default=None, help="Number of blocks (max 25)")

    tx = commands.add_parser("tx", help="Fetch one transaction")
    tx.add_argument("id", help="Transaction hash")

    block = commands.add_parser("block", help="Fetch one block")
    block.add_argument("id", help="Block hash or height")

    round_ = commands.add_parser("round", help="Fetch one round")
    round_.add_argument("id", help="Round number")

    serve = commands.add_parser("serve", help="Run the explorer HTTP API")
    serve.add_argument("--host", type=str, default="127.0.0.1", help="Bind address")
    serve.add_argument("--port", type=int, default=8081, help="Bind port")

    return parser


# ============================================================
# COMMANDS
# ============================================================

def _print_json(data) -> None:
    print(json.dumps(data, cls=ExplorerEncoder, indent=2))


async def run_command(args: argparse.Namespace, config: GatewayConfig) -> int:
    """
    Run one lookup command and print its JSON result.

    Returns:
        0 when the entity (or resolution) was found, 1 otherwise
    """
    async with GatewayProxy(config) as gateway:
        service = ExplorerService(gateway)

        if args.command == "search":
            resolution = await EntityResolver(gateway).resolve(args.query)
            _print_json(resolution)
            return 0 if resolution.is_redirect else 1

        if args.command == "blocks":
            listing = await service.list_blocks(args.limit)
            _print_json(listing)
            return 0 if listing.ok else 1

        if args.command == "status":
            lookup = await service.get_status()
        elif args.command == "tx":
            lookup = await service.get_transaction(args.id)
        elif args.command == "block":
            lookup = await service.get_block(args.id)
        elif args.command == "round":
            lookup = await service.get_round(args.id)
        else:
            raise ValueError(f"Unknown command: {args.command}")

        _print_json(lookup)
        return 0 if lookup.found else 1


def serve(config: GatewayConfig, host: str, port: int) -> None:
    """Run the HTTP API until interrupted."""
    gateway = GatewayProxy(config)
    logger.info(f"Serving explorer API on http://{host}:{port} (upstream {config.rpc_base})")
    web.run_app(create_explorer_app(gateway), host=host, port=port, print=None)


# ============================================================
# MAIN ENTRY POINT
# ============================================================

def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Args:
        argv: Command line arguments (default: sys.argv[1:])

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    load_dotenv()
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s | %(levelname)-5s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    try:
        config = GatewayConfig.load(rpc_base=args.rpc_base)
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    if args.command == "serve":
        serve(config, args.host, args.port)
        return 0

    try:
        return asyncio.run(run_command(args, config))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130


# ============================================================
# MODULE EXECUTION
# ============================================================

if __name__ == "__main__":
    sys.exit(main())
