"""Command-line interface for a Credit Coop Secured Line."""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from dataclasses import asdict

from .config import load_config
from .errors import CreditCoopError, WriteRejectedError
from .logging_setup import configure_logging
from .protocols.secured_line import SecuredLine

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse CLI parser."""
    parser = argparse.ArgumentParser(
        prog="credit-coop",
        description="Read and draw down a Credit Coop Secured Line",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: config.yaml in the working directory)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    sub = parser.add_subparsers(dest="command")

    sub.add_parser("positions", help="List open position ids")
    sub.add_parser("fees", help="Show line fees (bps)")
    sub.add_parser("status", help="Show line status code")

    position_parser = sub.add_parser("position", help="Show a credit position")
    position_parser.add_argument("position_id", type=int)

    liquidity_parser = sub.add_parser("liquidity", help="Show a position's liquidity")
    liquidity_parser.add_argument("position_id", type=int)

    borrow_parser = sub.add_parser("borrow", help="Draw down credit from a position")
    borrow_parser.add_argument("position_id", type=int)
    borrow_parser.add_argument(
        "amount", type=int, help="Amount in the token's smallest unit"
    )
    borrow_parser.add_argument(
        "--to", default=None, help="Recipient (default: signer address)"
    )

    return parser


def _print_fields(obj: object) -> None:
    for key, value in asdict(obj).items():  # type: ignore[call-overload]
        print(f"{key}: {value}")


async def _run(args: argparse.Namespace) -> None:
    """Execute the selected command."""
    config = load_config(args.config)
    line = SecuredLine.from_config(config)
    logger.debug("Using %r", line)
    try:
        await _dispatch(line, args)
    finally:
        await line.disconnect()


async def _dispatch(line: SecuredLine, args: argparse.Namespace) -> None:
    if args.command == "positions":
        for position_id in await line.get_open_position_ids():
            print(position_id)
    elif args.command == "position":
        _print_fields(await line.get_position(args.position_id))
    elif args.command == "liquidity":
        _print_fields(await line.get_position_liquidity(args.position_id))
    elif args.command == "fees":
        _print_fields(await line.get_fees())
    elif args.command == "status":
        print(await line.status())
    elif args.command == "borrow":
        print(await line.borrow(args.position_id, args.amount, to=args.to))
    else:
        build_parser().print_help()
        sys.exit(1)


def main() -> None:
    """Entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    configure_logging(args.log_level)
    try:
        asyncio.run(_run(args))
    except WriteRejectedError as e:
        print(f"Rejected: {e.reason}", file=sys.stderr)
        if e.tx_hash:
            print(f"Transaction: {e.tx_hash}", file=sys.stderr)
        sys.exit(2)
    except (CreditCoopError, FileNotFoundError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
