"""Command-line interface for the yield orchestrator."""
from __future__ import annotations

import argparse
import asyncio
import sys

from .config import load_config
from .errors import OrchestratorError
from .logging_setup import configure_logging
from .models import ActionKind
from .services import Orchestrator


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse CLI parser."""
    parser = argparse.ArgumentParser(
        prog="yield-orchestrator",
        description="Multi-protocol DeFi yield discovery and action builder",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: config.yaml in project root)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    sub = parser.add_subparsers(dest="command")

    opp_parser = sub.add_parser("opportunities", help="Discover yield opportunities")
    opp_parser.add_argument(
        "--top", type=int, default=10, help="Show the N highest-APR entries"
    )

    pos_parser = sub.add_parser("positions", help="Read wallet positions")
    pos_parser.add_argument(
        "wallet",
        nargs="?",
        default=None,
        help="Wallet address (default: every configured wallet)",
    )

    build = sub.add_parser(
        "build", help="Validate, encode, dry-run and estimate an action (never sends)"
    )
    build.add_argument("protocol")
    build.add_argument("kind", choices=[k.value for k in ActionKind])
    build.add_argument("wallet")
    build.add_argument("--from-token", default="")
    build.add_argument("--to-token", default="")
    build.add_argument("--amount", type=int, required=True, help="Amount in base units")
    build.add_argument("--amount-usd", type=float, required=True)
    build.add_argument("--slippage-bps", type=int, default=None)
    build.add_argument("--deadline-minutes", type=int, default=None)

    return parser


async def _build(orchestrator: Orchestrator, args: argparse.Namespace) -> None:
    try:
        action = orchestrator.make_action(
            args.kind,
            args.protocol,
            args.from_token,
            args.to_token,
            args.amount,
            args.amount_usd,
            slippage_bps=args.slippage_bps,
            deadline_minutes=args.deadline_minutes,
        )
    except ValueError as e:
        print(f"❌ Invalid action: {e}")
        sys.exit(2)

    pipeline = orchestrator.plan(action, args.wallet)
    try:
        await pipeline.prepare()
    except OrchestratorError as e:
        print(f"❌ {pipeline.state.value}: {e}")
        sys.exit(2)

    tx = pipeline.transaction
    dry_run = pipeline.dry_run_result
    print(f"State:   {pipeline.state.value}")
    print(f"To:      {tx.to}")
    print(f"Data:    {tx.data}")
    print(f"Gas:     {tx.gas}")
    if dry_run.success:
        print("Dry run: ✅ ok")
    else:
        print(f"Dry run: ⚠️ reverted ({dry_run.error})")


async def _run(args: argparse.Namespace) -> None:
    """Execute the selected command."""
    configure_logging(args.log_level)
    config = load_config(args.config)
    orchestrator = Orchestrator(config)

    if args.command == "opportunities":
        opportunities = await orchestrator.discover()
        print(orchestrator.format_opportunities(opportunities, top=args.top))
    elif args.command == "positions":
        wallets = [args.wallet] if args.wallet else [w.address for w in config.wallets]
        for wallet in wallets:
            positions = await orchestrator.positions(wallet)
            print(orchestrator.format_positions(wallet, positions))
    elif args.command == "build":
        await _build(orchestrator, args)
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

    asyncio.run(_run(args))
