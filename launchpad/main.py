#!/usr/bin/env python
"""
Command-line driver for the taxed token launchpad.

Runs the taxed and soulbound workflows end to end against the configured
cluster, or inspects a single token account.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

from loguru import logger
from solders.keypair import Keypair

from launchpad.config import LOG_LEVEL, NETWORK, RPC_URL, WALLET_PRIVATE_KEY
from launchpad.solana.models import MintKind, OperationResult
from launchpad.solana.sequencer import LaunchpadSequencer
from launchpad.solana.transport import KeypairWallet, RpcTransport


def setup_logging(log_dir: str = "logs"):
    """Configure structured logging with loguru."""
    Path(log_dir).mkdir(exist_ok=True)
    logger.remove()  # Remove default handler
    logger.add(
        f"{log_dir}/launchpad_{{time}}.log",
        rotation="1 day",
        retention="14 days",
        level=LOG_LEVEL,
        format="{time:YYYY-MM-DD HH:mm:ss} | {level} | {message} | {extra}",
        serialize=True,  # JSON formatting for structured logs
    )

    # Also send logs to stdout
    logger.add(
        sys.stdout,
        level=LOG_LEVEL,
        format="{time:YYYY-MM-DD HH:mm:ss} | {level} | {message}"
    )

    # Redirect httpx / solana-py loggers to loguru
    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)


class InterceptHandler(logging.Handler):
    """Intercept standard logging and redirect to loguru."""
    def emit(self, record):
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Taxed token launchpad client")
    parser.add_argument("--rpc-url", type=str, default=RPC_URL, help="Cluster JSON-RPC endpoint")
    subparsers = parser.add_subparsers(dest="command", required=True)

    for name, help_text in (
        ("taxed-demo", "Create a taxed mint, fund the wallet, transfer and withdraw fees"),
        ("soulbound-demo", "Create a soulbound mint, fund the wallet and attempt a transfer"),
    ):
        demo = subparsers.add_parser(name, help=help_text)
        demo.add_argument("--recipient", type=str, default=None, help="Recipient wallet (random if omitted)")
        demo.add_argument("--mint-amount", type=int, default=1_000_000, help="Base units minted to the wallet")
        demo.add_argument("--amount", type=int, default=100_000, help="Base units to transfer")

    inspect = subparsers.add_parser("inspect", help="Show balance and withheld fee of a token account")
    inspect.add_argument("address", type=str, help="Token account address")
    return parser


def report(result: OperationResult):
    if result.ok:
        print(f"[ok] {result.action}: {result.detail}")
    else:
        print(f"[{result.error_kind}] {result.action}: {result.message}")


async def run_workflow(sequencer: LaunchpadSequencer, kind: MintKind, recipient: str, mint_amount: int, amount: int) -> bool:
    """
    Run the create / provision / mint / transfer sequence for one mint kind.

    Returns:
        True if the workflow behaved as expected for the mint kind
    """
    for step in (
        lambda: sequencer.create_mint(kind),
        lambda: sequencer.ensure_associated_account(),
        lambda: sequencer.mint_tokens(mint_amount),
    ):
        result = await step()
        report(result)
        if not result.ok:
            return False

    transfer = await sequencer.transfer_with_fee(recipient, amount)
    report(transfer)
    report(await sequencer.inspect_account())

    if kind == MintKind.SOULBOUND:
        return not transfer.ok and transfer.error_kind == "SubmissionRejected"

    if not transfer.ok:
        return False
    payer_account = sequencer.tracker.account_for(str(sequencer.wallet.public_key))
    withdraw = await sequencer.withdraw_withheld_fees(payer_account.address)
    report(withdraw)
    return transfer.detail.get("fee_verified", False) and withdraw.ok


async def main(argv: Optional[List[str]] = None) -> int:
    """Parse arguments, connect the wallet and run the requested command."""
    args = build_parser().parse_args(argv)
    setup_logging()

    logger.info(f"Starting launchpad client on {NETWORK} ({args.rpc_url})")
    transport = RpcTransport(rpc_url=args.rpc_url)
    sequencer = LaunchpadSequencer(transport)

    try:
        if WALLET_PRIVATE_KEY:
            sequencer.connect_wallet(KeypairWallet.from_base58(WALLET_PRIVATE_KEY, transport))
        else:
            logger.warning("WALLET_PRIVATE_KEY is not set; actions will fail with NotConnected")

        if args.command == "inspect":
            result = await sequencer.inspect_account(args.address)
            report(result)
            return 0 if result.ok else 1

        kind = MintKind.TAXED if args.command == "taxed-demo" else MintKind.SOULBOUND
        recipient = args.recipient or str(Keypair().pubkey())
        passed = await run_workflow(sequencer, kind, recipient, args.mint_amount, args.amount)
        print("Workflow " + ("behaved as expected" if passed else "did not behave as expected"))
        return 0 if passed else 1
    finally:
        await transport.close()


def run():
    sys.exit(asyncio.run(main()))
