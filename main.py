#!/usr/bin/env python3
"""Entry point for the Safe CoW swap workflow.

Loads configuration from the environment (and a ``.env`` file), runs the
selected part of the workflow and turns its result into an exit code.
"""

import argparse
import asyncio
import logging
import os
import sys

from dotenv import load_dotenv

# Configure logging before any other imports create loggers
def setup_logging(level: str = "INFO") -> None:
    """Configure logging for the application.

    Args:
        level: Logging level as string (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    log_level: int = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

# Get logger for this module
logger = logging.getLogger(__name__)

from safe_cow_swap.exceptions import ConfigurationError
from safe_cow_swap.models import WorkflowResult
from safe_cow_swap.workflow import WorkflowMode, run_swap


def report(result: WorkflowResult) -> int:
    """Log the outcome of a run and return the process exit code."""
    if isinstance(result.error, ConfigurationError):
        logger.error("Please check your environment variables:")
        logger.error("  - SAFE_ADDRESS: Address of the Safe wallet")
        logger.error("  - SIGNER_PRIVATE_KEY: Private key of a Safe owner")
        logger.error("  - RPC_URL: RPC endpoint of the chain node")
        logger.error("  - NETWORK: mainnet, sepolia or gnosis (default: mainnet)")
        return 1

    if result.error is not None:
        logger.error(f"Fatal Error ({result.error_kind}): {result.error}")
        return 1

    summary = result.to_dict()
    logger.info("=== Summary ===")
    for key in ("batch_tx_hash", "quote", "order_uid", "presign_tx_hash", "order_status", "trades"):
        if summary[key] is not None:
            logger.info(f"  {key}: {summary[key]}")
    return 0


async def main() -> None:
    """Main entry point for the Safe CoW swap.

    Parses startup arguments, loads configuration from environment,
    runs the workflow and exits with 0 on success, 1 on failure.
    """
    # Load environment variables from .env file
    load_dotenv()

    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        description="Wrap, approve and swap on CoW Protocol from a Safe",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""Environment Variables:
  SAFE_ADDRESS          - Address of the Safe wallet
  SIGNER_PRIVATE_KEY    - Private key of a Safe owner
  RPC_URL               - RPC endpoint of the chain node
  NETWORK               - Target network (default: mainnet)
  INPUT_AMOUNT          - Wei to wrap and sell (default: 0.02 ETH)
  BUY_TOKEN             - Token to buy (default: per network)
  SLIPPAGE_BPS          - Slippage tolerance in bps (default: 50)
  LOG_LEVEL             - Logging level (can be overridden with --log-level)
        """
    )
    parser.add_argument(
        "--mode",
        default=WorkflowMode.SWAP.value,
        choices=[mode.value for mode in WorkflowMode],
        help="deposit: wrap + approve only; quote: quote only; swap: full presign swap (default)"
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("LOG_LEVEL", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set the logging level (default: INFO)"
    )
    args: argparse.Namespace = parser.parse_args()

    setup_logging(args.log_level)

    try:
        result = await run_swap(WorkflowMode(args.mode))
    except KeyboardInterrupt:
        logger.info("\nReceived interrupt signal, shutting down...")
        sys.exit(130)

    sys.exit(report(result))


if __name__ == "__main__":
    # Run the main async function
    asyncio.run(main())
