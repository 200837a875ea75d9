"""
Runnable script for the blockchain ingestion core.
"""

import argparse
import sys
from blockchain_ingestion.main import main as run_ingestion, check_setup
from blockchain_ingestion.config import settings


def positive_int(value):
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError("must be a positive integer")
    return number


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Blockchain Data Ingestion")
    parser.add_argument(
        "--blocks",
        type=positive_int,
        default=settings.TEST_BLOCK_COUNT,
        help="Number of blocks to ingest, ending at the chain head",
    )
    parser.add_argument(
        "--status",
        action="store_true",
        help="Only report ingestion status and statistics",
    )
    parser.add_argument(
        "--check-setup",
        action="store_true",
        help="Check database and RPC connectivity, then exit",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    if args.check_setup:
        sys.exit(0 if check_setup() else 1)

    run_ingestion(block_count=args.blocks, status_only=args.status, debug=args.debug)
