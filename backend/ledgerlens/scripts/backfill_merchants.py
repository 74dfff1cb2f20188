"""
Fill in missing merchant names on stored transactions.

This script will:
1. Find transactions whose merchant is NULL (optionally for one user)
2. Send them to Gemini in batches and ask for an {id: merchant} mapping
3. Save every merchant the model could identify

Usage (from backend/):
    python -m ledgerlens.scripts.backfill_merchants [--user-id UUID] [--batch-size 50]
"""

import argparse
import logging
import sys
from uuid import UUID

from ledgerlens.core.config import settings
from ledgerlens.core.database import SessionLocal
from ledgerlens.core.logging_config import setup_logging
from ledgerlens.models import enrichment_log, prompt_draft, statement, transaction, user  # noqa: F401
from ledgerlens.services.llm_client import GeminiClient
from ledgerlens.services.merchant_service import BATCH_SIZE, backfill_merchants

logger = logging.getLogger(__name__)


def positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be a positive integer, got {value}")
    return number


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Backfill missing transaction merchants with Gemini")
    parser.add_argument("--user-id", type=UUID, default=None, help="Only this user's transactions")
    parser.add_argument("--batch-size", type=positive_int, default=BATCH_SIZE, help="Transactions per LLM call")
    parser.add_argument("--pause", type=float, default=1.0, help="Seconds to wait between batches")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    setup_logging(settings.LOG_LEVEL)

    if not settings.GEMINI_API_KEY:
        logger.error("GEMINI_API_KEY is not set")
        return 1

    client = GeminiClient(
        api_key=settings.GEMINI_API_KEY,
        model=settings.GEMINI_MODEL,
        base_url=settings.GEMINI_BASE_URL,
        timeout=settings.GEMINI_TIMEOUT,
    )

    db = SessionLocal()
    try:
        summary = backfill_merchants(
            db,
            client,
            user_id=args.user_id,
            batch_size=args.batch_size,
            pause_seconds=args.pause,
        )
    finally:
        db.close()

    logger.info(f"Processed: {summary['processed']}")
    logger.info(f"Updated: {summary['updated']}")
    logger.info(f"Failed batches: {summary['failed_batches']}")
    return 1 if summary["failed_batches"] else 0


if __name__ == "__main__":
    sys.exit(main())
