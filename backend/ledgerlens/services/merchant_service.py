"""Backfill missing merchant names with the LLM, in batches."""

import json
import logging
import time
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from ledgerlens.models.transaction import Transaction
from ledgerlens.services.llm_client import GeminiClient, LLMError, extract_json_object

logger = logging.getLogger(__name__)


BATCH_SIZE = 50


def build_merchant_prompt(rows: List[Transaction]) -> str:
    payload = json.dumps(
        [
            {
                "id": str(t.id),
                "transaction_name": t.transaction_name,
                "notes": t.notes,
                "category": t.category,
            }
            for t in rows
        ],
        indent=2,
    )

    return f"""You are helping to extract merchant names from transaction data.

Below is a JSON array of transactions. For each transaction, analyze the transaction_name, notes, and category fields to identify the merchant or business name.

TRANSACTIONS:
{payload}

TASK:
Extract the merchant/business name for each transaction. Look for:
- Brand names (e.g., "Grab", "Tokopedia", "Starbucks", "McDonald's")
- Business names in the transaction_name or notes
- Common merchants associated with the category

Return a JSON object mapping transaction IDs to merchant names:
{{
  "transaction_id_1": "Merchant Name",
  "transaction_id_2": "Merchant Name",
  ...
}}

If you cannot identify a merchant for a transaction, use null for that ID.
Only return the JSON object, no other text."""


def extract_merchants(llm_client: GeminiClient, rows: List[Transaction]) -> Dict[str, Optional[str]]:
    text = llm_client.generate_text(build_merchant_prompt(rows))
    merchant_map = extract_json_object(text)
    if not isinstance(merchant_map, dict):
        raise LLMError("Merchant response is not a JSON object")
    return merchant_map


def backfill_merchants(
    db: Session,
    llm_client: GeminiClient,
    user_id: Optional[UUID] = None,
    batch_size: int = BATCH_SIZE,
    pause_seconds: float = 0.0,
) -> Dict[str, Any]:
    """
    Fill merchant on rows where it is NULL.

    A failed batch is logged and skipped; the run continues with the next one.

    Returns:
        {"processed": int, "updated": int, "failed_batches": int}
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be positive, got {batch_size}")

    query = db.query(Transaction).filter(Transaction.merchant.is_(None))
    if user_id is not None:
        query = query.filter(Transaction.user_id == user_id)
    rows = query.order_by(Transaction.created_at.asc()).all()

    summary = {"processed": len(rows), "updated": 0, "failed_batches": 0}
    if not rows:
        logger.info("No transactions found without merchant data.")
        return summary

    for start in range(0, len(rows), batch_size):
        batch = rows[start:start + batch_size]
        by_id = {str(t.id): t for t in batch}
        logger.info(f"Processing batch {start // batch_size + 1} ({len(batch)} transactions)")

        try:
            merchant_map = extract_merchants(llm_client, batch)
        except LLMError as e:
            logger.error(f"Error processing batch: {e}")
            summary["failed_batches"] += 1
            continue

        for transaction_id, merchant in merchant_map.items():
            tx = by_id.get(str(transaction_id))
            if tx is None or not merchant or merchant == "null":
                continue
            tx.merchant = str(merchant).strip()
            summary["updated"] += 1

        db.commit()

        if pause_seconds and start + batch_size < len(rows):
            time.sleep(pause_seconds)

    logger.info(f"Merchant backfill complete: {summary}")
    return summary
