"""
ledgerlens/services/receipt_service.py

Receipt ingestion with reconciliation against statement transactions.

Per receipt:
1. Idempotency: a stored row with the same (user_id, external_id) means duplicate, skip.
2. Reconciliation: the first statement-sourced row with the same amount,
   dated within +/- RECEIPT_MATCH_WINDOW_DAYS, that is not matched yet.
3. A match stores the receipt as status=duplicate with match_id set, and
   backfills the statement row's merchant when it is empty.
4. The receipt row is inserted either way.

The insert runs inside a SAVEPOINT. The unique (user_id, external_id)
constraint turns a concurrent second insert into an IntegrityError, which is
counted as a duplicate (insert ... on conflict do nothing).
"""

import json
import logging
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledgerlens.core.config import settings
from ledgerlens.models.transaction import Transaction
from ledgerlens.schemas.receipt import ReceiptPayload
from ledgerlens.schemas.transactions import TransactionSource, TransactionStatus
from ledgerlens.services.transaction_service import build_transaction
from ledgerlens.utils.date_helpers import reconciliation_window

logger = logging.getLogger(__name__)


def normalize_receipt_payload(body: Any) -> List[Any]:
    """Accept a list, {"receipts": [...]} or a single receipt object."""
    if isinstance(body, list):
        return body
    if isinstance(body, dict) and isinstance(body.get("receipts"), list):
        return body["receipts"]
    return [body]


def find_reconciliation_match(
    db: Session,
    user_id: UUID,
    receipt: ReceiptPayload,
    window_days: Optional[int] = None,
) -> Optional[Transaction]:
    """
    First unmatched statement transaction with the same amount dated within
    the window around the receipt date.

    A statement row counts as matched when it has its own match_id or when
    another row already points at it. Ties go to the earliest created row;
    there is no scoring.
    """
    window_days = settings.RECEIPT_MATCH_WINDOW_DAYS if window_days is None else window_days
    start, end = reconciliation_window(receipt.date, window_days)

    already_matched = (
        select(Transaction.match_id)
        .where(Transaction.user_id == user_id, Transaction.match_id.isnot(None))
    )

    return (
        db.query(Transaction)
        .filter(
            Transaction.user_id == user_id,
            Transaction.source == TransactionSource.STATEMENT.value,
            Transaction.amount == receipt.amount,
            Transaction.date >= start,
            Transaction.date <= end,
            Transaction.match_id.is_(None),
            Transaction.id.not_in(already_matched),
        )
        .order_by(Transaction.created_at.asc(), Transaction.id.asc())
        .first()
    )


def build_receipt_notes(receipt: ReceiptPayload) -> Optional[str]:
    if receipt.items:
        return f"Items: {json.dumps(receipt.items, default=str)}\n{receipt.notes or ''}"
    return receipt.notes


def _ingest_one(db: Session, receipt: ReceiptPayload, user_id: UUID) -> str:
    """
    Store one receipt. Returns "success" or "duplicate".

    Raises:
        ValueError / SQLAlchemyError: The row could not be stored
    """
    existing = (
        db.query(Transaction.id)
        .filter(Transaction.user_id == user_id, Transaction.external_id == receipt.external_id)
        .first()
    )
    if existing:
        return "duplicate"

    match = find_reconciliation_match(db, user_id, receipt)

    match_id = None
    status = TransactionStatus.PENDING.value
    if match is not None:
        match_id = match.id
        status = TransactionStatus.DUPLICATE.value

    row = build_transaction(
        {
            "date": receipt.date,
            "amount": receipt.amount,
            "currency": receipt.currency,
            "merchant": receipt.merchant,
            "transaction_name": receipt.merchant or "Receipt",
            "category": receipt.category or "Uncategorized",
            "type": "expense",
            "notes": build_receipt_notes(receipt),
            "external_id": receipt.external_id,
            "match_id": match_id,
            "status": status,
        },
        user_id=user_id,
        statement_id=None,
        source=TransactionSource.RECEIPT.value,
    )

    try:
        with db.begin_nested():  # SAVEPOINT
            if match is not None and not match.merchant and receipt.merchant:
                match.merchant = receipt.merchant
            db.add(row)
            db.flush()
    except IntegrityError:
        # Another ingestion stored this external_id first
        logger.info(f"Receipt {receipt.external_id} lost an insert race; counted as duplicate")
        return "duplicate"

    db.commit()
    return "success"


def ingest_receipts(db: Session, body: Any, user_id: Optional[UUID] = None) -> Dict[str, Any]:
    """
    Ingest one or many receipts.

    user_id is the authenticated caller; without one, each receipt must name
    its owner in "user_id". Failures are collected per row and never abort
    the batch.

    Returns:
        {"total", "success", "failed", "duplicates", "errors": [{"external_id", "error"}]}
    """
    receipts = normalize_receipt_payload(body)

    results: Dict[str, Any] = {
        "total": len(receipts),
        "success": 0,
        "failed": 0,
        "duplicates": 0,
        "errors": [],
    }
    processed_ids = set()

    for raw in receipts:
        external_id = raw.get("external_id") if isinstance(raw, dict) else None
        if external_id is not None:
            external_id = str(external_id)

        try:
            receipt = ReceiptPayload.model_validate(raw)
        except ValidationError as e:
            results["failed"] += 1
            results["errors"].append({"external_id": external_id, "error": f"Invalid receipt: {e.errors()[0]['msg']}"})
            continue

        effective_user_id = user_id or receipt.user_id
        if not effective_user_id:
            results["failed"] += 1
            results["errors"].append({"external_id": receipt.external_id, "error": "Missing user_id"})
            continue

        if not receipt.date or not receipt.amount or not receipt.external_id:
            results["failed"] += 1
            results["errors"].append({"external_id": receipt.external_id, "error": "Missing required fields"})
            continue

        key = (effective_user_id, receipt.external_id)
        if key in processed_ids:
            results["duplicates"] += 1
            continue
        processed_ids.add(key)

        try:
            outcome = _ingest_one(db, receipt, effective_user_id)
        except Exception as e:
            db.rollback()
            logger.warning(f"Receipt {receipt.external_id} failed: {e}")
            results["failed"] += 1
            results["errors"].append({"external_id": receipt.external_id, "error": str(e)})
            continue

        if outcome == "duplicate":
            results["duplicates"] += 1
        else:
            results["success"] += 1

    logger.info(
        f"Ingested receipts: total={results['total']} success={results['success']} "
        f"duplicates={results['duplicates']} failed={results['failed']}"
    )
    return results
