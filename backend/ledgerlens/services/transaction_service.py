"""
ledgerlens/services/transaction_service.py

Service layer for Transactions:
- Convert extracted dicts -> Transaction ORM rows (with fingerprint)
- Save batches with fingerprint dedupe
- Range / id / duplicate lookups
- Manual and bulk updates, duplicate resolution
- Month views for the dashboard and audit pages

Design choices:
- type is stored as STRING: "expense" | "income" | "internal_transfer" | "external_transfer".
  Legacy "transfer" maps to "internal_transfer"; anything else unknown to "expense".
- amount is stored as extracted (no sign convention); type decides income vs expense.
- Dedupe compares incoming fingerprints against rows already stored for the
  user. Rows inside one incoming batch are not compared with each other.
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional, Tuple
from uuid import UUID

from sqlalchemy.orm import Session

from ledgerlens.models.statement import Statement
from ledgerlens.models.transaction import Transaction
from ledgerlens.schemas.transactions import TransactionStatus, TransactionType
from ledgerlens.utils.date_helpers import month_bounds, parse_transaction_date
from ledgerlens.utils.hash_helpers import compute_fingerprint
from ledgerlens.core.config import settings

logger = logging.getLogger(__name__)


ALLOWED_TYPES = {t.value for t in TransactionType}
ALLOWED_STATUSES = {s.value for s in TransactionStatus}
LEGACY_TYPE_MAP = {"transfer": "internal_transfer"}

EDITABLE_FIELDS = {
    "date",
    "amount",
    "currency",
    "merchant",
    "transaction_name",
    "reference_id",
    "category",
    "type",
    "notes",
    "status",
    "match_id",
}

# Fields that feed the fingerprint
FINGERPRINT_FIELDS = {"date", "amount", "transaction_name"}


def _to_decimal(v: Any) -> Optional[Decimal]:
    """Convert numeric/string to Decimal safely. Returns None if v is None."""
    if v is None:
        return None
    if isinstance(v, str):
        v = v.strip().replace(",", "")
    try:
        return Decimal(str(v))
    except InvalidOperation:
        raise ValueError(f"Invalid amount: {v!r}")


def _clean_str(v: Any) -> Optional[str]:
    if v is None:
        return None
    text = str(v).strip()
    return text or None


def normalize_transaction_type(value: Any) -> str:
    """
    Map any incoming type onto the canonical set.

    Examples:
        "income" -> "income"
        "transfer" -> "internal_transfer"
        None / "debit" -> "expense"
    """
    if isinstance(value, TransactionType):
        return value.value

    text = str(value or "").strip().lower()
    text = LEGACY_TYPE_MAP.get(text, text)
    if text in ALLOWED_TYPES:
        return text
    return TransactionType.EXPENSE.value


def build_transaction(
    data: Dict[str, Any],
    user_id: UUID,
    statement_id: Optional[UUID] = None,
    source: str = "statement",
) -> Transaction:
    """
    Build ONE Transaction from an extracted or submitted dict (not added to the session).

    Raises:
        ValueError: If date or amount are missing or malformed
    """
    if data.get("date") in (None, ""):
        raise ValueError("Transaction date is required")
    transaction_date = parse_transaction_date(data["date"])

    amount = _to_decimal(data.get("amount"))
    if amount is None:
        raise ValueError("Transaction amount is required")

    transaction_name = _clean_str(data.get("transaction_name")) or _clean_str(data.get("merchant")) or ""

    # Idempotency and match fields belong to receipts only
    if source == "receipt":
        external_id = _clean_str(data.get("external_id"))
        status = data.get("status") or TransactionStatus.PENDING.value
        match_id = data.get("match_id")
    else:
        external_id, status, match_id = None, TransactionStatus.PENDING.value, None

    return Transaction(
        user_id=user_id,
        statement_id=statement_id,
        date=transaction_date,
        amount=amount,
        currency=_clean_str(data.get("currency")) or settings.DEFAULT_CURRENCY,
        merchant=_clean_str(data.get("merchant")),
        transaction_name=transaction_name,
        reference_id=_clean_str(data.get("reference_id")),
        category=_clean_str(data.get("category")) or "Uncategorized",
        type=normalize_transaction_type(data.get("type")),
        notes=data.get("notes"),
        source=source,
        external_id=external_id,
        status=status,
        match_id=match_id,
        fingerprint=compute_fingerprint(transaction_date, amount, transaction_name),
    )


def get_existing_fingerprints(db: Session, user_id: UUID, fingerprints: Iterable[str]) -> set[str]:
    """One batched IN lookup of fingerprints already stored for the user."""
    wanted = list(set(fingerprints))
    if not wanted:
        return set()

    rows = (
        db.query(Transaction.fingerprint)
        .filter(Transaction.user_id == user_id, Transaction.fingerprint.in_(wanted))
        .all()
    )
    return {fingerprint for (fingerprint,) in rows}


def save_transactions(
    db: Session,
    statement_id: Optional[UUID],
    user_id: UUID,
    transactions: List[Dict[str, Any]],
    source: str = "statement",
    commit: bool = True,
) -> Tuple[List[Transaction], int]:
    """
    Save MANY transactions, skipping those whose fingerprint already exists.

    Given N incoming rows of which M already exist by fingerprint, exactly
    N - M rows are inserted.

    Returns:
        (inserted_transactions, skipped_existing_count)

    Note:
    - commit=False leaves the rows flushed but uncommitted so the caller can
      commit them together with a statement status change.
    """
    candidates = [build_transaction(d, user_id, statement_id, source) for d in transactions]

    existing = get_existing_fingerprints(db, user_id, (tx.fingerprint for tx in candidates))

    to_insert = [tx for tx in candidates if tx.fingerprint not in existing]
    skipped = len(candidates) - len(to_insert)

    db.add_all(to_insert)
    db.flush()

    if commit:
        db.commit()

    logger.info(
        f"Saved {len(to_insert)} transactions for statement {statement_id} "
        f"({skipped} skipped as existing)"
    )
    return to_insert, skipped


def get_transactions(db: Session, statement_id: UUID, user_id: UUID) -> List[Transaction]:
    """All transactions of one statement, oldest first."""
    return (
        db.query(Transaction)
        .filter(Transaction.statement_id == statement_id, Transaction.user_id == user_id)
        .order_by(Transaction.date.asc(), Transaction.created_at.asc())
        .all()
    )


def get_transactions_by_date_range(
    db: Session,
    user_id: UUID,
    start_date: date,
    end_date: date,
) -> List[Transaction]:
    """Transactions dated within [start_date, end_date], newest first."""
    return (
        db.query(Transaction)
        .filter(
            Transaction.user_id == user_id,
            Transaction.date >= start_date,
            Transaction.date <= end_date,
        )
        .order_by(Transaction.date.desc())
        .all()
    )


def get_transactions_by_ids(db: Session, user_id: UUID, ids: Iterable[UUID]) -> List[Transaction]:
    """Batched IN lookup by id. Unknown ids are ignored."""
    wanted = list(set(ids))
    if not wanted:
        return []
    return (
        db.query(Transaction)
        .filter(Transaction.user_id == user_id, Transaction.id.in_(wanted))
        .all()
    )


def get_duplicate_transactions(db: Session, user_id: UUID) -> List[Transaction]:
    """Rows flagged as duplicates, newest first."""
    return (
        db.query(Transaction)
        .filter(Transaction.user_id == user_id, Transaction.status == TransactionStatus.DUPLICATE.value)
        .order_by(Transaction.created_at.desc())
        .all()
    )


def get_transaction_by_id(
    transaction_id: UUID,
    user_id: UUID,
    db: Session,
) -> Optional[Transaction]:
    """
    Get single transaction with ownership check.
    Returns None if not found or not owned by user.
    """
    return (
        db.query(Transaction)
        .filter(
            Transaction.id == transaction_id,
            Transaction.user_id == user_id
        )
        .first()
    )


def apply_updates(tx: Transaction, updates: Dict[str, Any]) -> Transaction:
    """
    Apply user-editable fields to a row in memory.

    Rules:
    - Unknown fields are ignored (enrichment output may carry extras)
    - type is normalized; status must be a known status
    - the fingerprint is recomputed when date, amount or name change
    """
    changed = set()

    for field, value in updates.items():
        if field not in EDITABLE_FIELDS:
            continue

        if field == "date":
            value = parse_transaction_date(value)
        elif field == "amount":
            value = _to_decimal(value)
            if value is None:
                raise ValueError("amount cannot be None")
        elif field == "type":
            value = normalize_transaction_type(value)
        elif field == "status":
            value = value.value if isinstance(value, TransactionStatus) else str(value)
            if value not in ALLOWED_STATUSES:
                raise ValueError(f"Invalid status: {value}. Must be one of {sorted(ALLOWED_STATUSES)}")
        elif field == "match_id" and value is not None and not isinstance(value, UUID):
            value = UUID(str(value))
        elif field == "transaction_name":
            value = _clean_str(value) or ""

        setattr(tx, field, value)
        changed.add(field)

    if changed & FINGERPRINT_FIELDS:
        tx.fingerprint = compute_fingerprint(tx.date, tx.amount, tx.transaction_name)

    return tx


def update_transaction(
    db: Session,
    transaction_id: UUID,
    user_id: UUID,
    updates: Dict[str, Any],
) -> Transaction:
    """
    Update one transaction and commit.

    Raises:
        ValueError: If the transaction is missing, not owned, or a value is invalid
    """
    tx = get_transaction_by_id(transaction_id, user_id, db)
    if not tx:
        raise ValueError(f"Transaction {transaction_id} not found or access denied")

    apply_updates(tx, updates)

    db.commit()
    db.refresh(tx)
    return tx


def update_transactions(
    db: Session,
    user_id: UUID,
    items: List[Dict[str, Any]],
) -> List[Transaction]:
    """
    Update many transactions, one request per row, in order.

    There is no atomicity across rows: a failure leaves the earlier rows
    updated and raises for the failing one.
    """
    updated: List[Transaction] = []
    for item in items:
        fields = dict(item)
        transaction_id = fields.pop("id")
        if not isinstance(transaction_id, UUID):
            transaction_id = UUID(str(transaction_id))
        updated.append(update_transaction(db, transaction_id, user_id, fields))
    return updated


def delete_transaction(db: Session, transaction_id: UUID, user_id: UUID) -> None:
    tx = get_transaction_by_id(transaction_id, user_id, db)
    if not tx:
        raise ValueError(f"Transaction {transaction_id} not found or access denied")

    db.delete(tx)
    db.commit()


def keep_both(db: Session, transaction_id: UUID, user_id: UUID) -> Transaction:
    """Resolve a duplicate flag by keeping the row: verified, unmatched."""
    return update_transaction(
        db,
        transaction_id,
        user_id,
        {"status": TransactionStatus.VERIFIED.value, "match_id": None},
    )


def filter_transactions(
    rows: Iterable[Transaction],
    tx_type: Optional[str] = None,
    query: Optional[str] = None,
) -> List[Transaction]:
    """
    Type filter plus case-insensitive search over name, category and notes.
    Result is sorted by date, newest first.
    """
    result = list(rows)

    if tx_type and tx_type != "all":
        wanted = normalize_transaction_type(tx_type)
        result = [t for t in result if t.type == wanted]

    if query:
        needle = query.lower()
        result = [
            t for t in result
            if needle in (t.transaction_name or "").lower()
            or needle in (t.category or "").lower()
            or needle in (t.notes or "").lower()
        ]

    result.sort(key=lambda t: t.date, reverse=True)
    return result


def summarize(rows: Iterable[Transaction]) -> Dict[str, Decimal]:
    """
    Totals for a set of rows.

    Returns:
        {"income": Decimal, "expense": Decimal, "balance": income - expense}
    """
    income = Decimal("0")
    expense = Decimal("0")

    for t in rows:
        if t.type == TransactionType.INCOME.value:
            income += t.amount
        elif t.type == TransactionType.EXPENSE.value:
            expense += t.amount

    return {"income": income, "expense": expense, "balance": income - expense}


def get_dashboard(
    db: Session,
    user_id: UUID,
    month: int,
    year: int,
    tx_type: Optional[str] = None,
    query: Optional[str] = None,
) -> Dict[str, Any]:
    """
    One month of transactions for the dashboard.

    The summary covers the whole month; type and search only narrow the list.
    """
    start, end = month_bounds(year, month)
    rows = get_transactions_by_date_range(db, user_id, start, end)

    return {
        "month": month,
        "year": year,
        "summary": summarize(rows),
        "transactions": filter_transactions(rows, tx_type, query),
    }


def get_audit_transactions(
    db: Session,
    user_id: UUID,
    month: int,
    year: int,
    tx_type: Optional[str] = None,
    query: Optional[str] = None,
) -> List[Transaction]:
    """Transactions of parsed statements dated within one month."""
    start, end = month_bounds(year, month)

    rows = (
        db.query(Transaction)
        .join(Statement, Transaction.statement_id == Statement.id)
        .filter(
            Transaction.user_id == user_id,
            Statement.status == "parsed",
            Transaction.date >= start,
            Transaction.date <= end,
        )
        .all()
    )
    return filter_transactions(rows, tx_type, query)
