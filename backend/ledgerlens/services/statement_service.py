# ledgerlens/services/statement_service.py

import base64
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional
from uuid import UUID

from fastapi import HTTPException
from sqlalchemy.orm import Session

from ledgerlens.core import database
from ledgerlens.core.config import settings
from ledgerlens.models.enrichment_log import EnrichmentLog
from ledgerlens.models.statement import Statement
from ledgerlens.models.transaction import Transaction
from ledgerlens.schemas.statement import StatementStatus
from ledgerlens.services.extraction_service import extract_transactions
from ledgerlens.services.llm_client import GeminiClient
from ledgerlens.services.storage_service import StorageError, build_object_path
from ledgerlens.services.transaction_service import save_transactions
from ledgerlens.utils.hash_helpers import compute_file_hash

logger = logging.getLogger(__name__)


ALLOWED_UPLOAD_TYPES = {
    "application/pdf",
    "image/png",
    "image/jpeg",
    "image/webp",
    "image/heic",
    "image/heif",
}

# draft -> processing -> parsed | failed; failed -> processing (retry)
ALLOWED_TRANSITIONS: Dict[str, set] = {
    StatementStatus.draft.value: {StatementStatus.processing.value},
    StatementStatus.processing.value: {StatementStatus.parsed.value, StatementStatus.failed.value},
    StatementStatus.failed.value: {StatementStatus.processing.value},
    StatementStatus.parsed.value: set(),
}


class StatusTransitionError(ValueError):
    """Raised for a statement status change the lifecycle does not allow."""

    def __init__(self, current: str, new: str):
        self.current = current
        self.new = new
        super().__init__(f"Cannot move statement from '{current}' to '{new}'")


def _status_value(status) -> str:
    return status.value if isinstance(status, StatementStatus) else str(status)


def can_transition(current: str, new: str) -> bool:
    return _status_value(new) in ALLOWED_TRANSITIONS.get(_status_value(current), set())


def ensure_transition(current: str, new: str) -> None:
    """Raise StatusTransitionError unless current -> new is allowed."""
    if not can_transition(current, new):
        raise StatusTransitionError(_status_value(current), _status_value(new))


# -------------------------
# Statements CRUD
# -------------------------

def create_statement(db: Session, user_id: UUID, name: str) -> Statement:
    """Create a Statement row in draft."""
    name = (name or "").strip()
    if not name:
        raise HTTPException(status_code=400, detail="Statement name is required")

    statement = Statement(user_id=user_id, name=name, status=StatementStatus.draft.value)
    db.add(statement)
    db.commit()
    db.refresh(statement)
    return statement


def get_user_statements(db: Session, user_id: UUID) -> List[Statement]:
    """Return statements for a user, newest first."""
    return (
        db.query(Statement)
        .filter(Statement.user_id == user_id)
        .order_by(Statement.created_at.desc())
        .all()
    )


def get_statement_by_id(db: Session, statement_id: UUID, user_id: UUID) -> Statement:
    """Return a statement by id if it belongs to the given user."""
    statement = (
        db.query(Statement)
        .filter(Statement.id == statement_id, Statement.user_id == user_id)
        .first()
    )
    if not statement:
        raise HTTPException(status_code=404, detail="Statement not found")
    return statement


def update_statement_status(
    db: Session,
    statement: Statement,
    status,
    commit: bool = True,
) -> Statement:
    """
    Move a statement to a new status.

    Stamps updated_at, and parsed_at when the new status is parsed.

    Raises:
        StatusTransitionError: If the lifecycle forbids the change
    """
    new_status = _status_value(status)
    ensure_transition(statement.status, new_status)

    now = datetime.now(timezone.utc)
    statement.status = new_status
    statement.updated_at = now
    if new_status == StatementStatus.parsed.value:
        statement.parsed_at = now

    if commit:
        db.commit()
        db.refresh(statement)

    logger.info(f"Statement {statement.id} -> {new_status}")
    return statement


def delete_statement(db: Session, statement_id: UUID, user_id: UUID, storage=None) -> None:
    """
    Delete a statement with its transactions and enrichment logs, then its
    stored file (best-effort).
    """
    statement = get_statement_by_id(db, statement_id, user_id)
    file_path = statement.bank_statement_url

    db.query(Transaction).filter(Transaction.statement_id == statement.id).delete(synchronize_session=False)
    db.query(EnrichmentLog).filter(EnrichmentLog.statement_id == statement.id).delete(synchronize_session=False)
    db.delete(statement)
    db.commit()

    if storage is not None and file_path:
        try:
            storage.delete(file_path)
        except StorageError as e:
            logger.warning(f"Could not delete file {file_path}: {e}")


# -------------------------
# Upload + trigger
# -------------------------

def validate_upload(filename: Optional[str], content: bytes, content_type: Optional[str]) -> None:
    """Reject empty, oversized or unsupported statement files."""
    if not filename:
        raise HTTPException(status_code=400, detail="No filename provided")

    if content_type not in ALLOWED_UPLOAD_TYPES:
        raise HTTPException(
            status_code=400,
            detail=f"Unsupported file type {content_type}. Allowed: PDF or image",
        )

    if not content:
        raise HTTPException(status_code=400, detail="Empty file")

    max_size_mb = settings.MAX_UPLOAD_MB
    if len(content) > max_size_mb * 1024 * 1024:
        raise HTTPException(status_code=400, detail=f"File too large. Maximum size is {max_size_mb}MB")


def upload_statement_file(
    db: Session,
    statement: Statement,
    filename: str,
    content: bytes,
    content_type: str,
    storage,
) -> Statement:
    """
    Store the statement file and move the statement to processing.

    The status flips to processing before the upload; if storing the file
    fails the statement is marked failed right away and the error re-raised.
    """
    validate_upload(filename, content, content_type)

    update_statement_status(db, statement, StatementStatus.processing)

    object_path = build_object_path(statement.id, filename)
    try:
        storage.upload(object_path, content, content_type)
    except StorageError:
        logger.exception(f"Upload failed for statement {statement.id}")
        update_statement_status(db, statement, StatementStatus.failed)
        raise

    statement.bank_statement_url = object_path
    db.commit()
    db.refresh(statement)

    logger.info(f"Stored {object_path} for statement {statement.id} (sha256 {compute_file_hash(content)[:12]})")
    return statement


def mark_for_retry(db: Session, statement: Statement) -> Statement:
    """
    Trigger (or retry) extraction of an already uploaded file.

    Requires a stored file; moves draft/failed -> processing.
    """
    if not statement.bank_statement_url:
        raise HTTPException(status_code=400, detail="No bank statement file found")

    return update_statement_status(db, statement, StatementStatus.processing)


# -------------------------
# Extraction pipeline
# -------------------------

def _mark_failed(session_factory: Callable[[], Session], statement_id: UUID) -> None:
    db = session_factory()
    try:
        statement = db.query(Statement).filter(Statement.id == statement_id).first()
        if statement and can_transition(statement.status, StatementStatus.failed):
            update_statement_status(db, statement, StatementStatus.failed)
    finally:
        db.close()


def run_statement_processing(
    statement_id: UUID,
    llm_client: GeminiClient,
    storage,
    session_factory: Optional[Callable[[], Session]] = None,
) -> dict:
    """
    Download the statement file, extract transactions, save them and mark
    the statement parsed.

    Runs outside the request (background task) with its own session. Any
    exception marks the statement failed; nothing is re-raised.

    Returns:
        {"success": True, "count": inserted} or {"error": message}
    """
    session_factory = session_factory or database.SessionLocal
    db = session_factory()

    try:
        statement = db.query(Statement).filter(Statement.id == statement_id).first()
        if not statement:
            raise ValueError("Statement not found")

        if not statement.bank_statement_url:
            raise ValueError("No bank statement file found")

        if statement.status != StatementStatus.processing.value:
            update_statement_status(db, statement, StatementStatus.processing)

        content, mime_type = storage.download(statement.bank_statement_url)
        image = {
            "data": base64.b64encode(content).decode("ascii"),
            "mime_type": mime_type,
        }

        parsed = extract_transactions(llm_client, [image])

        inserted, skipped = save_transactions(
            db,
            statement_id=statement.id,
            user_id=statement.user_id,
            transactions=parsed,
            source="statement",
            commit=False,
        )

        # Rows and status commit together
        update_statement_status(db, statement, StatementStatus.parsed)

        logger.info(
            f"Statement {statement_id} parsed: {len(parsed)} extracted, "
            f"{len(inserted)} inserted, {skipped} skipped"
        )
        return {"success": True, "count": len(inserted)}

    except Exception as e:
        db.rollback()
        logger.exception(f"Error processing statement {statement_id}")
        _mark_failed(session_factory, statement_id)
        return {"error": str(e)}

    finally:
        db.close()
