import base64
import logging
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, HTTPException, UploadFile
from sqlalchemy.orm import Session

from ledgerlens.core.database import get_db
from ledgerlens.core.security import get_current_user
from ledgerlens.models.user import User
from ledgerlens.schemas.enrichment import EnrichmentLogResponse, EnrichmentResponse
from ledgerlens.schemas.statement import StatementCreate, StatementResponse, StatementStatusUpdate
from ledgerlens.schemas.transactions import SaveTransactionsResult, TransactionCreate, TransactionResponse
from ledgerlens.services import enrichment_service, statement_service, transaction_service
from ledgerlens.services.llm_client import GeminiClient, LLMError, get_llm_client
from ledgerlens.services.statement_service import StatusTransitionError
from ledgerlens.services.storage_service import StorageError, get_storage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/statements", tags=["Statements"])


@router.post("/", response_model=StatementResponse, status_code=201)
def create_statement(
    payload: StatementCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Create an empty statement in draft."""
    return statement_service.create_statement(db, current_user.id, payload.name)


@router.get("/", response_model=List[StatementResponse])
def list_statements(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """All statements of the authenticated user, newest first."""
    return statement_service.get_user_statements(db, current_user.id)


@router.get("/{statement_id}", response_model=StatementResponse)
def get_statement(
    statement_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Get a specific statement by ID.

    Clients poll this endpoint to observe processing -> parsed | failed.
    """
    return statement_service.get_statement_by_id(db, statement_id, current_user.id)


@router.delete("/{statement_id}", status_code=204)
def delete_statement(
    statement_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    storage=Depends(get_storage),
):
    """Delete a statement, its transactions, enrichment logs and stored file."""
    statement_service.delete_statement(db, statement_id, current_user.id, storage=storage)
    return None


@router.patch("/{statement_id}/status", response_model=StatementResponse)
def update_status(
    statement_id: UUID,
    payload: StatementStatusUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Manual status change; only lifecycle transitions are accepted."""
    statement = statement_service.get_statement_by_id(db, statement_id, current_user.id)
    try:
        return statement_service.update_statement_status(db, statement, payload.status)
    except StatusTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.post("/{statement_id}/upload", response_model=StatementResponse, status_code=202)
async def upload_statement(
    statement_id: UUID,
    background_tasks: BackgroundTasks,
    file: UploadFile = File(..., description="Statement PDF or image"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    storage=Depends(get_storage),
    llm_client: GeminiClient = Depends(get_llm_client),
):
    """
    Upload the statement file and start extraction.

    Process:
    1. Statement moves to processing
    2. File is stored at {statement_id}/{timestamp}.{ext}
    3. Extraction runs in the background; poll GET /{statement_id}

    A storage failure leaves the statement failed.
    """
    statement = statement_service.get_statement_by_id(db, statement_id, current_user.id)
    content = await file.read()

    try:
        statement = statement_service.upload_statement_file(
            db,
            statement,
            filename=file.filename,
            content=content,
            content_type=file.content_type,
            storage=storage,
        )
    except StatusTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except StorageError as e:
        raise HTTPException(status_code=502, detail=f"Upload failed: {e}")

    background_tasks.add_task(
        statement_service.run_statement_processing,
        statement.id,
        llm_client,
        storage,
    )
    return statement


@router.post("/{statement_id}/process", response_model=StatementResponse, status_code=202)
def process_statement(
    statement_id: UUID,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    storage=Depends(get_storage),
    llm_client: GeminiClient = Depends(get_llm_client),
):
    """
    Trigger extraction of an uploaded file again ("Retry Parsing").

    Returns the statement in processing; the result lands in the background.
    """
    statement = statement_service.get_statement_by_id(db, statement_id, current_user.id)
    try:
        statement = statement_service.mark_for_retry(db, statement)
    except StatusTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))

    background_tasks.add_task(
        statement_service.run_statement_processing,
        statement.id,
        llm_client,
        storage,
    )
    return statement


@router.get("/{statement_id}/transactions", response_model=List[TransactionResponse])
def list_statement_transactions(
    statement_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Transactions of one statement, oldest first."""
    statement = statement_service.get_statement_by_id(db, statement_id, current_user.id)
    return transaction_service.get_transactions(db, statement.id, current_user.id)


@router.post("/{statement_id}/transactions", response_model=SaveTransactionsResult, status_code=201)
def save_statement_transactions(
    statement_id: UUID,
    payload: List[TransactionCreate],
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Save a batch of transactions for a statement.

    Rows whose fingerprint already exists for the user are skipped.
    """
    statement = statement_service.get_statement_by_id(db, statement_id, current_user.id)

    try:
        inserted, skipped = transaction_service.save_transactions(
            db,
            statement_id=statement.id,
            user_id=current_user.id,
            transactions=[t.model_dump() for t in payload],
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return SaveTransactionsResult(received=len(payload), inserted=len(inserted), skipped_existing=skipped)


@router.post("/{statement_id}/enrich", response_model=EnrichmentResponse)
async def enrich_statement(
    statement_id: UUID,
    files: List[UploadFile] = File(..., description="Reference documents (receipts, invoices)"),
    remarks: Optional[str] = Form(default=None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    llm_client: GeminiClient = Depends(get_llm_client),
):
    """
    Enrich a statement's transactions from reference documents.

    Every call is recorded in the enrichment log.
    """
    statement = statement_service.get_statement_by_id(db, statement_id, current_user.id)

    references = []
    for upload in files:
        content = await upload.read()
        if not content:
            continue
        references.append(
            {
                "name": upload.filename,
                "data": base64.b64encode(content).decode("ascii"),
                "mime_type": upload.content_type or "application/octet-stream",
            }
        )

    try:
        return enrichment_service.enrich_statement(db, statement, references, llm_client, remarks=remarks)
    except LLMError as e:
        logger.error(f"Enrichment failed for statement {statement_id}: {e}")
        raise HTTPException(status_code=502, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/{statement_id}/enrichment-logs", response_model=List[EnrichmentLogResponse])
def list_enrichment_logs(
    statement_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Enrichment history of a statement, newest first."""
    statement = statement_service.get_statement_by_id(db, statement_id, current_user.id)
    return enrichment_service.get_enrichment_logs(db, statement.id)
