"""
Function-style endpoints: single-purpose handlers with JSON in, JSON out.

- process-statement: run the extraction pipeline for one statement, inline
- ingest-receipt: store receipts and reconcile them against statement rows
- gemini-proxy: forward a prompt (and images) to the LLM
"""
import logging
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, HTTPException, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ledgerlens.core.database import get_db
from ledgerlens.core.security import get_current_user, get_optional_user, verify_ingest_key
from ledgerlens.models.user import User
from ledgerlens.schemas.llm import GenerateRequest
from ledgerlens.schemas.receipt import IngestResult
from ledgerlens.schemas.statement import ProcessStatementRequest, ProcessStatementResult
from ledgerlens.services import prompt_service, receipt_service, statement_service
from ledgerlens.services.llm_client import GeminiClient, LLMError, get_llm_client
from ledgerlens.services.storage_service import get_storage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/functions", tags=["Functions"])


@router.post("/process-statement", response_model=ProcessStatementResult, response_model_exclude_none=True)
def process_statement(
    payload: ProcessStatementRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    storage=Depends(get_storage),
    llm_client: GeminiClient = Depends(get_llm_client),
):
    """
    Download -> extract -> dedupe -> insert -> mark parsed, in one call.

    Returns {"success": true, "count": n}, or {"error": message} with
    status 500 after the statement was marked failed.
    """
    statement = statement_service.get_statement_by_id(db, payload.statement_id, current_user.id)

    result = statement_service.run_statement_processing(statement.id, llm_client, storage)

    if "error" in result:
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=result)
    return result


@router.post("/ingest-receipt", response_model=IngestResult)
def ingest_receipt(
    body: Any = Body(..., description="A receipt, a list of receipts or {\"receipts\": [...]}"),
    current_user: User = Depends(get_optional_user),
    has_ingest_key: bool = Depends(verify_ingest_key),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """
    Ingest receipts from an external source.

    Callers authenticate with a bearer token (receipts belong to that user)
    or with X-Ingest-Key (each receipt carries its own user_id).

    Per receipt: duplicate external_id -> skipped; same amount within the
    match window of an unmatched statement row -> stored as duplicate with
    match_id; otherwise stored as pending.
    """
    if current_user is None and not has_ingest_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Bearer token or X-Ingest-Key required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return receipt_service.ingest_receipts(
        db,
        body,
        user_id=current_user.id if current_user else None,
    )


@router.post("/gemini-proxy")
def gemini_proxy(
    payload: GenerateRequest,
    current_user: User = Depends(get_current_user),
    llm_client: GeminiClient = Depends(get_llm_client),
) -> Dict[str, Any]:
    """Forward {prompt, images} to Gemini and return its raw JSON response."""
    images = [image.model_dump() for image in payload.images or []]

    try:
        return prompt_service.proxy_generate(llm_client, payload.prompt, images)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except LLMError as e:
        logger.error(f"Gemini proxy failed for user {current_user.id}: {e}")
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
