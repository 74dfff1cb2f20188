import base64
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status
from sqlalchemy.orm import Session

from ledgerlens.core.database import get_db
from ledgerlens.core.security import get_current_user
from ledgerlens.models.user import User
from ledgerlens.schemas.llm import PromptDraftResponse, PromptDraftUpdate, PromptTestResponse
from ledgerlens.services import prompt_service
from ledgerlens.services.llm_client import GeminiClient, LLMError, get_llm_client


router = APIRouter(prefix="/api/prompt-tester", tags=["Prompt tester"])

DRAFT_KEYS = set(prompt_service.DRAFT_DEFAULTS)


async def _as_inline_image(upload: UploadFile) -> dict:
    content = await upload.read()
    return {
        "name": upload.filename,
        "data": base64.b64encode(content).decode("ascii"),
        "mime_type": upload.content_type or "application/octet-stream",
    }


@router.post("/run", response_model=PromptTestResponse)
async def run_prompt(
    statement: UploadFile = File(..., description="Statement image or PDF"),
    references: Optional[List[UploadFile]] = File(default=None),
    prompt: Optional[str] = Form(default=None),
    remarks: Optional[str] = Form(default=None),
    current_user: User = Depends(get_current_user),
    llm_client: GeminiClient = Depends(get_llm_client),
):
    """
    Try an extraction prompt against a statement without saving anything.

    Returns the raw model text and the parsed array (null if none parsed).
    """
    statement_image = await _as_inline_image(statement)
    reference_images = [await _as_inline_image(r) for r in references or []]

    try:
        return prompt_service.run_prompt_test(
            llm_client,
            prompt,
            statement_image,
            references=reference_images,
            remarks=remarks,
        )
    except LLMError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))


@router.get("/drafts/{key}", response_model=PromptDraftResponse)
def get_draft(
    key: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if key not in DRAFT_KEYS:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown draft '{key}'")
    return PromptDraftResponse(key=key, value=prompt_service.get_prompt_draft(db, current_user.id, key))


@router.put("/drafts/{key}", response_model=PromptDraftResponse)
def save_draft(
    key: str,
    payload: PromptDraftUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Save a draft. The last write wins."""
    if key not in DRAFT_KEYS:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown draft '{key}'")
    draft = prompt_service.save_prompt_draft(db, current_user.id, key, payload.value)
    return PromptDraftResponse(key=draft.key, value=draft.value)
