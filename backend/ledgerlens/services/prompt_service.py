# ledgerlens/services/prompt_service.py

import logging
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from ledgerlens.models.prompt_draft import PromptDraft
from ledgerlens.services.extraction_service import EXTRACTION_PROMPT
from ledgerlens.services.llm_client import GeminiClient, LLMResponseError, extract_json_array

logger = logging.getLogger(__name__)


PROMPT_DRAFT_KEY = "prompt"
REMARKS_DRAFT_KEY = "remarks"

DRAFT_DEFAULTS = {
    PROMPT_DRAFT_KEY: EXTRACTION_PROMPT,
    REMARKS_DRAFT_KEY: "",
}


def proxy_generate(llm_client: GeminiClient, prompt: str, images: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
    """Forward a prompt and images to the model and return its raw response."""
    if not prompt:
        raise ValueError("Prompt is required")
    return llm_client.generate(prompt, images)


def build_test_prompt(prompt: str, reference_names: List[str], remarks: Optional[str]) -> str:
    """Append reference-document and remarks context to a prompt under test."""
    full_prompt = prompt

    if reference_names:
        full_prompt += "\n\nReference Documents:\n"
        for index, name in enumerate(reference_names, start=2):
            full_prompt += f'- Image {index}: "{name}" document\n'

    if remarks and remarks.strip():
        full_prompt += f"\n\nAdditional Remarks:\n{remarks.strip()}"

    return full_prompt


def run_prompt_test(
    llm_client: GeminiClient,
    prompt: str,
    statement: Dict[str, Any],
    references: Optional[List[Dict[str, Any]]] = None,
    remarks: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Run an ad-hoc extraction prompt against a statement image (image 1) plus
    optional reference documents.

    Returns:
        {"raw_text": str, "transactions": list | None}; transactions is None
        when the answer holds no parsable JSON array.
    """
    references = references or []
    full_prompt = build_test_prompt(
        prompt or EXTRACTION_PROMPT,
        [ref.get("name") or f"Document {i}" for i, ref in enumerate(references, start=1)],
        remarks,
    )

    text = llm_client.generate_text(full_prompt, [statement, *references])

    try:
        parsed = extract_json_array(text)
    except LLMResponseError as e:
        logger.info(f"Prompt test returned no usable JSON array: {e}")
        parsed = None

    if parsed is not None and not isinstance(parsed, list):
        parsed = None

    return {"raw_text": text, "transactions": parsed}


def get_prompt_draft(db: Session, user_id: UUID, key: str) -> str:
    """Saved draft for key, or its default."""
    draft = (
        db.query(PromptDraft)
        .filter(PromptDraft.user_id == user_id, PromptDraft.key == key)
        .first()
    )
    if draft is None:
        return DRAFT_DEFAULTS.get(key, "")
    return draft.value


def save_prompt_draft(db: Session, user_id: UUID, key: str, value: str) -> PromptDraft:
    """Upsert a draft. The last write wins."""
    draft = (
        db.query(PromptDraft)
        .filter(PromptDraft.user_id == user_id, PromptDraft.key == key)
        .first()
    )
    if draft is None:
        draft = PromptDraft(user_id=user_id, key=key, value=value)
        db.add(draft)
    else:
        draft.value = value

    db.commit()
    db.refresh(draft)
    return draft
