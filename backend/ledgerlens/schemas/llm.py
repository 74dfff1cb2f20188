from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Optional


class InlineImage(BaseModel):
    """Base64 document attached to a prompt"""
    data: Optional[str] = None
    mimeType: Optional[str] = None


class GenerateRequest(BaseModel):
    """LLM proxy input"""
    prompt: Optional[str] = None
    images: Optional[List[InlineImage]] = None


class PromptTestResponse(BaseModel):
    raw_text: str
    transactions: Optional[List[Dict[str, Any]]] = None


class PromptDraftUpdate(BaseModel):
    value: str = Field(default="", max_length=100_000)

    model_config = ConfigDict(extra="forbid")


class PromptDraftResponse(BaseModel):
    key: str
    value: str
