from pydantic import BaseModel, ConfigDict
from datetime import datetime
from typing import Any, Dict, List
from uuid import UUID


class EnrichmentLogResponse(BaseModel):
    id: UUID
    statement_id: UUID
    enrichment_summary: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class EnrichmentResponse(BaseModel):
    """Result of one enrichment pass"""
    summary: str
    updated: int
    enriched_transactions: List[Dict[str, Any]]
