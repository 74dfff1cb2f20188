from pydantic import BaseModel, ConfigDict, field_validator
from typing import Any, List, Optional
from uuid import UUID
from decimal import Decimal
from datetime import date as DateType

from ledgerlens.utils.date_helpers import parse_transaction_date


class ReceiptPayload(BaseModel):
    """
    One externally sourced receipt.

    date, amount and external_id are required; the service reports a
    missing one as a per-row error instead of rejecting the request.
    Timestamped dates keep their calendar day and numeric external ids
    are stored as strings.
    """
    date: Optional[DateType] = None
    amount: Optional[Decimal] = None
    external_id: Optional[str] = None
    merchant: Optional[str] = None
    items: Optional[Any] = None
    currency: Optional[str] = None
    notes: Optional[str] = None
    category: Optional[str] = None
    user_id: Optional[UUID] = None

    @field_validator("date", mode="before")
    @classmethod
    def parse_date(cls, v):
        if v in (None, ""):
            return None
        return parse_transaction_date(v)

    model_config = ConfigDict(
        extra="ignore",
        coerce_numbers_to_str=True,
        json_schema_extra={
            "example": {
                "date": "2025-01-12",
                "amount": 55000,
                "external_id": "rcpt-8842",
                "merchant": "Starbucks",
                "items": [{"name": "Latte", "qty": 1}],
                "currency": "IDR"
            }
        }
    )


class IngestError(BaseModel):
    external_id: Optional[str] = None
    error: str


class IngestResult(BaseModel):
    """Ingestion function output"""
    total: int
    success: int
    failed: int
    duplicates: int
    errors: List[IngestError]
