from pydantic import BaseModel, ConfigDict, Field, model_validator
from datetime import date as DateType, datetime
from typing import List, Optional
from uuid import UUID
from decimal import Decimal
from enum import Enum


class TransactionType(str, Enum):
    """Canonical transaction type"""
    EXPENSE = "expense"
    INCOME = "income"
    INTERNAL_TRANSFER = "internal_transfer"
    EXTERNAL_TRANSFER = "external_transfer"


class TransactionSource(str, Enum):
    STATEMENT = "statement"
    RECEIPT = "receipt"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    DUPLICATE = "duplicate"


class TransactionResponse(BaseModel):
    """Complete transaction data (output)"""
    id: UUID
    user_id: UUID
    statement_id: Optional[UUID] = None

    date: DateType
    amount: Decimal
    currency: str
    merchant: Optional[str] = None
    transaction_name: str
    reference_id: Optional[str] = None
    category: str
    type: TransactionType
    notes: Optional[str] = None

    source: TransactionSource
    external_id: Optional[str] = None
    match_id: Optional[UUID] = None
    status: TransactionStatus
    fingerprint: str

    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(
        from_attributes=True,
        json_schema_extra={
            "example": {
                "id": "123e4567-e89b-12d3-a456-426614174000",
                "user_id": "123e4567-e89b-12d3-a456-426614174001",
                "statement_id": "123e4567-e89b-12d3-a456-426614174003",
                "date": "2025-01-11",
                "amount": 55000.00,
                "currency": "IDR",
                "merchant": "Starbucks",
                "transaction_name": "DEBIT STARBUCKS GI",
                "reference_id": None,
                "category": "Food",
                "type": "expense",
                "notes": "",
                "source": "statement",
                "external_id": None,
                "match_id": None,
                "status": "pending",
                "fingerprint": "a1b2c3d4...",
                "created_at": "2025-01-15T10:30:00",
                "updated_at": "2025-01-15T10:30:00"
            }
        }
    )


class TransactionCreate(BaseModel):
    """
    One transaction to save under a statement (input).

    Mirrors what the extraction prompt asks for. type accepts legacy values
    ("transfer") and is normalized by the service.
    """
    date: DateType
    amount: Decimal
    currency: Optional[str] = None
    merchant: Optional[str] = None
    transaction_name: str = ""
    reference_id: Optional[str] = None
    category: Optional[str] = None
    type: Optional[str] = None
    notes: Optional[str] = None

    model_config = ConfigDict(extra="ignore")


class SaveTransactionsResult(BaseModel):
    received: int
    inserted: int
    skipped_existing: int


class TransactionUpdate(BaseModel):
    """Update transaction fields (manual fixes and enrichment)."""
    date: Optional[DateType] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    merchant: Optional[str] = None
    transaction_name: Optional[str] = None
    reference_id: Optional[str] = None
    category: Optional[str] = None
    type: Optional[TransactionType] = None
    notes: Optional[str] = None
    status: Optional[TransactionStatus] = None
    match_id: Optional[UUID] = None

    @model_validator(mode="after")
    def check_at_least_one_field(self):
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided for update")
        return self

    model_config = ConfigDict(
        extra="forbid",
        json_schema_extra={
            "example": {
                "category": "Entertainment",
                "type": "expense"
            }
        }
    )


class TransactionBulkUpdateItem(TransactionUpdate):
    """Bulk update row: id plus the fields to change"""
    id: UUID


class PeriodSummary(BaseModel):
    """Income/expense totals for a period"""
    income: Decimal
    expense: Decimal
    balance: Decimal  # income - expense


class DashboardResponse(BaseModel):
    """Dashboard: one month of transactions plus totals"""
    month: int = Field(..., ge=1, le=12)
    year: int
    summary: PeriodSummary
    transactions: List[TransactionResponse]


class AuditResponse(BaseModel):
    """Audit view: parsed-statement transactions for one month"""
    month: int = Field(..., ge=1, le=12)
    year: int
    transactions: List[TransactionResponse]


class DuplicatePair(BaseModel):
    """A duplicate-flagged row and the row it was matched against"""
    duplicate: TransactionResponse
    match: Optional[TransactionResponse] = None
