from enum import Enum
from pydantic import BaseModel, ConfigDict, Field, field_validator
from datetime import datetime
from typing import Optional
from uuid import UUID


class StatementStatus(str, Enum):
    """Enum for statement lifecycle status"""
    draft = "draft"
    processing = "processing"
    parsed = "parsed"
    failed = "failed"


class StatementCreate(BaseModel):
    """Create a statement (input)"""
    name: str = Field(..., min_length=1, max_length=255)

    @field_validator("name")
    @classmethod
    def strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Statement name cannot be blank")
        return value

    model_config = ConfigDict(
        extra="forbid",
        json_schema_extra={"example": {"name": "BCA January 2025"}},
    )


class StatementStatusUpdate(BaseModel):
    """Manual status change (input)"""
    status: StatementStatus

    model_config = ConfigDict(extra="forbid")


class StatementResponse(BaseModel):
    """Complete statement data (output)"""
    id: UUID
    user_id: UUID
    name: str
    status: StatementStatus
    bank_statement_url: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    parsed_at: Optional[datetime] = None

    model_config = ConfigDict(
        from_attributes=True,
        json_schema_extra={
            "example": {
                "id": "123e4567-e89b-12d3-a456-426614174000",
                "user_id": "123e4567-e89b-12d3-a456-426614174001",
                "name": "BCA January 2025",
                "status": "parsed",
                "bank_statement_url": "123e4567-e89b-12d3-a456-426614174000/1736899200000.pdf",
                "created_at": "2025-01-15T10:30:00",
                "updated_at": "2025-01-15T10:35:00",
                "parsed_at": "2025-01-15T10:35:00"
            }
        }
    )


class ProcessStatementRequest(BaseModel):
    """Process-statement function input"""
    statement_id: UUID


class ProcessStatementResult(BaseModel):
    """Process-statement function output: {success, count} or {error}"""
    success: Optional[bool] = None
    count: Optional[int] = None
    error: Optional[str] = None
