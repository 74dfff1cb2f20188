# ledgerlens/models/transaction.py

import uuid
from sqlalchemy import (
    Column,
    String,
    Numeric,
    Date,
    Text,
    ForeignKey,
    CheckConstraint,
    Index,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID, TIMESTAMP
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from ledgerlens.core.database import Base


class Transaction(Base):
    """
    A money movement extracted from a statement or ingested from a receipt.

    - statement_id is NULL for standalone receipts.
    - match_id points at a reconciled counterpart row. It is a lookup hint
      only: no foreign key, no symmetry.
    - external_id is unique per user; receipt ingestion relies on it for
      idempotency.
    """
    __tablename__ = "transactions"

    # Primary key
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    # Foreign keys
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    statement_id = Column(UUID(as_uuid=True), ForeignKey("statements.id", ondelete="CASCADE"), nullable=True)

    # Core fields
    date = Column(Date, nullable=False)
    amount = Column(Numeric(14, 2), nullable=False)
    currency = Column(String(10), nullable=False, default="IDR", server_default="IDR")
    merchant = Column(String(255), nullable=True)
    transaction_name = Column(Text, nullable=False)
    reference_id = Column(String(255), nullable=True)
    category = Column(String(100), nullable=False, default="Uncategorized", server_default="Uncategorized")
    type = Column(String(20), nullable=False, default="expense", server_default="expense")
    notes = Column(Text, nullable=True)

    # Provenance and reconciliation
    source = Column(String(20), nullable=False, default="statement", server_default="statement")
    external_id = Column(String(255), nullable=True)
    match_id = Column(UUID(as_uuid=True), nullable=True)
    status = Column(String(20), nullable=False, default="pending", server_default="pending")

    # SHA-256 of date|amount|name
    fingerprint = Column(String(64), nullable=False)

    # Timestamps
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    statement = relationship("Statement", back_populates="transactions", passive_deletes=True)

    __table_args__ = (
        CheckConstraint(
            "type IN ('expense', 'income', 'internal_transfer', 'external_transfer')",
            name="check_transaction_type",
        ),
        CheckConstraint("source IN ('statement', 'receipt')", name="check_transaction_source"),
        CheckConstraint("status IN ('pending', 'verified', 'duplicate')", name="check_transaction_status"),
        UniqueConstraint("user_id", "external_id", name="uq_transactions_user_external_id"),
        Index("idx_transactions_user_fingerprint", "user_id", "fingerprint"),
        Index("idx_transactions_user_date", "user_id", "date"),
        Index("idx_transactions_statement_id", "statement_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<Transaction(id={self.id}, "
            f"date={self.date}, "
            f"amount={self.amount}, "
            f"type={self.type}, "
            f"status={self.status})>"
        )
