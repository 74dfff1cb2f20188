from sqlalchemy import Column, String, ForeignKey, CheckConstraint, Index
from sqlalchemy.dialects.postgresql import UUID, TIMESTAMP
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
import uuid

from ledgerlens.core.database import Base


class Statement(Base):
    """
    Represents one uploaded bank statement document.

    Lifecycle (see statement_service.ALLOWED_TRANSITIONS):
        draft -> processing -> parsed | failed, and failed -> processing on retry.

    Transactions and enrichment logs are removed by the service layer before
    the statement itself; there is no ORM cascade.
    """
    __tablename__ = "statements"

    # Columns
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    # Owner
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    name = Column(String(255), nullable=False)

    # Storage object path: "{statement_id}/{timestamp}.{ext}"
    bank_statement_url = Column(String(512), nullable=True)

    # Processing
    status = Column(String(20), nullable=False, default="draft", server_default="draft")

    # Timestamps
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
    parsed_at = Column(TIMESTAMP(timezone=True), nullable=True)

    # Relationships
    user = relationship("User", back_populates="statements", passive_deletes=True)
    transactions = relationship("Transaction", back_populates="statement", passive_deletes=True)
    enrichment_logs = relationship("EnrichmentLog", back_populates="statement", passive_deletes=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('draft', 'processing', 'parsed', 'failed')",
            name="check_statement_status",
        ),
        Index("idx_statements_user_id", "user_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<Statement(id={self.id}, "
            f"name={self.name}, "
            f"status={self.status})>"
        )
