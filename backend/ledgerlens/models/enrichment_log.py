import uuid

from sqlalchemy import Column, Text, ForeignKey
from sqlalchemy.dialects.postgresql import UUID, TIMESTAMP
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from ledgerlens.core.database import Base


class EnrichmentLog(Base):
    """Append-only summary of one enrichment pass over a statement."""
    __tablename__ = "enrichment_logs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    statement_id = Column(UUID(as_uuid=True), ForeignKey("statements.id", ondelete="CASCADE"), nullable=False)
    enrichment_summary = Column(Text, nullable=False)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())

    statement = relationship("Statement", back_populates="enrichment_logs", passive_deletes=True)

    def __repr__(self) -> str:
        return f"<EnrichmentLog(id={self.id}, statement_id={self.statement_id})>"
