import uuid

from sqlalchemy import Column, String, Text, ForeignKey, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID, TIMESTAMP
from sqlalchemy.sql import func

from ledgerlens.core.database import Base


class PromptDraft(Base):
    """
    Keyed text draft for the prompt tester (e.g. "prompt", "remarks").

    Last write wins; clients debounce before saving.
    """
    __tablename__ = "prompt_drafts"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    key = Column(String(100), nullable=False)
    value = Column(Text, nullable=False, default="")
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("user_id", "key", name="uq_prompt_drafts_user_key"),
    )

    def __repr__(self) -> str:
        return f"<PromptDraft(user_id={self.user_id}, key={self.key})>"
