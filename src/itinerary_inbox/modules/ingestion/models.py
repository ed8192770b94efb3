from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, Enum, ForeignKey, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from itinerary_inbox.core.models import Base, Timestamped, UUIDPrimaryKey, utcnow


class MessageStatus(str, enum.Enum):
    PROCESSING = "processing"
    PROCESSED = "processed"
    FAILED = "failed"


class IngestSource(str, enum.Enum):
    # The user forwarded the email to their personal address.
    FORWARD = "forward"
    # An automated mailbox scan picked the email up.
    SCAN = "scan"


class ProcessedMessage(UUIDPrimaryKey, Timestamped, Base):
    __tablename__ = "ingestion_processed_message"
    __table_args__ = (
        UniqueConstraint("user_id", "message_hash", name="uq_processed_message_user_hash"),
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("identity_profile.id", ondelete="CASCADE"), index=True
    )
    message_hash: Mapped[str] = mapped_column(String(64))
    status: Mapped[MessageStatus] = mapped_column(
        Enum(MessageStatus, native_enum=False), index=True
    )
    source: Mapped[IngestSource] = mapped_column(Enum(IngestSource, native_enum=False))
    claimed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    attempts: Mapped[int] = mapped_column(Integer, default=1)
