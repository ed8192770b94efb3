from __future__ import annotations

import uuid

from sqlalchemy import Boolean, ForeignKey, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from itinerary_inbox.core.models import Base, Timestamped, UUIDPrimaryKey


class Notification(UUIDPrimaryKey, Timestamped, Base):
    __tablename__ = "notifications_notification"

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("identity_profile.id", ondelete="CASCADE"), index=True
    )
    # No FK: a ghost-deleted trip must not take its notification history with it.
    trip_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)

    type: Mapped[str] = mapped_column(String(50), index=True)
    title: Mapped[str] = mapped_column(String(200))
    message: Mapped[str] = mapped_column(Text)
    read: Mapped[bool] = mapped_column(Boolean, default=False)
