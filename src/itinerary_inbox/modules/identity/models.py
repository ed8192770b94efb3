from __future__ import annotations

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from itinerary_inbox.core.models import Base, Timestamped, UUIDPrimaryKey


class Profile(UUIDPrimaryKey, Timestamped, Base):
    __tablename__ = "identity_profile"

    email: Mapped[str | None] = mapped_column(String(320), nullable=True, index=True)
    full_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    forwarding_token: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    push_token: Mapped[str | None] = mapped_column(String(255), nullable=True)
