from __future__ import annotations

import enum
import uuid
from datetime import date, datetime

from sqlalchemy import JSON, Date, DateTime, Enum, ForeignKey, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from itinerary_inbox.core.models import Base, Timestamped, UUIDPrimaryKey, utcnow


class TripStatus(str, enum.Enum):
    UPCOMING = "upcoming"
    ACTIVE = "active"
    COMPLETED = "completed"


class ReservationType(str, enum.Enum):
    FLIGHT = "flight"
    HOTEL = "hotel"
    CAR = "car"
    TRAIN = "train"
    MEETING = "meeting"
    EVENT = "event"


class ReservationStatus(str, enum.Enum):
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    DELAYED = "delayed"


class Trip(UUIDPrimaryKey, Timestamped, Base):
    __tablename__ = "trips_trip"

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("identity_profile.id", ondelete="CASCADE"), index=True
    )
    name: Mapped[str] = mapped_column(String(200))
    destination: Mapped[str] = mapped_column(String(200), index=True)
    start_date: Mapped[date] = mapped_column(Date, index=True)
    end_date: Mapped[date] = mapped_column(Date, index=True)
    status: Mapped[TripStatus] = mapped_column(
        Enum(TripStatus, native_enum=False), default=TripStatus.UPCOMING
    )

    reservations = relationship(
        "Reservation",
        back_populates="trip",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class Reservation(UUIDPrimaryKey, Timestamped, Base):
    __tablename__ = "trips_reservation"

    trip_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("trips_trip.id", ondelete="CASCADE"), index=True
    )
    type: Mapped[ReservationType] = mapped_column(
        Enum(ReservationType, native_enum=False), index=True
    )
    title: Mapped[str] = mapped_column(String(300))
    subtitle: Mapped[str | None] = mapped_column(String(300), nullable=True)

    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    end_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    location: Mapped[str | None] = mapped_column(String(300), nullable=True)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    confirmation_number: Mapped[str | None] = mapped_column(
        String(100), nullable=True, index=True
    )
    details: Mapped[dict] = mapped_column(JSON, default=dict)
    status: Mapped[ReservationStatus] = mapped_column(
        Enum(ReservationStatus, native_enum=False), default=ReservationStatus.CONFIRMED
    )

    trip = relationship("Trip", back_populates="reservations")


class DeletedTrip(UUIDPrimaryKey, Base):
    """A trip the user removed on purpose; consulted before recreating a similar one."""

    __tablename__ = "trips_deleted_trip"

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("identity_profile.id", ondelete="CASCADE"), index=True
    )
    destination: Mapped[str] = mapped_column(String(200))
    start_date: Mapped[date] = mapped_column(Date)
    end_date: Mapped[date] = mapped_column(Date)
    original_trip_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    deleted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, index=True
    )
