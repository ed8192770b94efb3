from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, field_validator

from itinerary_inbox.modules.trips.models import ReservationType


class ParsedReservation(BaseModel):
    type: ReservationType
    title: str
    subtitle: str | None = None
    start_time: str
    end_time: str | None = None
    location: str | None = None
    address: str | None = None
    confirmation_number: str | None = None
    status: Literal["confirmed", "cancelled"] = "confirmed"
    details: dict[str, str] = Field(default_factory=dict)

    @field_validator("subtitle", "end_time", "location", "address", "confirmation_number")
    @classmethod
    def _blank_to_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip()
        return value or None

    @property
    def is_flight(self) -> bool:
        return self.type == ReservationType.FLIGHT

    @property
    def is_cancellation(self) -> bool:
        return self.status == "cancelled"


class ParsedTrip(BaseModel):
    trip_name: str
    destination: str
    country: str | None = None
    region: str | None = None
    start_date: str
    end_date: str
    reservations: list[ParsedReservation]

    @field_validator("country", "region")
    @classmethod
    def _blank_to_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip()
        return value or None


class ContextTrip(BaseModel):
    """Existing trip summary handed to the extractor so it can reuse names."""

    name: str
    destination: str
    start_date: str
    end_date: str
