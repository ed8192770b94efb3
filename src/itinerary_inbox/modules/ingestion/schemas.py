from __future__ import annotations

from pydantic import BaseModel


class IngestResponse(BaseModel):
    success: bool
    trip_id: str | None = None
    trip_name: str | None = None
    reservations_count: int | None = None
    cancelled_count: int | None = None
    duplicates_skipped: int | None = None
    skipped: bool | None = None
    reason: str | None = None


class ErrorResponse(BaseModel):
    error: str
