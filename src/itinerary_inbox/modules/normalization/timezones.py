from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from itinerary_inbox.core.logging import get_logger, log_event
from itinerary_inbox.modules.extraction.schemas import ParsedReservation

logger = get_logger(__name__)

_OFFSET_RE = re.compile(r"^(?:UTC|GMT)?\s*([+-])\s*(\d{1,2})(?::?(\d{2}))?$")
_ZONE_SUFFIX_RE = re.compile(
    r"^(.*[T ]\d{2}:\d{2}(?::\d{2})?(?:\.\d+)?)\s*(Z|UTC|[+-]\d{2}(?::?\d{2})?)$", re.I
)

DEPARTURE_TZ_KEY = "Departure Timezone"
ARRIVAL_TZ_KEY = "Arrival Timezone"
LOCATION_TZ_KEYS = ("Timezone", "UTC Offset")
LOCAL_START_KEY = "Local Start Time"
LOCAL_END_KEY = "Local End Time"


class TimeNormalizationError(ValueError):
    pass


@dataclass(frozen=True)
class NormalizedTimes:
    start: datetime
    end: datetime | None
    start_local: str
    end_local: str | None


def parse_utc_offset(value: str | None) -> timedelta | None:
    """Parse "+09:00", "+0900", "-8", "UTC+5:30", "GMT-05:00" or "Z"; None when unusable."""
    if value is None:
        return None
    raw = str(value).strip().upper()
    if not raw:
        return None
    if raw in {"Z", "UTC", "GMT"}:
        return timedelta(0)
    m = _OFFSET_RE.match(raw)
    if not m:
        return None
    hours = int(m.group(2))
    minutes = int(m.group(3) or 0)
    if hours > 14 or minutes >= 60:
        return None
    delta = timedelta(hours=hours, minutes=minutes)
    return -delta if m.group(1) == "-" else delta


def split_zone_marker(literal: str) -> tuple[str, str | None]:
    """`2026-02-12T10:10:00-08:00` -> (`2026-02-12T10:10:00`, `-08:00`)."""
    text = literal.strip()
    m = _ZONE_SUFFIX_RE.match(text)
    if not m:
        return text, None
    return m.group(1), m.group(2)


def local_to_utc(literal: str, offset: str | None, *, field: str = "time") -> datetime:
    """
    Convert a wall-clock literal plus a signed UTC offset into a UTC instant.

    The literal is read as if it were already UTC and the offset is then subtracted.
    Without a usable offset the literal's own zone marker is used, and failing that the
    literal is treated as UTC.
    """
    naive_literal, embedded = split_zone_marker(literal)
    try:
        wall_clock = datetime.fromisoformat(naive_literal)
    except ValueError as e:
        raise TimeNormalizationError(f"Unparseable {field}: {literal!r}") from e
    if wall_clock.tzinfo is not None:
        wall_clock = wall_clock.replace(tzinfo=None)

    delta = parse_utc_offset(offset)
    if delta is None:
        delta = parse_utc_offset(embedded)
        log_event(
            logger,
            "timezones.offset_fallback",
            level=logging.WARNING,
            field=field,
            literal=literal,
            offset=offset,
            used="embedded" if delta is not None else "utc",
        )
    if delta is None:
        delta = timedelta(0)
    return wall_clock.replace(tzinfo=UTC) - delta


def _offsets_for(reservation: ParsedReservation) -> tuple[str | None, str | None]:
    details = reservation.details or {}
    if reservation.is_flight:
        return details.get(DEPARTURE_TZ_KEY), details.get(ARRIVAL_TZ_KEY)
    location_offset = next((details[k] for k in LOCATION_TZ_KEYS if details.get(k)), None)
    return location_offset, location_offset


def normalize_reservation_times(reservation: ParsedReservation) -> NormalizedTimes:
    start_offset, end_offset = _offsets_for(reservation)
    start = local_to_utc(reservation.start_time, start_offset, field="start_time")

    end: datetime | None = None
    end_local = reservation.end_time
    if end_local:
        try:
            end = local_to_utc(end_local, end_offset, field="end_time")
        except TimeNormalizationError:
            log_event(
                logger,
                "timezones.end_time_dropped",
                level=logging.WARNING,
                literal=end_local,
            )
            end_local = None
    return NormalizedTimes(
        start=start,
        end=end,
        start_local=reservation.start_time,
        end_local=end_local,
    )
