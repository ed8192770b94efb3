from __future__ import annotations

import calendar
import logging
import re
from datetime import date

from itinerary_inbox.core.errors import ExtractionInvalid
from itinerary_inbox.core.logging import get_logger, log_event
from itinerary_inbox.modules.extraction.schemas import ParsedTrip

logger = get_logger(__name__)

_DATE_PREFIX_RE = re.compile(r"^\s*(\d{4})-(\d{1,2})-(\d{1,2})(.*)$", re.S)


class DateRepairError(ValueError):
    pass


def repair_date_literal(literal: str | None, *, field: str = "date") -> str:
    """
    Return `literal` with an impossible calendar day clamped to the end of its month.

    Extraction output occasionally contains dates such as 2026-02-29 or 2026-04-31; the
    year and month are trusted and the day is pulled back to the last valid one. Any
    time-of-day suffix is carried over untouched.
    """
    m = _DATE_PREFIX_RE.match(literal or "")
    if not m:
        raise DateRepairError(f"Unparseable {field}: {literal!r}")
    year, month, day = int(m.group(1)), int(m.group(2)), int(m.group(3))
    rest = m.group(4).rstrip()
    if not 1 <= month <= 12 or day < 1:
        raise DateRepairError(f"Unparseable {field}: {literal!r}")

    last_day = calendar.monthrange(year, month)[1]
    if day > last_day:
        log_event(
            logger,
            "dates.repaired",
            level=logging.WARNING,
            field=field,
            original=literal,
            corrected_day=last_day,
        )
        day = last_day
    return f"{year:04d}-{month:02d}-{day:02d}{rest}"


def literal_date(literal: str) -> date:
    """Calendar date of an already-repaired literal."""
    return date.fromisoformat(literal[:10])


def repair_parsed_dates(parsed: ParsedTrip) -> ParsedTrip:
    try:
        parsed.start_date = repair_date_literal(parsed.start_date, field="trip.start_date")[:10]
        parsed.end_date = repair_date_literal(parsed.end_date, field="trip.end_date")[:10]
    except DateRepairError as e:
        raise ExtractionInvalid(str(e)) from e

    if parsed.end_date < parsed.start_date:
        log_event(
            logger,
            "dates.trip_range_swapped",
            level=logging.WARNING,
            start_date=parsed.start_date,
            end_date=parsed.end_date,
        )
        parsed.start_date, parsed.end_date = parsed.end_date, parsed.start_date

    for idx, res in enumerate(parsed.reservations):
        try:
            res.start_time = repair_date_literal(
                res.start_time, field=f"reservations[{idx}].start_time"
            )
        except DateRepairError as e:
            raise ExtractionInvalid(str(e)) from e
        if res.end_time is None:
            continue
        try:
            res.end_time = repair_date_literal(res.end_time, field=f"reservations[{idx}].end_time")
        except DateRepairError:
            log_event(
                logger,
                "dates.end_time_dropped",
                level=logging.WARNING,
                index=idx,
                original=res.end_time,
            )
            res.end_time = None
    return parsed
