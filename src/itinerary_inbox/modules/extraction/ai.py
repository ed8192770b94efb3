from __future__ import annotations

import json
import logging
import re
from datetime import date
from typing import Any

import httpx
from pydantic import ValidationError

from itinerary_inbox.core.config import settings
from itinerary_inbox.core.errors import ExtractionInvalid
from itinerary_inbox.core.logging import get_logger, log_event, log_exception
from itinerary_inbox.modules.extraction.schemas import ContextTrip, ParsedTrip
from itinerary_inbox.modules.trips.models import ReservationType

logger = get_logger(__name__)

_ALLOWED_TYPES: set[str] = {t.value for t in ReservationType}

_TYPE_ALIASES: dict[str, str] = {
    "car_rental": "car",
    "rental_car": "car",
    "rental": "car",
    "airfare": "flight",
    "lodging": "hotel",
    "rail": "train",
}

_SYSTEM_PROMPT = (
    "You extract travel itineraries from confirmation emails.\n"
    "Only use information explicitly present in the email. Never guess.\n"
    "Return JSON only."
)

_SHAPE = (
    "{\n"
    '  "trip_name": string,\n'
    '  "destination": string (city, or "Unknown" if not stated),\n'
    '  "country": string|null,\n'
    '  "region": string|null,\n'
    '  "start_date": "YYYY-MM-DD",\n'
    '  "end_date": "YYYY-MM-DD",\n'
    '  "reservations": [{\n'
    '    "type": one_of[' + ", ".join(sorted(_ALLOWED_TYPES)) + "],\n"
    '    "title": string,\n'
    '    "subtitle": string|null,\n'
    '    "start_time": "YYYY-MM-DDTHH:MM:SS" (local time at the place it happens),\n'
    '    "end_time": "YYYY-MM-DDTHH:MM:SS"|null,\n'
    '    "location": string|null,\n'
    '    "address": string|null,\n'
    '    "confirmation_number": string|null,\n'
    '    "status": "confirmed"|"cancelled",\n'
    '    "details": {string: string}\n'
    "  }]\n"
    "}\n"
)

_RULES = (
    "Rules:\n"
    "- Times are local wall-clock times; never convert them.\n"
    '- For flights put "Flight Number", "Departure Airport", "Arrival Airport" (IATA codes),\n'
    '  "Departure Timezone" and "Arrival Timezone" (UTC offsets like "+09:00") in details.\n'
    '- For other reservations put the local UTC offset in details as "Timezone".\n'
    "- Cancellation emails keep the original confirmation number and use status "
    '"cancelled".\n'
    "- If the email belongs to one of the existing trips, reuse its trip_name and "
    "destination.\n"
)


def extraction_available() -> bool:
    return bool(settings.openai_api_key)


def extract_trip(
    *,
    sender: str,
    subject: str,
    body: str,
    existing_trips: list[ContextTrip] | None = None,
    today: date | None = None,
) -> ParsedTrip:
    """
    Ask the model for a structured trip and coerce its answer into a `ParsedTrip`.

    Raises ExtractionInvalid when the model can't be reached or its answer lacks the
    fields a trip needs.
    """
    if not extraction_available():
        raise ExtractionInvalid("Extraction is not configured")

    today = today or date.today()
    email_text = _truncate_text(
        f"From: {sender}\nSubject: {subject}\n\n{body}",
        max_chars=int(settings.extraction_max_chars or 0) or 8000,
    )
    if not email_text:
        raise ExtractionInvalid("Email has no content")

    payload = {
        "model": settings.openai_model,
        "temperature": 0,
        "response_format": {"type": "json_object"},
        "messages": [
            {"role": "system", "content": _SYSTEM_PROMPT},
            {
                "role": "user",
                "content": (
                    f"Today's date is {today.isoformat()}.\n\n"
                    + _context_block(existing_trips or [])
                    + "Extract the trip from this email.\n"
                    "Return JSON with this exact shape:\n"
                    + _SHAPE
                    + "\n"
                    + _RULES
                    + "\nEmail:\n"
                    + email_text
                ),
            },
        ],
    }

    headers = {
        "Authorization": f"Bearer {settings.openai_api_key}",
        "Content-Type": "application/json",
    }

    url = settings.openai_base_url.rstrip("/") + "/chat/completions"
    try:
        resp = httpx.post(
            url,
            headers=headers,
            json=payload,
            timeout=float(settings.extraction_timeout_seconds or 30.0),
            follow_redirects=True,
        )
        resp.raise_for_status()
    except httpx.HTTPError as e:
        log_exception(logger, "extraction.request_failed", model=settings.openai_model)
        raise ExtractionInvalid("Extraction service unavailable") from e

    try:
        raw = resp.json()
        msg = raw["choices"][0]["message"]
        content = msg.get("content") if isinstance(msg, dict) else None
    except (ValueError, KeyError, IndexError, TypeError) as e:
        raise ExtractionInvalid("Malformed extraction response") from e

    if not isinstance(content, str) or not content.strip():
        raise ExtractionInvalid("Empty extraction response")

    obj = _parse_json_object(content)
    if not isinstance(obj, dict):
        raise ExtractionInvalid("Extraction response is not a JSON object")

    parsed = coerce_trip_payload(obj)
    log_event(
        logger,
        "extraction.completed",
        destination=parsed.destination,
        reservations=len(parsed.reservations),
    )
    return parsed


def coerce_trip_payload(obj: dict[str, Any]) -> ParsedTrip:
    """Normalize the shapes the model is known to produce into a `ParsedTrip`."""
    raw_reservations = obj.get("reservations")
    if isinstance(raw_reservations, dict):
        raw_reservations = [raw_reservations]
    elif not isinstance(raw_reservations, list):
        single = obj.get("reservation")
        if isinstance(single, dict):
            raw_reservations = [single]
        elif obj.get("type") and obj.get("start_time"):
            # Older prompt versions answered with one bare reservation object.
            raw_reservations = [obj]
        else:
            raw_reservations = []

    reservations: list[dict[str, Any]] = []
    for item in raw_reservations:
        if not isinstance(item, dict):
            continue
        res = _coerce_reservation(item)
        if res is not None:
            reservations.append(res)

    first = next((r for r in raw_reservations if isinstance(r, dict)), {})
    trip_dates = first.get("trip_dates") if isinstance(first.get("trip_dates"), dict) else {}

    destination = _clean_str(obj.get("destination")) or _clean_str(first.get("destination"))
    start_date = _clean_str(obj.get("start_date")) or _clean_str(trip_dates.get("start"))
    end_date = _clean_str(obj.get("end_date")) or _clean_str(trip_dates.get("end"))
    trip_name = _clean_str(obj.get("trip_name")) or _clean_str(first.get("trip_name"))
    if not trip_name and destination:
        trip_name = f"Trip to {destination}"

    missing = [
        name
        for name, value in (
            ("trip_name", trip_name),
            ("destination", destination),
            ("start_date", start_date),
            ("end_date", end_date),
        )
        if not value
    ]
    if missing:
        raise ExtractionInvalid(f"Extraction missing fields: {', '.join(missing)}")
    if not reservations:
        raise ExtractionInvalid("Extraction produced no reservations")

    try:
        return ParsedTrip(
            trip_name=trip_name,
            destination=destination,
            country=_clean_str(obj.get("country")) or _clean_str(first.get("country")),
            region=_clean_str(obj.get("region")) or _clean_str(first.get("region")),
            start_date=start_date,
            end_date=end_date,
            reservations=reservations,
        )
    except ValidationError as e:
        raise ExtractionInvalid("Extraction response failed validation") from e


def _coerce_reservation(item: dict[str, Any]) -> dict[str, Any] | None:
    raw_type = (_clean_str(item.get("type")) or "").lower().replace(" ", "_")
    res_type = _TYPE_ALIASES.get(raw_type, raw_type)
    if res_type not in _ALLOWED_TYPES:
        log_event(logger, "extraction.reservation_dropped", level=logging.WARNING, type=raw_type)
        return None

    start_time = _clean_str(item.get("start_time"))
    if not start_time:
        log_event(
            logger,
            "extraction.reservation_dropped",
            level=logging.WARNING,
            type=res_type,
            reason="missing_start_time",
        )
        return None

    status = (_clean_str(item.get("status")) or "").lower()
    details = item.get("details")
    return {
        "type": res_type,
        "title": _clean_str(item.get("title")) or res_type.capitalize(),
        "subtitle": _clean_str(item.get("subtitle")),
        "start_time": start_time,
        "end_time": _clean_str(item.get("end_time")),
        "location": _clean_str(item.get("location")),
        "address": _clean_str(item.get("address")),
        "confirmation_number": _clean_str(item.get("confirmation_number")),
        "status": "cancelled" if status in {"cancelled", "canceled"} else "confirmed",
        "details": _stringify_details(details) if isinstance(details, dict) else {},
    }


def _stringify_details(details: dict[str, Any]) -> dict[str, str]:
    out: dict[str, str] = {}
    for key, value in details.items():
        if value is None:
            continue
        if isinstance(value, (dict, list)):
            text = json.dumps(value, ensure_ascii=False)
        else:
            text = str(value).strip()
        if text:
            out[str(key).strip()] = text
    return out


def _clean_str(value: Any) -> str | None:
    if value is None or isinstance(value, (dict, list)):
        return None
    s = str(value).strip()
    return s or None


def _context_block(trips: list[ContextTrip]) -> str:
    if not trips:
        return ""
    lines = [
        f"- {t.name} ({t.destination}, {t.start_date} to {t.end_date})"
        for t in trips[: settings.extraction_context_trips]
    ]
    return "Existing trips:\n" + "\n".join(lines) + "\n\n"


def _truncate_text(text: str, *, max_chars: int) -> str:
    t = (text or "").replace("\u202f", " ").replace("\xa0", " ").strip()
    if not t:
        return ""
    if max_chars <= 0:
        return t
    if len(t) <= max_chars:
        return t
    return t[: max_chars - 20].rstrip() + "\n\n[TRUNCATED]"


def _parse_json_object(content: str) -> Any:
    c = (content or "").strip()
    if not c:
        return None
    try:
        return json.loads(c)
    except Exception:
        pass

    # Fallback: extract the first {...} block.
    m = re.search(r"\{.*\}", c, re.S)
    if not m:
        return None
    try:
        return json.loads(m.group(0))
    except Exception:
        return None
