"""
Destination heuristics used to decide whether two place descriptions belong to the same trip.

Everything here is pure string logic so it can be exercised without a database.
"""

from __future__ import annotations

import re

UNKNOWN_DESTINATIONS: frozenset[str] = frozenset(
    {
        "",
        "unknown",
        "unknown destination",
        "unknown location",
        "n/a",
        "na",
        "none",
        "null",
        "tbd",
        "tba",
        "not specified",
        "unspecified",
    }
)

_TOKEN_SPLIT_RE = re.compile(r"[\s,/()\-]+")
_TRIP_NAME_PREFIX = "trip to "


def _norm(value: str | None) -> str:
    return re.sub(r"\s+", " ", (value or "").strip().lower())


def _tokens(value: str) -> set[str]:
    return {w for w in _TOKEN_SPLIT_RE.split(value) if len(w) > 2}


def is_unknown_destination(value: str | None) -> bool:
    return _norm(value) in UNKNOWN_DESTINATIONS


def match_destinations(
    new_destination: str | None,
    new_country: str | None,
    new_region: str | None,
    existing_destination: str | None,
    existing_name: str | None,
) -> str | None:
    """
    Return the name of the first rule that relates the two destinations, or None.

    Rules, in order: exact, substring, trip_name, shared_token, region, country.
    """
    new_dest = "" if is_unknown_destination(new_destination) else _norm(new_destination)
    exist_dest = "" if is_unknown_destination(existing_destination) else _norm(existing_destination)
    exist_name = _norm(existing_name)

    if new_dest and exist_dest:
        if new_dest == exist_dest:
            return "exact"
        if new_dest in exist_dest or exist_dest in new_dest:
            return "substring"

    if new_dest and exist_name:
        bare_name = exist_name.removeprefix(_TRIP_NAME_PREFIX).strip()
        if new_dest in exist_name or (bare_name and bare_name in new_dest):
            return "trip_name"

    exist_words = _tokens(exist_dest)
    if new_dest and exist_words & _tokens(new_dest):
        return "shared_token"

    region = _norm(new_region)
    if region and not is_unknown_destination(region):
        if region in exist_dest or region in exist_name:
            return "region"
        for word in exist_words:
            if word in region:
                return "region"

    country = _norm(new_country)
    if country and not is_unknown_destination(country):
        if country in exist_dest or country in exist_name:
            return "country"

    return None


def destinations_related(
    new_destination: str | None,
    new_country: str | None,
    new_region: str | None,
    existing_destination: str | None,
    existing_name: str | None,
) -> bool:
    return (
        match_destinations(
            new_destination, new_country, new_region, existing_destination, existing_name
        )
        is not None
    )
