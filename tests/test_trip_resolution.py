from __future__ import annotations

from datetime import date, timedelta

from sqlalchemy import func, select

from itinerary_inbox.core.db import SessionLocal
from itinerary_inbox.core.models import utcnow
from itinerary_inbox.modules.identity.service import create_profile
from itinerary_inbox.modules.trips import service as trips_service
from itinerary_inbox.modules.trips.models import DeletedTrip, Trip, TripStatus
from itinerary_inbox.modules.trips.service import (
    DeletedTripPolicy,
    TripQuery,
    delete_trip,
    expand_trip_dates,
    purge_deleted_trips,
    resolve_trip,
    trip_status_for_dates,
)


def _query(destination: str, start: date, end: date, **kwargs) -> TripQuery:
    return TripQuery(
        name=kwargs.get("name", f"Trip to {destination}"),
        destination=destination,
        country=kwargs.get("country"),
        region=kwargs.get("region"),
        start_date=start,
        end_date=end,
    )


def _trip_count(session) -> int:
    return session.scalar(select(func.count()).select_from(Trip))


def test_exact_destination_with_overlap_reuses_trip_and_expands_dates():
    with SessionLocal() as session:
        profile = create_profile(session, email="ana@example.com")
        first = resolve_trip(
            session,
            user_id=profile.id,
            query=_query("Tokyo", date(2027, 3, 10), date(2027, 3, 15)),
            policy=DeletedTripPolicy.OVERRIDE,
        )
        second = resolve_trip(
            session,
            user_id=profile.id,
            query=_query("Tokyo", date(2027, 3, 14), date(2027, 3, 18)),
            policy=DeletedTripPolicy.OVERRIDE,
        )

        assert first.created
        assert not second.created
        assert second.tier == "exact"
        assert second.trip.id == first.trip.id
        assert (second.trip.start_date, second.trip.end_date) == (
            date(2027, 3, 10),
            date(2027, 3, 18),
        )
        assert _trip_count(session) == 1


def test_fuzzy_match_within_buffer_window():
    with SessionLocal() as session:
        profile = create_profile(session, email="ana@example.com")
        resolve_trip(
            session,
            user_id=profile.id,
            query=_query("Denpasar, Bali", date(2027, 6, 1), date(2027, 6, 3)),
            policy=DeletedTripPolicy.OVERRIDE,
        )
        # Starts two days after the first trip ends: outside overlap, inside the buffer.
        second = resolve_trip(
            session,
            user_id=profile.id,
            query=_query("Ubud, Bali", date(2027, 6, 5), date(2027, 6, 8)),
            policy=DeletedTripPolicy.OVERRIDE,
        )

        assert second.tier == "fuzzy"
        assert second.rule == "shared_token"
        assert second.trip.end_date == date(2027, 6, 8)
        assert _trip_count(session) == 1


def test_distant_dates_create_separate_trips():
    with SessionLocal() as session:
        profile = create_profile(session, email="ana@example.com")
        resolve_trip(
            session,
            user_id=profile.id,
            query=_query("Tokyo", date(2027, 3, 1), date(2027, 3, 5)),
            policy=DeletedTripPolicy.OVERRIDE,
        )
        later = resolve_trip(
            session,
            user_id=profile.id,
            query=_query("Tokyo", date(2027, 5, 1), date(2027, 5, 5)),
            policy=DeletedTripPolicy.OVERRIDE,
        )
        assert later.created
        assert _trip_count(session) == 2


def test_trip_created_concurrently_during_jitter_is_adopted(monkeypatch):
    with SessionLocal() as session:
        profile = create_profile(session, email="ana@example.com")
        user_id = profile.id

    def _other_request_wins():
        with SessionLocal() as other:
            other.add(
                Trip(
                    user_id=user_id,
                    name="Bali getaway",
                    destination="Ubud, Bali",
                    start_date=date(2027, 8, 1),
                    end_date=date(2027, 8, 8),
                    status=TripStatus.UPCOMING,
                )
            )
            other.commit()

    monkeypatch.setattr(trips_service, "_creation_jitter", _other_request_wins)
    with SessionLocal() as session:
        resolution = resolve_trip(
            session,
            user_id=user_id,
            query=_query("Denpasar, Bali", date(2027, 8, 2), date(2027, 8, 6)),
            policy=DeletedTripPolicy.OVERRIDE,
        )

        assert resolution.created is False
        assert resolution.tier == "recheck_fuzzy"
        assert resolution.trip.destination == "Ubud, Bali"
        assert _trip_count(session) == 1


def test_unknown_destination_merges_with_single_nearby_trip_in_either_order():
    with SessionLocal() as session:
        ana = create_profile(session, email="ana@example.com")
        resolve_trip(
            session,
            user_id=ana.id,
            query=_query("Lima", date(2027, 8, 1), date(2027, 8, 4)),
            policy=DeletedTripPolicy.OVERRIDE,
        )
        unknown = resolve_trip(
            session,
            user_id=ana.id,
            query=_query("Unknown", date(2027, 8, 2), date(2027, 8, 2), name="Hotel booking"),
            policy=DeletedTripPolicy.OVERRIDE,
        )
        assert unknown.tier == "unknown"
        assert unknown.trip.destination == "Lima"

        bo = create_profile(session, email="bo@example.com")
        first = resolve_trip(
            session,
            user_id=bo.id,
            query=_query("Unknown", date(2027, 8, 2), date(2027, 8, 2), name="Hotel booking"),
            policy=DeletedTripPolicy.OVERRIDE,
        )
        known = resolve_trip(
            session,
            user_id=bo.id,
            query=_query("Lima", date(2027, 8, 1), date(2027, 8, 4)),
            policy=DeletedTripPolicy.OVERRIDE,
        )
        assert known.trip.id == first.trip.id
        assert known.trip.destination == "Lima"
        assert known.trip.name == "Trip to Lima"

        counts = dict(
            session.execute(select(Trip.user_id, func.count()).group_by(Trip.user_id)).all()
        )
        assert counts == {ana.id: 1, bo.id: 1}


def test_deleted_trip_is_suppressed_for_scans_and_overridden_by_forwards():
    with SessionLocal() as session:
        profile = create_profile(session, email="ana@example.com")
        created = resolve_trip(
            session,
            user_id=profile.id,
            query=_query("Rome", date(2027, 9, 1), date(2027, 9, 6)),
            policy=DeletedTripPolicy.OVERRIDE,
        )
        delete_trip(session, trip=created.trip)

        scanned = resolve_trip(
            session,
            user_id=profile.id,
            query=_query("Rome, Italy", date(2027, 9, 2), date(2027, 9, 4)),
            policy=DeletedTripPolicy.SUPPRESS,
        )
        assert scanned.suppressed
        assert scanned.trip is None
        assert _trip_count(session) == 0
        assert session.scalar(select(func.count()).select_from(DeletedTrip)) == 1

        forwarded = resolve_trip(
            session,
            user_id=profile.id,
            query=_query("Rome, Italy", date(2027, 9, 2), date(2027, 9, 4)),
            policy=DeletedTripPolicy.OVERRIDE,
        )
        assert forwarded.created
        assert session.scalar(select(func.count()).select_from(DeletedTrip)) == 0


def test_expand_trip_dates_never_shrinks():
    with SessionLocal() as session:
        profile = create_profile(session, email="ana@example.com")
        trip = resolve_trip(
            session,
            user_id=profile.id,
            query=_query("Oslo", date(2027, 1, 10), date(2027, 1, 20)),
            policy=DeletedTripPolicy.OVERRIDE,
        ).trip
        assert not expand_trip_dates(
            session, trip=trip, start=date(2027, 1, 12), end=date(2027, 1, 15)
        )
        assert expand_trip_dates(session, trip=trip, start=date(2027, 1, 8), end=date(2027, 1, 15))
        assert (trip.start_date, trip.end_date) == (date(2027, 1, 8), date(2027, 1, 20))


def test_trip_status_for_dates():
    today = date(2027, 5, 10)
    assert trip_status_for_dates(date(2027, 5, 11), date(2027, 5, 12), today) == TripStatus.UPCOMING
    assert trip_status_for_dates(date(2027, 5, 9), date(2027, 5, 10), today) == TripStatus.ACTIVE
    assert trip_status_for_dates(date(2027, 5, 1), date(2027, 5, 9), today) == TripStatus.COMPLETED


def test_purge_drops_old_deleted_trip_records():
    with SessionLocal() as session:
        profile = create_profile(session, email="ana@example.com")
        session.add_all(
            [
                DeletedTrip(
                    user_id=profile.id,
                    destination="Old",
                    start_date=date(2026, 1, 1),
                    end_date=date(2026, 1, 2),
                    deleted_at=utcnow() - timedelta(days=200),
                ),
                DeletedTrip(
                    user_id=profile.id,
                    destination="Recent",
                    start_date=date(2026, 9, 1),
                    end_date=date(2026, 9, 2),
                    deleted_at=utcnow() - timedelta(days=5),
                ),
            ]
        )
        session.commit()

        assert purge_deleted_trips(session) == 1
        remaining = list(session.scalars(select(DeletedTrip.destination)))
        assert remaining == ["Recent"]
