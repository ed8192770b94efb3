from __future__ import annotations

import httpx
from sqlalchemy.orm import Session

from itinerary_inbox.core.config import settings
from itinerary_inbox.core.logging import get_logger, log_event, log_exception
from itinerary_inbox.modules.identity.models import Profile
from itinerary_inbox.modules.notifications.models import Notification
from itinerary_inbox.modules.trips.models import Trip

logger = get_logger(__name__)

TRIP_UPDATE = "trip_update"


def trip_update_message(*, trip_name: str, created: int, cancelled: int) -> tuple[str, str]:
    parts: list[str] = []
    if created:
        parts.append(f"{created} reservation{'s' if created != 1 else ''} added")
    if cancelled:
        parts.append(f"{cancelled} reservation{'s' if cancelled != 1 else ''} cancelled")
    title = "New reservations" if created else "Reservation cancelled"
    return title, f"{trip_name}: {', '.join(parts)}."


def notify_trip_update(
    session: Session, *, profile: Profile, trip: Trip, created: int, cancelled: int
) -> Notification | None:
    """
    Tell the user their itinerary changed: an in-app row, then a push if they have a device.

    Best effort. A failure here never fails the ingestion that triggered it.
    """
    title, message = trip_update_message(trip_name=trip.name, created=created, cancelled=cancelled)

    notification: Notification | None = Notification(
        user_id=profile.id,
        trip_id=trip.id,
        type=TRIP_UPDATE,
        title=title,
        message=message,
        read=False,
    )
    try:
        session.add(notification)
        session.commit()
    except Exception:  # noqa: BLE001
        session.rollback()
        log_exception(logger, "notification.store_failed", trip_id=str(trip.id))
        notification = None

    if profile.push_token:
        send_push(token=profile.push_token, title=title, body=message, trip_id=str(trip.id))
    return notification


def send_push(*, token: str, title: str, body: str, trip_id: str) -> bool:
    payload = {"to": token, "title": title, "body": body, "data": {"tripId": trip_id}}
    try:
        resp = httpx.post(
            settings.push_api_url,
            headers={"Content-Type": "application/json", "Accept": "application/json"},
            json=payload,
            timeout=float(settings.push_timeout_seconds or 10.0),
        )
        resp.raise_for_status()
    except httpx.HTTPError:
        log_exception(logger, "notification.push_failed", trip_id=trip_id)
        return False
    log_event(logger, "notification.push_sent", trip_id=trip_id)
    return True
