"""
Alembic model import hook.

Importing this module ensures all SQLAlchemy models are registered on Base.metadata.
"""

from __future__ import annotations

# Import Profile first - every other table references it
from itinerary_inbox.modules.identity.models import Profile  # noqa: F401

from itinerary_inbox.modules.ingestion.models import ProcessedMessage  # noqa: F401
from itinerary_inbox.modules.notifications.models import Notification  # noqa: F401
from itinerary_inbox.modules.trips.models import DeletedTrip, Reservation, Trip  # noqa: F401
