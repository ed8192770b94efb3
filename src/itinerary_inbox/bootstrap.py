from __future__ import annotations

from sqlalchemy import select

import itinerary_inbox.models  # noqa: F401
from itinerary_inbox.core.config import settings
from itinerary_inbox.core.db import SessionLocal, engine
from itinerary_inbox.core.logging import get_logger, log_event
from itinerary_inbox.core.models import Base
from itinerary_inbox.modules.identity.models import Profile
from itinerary_inbox.modules.identity.service import create_profile, forwarding_address

logger = get_logger(__name__)


def bootstrap() -> None:
    if settings.environment == "dev" and str(settings.database_url).startswith("sqlite"):
        Base.metadata.create_all(engine)

    if not settings.init_profile_email:
        return

    with SessionLocal() as session:
        existing = session.scalar(
            select(Profile).where(Profile.email == settings.init_profile_email)
        )
        if existing:
            return
        profile = create_profile(
            session,
            email=settings.init_profile_email,
            forwarding_token=settings.init_profile_token,
        )
        log_event(
            logger,
            "bootstrap.profile_created",
            profile_id=str(profile.id),
            forwarding_address=forwarding_address(profile),
        )
