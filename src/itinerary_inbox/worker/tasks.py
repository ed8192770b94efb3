from __future__ import annotations

# Ensure all models are registered before any task runs
# isort: off
import itinerary_inbox.models  # noqa: F401
# isort: on

import time
from dataclasses import asdict
from typing import Any

from itinerary_inbox.core.logging import (
    get_logger,
    log_event,
    log_exception,
    monotonic_ms,
    reset_task_context,
    set_task_context,
)
from itinerary_inbox.worker.celery_app import celery_app

logger = get_logger(__name__)


@celery_app.task(name="ingest_scanned_email", bind=True)
def ingest_scanned_email_task(
    self, user_id: str, sender: str, subject: str, body: str
) -> dict[str, Any]:
    from itinerary_inbox.modules.ingestion.service import ingest_scanned_email

    task_id = getattr(self.request, "id", None)
    token = set_task_context(task_id)
    start = time.monotonic()
    log_event(
        logger,
        "celery.task.start",
        task_name="ingest_scanned_email",
        celery_task_id=task_id,
        profile_id=user_id,
    )
    try:
        result = ingest_scanned_email(user_id=user_id, sender=sender, subject=subject, body=body)
        log_event(
            logger,
            "celery.task.finish",
            task_name="ingest_scanned_email",
            celery_task_id=task_id,
            profile_id=user_id,
            skipped=result.skipped,
            duration_ms=monotonic_ms(start),
        )
        return asdict(result)
    except Exception:
        log_exception(
            logger,
            "celery.task.error",
            task_name="ingest_scanned_email",
            celery_task_id=task_id,
            profile_id=user_id,
            duration_ms=monotonic_ms(start),
        )
        raise
    finally:
        reset_task_context(token)


@celery_app.task(name="purge_deleted_trips", bind=True)
def purge_deleted_trips_task(self, retention_days: int | None = None) -> int:
    from itinerary_inbox.core.db import SessionLocal
    from itinerary_inbox.modules.trips.service import purge_deleted_trips

    task_id = getattr(self.request, "id", None)
    token = set_task_context(task_id)
    start = time.monotonic()
    log_event(logger, "celery.task.start", task_name="purge_deleted_trips", celery_task_id=task_id)
    try:
        with SessionLocal() as session:
            purged = purge_deleted_trips(session, retention_days=retention_days)
        log_event(
            logger,
            "celery.task.finish",
            task_name="purge_deleted_trips",
            celery_task_id=task_id,
            purged=purged,
            duration_ms=monotonic_ms(start),
        )
        return purged
    except Exception:
        log_exception(
            logger,
            "celery.task.error",
            task_name="purge_deleted_trips",
            celery_task_id=task_id,
            duration_ms=monotonic_ms(start),
        )
        raise
    finally:
        reset_task_context(token)
