from __future__ import annotations

from celery import Celery
from celery.schedules import crontab

from itinerary_inbox.core.config import settings


def make_celery() -> Celery:
    app = Celery("itinerary_inbox", broker=settings.redis_url, backend=settings.redis_url)
    app.conf.update(
        task_always_eager=settings.environment in {"dev", "test"},
        task_eager_propagates=True,
        task_track_started=True,
        beat_schedule={
            "purge-deleted-trips": {
                "task": "purge_deleted_trips",
                "schedule": crontab(hour=3, minute=0),
            },
        },
    )
    app.autodiscover_tasks(["itinerary_inbox.worker.tasks"])
    return app


celery_app = make_celery()
