"""Celery worker configuration.

Runs the storage-hygiene sweeps on a beat schedule: physically deleting
expired holds and settling bookings whose payment window lapsed. Nothing in
the booking workflow waits on these; every read already ignores expired
holds.
"""

import asyncio
import logging

from celery import Celery

from clubhouse.core.config import settings
from clubhouse.core.database import async_session_factory, engine
from clubhouse.services.booking_flow import lapse_unpaid_bookings
from clubhouse.services.holds import purge_expired

logger = logging.getLogger(__name__)

celery_app = Celery(
    "clubhouse",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone=settings.club_timezone,
    enable_utc=True,
    beat_schedule={
        "lapse-unpaid-bookings": {
            "task": "clubhouse.lapse_unpaid_bookings",
            "schedule": settings.sweep_interval_minutes * 60.0,
        },
        "purge-expired-holds": {
            "task": "clubhouse.purge_expired_holds",
            "schedule": settings.sweep_interval_minutes * 60.0,
        },
    },
)


async def _run(sweep) -> int:
    try:
        async with async_session_factory() as db:
            count = await sweep(db)
            await db.commit()
            return count
    finally:
        # Each task gets a fresh event loop; pooled connections must not outlive it
        await engine.dispose()


@celery_app.task(name="clubhouse.lapse_unpaid_bookings")
def lapse_unpaid_bookings_task() -> int:
    count = asyncio.run(_run(lapse_unpaid_bookings))
    logger.info("Lapse sweep: %d bookings", count)
    return count


@celery_app.task(name="clubhouse.purge_expired_holds")
def purge_expired_holds_task() -> int:
    count = asyncio.run(_run(purge_expired))
    logger.info("Hold purge: %d holds", count)
    return count
