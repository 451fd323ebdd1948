"""Hold manager.

A hold is a short exclusive claim taken while a member pays. It expires on
its own: every read ignores holds whose ``expires_at`` has passed, so the
purge below is storage hygiene and nothing else.
"""

import logging
from datetime import datetime, timedelta

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from clubhouse.core.clock import ensure_utc, resolve_now
from clubhouse.core.config import settings
from clubhouse.core.exceptions import ConflictError, ValidationError
from clubhouse.models.booking import Booking, PaymentState
from clubhouse.models.claims import Hold
from clubhouse.models.resource import Resource
from clubhouse.services.conflicts import check_conflict
from clubhouse.services.extent import TemporalExtent

logger = logging.getLogger(__name__)


async def acquire(
    db: AsyncSession,
    resource: Resource,
    claimant_id: str,
    extent: TemporalExtent | None,
    duration_minutes: int | None = None,
    booking_id: int | None = None,
    now: datetime | None = None,
    expires_at: datetime | None = None,
) -> Hold:
    """Take a hold on ``extent`` of ``resource`` for ``claimant_id``.

    A claimant re-requesting the exact same extent for the same booking gets
    a fresh hold in place of the old one; an existing hold is never extended.
    Holds belonging to the claimant's other bookings are left alone.
    ``expires_at`` pins the expiry instead of ``now + duration`` (used when a
    pending booking is moved and must keep its original payment window).
    """
    now = resolve_now(now)
    if expires_at is None:
        duration = settings.hold_minutes if duration_minutes is None else duration_minutes
        if duration <= 0:
            raise ValidationError("hold_duration", "Hold duration must be a positive number of minutes.")
        expires_at = now + timedelta(minutes=duration)
    elif ensure_utc(expires_at) <= now:
        raise ValidationError("hold_duration", "A hold must expire in the future.")

    same = [Hold.resource_id == resource.id, Hold.claimant_id == claimant_id]
    same.append(Hold.booking_id.is_(None) if booking_id is None else Hold.booking_id == booking_id)
    if extent is None:
        same.append(Hold.start_date.is_(None))
    else:
        same += [Hold.start_date == extent.start_date, Hold.end_date == extent.end_date]
        same.append(Hold.slot.is_(None) if extent.slot is None else Hold.slot == extent.slot)
    await db.execute(delete(Hold).where(*same))

    result = await check_conflict(db, resource, extent, claimant_id=claimant_id, now=now)
    if result.has_conflict:
        raise ConflictError.from_results([result])

    hold = Hold(
        resource_id=resource.id,
        claimant_id=claimant_id,
        booking_id=booking_id,
        start_date=extent.start_date if extent else None,
        end_date=extent.end_date if extent else None,
        slot=extent.slot if extent else None,
        expires_at=expires_at,
    )
    db.add(hold)
    await db.flush()
    logger.info("Hold %s on %s for %s until %s", hold.id, resource.name, claimant_id, hold.expires_at)
    return hold


async def holds_for_booking(db: AsyncSession, booking_id: int, now: datetime | None = None) -> list[Hold]:
    """Unexpired holds tied to a booking."""
    now = resolve_now(now)
    result = await db.execute(
        select(Hold).where(Hold.booking_id == booking_id, Hold.expires_at > now).order_by(Hold.id)
    )
    return list(result.scalars().all())


async def promote(db: AsyncSession, hold_id: int, now: datetime | None = None) -> Booking | None:
    """Turn a live hold into a confirmed, paid booking.

    Returns None when the hold is gone (already promoted) or has expired;
    calling it twice is harmless.
    """
    now = resolve_now(now)
    hold = await db.get(Hold, hold_id, with_for_update=True)
    if hold is None or ensure_utc(hold.expires_at) <= now:
        return None

    booking = await db.get(Booking, hold.booking_id) if hold.booking_id is not None else None
    await db.delete(hold)
    if booking is not None and not booking.cancelled:
        booking.confirmed = True
        booking.payment_state = PaymentState.PAID
    await db.flush()
    return booking


async def release_for_booking(db: AsyncSession, booking_id: int) -> int:
    result = await db.execute(delete(Hold).where(Hold.booking_id == booking_id))
    return result.rowcount or 0


async def purge_expired(db: AsyncSession, now: datetime | None = None) -> int:
    """Physically delete expired holds."""
    now = resolve_now(now)
    result = await db.execute(delete(Hold).where(Hold.expires_at <= now))
    count = result.rowcount or 0
    if count:
        logger.info("Purged %d expired holds", count)
    return count
