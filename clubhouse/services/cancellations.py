"""Cancellation requests for confirmed bookings.

A member files one request per booking; staff approve or reject it. Approval
cancels through booking_flow.cancel_booking() with notice counted from when
the request was filed, so a slow decision never costs the member.
"""

import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from clubhouse.core.clock import ensure_utc, resolve_now
from clubhouse.core.exceptions import NotFoundError, StateError, ValidationError
from clubhouse.models.booking import Booking
from clubhouse.models.cancellation import CancellationRequest, CancellationStatus
from clubhouse.services import booking_flow

logger = logging.getLogger(__name__)

DEFAULT_REMARKS = "Action taken by staff"
OPEN_STATUSES = (CancellationStatus.PENDING, CancellationStatus.APPROVED)


async def _open_request(db: AsyncSession, booking_id: int) -> CancellationRequest | None:
    result = await db.execute(
        select(CancellationRequest)
        .where(CancellationRequest.booking_id == booking_id, CancellationRequest.status.in_(OPEN_STATUSES))
        .order_by(CancellationRequest.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def request_cancellation(
    db: AsyncSession,
    booking_id: int,
    reason: str,
    requested_by: str,
    claimant_id: str | None = None,
    now: datetime | None = None,
) -> CancellationRequest:
    """File a cancellation request. With ``claimant_id`` set, only that member's bookings are visible."""
    now = resolve_now(now)
    if not reason or not reason.strip():
        raise ValidationError("reason", "A cancellation request needs a reason.")

    booking = await booking_flow.get_booking(db, booking_id, lock=True)
    if claimant_id is not None and booking.member.membership_no != claimant_id:
        raise NotFoundError("booking_not_found", f"Booking {booking_id} not found.")
    if booking.cancelled:
        raise StateError("booking_cancelled", f"Booking {booking_id} is already cancelled.")
    if not booking.confirmed:
        raise StateError("booking_unconfirmed", f"Booking {booking_id} is unpaid; cancel its voucher instead.")
    if await _open_request(db, booking_id) is not None:
        raise StateError("cancellation_exists", f"A cancellation request for booking {booking_id} already exists.")

    request = CancellationRequest(
        booking_id=booking_id,
        reason=reason.strip(),
        requested_by=requested_by,
        requested_at=now,
        status=CancellationStatus.PENDING,
    )
    db.add(request)
    await db.flush()
    logger.info("Cancellation requested for booking %s by %s", booking_id, requested_by)
    return request


async def list_cancellation_requests(
    db: AsyncSession, status: CancellationStatus | None = None
) -> list[CancellationRequest]:
    query = select(CancellationRequest)
    if status is not None:
        query = query.where(CancellationRequest.status == status)
    result = await db.execute(query.order_by(CancellationRequest.requested_at, CancellationRequest.id))
    return list(result.scalars().all())


async def decide_cancellation(
    db: AsyncSession,
    booking_id: int,
    approve: bool,
    remarks: str | None = None,
    decided_by: str | None = None,
    now: datetime | None = None,
) -> tuple[CancellationRequest, Booking]:
    """Approve or reject the booking's pending request.

    Approval cancels the booking and settles its money; rejection leaves the
    booking untouched and lets the member file again.
    """
    now = resolve_now(now)
    result = await db.execute(
        select(CancellationRequest)
        .where(
            CancellationRequest.booking_id == booking_id,
            CancellationRequest.status == CancellationStatus.PENDING,
        )
        .with_for_update()
    )
    request = result.scalar_one_or_none()
    if request is None:
        raise NotFoundError("cancellation_not_found", f"No pending cancellation request for booking {booking_id}.")

    request.status = CancellationStatus.APPROVED if approve else CancellationStatus.REJECTED
    request.decided_by = decided_by
    request.decided_at = now
    request.staff_remarks = remarks or DEFAULT_REMARKS

    if approve:
        booking = await booking_flow.cancel_booking(
            db, booking_id, reason=request.reason, now=now, as_of=ensure_utc(request.requested_at)
        )
    else:
        booking = await booking_flow.get_booking(db, booking_id)
    await db.flush()
    logger.info("Cancellation request for booking %s %s", booking_id, request.status.value.lower())
    return request, booking
