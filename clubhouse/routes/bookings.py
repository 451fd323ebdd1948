"""Booking routes: invoice (request + hold + voucher), list, reschedule, cancel.

Members act for themselves; staff may act on behalf of any member. A member
can only cancel an unconfirmed booking directly; a confirmed one goes through
a cancellation request that staff decide.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from clubhouse.core.database import get_db
from clubhouse.core.dependencies import Principal, get_current_principal, require_staff
from clubhouse.core.exceptions import NotFoundError, StateError, ValidationError
from clubhouse.models.resource import ResourceKind
from clubhouse.models.cancellation import CancellationStatus
from clubhouse.schemas import (
    BookingCancel,
    BookingCreate,
    BookingOut,
    BookingReschedule,
    CancellationDecision,
    CancellationOutcome,
    CancellationRequestCreate,
    CancellationRequestOut,
    InvoiceOut,
    VoucherOut,
)
from clubhouse.services import booking_flow, cancellations
from clubhouse.services.booking_rules import DetailRequest

router = APIRouter(prefix="/bookings", tags=["bookings"])


def parse_kind(value: str) -> ResourceKind:
    """Path segments are lowercase ('room', 'hall'...); accept any case."""
    try:
        return ResourceKind(value.upper())
    except ValueError:
        raise NotFoundError("unknown_booking_type", f"Unknown booking type '{value}'.") from None


def _claimant_for(principal: Principal, membership_no: str | None) -> str:
    if not principal.is_staff:
        return principal.subject
    if not membership_no:
        raise ValidationError("missing_member", "Staff bookings must name the member's membership number.")
    return membership_no


@router.post("/{kind}/invoice", response_model=InvoiceOut, status_code=201)
async def create_invoice(
    kind: str,
    body: BookingCreate,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    request = booking_flow.BookingRequest(
        claimant_id=_claimant_for(principal, body.membership_no),
        start_date=body.start_date,
        end_date=body.end_date,
        slot=body.slot,
        resource_id=body.resource_id,
        unit_ids=body.unit_ids,
        category=body.category,
        quantity=body.quantity,
        pricing_type=body.pricing_type,
        guest_count=body.guest_count,
        event_type=body.event_type,
        guest_name=body.guest_name,
        remarks=body.remarks,
        details=[DetailRequest(d.day, d.slot, d.event_type) for d in body.details],
    )
    booking, voucher = await booking_flow.request_booking(db, parse_kind(kind), request)
    return InvoiceOut(booking=BookingOut.model_validate(booking), voucher=VoucherOut.model_validate(voucher))


@router.get("", response_model=list[BookingOut])
async def list_my_bookings(
    membership_no: str | None = Query(None),
    include_cancelled: bool = False,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    member = await booking_flow.get_member(db, _claimant_for(principal, membership_no))
    return await booking_flow.list_member_bookings(db, member.id, include_cancelled)


@router.patch("/{booking_id}", response_model=BookingOut)
async def reschedule_booking(
    booking_id: int,
    body: BookingReschedule,
    staff: Principal = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    return await booking_flow.reschedule_booking(db, booking_id, body.start_date, body.end_date, body.slot)


@router.delete("/{booking_id}", response_model=BookingOut)
async def cancel_booking(
    booking_id: int,
    body: BookingCancel | None = None,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    booking = await booking_flow.get_booking(db, booking_id)
    if not principal.is_staff and booking.member.membership_no != principal.subject:
        raise NotFoundError("booking_not_found", f"Booking {booking_id} not found.")

    if not principal.is_staff and booking.confirmed and not booking.cancelled:
        raise StateError(
            "cancellation_request_required",
            "Confirmed bookings are cancelled through a cancellation request.",
        )

    reason = body.reason if body and body.reason else f"Cancelled by {principal.display_name}"
    return await booking_flow.cancel_booking(db, booking_id, reason)


@router.get("/cancellation-requests", response_model=list[CancellationRequestOut])
async def list_cancellation_requests(
    status: CancellationStatus | None = Query(None),
    staff: Principal = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    return await cancellations.list_cancellation_requests(db, status)


@router.post("/{booking_id}/cancellation-request", response_model=CancellationRequestOut, status_code=201)
async def request_cancellation(
    booking_id: int,
    body: CancellationRequestCreate,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    return await cancellations.request_cancellation(
        db,
        booking_id,
        body.reason,
        requested_by=principal.display_name,
        claimant_id=None if principal.is_staff else principal.subject,
    )


@router.post("/{booking_id}/cancellation-request/decision", response_model=CancellationOutcome)
async def decide_cancellation(
    booking_id: int,
    body: CancellationDecision,
    staff: Principal = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    request, booking = await cancellations.decide_cancellation(
        db, booking_id, body.approve, body.remarks, decided_by=staff.display_name
    )
    return CancellationOutcome(
        request=CancellationRequestOut.model_validate(request),
        booking=BookingOut.model_validate(booking),
    )
