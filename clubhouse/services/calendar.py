"""Read-side queries for calendars, the catalog listing and the staff log.

Read-only; holds are filtered by expiry here exactly as in conflict
detection, so a calendar never shows a hold that no longer blocks anything.
"""

from datetime import date, datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from clubhouse.core.clock import club_today, resolve_now
from clubhouse.core.exceptions import NotFoundError, ValidationError
from clubhouse.models.booking import Booking, BookingUnit
from clubhouse.models.claims import AdministrativeReservation, Blackout
from clubhouse.models.resource import Resource, ResourceKind
from clubhouse.services.occupancy import blackout_covering, live_holds


def _check_range(date_from: date | None, date_to: date | None) -> None:
    if date_from is not None and date_to is not None and date_to < date_from:
        raise ValidationError("date_order", "'to' date cannot be before 'from' date.")


async def list_resources(
    db: AsyncSession, kind: ResourceKind | None = None, now: datetime | None = None
) -> list[tuple[Resource, Blackout | None]]:
    """The catalog with today's out-of-service blackout (if any) per resource.

    Availability is worked out from the blackout table, not the cached flag.
    """
    query = select(Resource)
    if kind is not None:
        query = query.where(Resource.kind == kind)
    result = await db.execute(query.order_by(Resource.kind, Resource.category, Resource.unit_number, Resource.id))
    resources = list(result.scalars().all())
    covering = await blackout_covering(db, [r.id for r in resources], club_today(now))
    return [(r, covering.get(r.id)) for r in resources]


async def get_date_statuses(
    db: AsyncSession,
    resource_ids: list[int],
    date_from: date,
    date_to: date,
    now: datetime | None = None,
) -> dict[str, list[dict]]:
    """Everything occupying the resources between two dates, flattened for a calendar."""
    _check_range(date_from, date_to)
    now = resolve_now(now)
    ids = list(dict.fromkeys(resource_ids))

    booking_result = await db.execute(
        select(Booking)
        .join(BookingUnit, BookingUnit.booking_id == Booking.id)
        .where(
            BookingUnit.resource_id.in_(ids),
            Booking.cancelled.is_(False),
            Booking.confirmed.is_(True),
            Booking.start_date <= date_to,
            Booking.end_date >= date_from,
        )
        .distinct()
        .order_by(Booking.start_date, Booking.id)
    )
    bookings = []
    for booking in booking_result.scalars().all():
        for unit in booking.units:
            if unit.resource_id not in ids:
                continue
            bookings.append(
                {
                    "booking_id": booking.id,
                    "resource_id": unit.resource_id,
                    "kind": booking.kind,
                    "start_date": booking.start_date,
                    "end_date": booking.end_date,
                    "slot": booking.slot,
                    "payment_state": booking.payment_state,
                    "details": [{"day": d.day, "slot": d.slot, "event_type": d.event_type} for d in booking.details],
                }
            )

    reservation_result = await db.execute(
        select(AdministrativeReservation)
        .where(
            AdministrativeReservation.resource_id.in_(ids),
            AdministrativeReservation.start_date <= date_to,
            AdministrativeReservation.end_date >= date_from,
        )
        .order_by(AdministrativeReservation.start_date, AdministrativeReservation.id)
    )
    reservations = [
        {
            "id": r.id,
            "resource_id": r.resource_id,
            "start_date": r.start_date,
            "end_date": r.end_date,
            "slot": r.slot,
            "reserved_by": r.reserved_by,
            "remarks": r.remarks,
        }
        for r in reservation_result.scalars().all()
    ]

    blackout_result = await db.execute(
        select(Blackout)
        .where(
            Blackout.resource_id.in_(ids),
            Blackout.start_date <= date_to,
            Blackout.end_date >= date_from,
        )
        .order_by(Blackout.start_date, Blackout.id)
    )
    blackouts = [
        {
            "id": b.id,
            "resource_id": b.resource_id,
            "start_date": b.start_date,
            "end_date": b.end_date,
            "reason": b.reason,
        }
        for b in blackout_result.scalars().all()
    ]

    holds = [
        {
            "id": h.id,
            "resource_id": h.resource_id,
            "booking_id": h.booking_id,
            "start_date": h.start_date,
            "end_date": h.end_date,
            "slot": h.slot,
            "expires_at": h.expires_at,
        }
        for h in await live_holds(db, ids, now, (date_from, date_to))
    ]

    return {"bookings": bookings, "reservations": reservations, "blackouts": blackouts, "holds": holds}


async def get_resource_log(
    db: AsyncSession,
    resource_id: int,
    date_from: date | None = None,
    date_to: date | None = None,
) -> dict:
    """Staff history of one resource, cancelled bookings included, newest first."""
    _check_range(date_from, date_to)
    resource = await db.get(Resource, resource_id)
    if resource is None:
        raise NotFoundError("resource_not_found", f"Resource {resource_id} not found.")

    booking_query = (
        select(Booking)
        .join(BookingUnit, BookingUnit.booking_id == Booking.id)
        .where(BookingUnit.resource_id == resource_id)
    )
    reservation_query = select(AdministrativeReservation).where(AdministrativeReservation.resource_id == resource_id)
    blackout_query = select(Blackout).where(Blackout.resource_id == resource_id)
    if date_from is not None:
        booking_query = booking_query.where(Booking.end_date >= date_from)
        reservation_query = reservation_query.where(AdministrativeReservation.end_date >= date_from)
        blackout_query = blackout_query.where(Blackout.end_date >= date_from)
    if date_to is not None:
        booking_query = booking_query.where(Booking.start_date <= date_to)
        reservation_query = reservation_query.where(AdministrativeReservation.start_date <= date_to)
        blackout_query = blackout_query.where(Blackout.start_date <= date_to)

    bookings = (await db.execute(booking_query.order_by(Booking.start_date.desc(), Booking.id.desc()))).scalars().all()
    reservations = (
        await db.execute(
            reservation_query.order_by(AdministrativeReservation.start_date.desc(), AdministrativeReservation.id.desc())
        )
    ).scalars().all()
    blackouts = (
        await db.execute(blackout_query.order_by(Blackout.start_date.desc(), Blackout.id.desc()))
    ).scalars().all()

    return {
        "resource": resource,
        "bookings": [
            {
                "booking_id": b.id,
                "member_name": b.member.name,
                "membership_no": b.member.membership_no,
                "start_date": b.start_date,
                "end_date": b.end_date,
                "slot": b.slot,
                "total_price": b.total_price,
                "paid_amount": b.paid_amount,
                "payment_state": b.payment_state,
                "confirmed": b.confirmed,
                "cancelled": b.cancelled,
                "cancellation_reason": b.cancellation_reason,
            }
            for b in bookings
        ],
        "reservations": [
            {
                "id": r.id,
                "start_date": r.start_date,
                "end_date": r.end_date,
                "slot": r.slot,
                "reserved_by": r.reserved_by,
                "remarks": r.remarks,
                "created_at": r.created_at,
            }
            for r in reservations
        ],
        "blackouts": [
            {
                "id": b.id,
                "start_date": b.start_date,
                "end_date": b.end_date,
                "reason": b.reason,
                "created_by": b.created_by,
            }
            for b in blackouts
        ],
    }
