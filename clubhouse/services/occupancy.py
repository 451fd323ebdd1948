"""Occupancy ledger: data access over the four claim tables.

Everything that reads claims goes through here so that the lazy-expiry rule
is applied in exactly one place: a hold whose ``expires_at`` is not in the
future does not exist for any read.

Queries are deliberately loose on dates (plain range intersection on the
stored columns) and return ``Claim`` values; the exact overlap decision per
resource regime is made by the pure functions in ``services.extent``.
"""

import enum
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from clubhouse.core.clock import club_today, resolve_now
from clubhouse.models.booking import Booking, BookingUnit
from clubhouse.models.claims import AdministrativeReservation, Blackout, Hold
from clubhouse.models.resource import Resource
from clubhouse.services.extent import Regime, TemporalExtent, blackout_extent, regime_for


class ClaimKind(enum.StrEnum):
    BLACKOUT = "blackout"
    BOOKING = "booking"
    RESERVATION = "reservation"
    HOLD = "hold"


@dataclass(frozen=True)
class Claim:
    """One occupied extent on one resource, whatever table it came from."""

    kind: ClaimKind
    id: int
    resource_id: int
    extent: TemporalExtent | None  # None: legacy whole-resource hold
    claimant_id: str | None = None
    booking_id: int | None = None
    reserved_by: str | None = None
    reason: str | None = None
    expires_at: datetime | None = None


Window = tuple[date, date]


def _regimes(resources: Iterable[Resource]) -> dict[int, Regime]:
    return {r.id: regime_for(r.kind) for r in resources}


async def lock_resources(db: AsyncSession, resource_ids: Iterable[int]) -> list[Resource]:
    """Load resources with SELECT ... FOR UPDATE, in id order.

    This is the serialisation point for check-then-write workflows: two
    transactions claiming the same resource queue up here instead of both
    passing the conflict check.

    No unique index on (resource, atom) backs this up. Claims are stored as
    ranges, and blackouts and legacy holds cover every slot, so atoms are
    never rows. One-claim-per-atom therefore holds only while every writer
    takes these locks before it checks.
    """
    ids = sorted(set(resource_ids))
    result = await db.execute(
        select(Resource)
        .where(Resource.id.in_(ids))
        .order_by(Resource.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def load_claims(
    db: AsyncSession,
    resources: list[Resource],
    window: Window | None,
    now: datetime | None = None,
    kinds: Iterable[ClaimKind] = tuple(ClaimKind),
) -> list[Claim]:
    """Load every live claim on the given resources that may touch the window.

    ``window`` is an inclusive day range. ``None`` means "anything that has not
    ended before today", used for whole-resource requests.
    """
    now = resolve_now(now)
    if not resources:
        return []
    if window is None:
        window = (club_today(now), date.max)
    win_start, win_end = window
    regimes = _regimes(resources)
    ids = list(regimes)
    kinds = set(kinds)
    claims: list[Claim] = []

    if ClaimKind.BLACKOUT in kinds:
        result = await db.execute(
            select(Blackout).where(
                Blackout.resource_id.in_(ids),
                Blackout.start_date <= win_end,
                Blackout.end_date >= win_start,
            )
        )
        for b in result.scalars().all():
            claims.append(
                Claim(
                    kind=ClaimKind.BLACKOUT,
                    id=b.id,
                    resource_id=b.resource_id,
                    extent=blackout_extent(b.start_date, b.end_date, regimes[b.resource_id]),
                    reason=b.reason,
                )
            )

    if ClaimKind.BOOKING in kinds:
        claims.extend(await _booking_claims(db, ids, win_start, win_end))

    if ClaimKind.RESERVATION in kinds:
        result = await db.execute(
            select(AdministrativeReservation).where(
                AdministrativeReservation.resource_id.in_(ids),
                AdministrativeReservation.start_date <= win_end,
                AdministrativeReservation.end_date >= win_start,
            )
        )
        for r in result.scalars().all():
            claims.append(
                Claim(
                    kind=ClaimKind.RESERVATION,
                    id=r.id,
                    resource_id=r.resource_id,
                    extent=TemporalExtent(r.start_date, r.end_date, r.slot),
                    reserved_by=r.reserved_by,
                    reason=r.remarks,
                )
            )

    if ClaimKind.HOLD in kinds:
        for h in await live_holds(db, ids, now, window):
            extent = None
            if h.start_date is not None and h.end_date is not None:
                extent = TemporalExtent(h.start_date, h.end_date, h.slot)
            claims.append(
                Claim(
                    kind=ClaimKind.HOLD,
                    id=h.id,
                    resource_id=h.resource_id,
                    extent=extent,
                    claimant_id=h.claimant_id,
                    booking_id=h.booking_id,
                    expires_at=h.expires_at,
                )
            )

    return claims


def booking_extents(booking: Booking) -> list[TemporalExtent]:
    """The extents a booking occupies on each of its units."""
    if booking.details:
        return [TemporalExtent(d.day, d.day, d.slot) for d in booking.details]
    return [TemporalExtent(booking.start_date, booking.end_date, booking.slot)]


async def _booking_claims(db: AsyncSession, ids: list[int], win_start: date, win_end: date) -> list[Claim]:
    """Confirmed, non-cancelled bookings. Pending bookings are represented by their holds."""
    result = await db.execute(
        select(Booking)
        .join(BookingUnit, BookingUnit.booking_id == Booking.id)
        .where(
            BookingUnit.resource_id.in_(ids),
            Booking.cancelled.is_(False),
            Booking.confirmed.is_(True),
            Booking.start_date <= win_end,
            Booking.end_date >= win_start,
        )
        .distinct()
    )
    claims: list[Claim] = []
    wanted = set(ids)
    for booking in result.scalars().all():
        extents = booking_extents(booking)
        for unit in booking.units:
            if unit.resource_id not in wanted:
                continue
            for extent in extents:
                claims.append(
                    Claim(
                        kind=ClaimKind.BOOKING,
                        id=booking.id,
                        resource_id=unit.resource_id,
                        extent=extent,
                        booking_id=booking.id,
                    )
                )
    return claims


async def live_holds(
    db: AsyncSession,
    resource_ids: Iterable[int],
    now: datetime | None = None,
    window: Window | None = None,
) -> list[Hold]:
    """Unexpired holds on the resources. Legacy holds match any window."""
    now = resolve_now(now)
    query = select(Hold).where(Hold.resource_id.in_(list(resource_ids)), Hold.expires_at > now)
    if window is not None:
        win_start, win_end = window
        query = query.where(
            or_(
                Hold.start_date.is_(None),
                (Hold.start_date <= win_end) & (Hold.end_date >= win_start),
            )
        )
    result = await db.execute(query.order_by(Hold.id))
    return list(result.scalars().all())


async def blackout_covering(db: AsyncSession, resource_ids: Iterable[int], day: date) -> dict[int, Blackout]:
    """Blackouts in force on ``day``, keyed by resource id."""
    result = await db.execute(
        select(Blackout)
        .where(
            Blackout.resource_id.in_(list(resource_ids)),
            Blackout.start_date <= day,
            Blackout.end_date >= day,
        )
        .order_by(Blackout.start_date)
    )
    covering: dict[int, Blackout] = {}
    for b in result.scalars().all():
        covering.setdefault(b.resource_id, b)
    return covering


async def refresh_resource_flags(db: AsyncSession, resource_ids: Iterable[int], now: datetime | None = None) -> None:
    """Recompute the derived ``is_reserved`` / ``is_active`` flags from the claim tables.

    Always a full recomputation, never an increment, and always inside the
    transaction that changed the claims.
    """
    ids = list(set(resource_ids))
    if not ids:
        return
    today = club_today(now)

    reserved_result = await db.execute(
        select(AdministrativeReservation.resource_id)
        .where(
            AdministrativeReservation.resource_id.in_(ids),
            AdministrativeReservation.end_date >= today,
        )
        .distinct()
    )
    reserved = set(reserved_result.scalars().all())
    out_of_service = await blackout_covering(db, ids, today)

    result = await db.execute(select(Resource).where(Resource.id.in_(ids)))
    for resource in result.scalars().all():
        resource.is_reserved = resource.id in reserved
        resource.is_active = resource.id not in out_of_service
    await db.flush()
