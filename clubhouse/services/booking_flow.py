"""Booking workflow: request, confirm, cancel, reschedule, lapse.

A request moves REQUESTED -> VALIDATED -> HELD inside one transaction:
rules are checked, the resources are locked, conflicts are evaluated, and
only then are the booking, its holds and its pending voucher written. Any
error raised on the way aborts the request session, so a rejected request
leaves nothing behind.

A payment signal later moves the booking to CONFIRMED via confirm_booking().
If it never arrives the holds expire and the booking simply stops blocking
anyone; lapse_unpaid_bookings() tidies such bookings up afterwards.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime

from sqlalchemy import exists, select
from sqlalchemy.ext.asyncio import AsyncSession

from clubhouse.core.clock import club_day_start, club_today, ensure_utc, resolve_now
from clubhouse.core.config import settings
from clubhouse.core.exceptions import ConflictError, NotFoundError, StateError, ValidationError
from clubhouse.models.booking import Booking, BookingDetail, BookingUnit, PaymentState, PricingType, Slot
from clubhouse.models.claims import Hold
from clubhouse.models.member import Member
from clubhouse.models.resource import Resource, ResourceKind
from clubhouse.models.voucher import Voucher, VoucherStatus, VoucherType
from clubhouse.services import booking_rules, holds, postings, pricing
from clubhouse.services.booking_rules import DetailRequest
from clubhouse.services.conflicts import ConflictResult, find_conflict
from clubhouse.services.extent import TemporalExtent, nights, parse_slot, regime_for
from clubhouse.services.occupancy import (
    ClaimKind,
    blackout_covering,
    booking_extents,
    load_claims,
    lock_resources,
)

logger = logging.getLogger(__name__)

SUPERSEDED_REASON = "Superseded by a new request for the same dates"
LAPSED_REASON = "Payment not received before the hold expired"


@dataclass
class BookingRequest:
    """What a member (or staff on their behalf) asks for.

    Venues name one ``resource_id``. Lodging names explicit ``unit_ids``,
    a single ``resource_id``, or a ``category`` plus ``quantity`` to let the
    engine pick free units.
    """

    claimant_id: str
    start_date: date | None
    end_date: date | None
    slot: str | Slot | None = None
    resource_id: int | None = None
    unit_ids: list[int] = field(default_factory=list)
    category: str | None = None
    quantity: int = 1
    pricing_type: PricingType = PricingType.MEMBER
    guest_count: int = 0
    event_type: str | None = None
    guest_name: str | None = None
    remarks: str | None = None
    details: list[DetailRequest] = field(default_factory=list)


# -- Lookups -----------------------------------------------------------------


async def get_member(db: AsyncSession, claimant_id: str) -> Member:
    result = await db.execute(select(Member).where(Member.membership_no == claimant_id))
    member = result.scalar_one_or_none()
    if member is None:
        raise NotFoundError("member_not_found", f"Member {claimant_id} not found.")
    return member


async def get_booking(db: AsyncSession, booking_id: int, lock: bool = False) -> Booking:
    booking = await db.get(Booking, booking_id, with_for_update=True if lock else None)
    if booking is None:
        raise NotFoundError("booking_not_found", f"Booking {booking_id} not found.")
    return booking


async def list_member_bookings(db: AsyncSession, member_id: int, include_cancelled: bool = False) -> list[Booking]:
    query = select(Booking).where(Booking.member_id == member_id)
    if not include_cancelled:
        query = query.where(Booking.cancelled.is_(False))
    result = await db.execute(query.order_by(Booking.start_date.desc(), Booking.id.desc()))
    return list(result.scalars().all())


async def _resolve_resources(db: AsyncSession, kind: ResourceKind, req: BookingRequest) -> tuple[list[Resource], bool]:
    """The candidate units and whether the caller named them explicitly."""
    if kind.is_lodging and req.category and not req.unit_ids and req.resource_id is None:
        result = await db.execute(
            select(Resource)
            .where(Resource.kind == kind, Resource.category == req.category)
            .order_by(Resource.unit_number, Resource.id)
        )
        candidates = list(result.scalars().all())
        if not candidates:
            raise NotFoundError("resource_not_found", f"No {kind.value.lower()} units of type {req.category}.")
        return candidates, False

    ids = list(req.unit_ids) if kind.is_lodging and req.unit_ids else []
    if not ids and req.resource_id is not None:
        ids = [req.resource_id]
    if not ids:
        raise ValidationError("missing_resource", f"A {kind.value.lower()} must be specified.")

    result = await db.execute(select(Resource).where(Resource.id.in_(ids)))
    found = {r.id: r for r in result.scalars().all()}
    for resource_id in ids:
        resource = found.get(resource_id)
        if resource is None or resource.kind != kind:
            raise NotFoundError("resource_not_found", f"{kind.value.title()} {resource_id} not found.")
    return [found[i] for i in dict.fromkeys(ids)], True


def _unavailable(resource: Resource, reason: str) -> StateError:
    return StateError("resource_inactive", f"{resource.name} is out of service: {reason}.")


# -- Supersede ---------------------------------------------------------------


async def _supersede_pending(
    db: AsyncSession,
    member: Member,
    kind: ResourceKind,
    req: BookingRequest,
    candidates: list[Resource],
    extents: list[TemporalExtent],
    explicit: bool,
    now: datetime,
) -> list[Booking]:
    """Cancel the claimant's pending booking for exactly the same request.

    Only a repeat of the same extent on the same units is replaced, so a
    member asking again does not stack a second hold. Any other pending
    booking of theirs, overlapping or not, is left alone.
    """
    if not extents:
        return []
    ids = {r.id for r in candidates}
    wanted = sorted(extents, key=_extent_key)
    result = await db.execute(
        select(Booking)
        .where(
            Booking.member_id == member.id,
            Booking.kind == kind,
            Booking.confirmed.is_(False),
            Booking.cancelled.is_(False),
            Booking.start_date == req.start_date,
            Booking.end_date == req.end_date,
        )
        .order_by(Booking.id)
    )
    superseded = []
    for old in result.scalars().all():
        units = set(old.resource_ids)
        same_units = units == ids if explicit else units <= ids and len(units) == req.quantity
        if same_units and sorted(booking_extents(old), key=_extent_key) == wanted:
            await _cancel(db, old, SUPERSEDED_REASON, now, voucher_status=VoucherStatus.CANCELLED)
            superseded.append(old)
    if superseded:
        logger.info("Superseded pending bookings %s for %s", [b.id for b in superseded], member.membership_no)
    return superseded


def _extent_key(extent: TemporalExtent) -> tuple:
    return (extent.start_date, extent.end_date, extent.slot or "")


# -- Request -----------------------------------------------------------------


async def request_booking(
    db: AsyncSession,
    kind: ResourceKind,
    req: BookingRequest,
    now: datetime | None = None,
) -> tuple[Booking, Voucher]:
    """Validate, hold and invoice a booking. Returns the pending booking and its voucher."""
    now = resolve_now(now)
    today = club_today(now)

    # 1. Claimant
    member = await get_member(db, req.claimant_id)
    standing = booking_rules.check_member_standing(member, req.pricing_type)
    if standing:
        raise standing

    # 2. Input rules
    slot, violations = booking_rules.validate_request(kind, req.start_date, req.end_date, req.slot, today, req.quantity)
    details: list[DetailRequest] = []
    if not kind.is_lodging and not violations:
        try:
            requested = [DetailRequest(d.day, parse_slot(d.slot), d.event_type) for d in req.details]
        except ValidationError as e:
            violations.append(e)
        else:
            v = booking_rules.check_details(requested, req.start_date, req.end_date, today)
            if v:
                violations.append(v)
            details = booking_rules.expand_details(req.start_date, req.end_date, slot, req.event_type, requested)
    if violations:
        raise ValidationError.collect(violations)

    # 3. Resources
    candidates, explicit = await _resolve_resources(db, kind, req)
    if not kind.is_lodging:
        v = booking_rules.check_capacity(candidates[0], req.guest_count)
        if v:
            raise v
    out_of_service = await blackout_covering(db, [r.id for r in candidates], today)
    if explicit:
        for resource in candidates:
            if resource.id in out_of_service:
                raise _unavailable(resource, out_of_service[resource.id].reason)
    else:
        candidates = [r for r in candidates if r.id not in out_of_service]

    # 4. Lock, supersede own pending requests, detect conflicts
    locked = await lock_resources(db, [r.id for r in candidates])
    by_id = {r.id: r for r in locked}
    candidates = [by_id[r.id] for r in candidates if r.id in by_id]

    if kind.is_lodging:
        extents = [TemporalExtent(req.start_date, req.end_date)]
    else:
        extents = [TemporalExtent(d.day, d.day, d.slot) for d in details]
    await _supersede_pending(db, member, kind, req, candidates, extents, explicit, now)

    claims = await load_claims(db, candidates, (req.start_date, req.end_date), now)
    if kind.is_lodging:
        quantity = len(candidates) if explicit else req.quantity
        selected = _select_units(candidates, extents[0], claims, member.membership_no, today, quantity, explicit, req)
    else:
        selected = candidates[:1]
        conflicts = _extent_conflicts(selected[0], extents, claims, member.membership_no, today)
        if conflicts:
            raise ConflictError.from_results(conflicts)

    # 5. Price
    if kind.is_lodging:
        total, unit_prices = pricing.lodging_price(selected, req.pricing_type, nights(req.start_date, req.end_date))
    else:
        total = pricing.venue_price(selected[0], req.pricing_type, len(details))
        unit_prices = [total]

    # 6. Write: booking, holds, voucher
    booking = Booking(
        kind=kind,
        member=member,
        start_date=req.start_date,
        end_date=req.end_date,
        slot=slot,
        pricing_type=req.pricing_type,
        guest_count=req.guest_count,
        event_type=req.event_type,
        guest_name=req.guest_name,
        remarks=req.remarks,
        total_price=total,
        paid_amount=0,
        pending_amount=total,
        payment_state=PaymentState.UNPAID,
        confirmed=False,
        cancelled=False,
        units=[BookingUnit(resource_id=r.id, price_at_booking=p) for r, p in zip(selected, unit_prices, strict=True)],
        details=[BookingDetail(day=d.day, slot=d.slot, event_type=d.event_type or req.event_type) for d in details],
    )
    db.add(booking)
    await db.flush()

    expires_at = None
    for resource in selected:
        for extent in extents:
            hold = await holds.acquire(
                db,
                resource,
                member.membership_no,
                extent,
                settings.hold_minutes,
                booking_id=booking.id,
                now=now,
                expires_at=expires_at,
            )
            expires_at = hold.expires_at

    unit_names = ", ".join(r.name for r in selected)
    voucher = await postings.emit_voucher(
        db,
        booking,
        total,
        expires_at=expires_at,
        remarks=f"{kind.value.title()} booking: {unit_names}, {extents[0].describe(regime_for(kind))}"
        + (f" (+{len(extents) - 1} more)" if len(extents) > 1 else ""),
    )
    logger.info(
        "Booking %s requested: %s %s for %s, total %s, held until %s",
        booking.id,
        kind.value,
        unit_names,
        member.membership_no,
        total,
        expires_at,
    )
    return booking, voucher


def _extent_conflicts(
    resource: Resource,
    extents: list[TemporalExtent],
    claims: list,
    claimant_id: str,
    today: date,
    exclude: tuple[ClaimKind, int] | None = None,
) -> list[ConflictResult]:
    conflicts: list[ConflictResult] = []
    for extent in extents:
        result = find_conflict(resource, extent, claims, claimant_id, exclude, today)
        if result.has_conflict and result.message not in {c.message for c in conflicts}:
            conflicts.append(result)
    return conflicts


def _select_units(
    candidates: list[Resource],
    extent: TemporalExtent,
    claims: list,
    claimant_id: str,
    today: date,
    quantity: int,
    explicit: bool,
    req: BookingRequest,
) -> list[Resource]:
    """Run the detector once per unit and keep the free ones, lowest unit number first."""
    results = [find_conflict(r, extent, claims, claimant_id, None, today) for r in candidates]
    conflicting = [res for res in results if res.has_conflict]
    available = [r for r, res in zip(candidates, results, strict=True) if not res.has_conflict]

    if explicit:
        if conflicting:
            raise ConflictError.from_results(conflicting)
        return candidates

    available.sort(key=lambda r: (r.unit_number, r.id))
    if len(available) < quantity:
        raise ConflictError(
            f"Only {len(available)} {req.category} unit(s) available. Requested: {quantity}. "
            f"{len(candidates) - len(available)} unit(s) are booked, reserved, out of service or on hold.",
            conflicting,
            rule="insufficient_units",
        )
    return available[:quantity]


# -- Confirm -----------------------------------------------------------------


async def confirm_booking(
    db: AsyncSession,
    booking_type: ResourceKind,
    booking_id: int,
    amount: int | None = None,
    transaction_id: str | None = None,
    now: datetime | None = None,
) -> Booking:
    """Apply a payment signal: promote the holds, confirm the voucher, post the ledger.

    Duplicate and late signals are no-ops: a cancelled, already confirmed or
    lapsed booking is returned unchanged.
    """
    now = resolve_now(now)
    booking = await get_booking(db, booking_id, lock=True)
    if booking.kind != booking_type:
        raise NotFoundError("booking_not_found", f"{booking_type.value.title()} booking {booking_id} not found.")

    if booking.cancelled:
        logger.warning("Confirm ignored: booking %s is cancelled", booking.id)
        return booking
    if booking.confirmed:
        logger.info("Confirm ignored: booking %s already confirmed", booking.id)
        return booking

    live = await holds.holds_for_booking(db, booking.id, now)
    if not live:
        logger.warning("Confirm ignored: holds for booking %s have lapsed", booking.id)
        return booking

    if amount is not None and amount <= 0:
        raise ValidationError("amount", "A confirmed payment must be a positive amount.")

    for hold in live:
        await holds.promote(db, hold.id, now)
    await holds.release_for_booking(db, booking.id)

    paid = booking.total_price if amount is None else amount
    booking.confirmed = True
    booking.paid_amount = paid
    booking.pending_amount = max(booking.total_price - paid, 0)
    booking.payment_state = PaymentState.PAID if booking.pending_amount == 0 else PaymentState.PARTIAL

    await postings.settle_vouchers(db, booking, VoucherStatus.PENDING, VoucherStatus.CONFIRMED, transaction_id, now)
    if not await postings.payment_already_posted(db, booking.id):
        await postings.post_ledger(db, booking.member_id, paid, booking.id, now=now)
    await db.flush()

    logger.info("Booking %s confirmed: paid %s of %s (%s)", booking.id, paid, booking.total_price, booking.payment_state)
    return booking


# -- Cancel ------------------------------------------------------------------


async def _cancel(
    db: AsyncSession,
    booking: Booking,
    reason: str | None,
    now: datetime,
    voucher_status: VoucherStatus = VoucherStatus.CANCELLED,
) -> None:
    booking.cancelled = True
    booking.cancelled_at = now
    booking.cancellation_reason = reason
    await holds.release_for_booking(db, booking.id)
    await postings.settle_vouchers(db, booking, VoucherStatus.PENDING, voucher_status, now=now)
    await db.flush()


async def _settle_cancellation(db: AsyncSession, booking: Booking, as_of: datetime, now: datetime) -> None:
    """Apply the cancellation policy to a confirmed booking's money.

    Notice runs from ``as_of`` to midnight at the club on the first day. The
    refund is what was paid beyond the deduction; a deduction larger than the
    payment is billed.
    """
    notice_hours = (club_day_start(booking.start_date) - as_of).total_seconds() / 3600
    rate = pricing.cancellation_deduction_rate(booking.kind, len(booking.units), notice_hours)
    deduction, refund, owed = pricing.cancellation_charges(booking.total_price, booking.paid_amount, rate)
    if refund > 0:
        await postings.refund_ledger(db, booking, refund, now)
    if owed > 0:
        await postings.bill_cancellation(db, booking, owed, now)
    booking.deduction_amount = deduction
    booking.refund_amount = refund
    booking.pending_amount = 0
    logger.info(
        "Booking %s settled on cancellation: %.0fh notice, deduction %s, refund %s, billed %s",
        booking.id, notice_hours, deduction, refund, owed,
    )


async def cancel_booking(
    db: AsyncSession,
    booking_id: int,
    reason: str | None = None,
    now: datetime | None = None,
    as_of: datetime | None = None,
) -> Booking:
    """Cancel a booking, keeping the row.

    A confirmed booking is settled under the cancellation policy with notice
    counted from ``as_of`` (defaults to ``now``). An unconfirmed booking was
    never charged and simply drops its holds and voucher.
    """
    now = resolve_now(now)
    booking = await get_booking(db, booking_id, lock=True)
    if booking.cancelled:
        return booking

    await _cancel(db, booking, reason, now)
    if booking.confirmed:
        await _settle_cancellation(db, booking, ensure_utc(as_of) if as_of else now, now)
    logger.info("Booking %s cancelled: %s", booking.id, reason or "no reason given")
    return booking


async def cancel_unpaid_voucher(
    db: AsyncSession,
    consumer_number: str,
    claimant_id: str | None = None,
    now: datetime | None = None,
) -> Voucher:
    """Abandon a pending payment: the voucher and its unpaid booking are cancelled.

    With ``claimant_id`` set, only that member's vouchers are visible.
    """
    now = resolve_now(now)
    result = await db.execute(select(Voucher).where(Voucher.consumer_number == consumer_number).with_for_update())
    voucher = result.scalar_one_or_none()
    if voucher is not None and claimant_id is not None:
        owner = await db.get(Member, voucher.member_id)
        if owner is None or owner.membership_no != claimant_id:
            voucher = None
    if voucher is None:
        raise NotFoundError("voucher_not_found", f"Voucher {consumer_number} not found.")

    if voucher.voucher_type is not VoucherType.FULL_PAYMENT or voucher.status is not VoucherStatus.PENDING:
        raise StateError("voucher_state", f"Voucher {consumer_number} is {voucher.status.value} and cannot be cancelled.")

    booking = await get_booking(db, voucher.booking_id, lock=True)
    if booking.confirmed or booking.payment_state is not PaymentState.UNPAID:
        raise StateError("booking_paid", f"Booking {booking.id} has payments recorded and cannot be abandoned.")

    if not booking.cancelled:
        await _cancel(db, booking, "Payment voucher cancelled by member", now)
    voucher.status = VoucherStatus.CANCELLED
    await db.flush()
    logger.info("Voucher %s cancelled; booking %s released", consumer_number, booking.id)
    return voucher


# -- Reschedule --------------------------------------------------------------


async def reschedule_booking(
    db: AsyncSession,
    booking_id: int,
    start_date: date | None,
    end_date: date | None,
    slot: str | Slot | None = None,
    now: datetime | None = None,
) -> Booking:
    """Move a booking to new dates (and slot) on the same units, then re-price it.

    The booking's own claims are excluded from conflict detection so an edit
    never collides with itself.
    """
    now = resolve_now(now)
    today = club_today(now)
    booking = await get_booking(db, booking_id, lock=True)
    if booking.cancelled:
        raise StateError("booking_cancelled", f"Booking {booking.id} is cancelled.")
    standing = booking_rules.check_member_standing(booking.member, booking.pricing_type)
    if standing:
        raise standing

    kind = booking.kind
    parsed, violations = booking_rules.validate_request(
        kind, start_date, end_date, slot if slot is not None else booking.slot, today
    )
    if violations:
        raise ValidationError.collect(violations)

    live: list[Hold] = []
    if not booking.confirmed:
        live = await holds.holds_for_booking(db, booking.id, now)
        if not live:
            raise StateError("booking_lapsed", f"Booking {booking.id} was never paid and its hold has expired.")

    resources = await lock_resources(db, booking.resource_ids)
    out_of_service = await blackout_covering(db, [r.id for r in resources], today)
    for resource in resources:
        if resource.id in out_of_service:
            raise _unavailable(resource, out_of_service[resource.id].reason)
    if kind.is_lodging:
        extents = [TemporalExtent(start_date, end_date)]
        details: list[DetailRequest] = []
    else:
        event_type = booking.details[0].event_type if booking.details else booking.event_type
        details = booking_rules.expand_details(start_date, end_date, parsed, event_type)
        extents = [TemporalExtent(d.day, d.day, d.slot) for d in details]

    claims = await load_claims(db, resources, (start_date, end_date), now)
    exclude = (ClaimKind.BOOKING, booking.id)
    conflicts: list[ConflictResult] = []
    for resource in resources:
        conflicts += _extent_conflicts(resource, extents, claims, booking.member.membership_no, today, exclude)
    if conflicts:
        raise ConflictError.from_results(conflicts)

    # Rewrite the extent
    booking.start_date = start_date
    booking.end_date = end_date
    booking.slot = parsed
    if not kind.is_lodging:
        booking.details.clear()
        await db.flush()
        booking.details.extend(BookingDetail(day=d.day, slot=d.slot, event_type=d.event_type) for d in details)

    # Re-price
    if kind.is_lodging:
        total, unit_prices = pricing.lodging_price(resources, booking.pricing_type, nights(start_date, end_date))
        prices = dict(zip([r.id for r in resources], unit_prices, strict=True))
        for unit in booking.units:
            unit.price_at_booking = prices[unit.resource_id]
    else:
        total = pricing.venue_price(resources[0], booking.pricing_type, len(details))
        booking.units[0].price_at_booking = total
    booking.total_price = total
    booking.pending_amount = max(total - booking.paid_amount, 0)
    if booking.paid_amount == 0:
        booking.payment_state = PaymentState.UNPAID
    elif booking.pending_amount == 0:
        booking.payment_state = PaymentState.PAID
    else:
        booking.payment_state = PaymentState.PARTIAL
    await db.flush()

    # Move the payment window along with a pending booking
    if live:
        expires_at = min(ensure_utc(h.expires_at) for h in live)
        await holds.release_for_booking(db, booking.id)
        for resource in resources:
            for extent in extents:
                await holds.acquire(
                    db,
                    resource,
                    booking.member.membership_no,
                    extent,
                    booking_id=booking.id,
                    now=now,
                    expires_at=expires_at,
                )
        for voucher in await postings.vouchers_for_booking(db, booking, VoucherStatus.PENDING):
            voucher.amount = total

    logger.info("Booking %s moved to %s..%s %s, total %s", booking.id, start_date, end_date, parsed or "", total)
    return booking


# -- Lapse -------------------------------------------------------------------


async def lapse_unpaid_bookings(db: AsyncSession, now: datetime | None = None) -> int:
    """Cancel pending bookings whose holds have all expired and expire their vouchers.

    Conflict detection already ignores such bookings; this only settles
    their records.
    """
    now = resolve_now(now)
    live_hold = exists().where(Hold.booking_id == Booking.id, Hold.expires_at > now)
    result = await db.execute(
        select(Booking).where(
            Booking.confirmed.is_(False),
            Booking.cancelled.is_(False),
            ~live_hold,
        )
    )
    lapsed = list(result.scalars().all())
    for booking in lapsed:
        await _cancel(db, booking, LAPSED_REASON, now, voucher_status=VoucherStatus.EXPIRED)
    if lapsed:
        logger.info("Lapsed %d unpaid bookings: %s", len(lapsed), [b.id for b in lapsed])
    return len(lapsed)
