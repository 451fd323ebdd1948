"""Service-level tests: booking workflow, holds, staff claims and the ledger."""

from datetime import UTC, date, datetime, timedelta

import pytest
from sqlalchemy import func, select

from clubhouse.core.exceptions import ConflictError, NotFoundError, StateError, ValidationError
from clubhouse.models import (
    AdministrativeReservation,
    Blackout,
    Booking,
    CancellationStatus,
    Hold,
    LedgerEntry,
    LedgerEntryType,
    Member,
    MemberStatus,
    PaymentState,
    PricingType,
    Resource,
    ResourceKind,
    Slot,
    Voucher,
    VoucherStatus,
    VoucherType,
)
from clubhouse.services import calendar, holds
from clubhouse.services.booking_flow import (
    LAPSED_REASON,
    BookingRequest,
    cancel_booking,
    cancel_unpaid_voucher,
    confirm_booking,
    lapse_unpaid_bookings,
    request_booking,
    reschedule_booking,
)
from clubhouse.services.booking_rules import DetailRequest
from clubhouse.services.cancellations import decide_cancellation, list_cancellation_requests, request_cancellation
from clubhouse.services.conflicts import check_conflict, check_conflicts
from clubhouse.services.extent import TemporalExtent
from clubhouse.services.occupancy import ClaimKind, lock_resources
from clubhouse.services.reservations import create_blackout, delete_blackout, reserve_bulk

T0 = datetime(2024, 1, 1, 9, 0, tzinfo=UTC)


def minutes(n: int) -> datetime:
    return T0 + timedelta(minutes=n)


async def _request(db, kind, claimant, start, end, slot=None, now=T0, **kw):
    if not kind.is_lodging:
        kw.setdefault("guest_count", 100 if kind is not ResourceKind.STUDIO else 0)
    req = BookingRequest(claimant_id=claimant, start_date=start, end_date=end, slot=slot, **kw)
    return await request_booking(db, kind, req, now=now)


async def _book(db, kind, claimant, start, end, slot=None, now=T0, **kw) -> Booking:
    booking, _ = await _request(db, kind, claimant, start, end, slot, now=now, **kw)
    return await confirm_booking(db, kind, booking.id, now=now)


async def _count(db, model, *where) -> int:
    result = await db.execute(select(func.count()).select_from(model).where(*where))
    return result.scalar_one()


# ---------------------------------------------------------------------------
# Scenario A: lodging half-open boundary
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_lodging_overlap_and_checkout_equals_checkin(db, catalog):
    u1 = catalog.rooms[0]
    await _book(db, ResourceKind.ROOM, catalog.member, date(2024, 1, 10), date(2024, 1, 12), resource_id=u1)

    with pytest.raises(ConflictError) as exc:
        await _request(db, ResourceKind.ROOM, catalog.other, date(2024, 1, 11), date(2024, 1, 13), resource_id=u1)
    assert exc.value.conflicts[0].kind is ClaimKind.BOOKING
    assert "Room 101" in exc.value.message

    booking, voucher = await _request(
        db, ResourceKind.ROOM, catalog.other, date(2024, 1, 12), date(2024, 1, 14), resource_id=u1
    )
    assert booking.resource_ids == [u1]
    assert booking.total_price == 2 * 5000
    assert voucher.status is VoucherStatus.PENDING
    assert voucher.amount == booking.total_price


# ---------------------------------------------------------------------------
# Scenario B: venue reservation blocks only its slot
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_venue_reservation_blocks_only_its_slot(db, catalog):
    v1 = catalog.halls[0]
    day = date(2024, 2, 1)
    await reserve_bulk(db, [v1], day, day, "MORNING", "AGM", True, "Desk Officer", now=T0)

    with pytest.raises(ConflictError) as exc:
        await _request(db, ResourceKind.HALL, catalog.member, day, day, "MORNING", resource_id=v1)
    assert exc.value.conflicts[0].kind is ClaimKind.RESERVATION
    assert "Desk Officer" in exc.value.message

    booking, _ = await _request(db, ResourceKind.HALL, catalog.member, day, day, "evening", resource_id=v1)
    assert [(d.day, d.slot) for d in booking.details] == [(day, Slot.EVENING)]


# ---------------------------------------------------------------------------
# Scenario C: blackout reason surfaces in the conflict
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_blackout_conflict_names_reason(db, catalog):
    v1 = catalog.halls[0]
    await create_blackout(db, v1, date(2024, 3, 1), date(2024, 3, 5), "renovation", "Desk Officer", now=T0)

    for slot in ("MORNING", "NIGHT"):
        with pytest.raises(ConflictError) as exc:
            await _request(db, ResourceKind.HALL, catalog.member, date(2024, 3, 4), date(2024, 3, 6), slot, resource_id=v1)
        assert "renovation" in exc.value.message
        assert exc.value.conflicts[0].kind is ClaimKind.BLACKOUT

    with pytest.raises(ConflictError) as exc:
        await reserve_bulk(db, [v1], date(2024, 3, 5), date(2024, 3, 5), "EVENING", None, True, "Desk Officer", now=T0)
    assert "renovation" in exc.value.message

    # The day after is free
    await _request(db, ResourceKind.HALL, catalog.member, date(2024, 3, 6), date(2024, 3, 6), "MORNING", resource_id=v1)


# ---------------------------------------------------------------------------
# Scenario D: bulk reservation is all or nothing
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_bulk_reserve_fails_as_a_whole(db, catalog):
    v1, v2, v3 = catalog.halls
    day = date(2024, 4, 1)
    await _book(db, ResourceKind.HALL, catalog.member, day, day, "EVENING", resource_id=v2)
    await db.commit()

    with pytest.raises(ConflictError) as exc:
        await reserve_bulk(db, [v1, v2, v3], day, day, "EVENING", "Gala", True, "Desk Officer", now=T0)
    await db.rollback()

    assert [c.resource_id for c in exc.value.conflicts] == [v2]
    assert "Hall B" in exc.value.message
    assert "Hall A" not in exc.value.message
    assert "Hall C" not in exc.value.message
    assert await _count(db, AdministrativeReservation) == 0


@pytest.mark.asyncio
async def test_bulk_reserve_reports_every_offender(db, catalog):
    v1, v2, v3 = catalog.halls
    day = date(2024, 4, 2)
    await _book(db, ResourceKind.HALL, catalog.member, day, day, "NIGHT", resource_id=v1)
    await create_blackout(db, v3, day, day, "flooring", now=T0)

    with pytest.raises(ConflictError) as exc:
        await reserve_bulk(db, [v1, v2, v3], day, day, "NIGHT", None, True, "Desk Officer", now=T0)
    assert [c.resource_id for c in exc.value.conflicts] == [v1, v3]
    assert [c.kind for c in exc.value.conflicts] == [ClaimKind.BOOKING, ClaimKind.BLACKOUT]


# ---------------------------------------------------------------------------
# Idempotent bulk reservation and derived flags
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_reserve_bulk_is_idempotent_and_reversible(db, catalog):
    ids = catalog.halls[:2]
    start, end = date(2024, 5, 1), date(2024, 5, 3)

    first = await reserve_bulk(db, ids, start, end, "MORNING", "Elections", True, "Desk Officer", now=T0)
    second = await reserve_bulk(db, ids, start, end, "morning", "Elections", True, "Desk Officer", now=T0)
    assert first["count"] == second["count"] == 2
    for resource_id in ids:
        assert await _count(db, AdministrativeReservation, AdministrativeReservation.resource_id == resource_id) == 1
        assert (await db.get(Resource, resource_id)).is_reserved

    released = await reserve_bulk(db, ids, start, end, "MORNING", None, False, "Desk Officer", now=T0)
    assert released["count"] == 2
    assert await _count(db, AdministrativeReservation) == 0
    for resource_id in ids:
        assert not (await db.get(Resource, resource_id)).is_reserved


@pytest.mark.asyncio
async def test_unreserve_without_dates_removes_nothing(db, catalog):
    await reserve_bulk(db, [catalog.studio], date(2024, 5, 1), date(2024, 5, 1), "NIGHT", None, True, "x", now=T0)
    result = await reserve_bulk(db, [catalog.studio], None, None, None, None, False, "x", now=T0)
    assert result["count"] == 0
    assert "nothing" in result["message"]
    assert await _count(db, AdministrativeReservation) == 1


@pytest.mark.asyncio
async def test_unreserve_removes_only_exact_matches(db, catalog):
    hall = catalog.halls[0]
    await reserve_bulk(db, [hall], date(2024, 5, 1), date(2024, 5, 2), "NIGHT", None, True, "x", now=T0)
    result = await reserve_bulk(db, [hall], date(2024, 5, 1), date(2024, 5, 1), "NIGHT", None, False, "x", now=T0)
    assert result["count"] == 0
    assert (await db.get(Resource, hall)).is_reserved


@pytest.mark.asyncio
async def test_reserve_bulk_validates_input(db, catalog):
    with pytest.raises(ValidationError) as exc:
        await reserve_bulk(db, [catalog.halls[0]], date(2023, 12, 1), date(2023, 11, 1), "LUNCH", None, True, "x", now=T0)
    rules = {v["rule"] for v in exc.value.details()}
    assert rules == {"date_order", "past_booking", "invalid_slot"}

    with pytest.raises(NotFoundError):
        await reserve_bulk(db, [9999], date(2024, 5, 1), date(2024, 5, 1), "NIGHT", None, True, "x", now=T0)


# ---------------------------------------------------------------------------
# Lazy hold expiry (Scenario E)
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_hold_blocks_others_until_it_expires(db, catalog):
    day = date(2024, 1, 20)
    pending, _ = await _request(db, ResourceKind.STUDIO, catalog.member, day, day, "MORNING", resource_id=catalog.studio)

    with pytest.raises(ConflictError) as exc:
        await _request(
            db, ResourceKind.STUDIO, catalog.other, day, day, "MORNING", resource_id=catalog.studio, now=minutes(30)
        )
    assert exc.value.conflicts[0].kind is ClaimKind.HOLD

    booking, _ = await _request(
        db, ResourceKind.STUDIO, catalog.other, day, day, "MORNING", resource_id=catalog.studio, now=minutes(61)
    )
    confirmed = await confirm_booking(db, ResourceKind.STUDIO, booking.id, now=minutes(62))
    assert confirmed.confirmed

    # The lapsed request can no longer be confirmed
    late = await confirm_booking(db, ResourceKind.STUDIO, pending.id, now=minutes(63))
    assert not late.confirmed
    assert late.payment_state is PaymentState.UNPAID


@pytest.mark.asyncio
async def test_expired_holds_are_invisible_without_purge(db, catalog):
    studio = await db.get(Resource, catalog.studio)
    extent = TemporalExtent(date(2024, 1, 20), date(2024, 1, 20), Slot.NIGHT)
    await holds.acquire(db, studio, catalog.member, extent, 60, now=T0)

    assert (await check_conflict(db, studio, extent, claimant_id=catalog.other, now=minutes(59))).has_conflict
    assert not (await check_conflict(db, studio, extent, claimant_id=catalog.other, now=minutes(60))).has_conflict
    assert await _count(db, Hold) == 1


@pytest.mark.asyncio
async def test_overlapping_category_request_keeps_earlier_pending_booking(db, catalog):
    first, first_voucher = await _request(
        db, ResourceKind.ROOM, catalog.member, date(2024, 1, 10), date(2024, 1, 12), category="Standard"
    )
    second, _ = await _request(
        db, ResourceKind.ROOM, catalog.member, date(2024, 1, 11), date(2024, 1, 13), category="Standard", now=minutes(5)
    )

    assert not first.cancelled
    assert first_voucher.status is VoucherStatus.PENDING
    assert not second.cancelled
    assert await holds.holds_for_booking(db, first.id, now=minutes(5))
    assert await holds.holds_for_booking(db, second.id, now=minutes(5))


@pytest.mark.asyncio
async def test_request_inside_longer_pending_booking_keeps_it(db, catalog):
    hall = catalog.halls[0]
    first, _ = await _request(db, ResourceKind.HALL, catalog.member, date(2024, 1, 10), date(2024, 1, 12), "MORNING", resource_id=hall)
    second, _ = await _request(
        db, ResourceKind.HALL, catalog.member, date(2024, 1, 12), date(2024, 1, 12), "MORNING", resource_id=hall, now=minutes(5)
    )

    assert not first.cancelled
    assert len(first.details) == 3
    assert len(await holds.holds_for_booking(db, first.id, now=minutes(5))) == 3
    assert [(d.day, d.slot) for d in second.details] == [(date(2024, 1, 12), Slot.MORNING)]

    assert await holds.purge_expired(db, now=minutes(60)) == 1
    assert await _count(db, Hold) == 0


@pytest.mark.asyncio
async def test_reacquire_replaces_hold_with_fresh_expiry(db, catalog):
    studio = await db.get(Resource, catalog.studio)
    extent = TemporalExtent(date(2024, 1, 20), date(2024, 1, 20), Slot.NIGHT)
    await holds.acquire(db, studio, catalog.member, extent, 60, now=T0)
    second = await holds.acquire(db, studio, catalog.member, extent, 60, now=minutes(20))

    assert await _count(db, Hold) == 1
    assert second.expires_at == minutes(80)


@pytest.mark.asyncio
async def test_hold_duration_must_be_positive(db, catalog):
    studio = await db.get(Resource, catalog.studio)
    with pytest.raises(ValidationError):
        await holds.acquire(db, studio, catalog.member, None, 0, now=T0)


@pytest.mark.asyncio
async def test_legacy_hold_blocks_all_dates(db, catalog):
    studio = await db.get(Resource, catalog.studio)
    await holds.acquire(db, studio, catalog.other, None, 60, now=T0)

    with pytest.raises(ConflictError) as exc:
        await _request(
            db, ResourceKind.STUDIO, catalog.member, date(2024, 6, 1), date(2024, 6, 1), "EVENING",
            resource_id=catalog.studio,
        )
    assert "all dates" in exc.value.message

    await _request(
        db, ResourceKind.STUDIO, catalog.member, date(2024, 6, 1), date(2024, 6, 1), "EVENING",
        resource_id=catalog.studio, now=minutes(61),
    )


@pytest.mark.asyncio
async def test_rerequest_supersedes_own_pending_booking(db, catalog):
    day = date(2024, 1, 25)
    first, first_voucher = await _request(db, ResourceKind.HALL, catalog.member, day, day, "NIGHT", resource_id=catalog.halls[0])
    second, _ = await _request(
        db, ResourceKind.HALL, catalog.member, day, day, "NIGHT", resource_id=catalog.halls[0], now=minutes(10)
    )

    assert first.cancelled
    assert first_voucher.status is VoucherStatus.CANCELLED
    assert not second.cancelled
    live = await holds.holds_for_booking(db, second.id, now=minutes(10))
    assert len(live) == 1
    assert await _count(db, Hold) == 1


# ---------------------------------------------------------------------------
# Round trip and cancellation
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_cancel_frees_the_extent(db, catalog):
    day = date(2024, 2, 14)
    booking = await _book(db, ResourceKind.LAWN, catalog.member, day, day, "EVENING", resource_id=catalog.lawn)

    with pytest.raises(ConflictError):
        await _request(db, ResourceKind.LAWN, catalog.other, day, day, "EVENING", resource_id=catalog.lawn)

    cancelled = await cancel_booking(db, booking.id, "Change of plans", now=T0)
    assert cancelled.cancelled
    assert cancelled.cancellation_reason == "Change of plans"
    assert await db.get(Booking, booking.id) is not None

    await _request(db, ResourceKind.LAWN, catalog.other, day, day, "EVENING", resource_id=catalog.lawn)


@pytest.mark.asyncio
async def test_cancelling_paid_booking_refunds_through_ledger(db, catalog):
    booking = await _book(db, ResourceKind.ROOM, catalog.member, date(2024, 2, 1), date(2024, 2, 4), resource_id=catalog.rooms[0])
    assert booking.total_price == 3 * 5000

    # A month's notice on one room keeps 5%
    await cancel_booking(db, booking.id, now=T0)
    assert booking.deduction_amount == 750
    assert booking.refund_amount == 14250
    assert booking.pending_amount == 0
    member = await db.get(Member, catalog.member_ids[catalog.member])
    assert member.booking_amount_paid == 15000
    assert member.booking_balance == 750

    entries = (await db.execute(select(LedgerEntry).order_by(LedgerEntry.id))).scalars().all()
    assert [e.amount for e in entries] == [15000, -14250]
    refund = (await db.execute(select(Voucher).where(Voucher.voucher_type == VoucherType.REFUND))).scalar_one()
    assert refund.amount == 14250

    # Cancelling twice changes nothing
    await cancel_booking(db, booking.id, now=T0)
    assert await _count(db, LedgerEntry) == 2


# ---------------------------------------------------------------------------
# Cancellation requests
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_cancellation_approval_counts_notice_from_the_request(db, catalog):
    booking = await _book(db, ResourceKind.ROOM, catalog.member, date(2024, 2, 1), date(2024, 2, 4), resource_id=catalog.rooms[0])
    request = await request_cancellation(db, booking.id, "Travel cancelled", "Ayesha Khan", claimant_id=catalog.member, now=T0)
    assert request.status is CancellationStatus.PENDING

    # Decided the day before check-in, but the request gave a month's notice
    decided_at = datetime(2024, 1, 31, 12, 0, tzinfo=UTC)
    request, cancelled = await decide_cancellation(db, booking.id, True, decided_by="Desk Officer", now=decided_at)

    assert request.status is CancellationStatus.APPROVED
    assert request.staff_remarks == "Action taken by staff"
    assert request.decided_at.replace(tzinfo=UTC) == decided_at
    assert cancelled.cancelled
    assert cancelled.cancellation_reason == "Travel cancelled"
    assert (cancelled.deduction_amount, cancelled.refund_amount) == (750, 14250)
    assert await _count(db, Hold) == 0


@pytest.mark.asyncio
async def test_cancellation_deduction_grows_with_rooms_and_shrinking_notice(db, catalog):
    # Check-in starts at club midnight on 3 Jan, 34 hours after T0
    booking = await _book(
        db, ResourceKind.ROOM, catalog.member, date(2024, 1, 3), date(2024, 1, 4), unit_ids=list(catalog.rooms)
    )
    assert booking.total_price == 15000

    await request_cancellation(db, booking.id, "Group shrank", "Ayesha Khan", now=T0)
    _, cancelled = await decide_cancellation(db, booking.id, True, now=minutes(30))
    assert cancelled.deduction_amount == 3750
    assert cancelled.refund_amount == 11250


@pytest.mark.asyncio
async def test_late_cancellation_bills_what_the_payment_does_not_cover(db, catalog):
    booking, _ = await _request(
        db, ResourceKind.ROOM, catalog.member, date(2024, 1, 2), date(2024, 1, 3), unit_ids=catalog.rooms[:2]
    )
    await confirm_booking(db, ResourceKind.ROOM, booking.id, amount=4000, now=T0)

    await request_cancellation(db, booking.id, "Flight delayed", "Ayesha Khan", now=T0)
    _, cancelled = await decide_cancellation(db, booking.id, True, now=minutes(10))

    assert cancelled.deduction_amount == 10000
    assert cancelled.refund_amount == 0
    assert cancelled.pending_amount == 0
    billed = (await db.execute(select(Voucher).where(Voucher.voucher_type == VoucherType.TO_BILL))).scalar_one()
    assert billed.amount == 6000
    assert billed.status is VoucherStatus.CONFIRMED
    assert await _count(db, Voucher, Voucher.voucher_type == VoucherType.REFUND) == 0

    entries = (await db.execute(select(LedgerEntry).order_by(LedgerEntry.id))).scalars().all()
    assert [(e.amount, e.entry_type) for e in entries] == [
        (4000, LedgerEntryType.BOOKING_PAYMENT),
        (-6000, LedgerEntryType.CANCELLATION_CHARGE),
    ]
    member = await db.get(Member, catalog.member_ids[catalog.member])
    assert member.booking_balance == -2000


@pytest.mark.asyncio
async def test_rejected_cancellation_leaves_booking_and_allows_a_new_request(db, catalog):
    day = date(2024, 3, 5)
    booking = await _book(db, ResourceKind.HALL, catalog.member, day, day, "EVENING", resource_id=catalog.halls[0])

    await request_cancellation(db, booking.id, "Guests unsure", "Ayesha Khan", now=T0)
    request, kept = await decide_cancellation(db, booking.id, False, "Within the event window", now=minutes(5))
    assert request.status is CancellationStatus.REJECTED
    assert request.staff_remarks == "Within the event window"
    assert not kept.cancelled

    with pytest.raises(NotFoundError) as exc:
        await decide_cancellation(db, booking.id, True, now=minutes(6))
    assert exc.value.rule == "cancellation_not_found"

    await request_cancellation(db, booking.id, "Event called off", "Ayesha Khan", now=minutes(10))
    _, cancelled = await decide_cancellation(db, booking.id, True, now=minutes(15))
    # Venues have no cancellation deduction
    assert (cancelled.deduction_amount, cancelled.refund_amount) == (0, 100000)
    assert [r.status for r in await list_cancellation_requests(db)] == [
        CancellationStatus.REJECTED,
        CancellationStatus.APPROVED,
    ]


@pytest.mark.asyncio
async def test_cancellation_request_guards(db, catalog):
    day = date(2024, 3, 6)
    booking = await _book(db, ResourceKind.LAWN, catalog.member, day, day, "NIGHT", resource_id=catalog.lawn)
    pending, _ = await _request(db, ResourceKind.STUDIO, catalog.member, day, day, "NIGHT", resource_id=catalog.studio)

    with pytest.raises(NotFoundError):
        await request_cancellation(db, booking.id, "Not mine", "Bilal Ahmed", claimant_id=catalog.other, now=T0)
    with pytest.raises(StateError) as exc:
        await request_cancellation(db, pending.id, "Unpaid", "Ayesha Khan", now=T0)
    assert exc.value.rule == "booking_unconfirmed"
    with pytest.raises(ValidationError):
        await request_cancellation(db, booking.id, "  ", "Ayesha Khan", now=T0)

    await request_cancellation(db, booking.id, "Rain forecast", "Ayesha Khan", now=T0)
    with pytest.raises(StateError) as exc:
        await request_cancellation(db, booking.id, "Rain forecast", "Ayesha Khan", now=minutes(1))
    assert exc.value.rule == "cancellation_exists"

    await decide_cancellation(db, booking.id, True, now=minutes(2))
    with pytest.raises(StateError) as exc:
        await request_cancellation(db, booking.id, "Again", "Ayesha Khan", now=minutes(3))
    assert exc.value.rule == "booking_cancelled"
    assert len(await list_cancellation_requests(db, CancellationStatus.PENDING)) == 0


@pytest.mark.asyncio
async def test_cancel_unpaid_voucher_releases_booking(db, catalog):
    day = date(2024, 3, 10)
    booking, voucher = await _request(db, ResourceKind.HALL, catalog.member, day, day, "MORNING", resource_id=catalog.halls[0])

    with pytest.raises(NotFoundError):
        await cancel_unpaid_voucher(db, voucher.consumer_number, claimant_id=catalog.other, now=T0)

    result = await cancel_unpaid_voucher(db, voucher.consumer_number, claimant_id=catalog.member, now=T0)
    assert result.status is VoucherStatus.CANCELLED
    assert booking.cancelled
    assert await _count(db, Hold) == 0

    with pytest.raises(StateError):
        await cancel_unpaid_voucher(db, voucher.consumer_number, now=T0)


# ---------------------------------------------------------------------------
# Confirmation and ledger posting
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_confirm_is_idempotent(db, catalog):
    day = date(2024, 2, 20)
    booking, voucher = await _request(db, ResourceKind.HALL, catalog.member, day, day, "EVENING", resource_id=catalog.halls[0])

    first = await confirm_booking(db, ResourceKind.HALL, booking.id, transaction_id="txn-1", now=minutes(5))
    second = await confirm_booking(db, ResourceKind.HALL, booking.id, transaction_id="txn-1", now=minutes(6))

    assert first is second
    assert first.confirmed
    assert first.payment_state is PaymentState.PAID
    assert first.paid_amount == 100000
    assert first.pending_amount == 0
    assert voucher.status is VoucherStatus.CONFIRMED
    assert voucher.transaction_id == "txn-1"
    assert await _count(db, LedgerEntry) == 1
    assert await _count(db, Hold) == 0

    member = await db.get(Member, catalog.member_ids[catalog.member])
    assert member.booking_amount_paid == 100000
    assert member.total_bookings == 1


@pytest.mark.asyncio
async def test_partial_payment(db, catalog):
    booking, _ = await _request(
        db, ResourceKind.ROOM, catalog.member, date(2024, 2, 1), date(2024, 2, 3), resource_id=catalog.rooms[1]
    )
    confirmed = await confirm_booking(db, ResourceKind.ROOM, booking.id, amount=4000, now=T0)
    assert confirmed.payment_state is PaymentState.PARTIAL
    assert confirmed.paid_amount == 4000
    assert confirmed.pending_amount == 6000


@pytest.mark.asyncio
async def test_confirm_rejects_wrong_type_and_unknown_booking(db, catalog):
    booking, _ = await _request(
        db, ResourceKind.STUDIO, catalog.member, date(2024, 2, 1), date(2024, 2, 1), "MORNING", resource_id=catalog.studio
    )
    with pytest.raises(NotFoundError):
        await confirm_booking(db, ResourceKind.HALL, booking.id, now=T0)
    with pytest.raises(NotFoundError):
        await confirm_booking(db, ResourceKind.STUDIO, 424242, now=T0)


@pytest.mark.asyncio
async def test_confirm_after_cancel_is_noop(db, catalog):
    booking, _ = await _request(
        db, ResourceKind.STUDIO, catalog.member, date(2024, 2, 1), date(2024, 2, 1), "MORNING", resource_id=catalog.studio
    )
    await cancel_booking(db, booking.id, now=T0)
    result = await confirm_booking(db, ResourceKind.STUDIO, booking.id, now=T0)
    assert not result.confirmed
    assert await _count(db, LedgerEntry) == 0


@pytest.mark.asyncio
async def test_lapse_sweep_settles_stale_bookings(db, catalog):
    day = date(2024, 2, 2)
    stale, voucher = await _request(db, ResourceKind.STUDIO, catalog.member, day, day, "NIGHT", resource_id=catalog.studio)
    fresh, _ = await _request(db, ResourceKind.STUDIO, catalog.other, day, day, "MORNING", resource_id=catalog.studio, now=minutes(30))

    assert await lapse_unpaid_bookings(db, now=minutes(45)) == 0
    assert await lapse_unpaid_bookings(db, now=minutes(61)) == 1

    assert stale.cancelled
    assert stale.cancellation_reason == LAPSED_REASON
    assert voucher.status is VoucherStatus.EXPIRED
    assert not fresh.cancelled


# ---------------------------------------------------------------------------
# Multi-unit lodging
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_category_request_picks_lowest_free_units(db, catalog):
    start, end = date(2024, 3, 1), date(2024, 3, 4)
    await reserve_bulk(db, [catalog.rooms[1]], start, end, None, "VIP", True, "Desk Officer", now=T0)

    booking, voucher = await _request(
        db, ResourceKind.ROOM, catalog.member, start, end, category="Standard", quantity=2
    )
    assert sorted(booking.resource_ids) == [catalog.rooms[0], catalog.rooms[2]]
    assert booking.total_price == 5000 * 3 * 2
    assert [u.price_at_booking for u in booking.units] == [15000, 15000]
    assert await _count(db, Hold, Hold.booking_id == booking.id) == 2
    assert voucher.amount == 30000


@pytest.mark.asyncio
async def test_category_request_without_enough_units(db, catalog):
    start, end = date(2024, 3, 1), date(2024, 3, 4)
    await _book(db, ResourceKind.ROOM, catalog.other, start, end, resource_id=catalog.rooms[0])

    with pytest.raises(ConflictError) as exc:
        await _request(db, ResourceKind.ROOM, catalog.member, start, end, category="Standard", quantity=3)
    assert exc.value.rule == "insufficient_units"
    assert "Only 2" in exc.value.message


@pytest.mark.asyncio
async def test_explicit_units_must_all_be_free(db, catalog):
    start, end = date(2024, 3, 1), date(2024, 3, 3)
    await _book(db, ResourceKind.ROOM, catalog.other, start, end, resource_id=catalog.rooms[2])

    with pytest.raises(ConflictError) as exc:
        await _request(db, ResourceKind.ROOM, catalog.member, start, end, unit_ids=[catalog.rooms[0], catalog.rooms[2]])
    assert [c.resource_id for c in exc.value.conflicts] == [catalog.rooms[2]]


@pytest.mark.asyncio
async def test_guest_pricing(db, catalog):
    booking, _ = await _request(
        db, ResourceKind.ROOM, catalog.member, date(2024, 3, 1), date(2024, 3, 2),
        resource_id=catalog.rooms[0], pricing_type=PricingType.GUEST, guest_name="Visiting Friend",
    )
    assert booking.total_price == 8000


# ---------------------------------------------------------------------------
# Venue details
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_multi_day_venue_booking_is_priced_per_slot(db, catalog):
    booking, _ = await _request(
        db, ResourceKind.HALL, catalog.member, date(2024, 4, 10), date(2024, 4, 12), "NIGHT", resource_id=catalog.halls[0]
    )
    assert [d.day for d in booking.details] == [date(2024, 4, 10), date(2024, 4, 11), date(2024, 4, 12)]
    assert booking.total_price == 3 * 100000
    assert await _count(db, Hold, Hold.booking_id == booking.id) == 3


@pytest.mark.asyncio
async def test_explicit_details(db, catalog):
    details = [
        DetailRequest(date(2024, 4, 11), "evening", "Walima"),
        DetailRequest(date(2024, 4, 10), "NIGHT", "Mehndi"),
    ]
    booking, _ = await _request(
        db, ResourceKind.LAWN, catalog.member, date(2024, 4, 10), date(2024, 4, 11), "NIGHT",
        resource_id=catalog.lawn, details=details, event_type="Wedding",
    )
    assert [(d.day, d.slot, d.event_type) for d in booking.details] == [
        (date(2024, 4, 10), Slot.NIGHT, "Mehndi"),
        (date(2024, 4, 11), Slot.EVENING, "Walima"),
    ]
    # 11 April night is still free
    await _request(db, ResourceKind.LAWN, catalog.other, date(2024, 4, 11), date(2024, 4, 11), "NIGHT", resource_id=catalog.lawn)


@pytest.mark.asyncio
async def test_details_outside_range_rejected(db, catalog):
    with pytest.raises(ValidationError) as exc:
        await _request(
            db, ResourceKind.LAWN, catalog.member, date(2024, 4, 10), date(2024, 4, 10), "NIGHT",
            resource_id=catalog.lawn, details=[DetailRequest(date(2024, 4, 12), "NIGHT")],
        )
    assert exc.value.rule == "detail_range"


# ---------------------------------------------------------------------------
# Validation and state errors
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_validation_collects_all_violations(db, catalog):
    with pytest.raises(ValidationError) as exc:
        await _request(
            db, ResourceKind.HALL, catalog.member, date(2023, 12, 30), date(2023, 12, 29), "brunch",
            resource_id=catalog.halls[0],
        )
    assert {v["rule"] for v in exc.value.details()} == {"date_order", "past_booking", "invalid_slot"}


@pytest.mark.asyncio
async def test_missing_dates_and_slot(db, catalog):
    with pytest.raises(ValidationError) as exc:
        await _request(db, ResourceKind.STUDIO, catalog.member, None, None, None, resource_id=catalog.studio)
    assert {v["rule"] for v in exc.value.details()} == {"missing_dates", "missing_slot"}


@pytest.mark.asyncio
async def test_lodging_needs_a_night(db, catalog):
    with pytest.raises(ValidationError) as exc:
        await _request(db, ResourceKind.ROOM, catalog.member, date(2024, 2, 1), date(2024, 2, 1), resource_id=catalog.rooms[0])
    assert exc.value.rule == "date_order"


@pytest.mark.asyncio
async def test_capacity_bounds(db, catalog):
    with pytest.raises(ValidationError) as exc:
        await _request(
            db, ResourceKind.HALL, catalog.member, date(2024, 2, 1), date(2024, 2, 1), "NIGHT",
            resource_id=catalog.halls[0], guest_count=500,
        )
    assert exc.value.rule == "capacity"
    assert "at most 300" in exc.value.message


@pytest.mark.asyncio
async def test_inactive_member_cannot_use_member_pricing(db, catalog):
    with pytest.raises(StateError) as exc:
        await _request(db, ResourceKind.ROOM, catalog.inactive, date(2024, 2, 1), date(2024, 2, 2), resource_id=catalog.rooms[0])
    assert exc.value.rule == "member_standing"


@pytest.mark.asyncio
async def test_unknown_member_and_resource(db, catalog):
    with pytest.raises(NotFoundError):
        await _request(db, ResourceKind.ROOM, "M-0000", date(2024, 2, 1), date(2024, 2, 2), resource_id=catalog.rooms[0])
    with pytest.raises(NotFoundError):
        await _request(db, ResourceKind.ROOM, catalog.member, date(2024, 2, 1), date(2024, 2, 2), resource_id=catalog.halls[0])


@pytest.mark.asyncio
async def test_resource_blacked_out_today_is_unavailable(db, catalog):
    await create_blackout(db, catalog.halls[0], date(2024, 1, 1), date(2024, 1, 2), "burst pipe", now=T0)
    assert not (await db.get(Resource, catalog.halls[0])).is_active

    with pytest.raises(StateError) as exc:
        await _request(db, ResourceKind.HALL, catalog.member, date(2024, 2, 1), date(2024, 2, 1), "NIGHT", resource_id=catalog.halls[0])
    assert exc.value.rule == "resource_inactive"
    assert "burst pipe" in exc.value.message


# ---------------------------------------------------------------------------
# Blackouts
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_blackout_refused_over_booking_or_reservation(db, catalog):
    hall = catalog.halls[0]
    await _book(db, ResourceKind.HALL, catalog.member, date(2024, 6, 2), date(2024, 6, 2), "NIGHT", resource_id=hall)
    await reserve_bulk(db, [hall], date(2024, 6, 3), date(2024, 6, 3), "MORNING", None, True, "x", now=T0)

    with pytest.raises(ConflictError) as exc:
        await create_blackout(db, hall, date(2024, 6, 1), date(2024, 6, 5), "painting", now=T0)
    assert exc.value.rule == "blackout_conflict"
    assert "1 booking(s)" in exc.value.message
    assert "1 reservation(s)" in exc.value.message


@pytest.mark.asyncio
async def test_blackout_allowed_over_expired_hold_only(db, catalog):
    day = date(2024, 6, 10)
    await _request(db, ResourceKind.STUDIO, catalog.member, day, day, "MORNING", resource_id=catalog.studio)

    with pytest.raises(ConflictError):
        await create_blackout(db, catalog.studio, day, day, "lighting rig", now=minutes(30))

    blackout = await create_blackout(db, catalog.studio, day, day, "lighting rig", now=minutes(61))
    assert blackout.reason == "lighting rig"


@pytest.mark.asyncio
async def test_lodging_blackout_respects_checkout_day(db, catalog):
    room = catalog.rooms[0]
    await _book(db, ResourceKind.ROOM, catalog.member, date(2024, 6, 1), date(2024, 6, 3), resource_id=room)
    # Checkout morning of 3 June; blacking out from the 3rd is fine
    await create_blackout(db, room, date(2024, 6, 3), date(2024, 6, 4), "deep clean", now=T0)

    with pytest.raises(ConflictError):
        await create_blackout(db, room, date(2024, 6, 2), date(2024, 6, 2), "deep clean", now=T0)


@pytest.mark.asyncio
async def test_delete_blackout_restores_active_flag(db, catalog):
    blackout = await create_blackout(db, catalog.lawn, date(2024, 1, 1), date(2024, 1, 1), "mowing", now=T0)
    assert not (await db.get(Resource, catalog.lawn)).is_active

    await delete_blackout(db, blackout.id, now=T0)
    assert (await db.get(Resource, catalog.lawn)).is_active
    assert await _count(db, Blackout) == 0

    with pytest.raises(NotFoundError):
        await delete_blackout(db, blackout.id, now=T0)


# ---------------------------------------------------------------------------
# Reschedule
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_reschedule_ignores_own_claims(db, catalog):
    room = catalog.rooms[0]
    booking = await _book(db, ResourceKind.ROOM, catalog.member, date(2024, 7, 10), date(2024, 7, 12), resource_id=room)

    moved = await reschedule_booking(db, booking.id, date(2024, 7, 11), date(2024, 7, 14), now=T0)
    assert (moved.start_date, moved.end_date) == (date(2024, 7, 11), date(2024, 7, 14))
    assert moved.total_price == 3 * 5000
    assert moved.payment_state is PaymentState.PARTIAL
    assert moved.pending_amount == 5000


@pytest.mark.asyncio
async def test_reschedule_into_conflict(db, catalog):
    hall = catalog.halls[0]
    booking = await _book(db, ResourceKind.HALL, catalog.member, date(2024, 7, 1), date(2024, 7, 1), "NIGHT", resource_id=hall)
    await reserve_bulk(db, [hall], date(2024, 7, 2), date(2024, 7, 2), "EVENING", None, True, "x", now=T0)

    with pytest.raises(ConflictError):
        await reschedule_booking(db, booking.id, date(2024, 7, 2), date(2024, 7, 2), "evening", now=T0)

    moved = await reschedule_booking(db, booking.id, date(2024, 7, 2), date(2024, 7, 2), "MORNING", now=T0)
    assert [(d.day, d.slot) for d in moved.details] == [(date(2024, 7, 2), Slot.MORNING)]


@pytest.mark.asyncio
async def test_reschedule_pending_booking_keeps_payment_window(db, catalog):
    booking, _ = await _request(
        db, ResourceKind.STUDIO, catalog.member, date(2024, 7, 1), date(2024, 7, 1), "NIGHT", resource_id=catalog.studio
    )
    await reschedule_booking(db, booking.id, date(2024, 7, 2), date(2024, 7, 2), None, now=minutes(20))

    live = await holds.holds_for_booking(db, booking.id, now=minutes(20))
    assert [(h.start_date, h.slot) for h in live] == [(date(2024, 7, 2), Slot.NIGHT)]
    assert all(h.expires_at.replace(tzinfo=UTC) == minutes(60) for h in live)

    with pytest.raises(StateError):
        await reschedule_booking(db, booking.id, date(2024, 7, 3), date(2024, 7, 3), None, now=minutes(61))


@pytest.mark.asyncio
async def test_reschedule_needs_member_in_good_standing(db, catalog):
    hall = catalog.halls[1]
    booking = await _book(db, ResourceKind.HALL, catalog.member, date(2024, 7, 1), date(2024, 7, 1), "NIGHT", resource_id=hall)
    member = await db.get(Member, catalog.member_ids[catalog.member])
    member.status = MemberStatus.INACTIVE
    await db.flush()

    with pytest.raises(StateError) as exc:
        await reschedule_booking(db, booking.id, date(2024, 7, 2), date(2024, 7, 2), None, now=T0)
    assert exc.value.rule == "member_standing"


@pytest.mark.asyncio
async def test_reschedule_refused_while_resource_blacked_out_today(db, catalog):
    booking = await _book(db, ResourceKind.LAWN, catalog.member, date(2024, 7, 5), date(2024, 7, 5), "EVENING", resource_id=catalog.lawn)
    await create_blackout(db, catalog.lawn, date(2024, 1, 1), date(2024, 1, 1), "drainage works", now=T0)

    with pytest.raises(StateError) as exc:
        await reschedule_booking(db, booking.id, date(2024, 7, 6), date(2024, 7, 6), None, now=T0)
    assert exc.value.rule == "resource_inactive"
    assert "drainage works" in exc.value.message


# ---------------------------------------------------------------------------
# Occupancy invariant and calendar
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_lock_resources_takes_each_row_once_in_id_order(db, catalog):
    wanted = [catalog.halls[2], catalog.rooms[1], catalog.halls[2], catalog.rooms[0]]
    locked = await lock_resources(db, wanted)
    assert [r.id for r in locked] == sorted(set(wanted))


@pytest.mark.asyncio
async def test_no_two_live_claims_share_an_atom(db, catalog):
    hall = catalog.halls[0]
    days = [date(2024, 8, d) for d in range(1, 4)]
    await reserve_bulk(db, [hall], days[0], days[0], "MORNING", None, True, "x", now=T0)
    await _book(db, ResourceKind.HALL, catalog.member, days[1], days[1], "MORNING", resource_id=hall)
    await _request(db, ResourceKind.HALL, catalog.other, days[2], days[2], "MORNING", resource_id=hall)

    resource = await db.get(Resource, hall)
    for day in days:
        for claimant in (catalog.member, catalog.other, None):
            extent = TemporalExtent(day, day, Slot.MORNING)
            if claimant == catalog.other and day == days[2]:
                continue
            assert (await check_conflict(db, resource, extent, claimant_id=claimant, now=T0)).has_conflict
    conflicts = await check_conflicts(
        db, [resource], TemporalExtent(days[0], days[2], Slot.EVENING), now=T0
    )
    assert conflicts == []


@pytest.mark.asyncio
async def test_date_statuses(db, catalog):
    hall = catalog.halls[0]
    await _book(db, ResourceKind.HALL, catalog.member, date(2024, 9, 1), date(2024, 9, 1), "NIGHT", resource_id=hall)
    await reserve_bulk(db, [hall], date(2024, 9, 2), date(2024, 9, 2), "MORNING", "Board", True, "Desk Officer", now=T0)
    await create_blackout(db, hall, date(2024, 9, 5), date(2024, 9, 6), "polish", now=T0)
    await _request(db, ResourceKind.HALL, catalog.other, date(2024, 9, 3), date(2024, 9, 3), "EVENING", resource_id=hall)

    statuses = await calendar.get_date_statuses(db, [hall], date(2024, 9, 1), date(2024, 9, 30), now=minutes(10))
    assert [b["start_date"] for b in statuses["bookings"]] == [date(2024, 9, 1)]
    assert statuses["bookings"][0]["details"][0]["slot"] is Slot.NIGHT
    assert statuses["reservations"][0]["reserved_by"] == "Desk Officer"
    assert statuses["blackouts"][0]["reason"] == "polish"
    assert len(statuses["holds"]) == 1

    later = await calendar.get_date_statuses(db, [hall], date(2024, 9, 1), date(2024, 9, 30), now=minutes(61))
    assert later["holds"] == []

    with pytest.raises(ValidationError):
        await calendar.get_date_statuses(db, [hall], date(2024, 9, 30), date(2024, 9, 1), now=T0)


@pytest.mark.asyncio
async def test_resource_log_includes_cancelled(db, catalog):
    room = catalog.rooms[0]
    booking = await _book(db, ResourceKind.ROOM, catalog.member, date(2024, 9, 1), date(2024, 9, 2), resource_id=room)
    await cancel_booking(db, booking.id, "Duplicate", now=T0)
    await _book(db, ResourceKind.ROOM, catalog.other, date(2024, 9, 1), date(2024, 9, 3), resource_id=room)

    log = await calendar.get_resource_log(db, room)
    assert [b["member_name"] for b in log["bookings"]] == ["Bilal Ahmed", "Ayesha Khan"]
    assert log["bookings"][1]["cancelled"]

    with pytest.raises(NotFoundError):
        await calendar.get_resource_log(db, 9999)
