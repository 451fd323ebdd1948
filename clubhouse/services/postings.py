"""Voucher and ledger postings.

The member's booking totals are cached on the Member row for fast reads.
The authoritative audit trail is the ledger_entries table. All mutations go
through this service to keep the cache in sync.
"""

import logging
import secrets
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from clubhouse.core.clock import resolve_now
from clubhouse.models.booking import Booking
from clubhouse.models.member import Member
from clubhouse.models.voucher import LedgerEntry, LedgerEntryType, Voucher, VoucherStatus, VoucherType
from clubhouse.services import stripe_service

logger = logging.getLogger(__name__)

CONSUMER_NUMBER_DIGITS = 13


async def _new_consumer_number(db: AsyncSession) -> str:
    """A random numeric consumer number not yet used by any voucher."""
    while True:
        candidate = str(secrets.randbelow(9 * 10 ** (CONSUMER_NUMBER_DIGITS - 1)) + 10 ** (CONSUMER_NUMBER_DIGITS - 1))
        taken = await db.execute(select(Voucher.id).where(Voucher.consumer_number == candidate))
        if taken.scalar_one_or_none() is None:
            return candidate


async def emit_voucher(
    db: AsyncSession,
    booking: Booking,
    amount: int,
    expires_at: datetime | None = None,
    voucher_type: VoucherType = VoucherType.FULL_PAYMENT,
    status: VoucherStatus = VoucherStatus.PENDING,
    remarks: str | None = None,
) -> Voucher:
    """Create a voucher for a booking.

    A pending payment voucher also gets a Stripe PaymentIntent when Stripe is
    configured.
    """
    voucher = Voucher(
        consumer_number=await _new_consumer_number(db),
        booking_type=booking.kind,
        booking_id=booking.id,
        member_id=booking.member_id,
        amount=amount,
        voucher_type=voucher_type,
        status=status,
        expires_at=expires_at,
        remarks=remarks,
    )

    if stripe_service.is_enabled() and voucher_type is VoucherType.FULL_PAYMENT and status is VoucherStatus.PENDING:
        intent = stripe_service.create_payment_intent(
            amount,
            booking.kind,
            booking.id,
            voucher.consumer_number,
            email=booking.member.email if booking.member else None,
        )
        voucher.stripe_payment_intent_id = intent.id

    db.add(voucher)
    await db.flush()
    return voucher


async def vouchers_for_booking(db: AsyncSession, booking: Booking, status: VoucherStatus) -> list[Voucher]:
    """Payment vouchers of a booking in the given status."""
    result = await db.execute(
        select(Voucher).where(
            Voucher.booking_type == booking.kind,
            Voucher.booking_id == booking.id,
            Voucher.voucher_type == VoucherType.FULL_PAYMENT,
            Voucher.status == status,
        )
    )
    return list(result.scalars().all())


async def settle_vouchers(
    db: AsyncSession,
    booking: Booking,
    from_status: VoucherStatus,
    to_status: VoucherStatus,
    transaction_id: str | None = None,
    now: datetime | None = None,
) -> list[Voucher]:
    """Move every payment voucher of a booking from one status to another."""
    now = resolve_now(now)
    vouchers = await vouchers_for_booking(db, booking, from_status)
    for voucher in vouchers:
        voucher.status = to_status
        if to_status is VoucherStatus.CONFIRMED:
            voucher.paid_at = now
            voucher.transaction_id = transaction_id or voucher.transaction_id
        elif voucher.stripe_payment_intent_id and to_status in (VoucherStatus.CANCELLED, VoucherStatus.EXPIRED):
            stripe_service.cancel_payment_intent(voucher.stripe_payment_intent_id)
    await db.flush()
    return vouchers


async def _apply(
    db: AsyncSession,
    member_id: int,
    amount: int,
    entry_type: LedgerEntryType,
    booking_id: int | None,
    description: str,
    now: datetime,
) -> LedgerEntry:
    """Core ledger mutation: adjust cached totals and record an entry.

    Uses SELECT ... FOR UPDATE on the member row to prevent race conditions.
    """
    result = await db.execute(select(Member).where(Member.id == member_id).with_for_update())
    member = result.scalar_one()

    member.booking_balance += amount
    if entry_type is LedgerEntryType.BOOKING_PAYMENT:
        member.booking_amount_paid += amount
        member.total_bookings += 1
        member.last_booking_at = now
    else:
        member.total_bookings = max(member.total_bookings - 1, 0)

    entry = LedgerEntry(
        member_id=member_id,
        amount=amount,
        balance_after=member.booking_balance,
        entry_type=entry_type,
        booking_id=booking_id,
        description=description,
    )
    db.add(entry)
    await db.flush()
    return entry


async def post_ledger(
    db: AsyncSession,
    member_id: int,
    amount: int,
    booking_id: int,
    description: str | None = None,
    now: datetime | None = None,
) -> LedgerEntry:
    """Record a confirmed payment against the member's account."""
    entry = await _apply(
        db,
        member_id,
        amount,
        LedgerEntryType.BOOKING_PAYMENT,
        booking_id,
        description or f"Payment for booking #{booking_id}",
        resolve_now(now),
    )
    logger.info("Ledger: member %s paid %s for booking %s", member_id, amount, booking_id)
    return entry


async def refund_ledger(db: AsyncSession, booking: Booking, amount: int, now: datetime | None = None) -> LedgerEntry | None:
    """Reverse a paid amount on cancellation: a refund voucher plus a negative ledger entry.

    Returns None when nothing was paid.
    """
    if amount <= 0:
        return None
    now = resolve_now(now)
    await emit_voucher(
        db,
        booking,
        amount,
        voucher_type=VoucherType.REFUND,
        status=VoucherStatus.CONFIRMED,
        remarks=f"Refund for cancelled {booking.kind.value.lower()} booking #{booking.id}",
    )
    entry = await _apply(
        db,
        booking.member_id,
        -amount,
        LedgerEntryType.REFUND,
        booking.id,
        f"Refund for booking #{booking.id}",
        now,
    )
    logger.info("Ledger: refunded %s to member %s for booking %s", amount, booking.member_id, booking.id)
    return entry


async def bill_cancellation(db: AsyncSession, booking: Booking, amount: int, now: datetime | None = None) -> LedgerEntry | None:
    """Charge what a cancelled booking still owes after its deduction: a to-bill voucher plus a debit."""
    if amount <= 0:
        return None
    now = resolve_now(now)
    await emit_voucher(
        db,
        booking,
        amount,
        voucher_type=VoucherType.TO_BILL,
        status=VoucherStatus.CONFIRMED,
        remarks=f"Cancellation charges for {booking.kind.value.lower()} booking #{booking.id}",
    )
    entry = await _apply(
        db,
        booking.member_id,
        -amount,
        LedgerEntryType.CANCELLATION_CHARGE,
        booking.id,
        f"Cancellation charges for booking #{booking.id}",
        now,
    )
    logger.info("Ledger: billed %s to member %s for cancelled booking %s", amount, booking.member_id, booking.id)
    return entry


async def payment_already_posted(db: AsyncSession, booking_id: int) -> bool:
    result = await db.execute(
        select(LedgerEntry.id).where(
            LedgerEntry.booking_id == booking_id,
            LedgerEntry.entry_type == LedgerEntryType.BOOKING_PAYMENT,
        )
    )
    return result.first() is not None


async def vouchers_for_member(db: AsyncSession, member_id: int) -> list[Voucher]:
    result = await db.execute(
        select(Voucher).where(Voucher.member_id == member_id).order_by(Voucher.created_at.desc(), Voucher.id.desc())
    )
    return list(result.scalars().all())
