"""Payment routes: manual confirmation (staff) and member vouchers."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from clubhouse.core.database import get_db
from clubhouse.core.dependencies import Principal, get_current_principal, require_staff
from clubhouse.routes.bookings import parse_kind
from clubhouse.schemas import BookingOut, PaymentConfirm, VoucherOut
from clubhouse.services import booking_flow, postings

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/{booking_type}/{booking_id}/confirm", response_model=BookingOut)
async def confirm_payment(
    booking_type: str,
    booking_id: int,
    body: PaymentConfirm | None = None,
    staff: Principal = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    """Record a payment received outside Stripe (counter, bank transfer)."""
    body = body or PaymentConfirm()
    return await booking_flow.confirm_booking(
        db, parse_kind(booking_type), booking_id, amount=body.amount, transaction_id=body.transaction_id
    )


@router.get("/vouchers", response_model=list[VoucherOut])
async def my_vouchers(
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    member = await booking_flow.get_member(db, principal.subject)
    return await postings.vouchers_for_member(db, member.id)


@router.delete("/vouchers/{consumer_number}", response_model=VoucherOut)
async def cancel_voucher(
    consumer_number: str,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    claimant = None if principal.is_staff else principal.subject
    return await booking_flow.cancel_unpaid_voucher(db, consumer_number, claimant)
