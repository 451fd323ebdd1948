"""Pydantic schemas for API serialisation."""

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field

from clubhouse.models.booking import PaymentState, PricingType, Slot
from clubhouse.models.cancellation import CancellationStatus
from clubhouse.models.resource import ResourceKind
from clubhouse.models.voucher import VoucherStatus, VoucherType

# --- Resources ---


class ResourceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    kind: ResourceKind
    category: str | None
    unit_number: int
    capacity_min: int
    capacity_max: int
    member_rate: int
    guest_rate: int
    is_active: bool
    is_reserved: bool


class ResourceListing(ResourceOut):
    """Catalog entry with availability worked out on read."""

    available_today: bool
    out_of_service_reason: str | None = None


# --- Calendar ---


class DetailOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    day: date
    slot: Slot
    event_type: str | None = None


class CalendarBooking(BaseModel):
    booking_id: int
    resource_id: int
    kind: ResourceKind
    start_date: date
    end_date: date
    slot: Slot | None
    payment_state: PaymentState
    details: list[DetailOut]


class CalendarReservation(BaseModel):
    id: int
    resource_id: int
    start_date: date
    end_date: date
    slot: Slot | None
    reserved_by: str
    remarks: str | None


class CalendarBlackout(BaseModel):
    id: int
    resource_id: int
    start_date: date
    end_date: date
    reason: str


class CalendarHold(BaseModel):
    id: int
    resource_id: int
    booking_id: int | None
    start_date: date | None
    end_date: date | None
    slot: Slot | None
    expires_at: datetime


class DateStatuses(BaseModel):
    bookings: list[CalendarBooking]
    reservations: list[CalendarReservation]
    blackouts: list[CalendarBlackout]
    holds: list[CalendarHold]


class LogBooking(BaseModel):
    booking_id: int
    member_name: str
    membership_no: str
    start_date: date
    end_date: date
    slot: Slot | None
    total_price: int
    paid_amount: int
    payment_state: PaymentState
    confirmed: bool
    cancelled: bool
    cancellation_reason: str | None


class LogReservation(BaseModel):
    id: int
    start_date: date
    end_date: date
    slot: Slot | None
    reserved_by: str
    remarks: str | None
    created_at: datetime | None


class LogBlackout(BaseModel):
    id: int
    start_date: date
    end_date: date
    reason: str
    created_by: str | None


class ResourceLog(BaseModel):
    resource: ResourceOut
    bookings: list[LogBooking]
    reservations: list[LogReservation]
    blackouts: list[LogBlackout]


# --- Staff claims ---


class BulkReservationRequest(BaseModel):
    resource_ids: list[int] = Field(min_length=1)
    reserve: bool = True
    start_date: date | None = None
    end_date: date | None = None
    slot: str | None = None
    remarks: str | None = None


class BulkReservationResult(BaseModel):
    message: str
    count: int


class BlackoutCreate(BaseModel):
    start_date: date
    end_date: date
    reason: str


class BlackoutOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    resource_id: int
    start_date: date
    end_date: date
    reason: str
    created_by: str | None


# --- Booking ---


class DetailIn(BaseModel):
    day: date
    slot: str
    event_type: str | None = None


class BookingCreate(BaseModel):
    """Invoice request. Staff may book on behalf of a member via ``membership_no``."""

    membership_no: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    slot: str | None = None
    resource_id: int | None = None
    unit_ids: list[int] = Field(default_factory=list)
    category: str | None = None
    quantity: int = 1
    pricing_type: PricingType = PricingType.MEMBER
    guest_count: int = 0
    event_type: str | None = None
    guest_name: str | None = None
    remarks: str | None = None
    details: list[DetailIn] = Field(default_factory=list)


class BookingReschedule(BaseModel):
    start_date: date
    end_date: date
    slot: str | None = None


class BookingCancel(BaseModel):
    reason: str | None = None


class BookingUnitOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    resource_id: int
    price_at_booking: int


class BookingOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    kind: ResourceKind
    member_id: int
    start_date: date
    end_date: date
    slot: Slot | None
    pricing_type: PricingType
    guest_count: int
    event_type: str | None
    guest_name: str | None
    total_price: int
    paid_amount: int
    pending_amount: int
    payment_state: PaymentState
    confirmed: bool
    cancelled: bool
    cancelled_at: datetime | None
    cancellation_reason: str | None
    refund_amount: int = 0
    deduction_amount: int = 0
    units: list[BookingUnitOut]
    details: list[DetailOut]
    created_at: datetime | None = None


# --- Cancellation requests ---


class CancellationRequestCreate(BaseModel):
    reason: str = Field(min_length=1, max_length=2000)


class CancellationDecision(BaseModel):
    approve: bool
    remarks: str | None = None


class CancellationRequestOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    booking_id: int
    reason: str
    requested_by: str
    requested_at: datetime
    status: CancellationStatus
    decided_by: str | None
    decided_at: datetime | None
    staff_remarks: str | None


class CancellationOutcome(BaseModel):
    request: CancellationRequestOut
    booking: BookingOut


# --- Payments ---


class VoucherOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    consumer_number: str
    booking_type: ResourceKind
    booking_id: int
    amount: int
    voucher_type: VoucherType
    status: VoucherStatus
    expires_at: datetime | None
    paid_at: datetime | None
    transaction_id: str | None
    remarks: str | None


class InvoiceOut(BaseModel):
    booking: BookingOut
    voucher: VoucherOut


class PaymentConfirm(BaseModel):
    amount: int | None = None
    transaction_id: str | None = None
