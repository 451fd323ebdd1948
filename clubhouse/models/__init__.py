"""All models imported here so Base.metadata sees every table."""

from clubhouse.models.base import Base
from clubhouse.models.booking import Booking, BookingDetail, BookingUnit, PaymentState, PricingType, Slot
from clubhouse.models.cancellation import CancellationRequest, CancellationStatus
from clubhouse.models.claims import AdministrativeReservation, Blackout, Hold
from clubhouse.models.member import Member, MemberStatus
from clubhouse.models.resource import Resource, ResourceKind
from clubhouse.models.voucher import LedgerEntry, LedgerEntryType, Voucher, VoucherStatus, VoucherType

__all__ = [
    "Base",
    "Resource",
    "ResourceKind",
    "Member",
    "MemberStatus",
    "Booking",
    "BookingUnit",
    "BookingDetail",
    "PaymentState",
    "PricingType",
    "Slot",
    "CancellationRequest",
    "CancellationStatus",
    "AdministrativeReservation",
    "Hold",
    "Blackout",
    "Voucher",
    "VoucherStatus",
    "VoucherType",
    "LedgerEntry",
    "LedgerEntryType",
]
