"""Payment vouchers and the member booking ledger."""

import enum
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, Enum, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from clubhouse.models.base import Base, TimestampMixin, enum_values
from clubhouse.models.resource import ResourceKind, resource_kind_enum

if TYPE_CHECKING:
    from clubhouse.models.member import Member


class VoucherStatus(enum.StrEnum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


class VoucherType(enum.StrEnum):
    FULL_PAYMENT = "FULL_PAYMENT"
    REFUND = "REFUND"
    TO_BILL = "TO_BILL"


class LedgerEntryType(enum.StrEnum):
    BOOKING_PAYMENT = "booking_payment"
    REFUND = "refund"
    CANCELLATION_CHARGE = "cancellation_charge"


class Voucher(TimestampMixin, Base):
    """A payment request (or refund notice) tracked alongside a booking."""

    __tablename__ = "vouchers"

    id: Mapped[int] = mapped_column(primary_key=True)
    consumer_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False, index=True)
    booking_type: Mapped[ResourceKind] = mapped_column(resource_kind_enum, nullable=False)
    booking_id: Mapped[int] = mapped_column(ForeignKey("bookings.id"), nullable=False)
    member_id: Mapped[int] = mapped_column(ForeignKey("members.id"), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    voucher_type: Mapped[VoucherType] = mapped_column(
        Enum(VoucherType, name="voucher_type", values_callable=enum_values),
        default=VoucherType.FULL_PAYMENT,
        nullable=False,
    )
    status: Mapped[VoucherStatus] = mapped_column(
        Enum(VoucherStatus, name="voucher_status", values_callable=enum_values),
        default=VoucherStatus.PENDING,
        nullable=False,
    )
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    transaction_id: Mapped[str | None] = mapped_column(String(100))
    stripe_payment_intent_id: Mapped[str | None] = mapped_column(String(100))
    remarks: Mapped[str | None] = mapped_column(Text)

    member: Mapped["Member"] = relationship(lazy="raise")

    __table_args__ = (
        Index("ix_vouchers_booking", "booking_type", "booking_id"),
        Index("ix_vouchers_member_status", "member_id", "status"),
    )

    def __repr__(self) -> str:
        return f"<Voucher {self.consumer_number} {self.status.value} {self.amount}>"


class LedgerEntry(TimestampMixin, Base):
    """A single movement on a member's booking account: positive paid in, negative refunded or charged."""

    __tablename__ = "ledger_entries"

    id: Mapped[int] = mapped_column(primary_key=True)
    member_id: Mapped[int] = mapped_column(ForeignKey("members.id"), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
    entry_type: Mapped[LedgerEntryType] = mapped_column(
        Enum(LedgerEntryType, name="ledger_entry_type", values_callable=enum_values),
        nullable=False,
    )
    booking_id: Mapped[int | None] = mapped_column(ForeignKey("bookings.id"))
    description: Mapped[str] = mapped_column(Text, nullable=False)

    member: Mapped["Member"] = relationship(lazy="raise")

    __table_args__ = (Index("ix_ledger_member", "member_id"),)

    def __repr__(self) -> str:
        return f"<LedgerEntry {self.entry_type.value} {self.amount} member={self.member_id}>"
