"""Booking model.

A booking claims one or more resource units for a member. It is created
unconfirmed and unpaid when the payment voucher is issued, promoted to
confirmed when the payment signal arrives, and never deleted: cancellation
only flips ``cancelled`` so the row stays as an audit trail.

Lodging bookings occupy a night range ``[start_date, end_date)`` on every
unit in ``units``. Venue bookings occupy the ``(day, slot)`` pairs listed in
``details`` on their single unit.
"""

import enum
from datetime import date, datetime

from sqlalchemy import Boolean, Date, DateTime, Enum, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from clubhouse.models.base import Base, TimestampMixin, enum_values
from clubhouse.models.resource import ResourceKind, resource_kind_enum


class Slot(enum.StrEnum):
    MORNING = "MORNING"
    EVENING = "EVENING"
    NIGHT = "NIGHT"


class PaymentState(enum.StrEnum):
    UNPAID = "UNPAID"
    PARTIAL = "PARTIAL"
    PAID = "PAID"


class PricingType(enum.StrEnum):
    MEMBER = "member"
    GUEST = "guest"


slot_enum = Enum(Slot, name="slot", values_callable=enum_values)


class Booking(TimestampMixin, Base):
    __tablename__ = "bookings"

    id: Mapped[int] = mapped_column(primary_key=True)
    kind: Mapped[ResourceKind] = mapped_column(resource_kind_enum, nullable=False)
    member_id: Mapped[int] = mapped_column(ForeignKey("members.id"), nullable=False)

    # When
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    slot: Mapped[Slot | None] = mapped_column(slot_enum)

    # What for
    pricing_type: Mapped[PricingType] = mapped_column(
        Enum(PricingType, name="pricing_type", values_callable=enum_values),
        default=PricingType.MEMBER,
        nullable=False,
    )
    guest_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    event_type: Mapped[str | None] = mapped_column(String(100))
    guest_name: Mapped[str | None] = mapped_column(String(200))
    remarks: Mapped[str | None] = mapped_column(Text)

    # Money, minor currency units
    total_price: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    paid_amount: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    pending_amount: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    payment_state: Mapped[PaymentState] = mapped_column(
        Enum(PaymentState, name="payment_state", values_callable=enum_values),
        default=PaymentState.UNPAID,
        nullable=False,
    )

    # Lifecycle
    confirmed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    cancelled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancellation_reason: Mapped[str | None] = mapped_column(Text)
    refund_amount: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    deduction_amount: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Relationships
    member: Mapped["Member"] = relationship(lazy="selectin")
    units: Mapped[list["BookingUnit"]] = relationship(
        back_populates="booking", lazy="selectin", cascade="all, delete-orphan", order_by="BookingUnit.id"
    )
    details: Mapped[list["BookingDetail"]] = relationship(
        back_populates="booking",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="BookingDetail.day",
    )

    __table_args__ = (
        Index("ix_bookings_member", "member_id", "start_date"),
        Index("ix_bookings_dates", "start_date", "end_date"),
    )

    @property
    def resource_ids(self) -> list[int]:
        return [u.resource_id for u in self.units]

    def __repr__(self) -> str:
        return f"<Booking {self.kind.value} #{self.id} {self.start_date}..{self.end_date}>"


class BookingUnit(Base):
    """One claimed resource unit of a booking."""

    __tablename__ = "booking_units"

    id: Mapped[int] = mapped_column(primary_key=True)
    booking_id: Mapped[int] = mapped_column(ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False)
    resource_id: Mapped[int] = mapped_column(ForeignKey("resources.id"), nullable=False)
    price_at_booking: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    booking: Mapped["Booking"] = relationship(back_populates="units")
    resource: Mapped["Resource"] = relationship(lazy="selectin")

    __table_args__ = (
        UniqueConstraint("booking_id", "resource_id", name="uq_booking_units_booking_resource"),
        Index("ix_booking_units_resource", "resource_id"),
    )


class BookingDetail(Base):
    """One occupied (day, slot) pair of a venue booking."""

    __tablename__ = "booking_details"

    id: Mapped[int] = mapped_column(primary_key=True)
    booking_id: Mapped[int] = mapped_column(ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False)
    day: Mapped[date] = mapped_column(Date, nullable=False)
    slot: Mapped[Slot] = mapped_column(slot_enum, nullable=False)
    event_type: Mapped[str | None] = mapped_column(String(100))

    booking: Mapped["Booking"] = relationship(back_populates="details")

    __table_args__ = (UniqueConstraint("booking_id", "day", "slot", name="uq_booking_details_atom"),)


# Import for type hints
from clubhouse.models.member import Member  # noqa: E402
from clubhouse.models.resource import Resource  # noqa: E402
