"""Non-booking claims on a resource: staff reservations, payment holds, blackouts."""

from datetime import date, datetime
from typing import TYPE_CHECKING

from sqlalchemy import Date, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from clubhouse.models.base import Base, TimestampMixin
from clubhouse.models.booking import Slot, slot_enum

if TYPE_CHECKING:
    from clubhouse.models.resource import Resource


class AdministrativeReservation(TimestampMixin, Base):
    """Staff block on a resource, outside the member payment flow.

    Lodging reservations cover ``[start_date, end_date)``; venue reservations
    cover every day in ``[start_date, end_date]`` for one slot.
    """

    __tablename__ = "administrative_reservations"

    id: Mapped[int] = mapped_column(primary_key=True)
    resource_id: Mapped[int] = mapped_column(ForeignKey("resources.id", ondelete="CASCADE"), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    slot: Mapped[Slot | None] = mapped_column(slot_enum)
    reserved_by: Mapped[str] = mapped_column(String(200), nullable=False)
    remarks: Mapped[str | None] = mapped_column(Text)

    resource: Mapped["Resource"] = relationship(lazy="raise")

    __table_args__ = (Index("ix_reservations_resource_dates", "resource_id", "start_date", "end_date"),)

    def __repr__(self) -> str:
        return f"<AdministrativeReservation resource={self.resource_id} {self.start_date}..{self.end_date} {self.slot}>"


class Hold(TimestampMixin, Base):
    """Short-lived exclusive claim taken while a member pays.

    A hold with no dates is a legacy whole-resource hold. Expired holds are
    ignored by every read; deleting them is storage hygiene only.
    """

    __tablename__ = "holds"

    id: Mapped[int] = mapped_column(primary_key=True)
    resource_id: Mapped[int] = mapped_column(ForeignKey("resources.id", ondelete="CASCADE"), nullable=False)
    claimant_id: Mapped[str] = mapped_column(String(50), nullable=False)
    booking_id: Mapped[int | None] = mapped_column(ForeignKey("bookings.id", ondelete="CASCADE"))
    start_date: Mapped[date | None] = mapped_column(Date)
    end_date: Mapped[date | None] = mapped_column(Date)
    slot: Mapped[Slot | None] = mapped_column(slot_enum)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    resource: Mapped["Resource"] = relationship(lazy="raise")

    __table_args__ = (
        Index("ix_holds_resource_expiry", "resource_id", "expires_at"),
        Index("ix_holds_booking", "booking_id"),
    )

    def __repr__(self) -> str:
        return f"<Hold resource={self.resource_id} by={self.claimant_id} until={self.expires_at}>"


class Blackout(TimestampMixin, Base):
    """Maintenance / out-of-service period, inclusive of both dates."""

    __tablename__ = "blackouts"

    id: Mapped[int] = mapped_column(primary_key=True)
    resource_id: Mapped[int] = mapped_column(ForeignKey("resources.id", ondelete="CASCADE"), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    created_by: Mapped[str | None] = mapped_column(String(200))

    resource: Mapped["Resource"] = relationship(lazy="raise")

    __table_args__ = (Index("ix_blackouts_resource_dates", "resource_id", "start_date", "end_date"),)

    def __repr__(self) -> str:
        return f"<Blackout resource={self.resource_id} {self.start_date}..{self.end_date}>"
