"""Cancellation requests.

Members cannot cancel a paid booking outright. They file a request, staff
approve or reject it, and approval cancels the booking with the refund
worked out from the notice given when the request was filed.
"""

import enum
from datetime import datetime

from sqlalchemy import DateTime, Enum, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from clubhouse.models.base import Base, TimestampMixin, enum_values


class CancellationStatus(enum.StrEnum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class CancellationRequest(TimestampMixin, Base):
    __tablename__ = "cancellation_requests"

    id: Mapped[int] = mapped_column(primary_key=True)
    booking_id: Mapped[int] = mapped_column(ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    requested_by: Mapped[str] = mapped_column(String(200), nullable=False)
    requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[CancellationStatus] = mapped_column(
        Enum(CancellationStatus, name="cancellation_status", values_callable=enum_values),
        default=CancellationStatus.PENDING,
        nullable=False,
    )
    decided_by: Mapped[str | None] = mapped_column(String(200))
    decided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    staff_remarks: Mapped[str | None] = mapped_column(Text)

    __table_args__ = (Index("ix_cancellation_requests_booking_status", "booking_id", "status"),)

    def __repr__(self) -> str:
        return f"<CancellationRequest booking={self.booking_id} {self.status.value}>"
