"""Member model.

A Member is the claimant of bookings and holds. Profiles are managed by the
membership system; the engine reads standing and keeps the cached booking
totals that the ledger poster maintains.
"""

import enum
from datetime import datetime

from sqlalchemy import DateTime, Enum, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from clubhouse.models.base import Base, TimestampMixin, enum_values


class MemberStatus(enum.StrEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class Member(TimestampMixin, Base):
    __tablename__ = "members"

    id: Mapped[int] = mapped_column(primary_key=True)
    membership_no: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str | None] = mapped_column(String(254))
    status: Mapped[MemberStatus] = mapped_column(
        Enum(MemberStatus, name="member_status", values_callable=enum_values),
        default=MemberStatus.ACTIVE,
        nullable=False,
    )

    # Cached ledger totals. The authoritative trail is ledger_entries.
    booking_amount_paid: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    booking_balance: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_bookings: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_booking_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    @property
    def in_good_standing(self) -> bool:
        return self.status == MemberStatus.ACTIVE

    def __repr__(self) -> str:
        return f"<Member {self.membership_no}>"
