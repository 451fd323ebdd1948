"""Temporal extents and the two overlap regimes.

Pure calculation module: no database, no async, no FastAPI dependencies.

Lodging resources are occupied night by night: an extent is the half-open
range ``[start_date, end_date)`` and a checkout day may equal another stay's
checkin day. Venue resources are occupied in discrete ``(day, slot)`` atoms:
an extent covers every day from ``start_date`` to ``end_date`` inclusive, in
one slot. An atom without a slot is date-only and matches every slot of that
day; blackouts are expressed that way.
"""

import enum
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import date, timedelta

from clubhouse.core.exceptions import ValidationError
from clubhouse.models.booking import Slot
from clubhouse.models.resource import ResourceKind

ONE_DAY = timedelta(days=1)


class Regime(enum.StrEnum):
    CONTINUOUS = "continuous"
    DISCRETE = "discrete"


def regime_for(kind: ResourceKind) -> Regime:
    return Regime.CONTINUOUS if kind.is_lodging else Regime.DISCRETE


def parse_slot(value: str | Slot | None) -> Slot | None:
    """Normalise a slot value case-insensitively. ``None`` stays ``None``."""
    if value is None or isinstance(value, Slot):
        return value
    try:
        return Slot(str(value).strip().upper())
    except ValueError:
        raise ValidationError(
            "invalid_slot",
            f"Invalid time slot '{value}'. Must be one of: {', '.join(s.value for s in Slot)}.",
        ) from None


def iter_days(start: date, end: date) -> Iterator[date]:
    """Every day from start to end, both inclusive."""
    day = start
    while day <= end:
        yield day
        day += ONE_DAY


def nights(start: date, end: date) -> int:
    return max((end - start).days, 0)


@dataclass(frozen=True)
class TemporalExtent:
    start_date: date
    end_date: date
    slot: Slot | None = None

    def atoms(self) -> set[tuple[date, Slot | None]]:
        """Decompose a venue extent into its (day, slot) atoms."""
        return {(day, self.slot) for day in iter_days(self.start_date, self.end_date)}

    def last_day(self, regime: Regime) -> date:
        """The last calendar day the extent actually occupies."""
        if regime is Regime.CONTINUOUS:
            return self.end_date - ONE_DAY
        return self.end_date

    def describe(self, regime: Regime) -> str:
        """Human-readable date range, e.g. '10 Jan 2024 to 12 Jan 2024, morning slot'."""
        start = format_day(self.start_date)
        end = format_day(self.end_date)
        text = start if start == end else f"{start} to {end}"
        if regime is Regime.DISCRETE and self.slot is not None:
            text += f", {self.slot.value.lower()} slot"
        return text


def format_day(day: date) -> str:
    return day.strftime("%d %b %Y")


def _slots_match(a: Slot | None, b: Slot | None) -> bool:
    if a is None or b is None:
        return True
    return a.value.upper() == b.value.upper()


def extents_overlap(a: TemporalExtent, b: TemporalExtent, regime: Regime) -> bool:
    """Do two extents on the same resource intersect under the resource's regime?"""
    if regime is Regime.CONTINUOUS:
        return a.start_date < b.end_date and b.start_date < a.end_date

    # Discrete: share a day (inclusive ranges) with a matching slot
    if a.start_date > b.end_date or b.start_date > a.end_date:
        return False
    return _slots_match(a.slot, b.slot)


def blackout_extent(start: date, end: date, regime: Regime) -> TemporalExtent:
    """The extent a blackout over the inclusive days [start, end] occupies.

    For lodging a blackout day blocks the night that begins on it.
    """
    if regime is Regime.CONTINUOUS:
        return TemporalExtent(start, end + ONE_DAY)
    return TemporalExtent(start, end, None)


def covers_day(extent: TemporalExtent, day: date, regime: Regime) -> bool:
    return extent.start_date <= day <= extent.last_day(regime)
