"""Pricing service for booking price calculation.

Rates live on the resource in minor currency units, one for members and
one for guests. Lodging is charged per night per unit; venues and studios
per booked (day, slot), so a one-day venue booking is a flat rate.
"""

from clubhouse.models.booking import PricingType
from clubhouse.models.resource import Resource, ResourceKind


def unit_rate(resource: Resource, pricing_type: PricingType) -> int:
    if pricing_type is PricingType.GUEST:
        return resource.guest_rate
    return resource.member_rate


def lodging_price(units: list[Resource], pricing_type: PricingType, nights: int) -> tuple[int, list[int]]:
    """Total for a night range across units.

    Returns (total, per-unit prices) so each unit row can keep the price it
    was booked at.
    """
    per_unit = [unit_rate(u, pricing_type) * nights for u in units]
    return sum(per_unit), per_unit


def venue_price(resource: Resource, pricing_type: PricingType, occupied_slots: int) -> int:
    return unit_rate(resource, pricing_type) * max(occupied_slots, 1)


# Share of the total kept when a lodging booking is cancelled, by hours of
# notice before check-in and by rooms booked (1-2, 3-5, 6 or more).
ROOM_CANCELLATION_DEDUCTIONS = (
    (72, (0.05, 0.15, 0.25)),
    (24, (0.10, 0.25, 0.50)),
)
LATE_CANCELLATION_DEDUCTION = 1.0


def cancellation_deduction_rate(kind: ResourceKind, unit_count: int, notice_hours: float) -> float:
    """Fraction of the total the club keeps. Venues have no cancellation policy."""
    if not kind.is_lodging:
        return 0.0
    bracket = 0 if unit_count <= 2 else 1 if unit_count <= 5 else 2
    if notice_hours > ROOM_CANCELLATION_DEDUCTIONS[0][0]:
        return ROOM_CANCELLATION_DEDUCTIONS[0][1][bracket]
    if notice_hours >= ROOM_CANCELLATION_DEDUCTIONS[1][0]:
        return ROOM_CANCELLATION_DEDUCTIONS[1][1][bracket]
    return LATE_CANCELLATION_DEDUCTION


def cancellation_charges(total: int, paid: int, deduction_rate: float) -> tuple[int, int, int]:
    """Split a cancelled booking's money into (deduction, refund, amount still owed)."""
    deduction = round(total * deduction_rate)
    return deduction, max(paid - deduction, 0), max(deduction - paid, 0)
