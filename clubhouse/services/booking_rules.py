"""Booking rules enforcement.

All request validation lives here, separate from the workflow and the route
handlers. Each rule returns a ValidationError or None if the rule passes;
validate_request() runs them all and collects every violation so the caller
sees everything wrong with a request at once.
"""

from dataclasses import dataclass
from datetime import date

from clubhouse.core.exceptions import StateError, ValidationError
from clubhouse.models.booking import PricingType, Slot
from clubhouse.models.member import Member
from clubhouse.models.resource import Resource, ResourceKind
from clubhouse.services.extent import iter_days, parse_slot


@dataclass(frozen=True)
class DetailRequest:
    """One (day, slot) a venue booking asks for."""

    day: date
    slot: Slot
    event_type: str | None = None


def check_dates_present(start: date | None, end: date | None) -> ValidationError | None:
    if start is None or end is None:
        return ValidationError("missing_dates", "Start and end dates are required.")
    return None


def check_date_order(kind: ResourceKind, start: date, end: date) -> ValidationError | None:
    """Lodging needs at least one night; venues may start and end on the same day."""
    if kind.is_lodging and end <= start:
        return ValidationError("date_order", "Check-out date must be after check-in date.")
    if end < start:
        return ValidationError("date_order", "End date cannot be before start date.")
    return None


def check_not_in_past(start: date, today: date) -> ValidationError | None:
    if start < today:
        return ValidationError("past_booking", "Booking date cannot be in the past.")
    return None


def check_slot(kind: ResourceKind, slot: str | Slot | None) -> tuple[Slot | None, ValidationError | None]:
    """Venues need one of the three slots; lodging ignores it."""
    if kind.is_lodging:
        return None, None
    if slot is None:
        return None, ValidationError("missing_slot", "A time slot is required for this booking.")
    try:
        return parse_slot(slot), None
    except ValidationError as e:
        return None, e


def check_capacity(resource: Resource, guest_count: int) -> ValidationError | None:
    """Halls and lawns only: guest count within the resource's bounds."""
    if not resource.kind.checks_capacity:
        return None
    if guest_count < resource.capacity_min:
        return ValidationError(
            "capacity",
            f"{resource.name} requires at least {resource.capacity_min} guests. Requested: {guest_count}.",
        )
    if resource.capacity_max and guest_count > resource.capacity_max:
        return ValidationError(
            "capacity",
            f"{resource.name} holds at most {resource.capacity_max} guests. Requested: {guest_count}.",
        )
    return None


def check_quantity(quantity: int) -> ValidationError | None:
    if quantity < 1:
        return ValidationError("quantity", "At least one unit must be requested.")
    return None


def check_member_standing(member: Member, pricing_type: PricingType) -> StateError | None:
    """Member-priced bookings need an active membership."""
    if pricing_type is PricingType.MEMBER and not member.in_good_standing:
        return StateError(
            "member_standing",
            f"Membership {member.membership_no} is {member.status.value}; member pricing is not available.",
        )
    return None


def check_details(
    details: list[DetailRequest], start: date, end: date, today: date
) -> ValidationError | None:
    """Explicit venue details must be unique and fall inside the booking's range."""
    seen: set[tuple[date, Slot]] = set()
    for d in details:
        if d.day < today:
            return ValidationError("past_booking", f"Booking date {d.day} cannot be in the past.")
        if not start <= d.day <= end:
            return ValidationError("detail_range", f"Detail date {d.day} is outside {start} to {end}.")
        if (d.day, d.slot) in seen:
            return ValidationError("duplicate_detail", f"{d.day} {d.slot.value} is listed twice.")
        seen.add((d.day, d.slot))
    return None


def validate_request(
    kind: ResourceKind,
    start: date | None,
    end: date | None,
    slot: str | Slot | None,
    today: date,
    quantity: int = 1,
) -> tuple[Slot | None, list[ValidationError]]:
    """Run the input rules that need no resource. Returns (parsed slot, violations)."""
    violations: list[ValidationError] = []

    # 1. Dates present
    v = check_dates_present(start, end)
    if v:
        violations.append(v)
    else:
        # 2. Date order
        v = check_date_order(kind, start, end)
        if v:
            violations.append(v)

        # 3. Not in the past
        v = check_not_in_past(start, today)
        if v:
            violations.append(v)

    # 4. Slot
    parsed, v = check_slot(kind, slot)
    if v:
        violations.append(v)

    # 5. Quantity
    v = check_quantity(quantity)
    if v:
        violations.append(v)

    return parsed, violations


def expand_details(
    start: date,
    end: date,
    slot: Slot,
    event_type: str | None,
    requested: list[DetailRequest] | None = None,
) -> list[DetailRequest]:
    """The (day, slot) list of a venue booking: explicit details, or every day in range."""
    if requested:
        return sorted(requested, key=lambda d: (d.day, list(Slot).index(d.slot)))
    return [DetailRequest(day, slot, event_type) for day in iter_days(start, end)]
