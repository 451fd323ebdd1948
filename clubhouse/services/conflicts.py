"""Conflict detection.

Decides whether a candidate extent on a resource intersects any live claim.
The decision itself (``find_conflict``) is pure and works on ``Claim``
values; the async wrappers load the claims first.

Claims are evaluated kind by kind in a fixed order: blackouts, confirmed
bookings, staff reservations, then unexpired holds of *other* claimants.
The first hit is reported.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, datetime

from sqlalchemy.ext.asyncio import AsyncSession

from clubhouse.core.clock import club_today, ensure_utc, resolve_now
from clubhouse.models.resource import Resource
from clubhouse.services.extent import (
    ONE_DAY,
    Regime,
    TemporalExtent,
    extents_overlap,
    format_day,
    regime_for,
)
from clubhouse.services.occupancy import Claim, ClaimKind, load_claims

EVALUATION_ORDER = (ClaimKind.BLACKOUT, ClaimKind.BOOKING, ClaimKind.RESERVATION, ClaimKind.HOLD)

Exclusion = tuple[ClaimKind, int]


@dataclass(frozen=True)
class ConflictResult:
    has_conflict: bool
    kind: ClaimKind | None = None
    message: str = ""
    resource_id: int | None = None
    resource_name: str | None = None


def _is_excluded(claim: Claim, exclude: Exclusion | None) -> bool:
    if exclude is None:
        return False
    kind, claim_id = exclude
    if claim.kind is kind and claim.id == claim_id:
        return True
    # A booking's own holds belong to it
    return kind is ClaimKind.BOOKING and claim.kind is ClaimKind.HOLD and claim.booking_id == claim_id


def _intersects(claim: Claim, extent: TemporalExtent | None, regime: Regime, today: date) -> bool:
    if claim.extent is None:
        return True
    if extent is None:
        # Whole-resource request: anything not already over counts
        return claim.extent.last_day(regime) >= today
    return extents_overlap(claim.extent, extent, regime)


def describe_claim(claim: Claim, regime: Regime) -> str:
    if claim.extent is None:
        return "all dates"
    if claim.kind is ClaimKind.BLACKOUT and regime is Regime.CONTINUOUS:
        # Stored as the nights it blocks; show the inclusive days staff entered
        return TemporalExtent(claim.extent.start_date, claim.extent.end_date - ONE_DAY).describe(Regime.DISCRETE)
    return claim.extent.describe(regime)


def conflict_message(resource: Resource, claim: Claim, regime: Regime) -> str:
    when = describe_claim(claim, regime)
    if claim.kind is ClaimKind.BLACKOUT:
        return f"{resource.name} is out of service ({when}): {claim.reason}."
    if claim.kind is ClaimKind.BOOKING:
        return f"{resource.name} is already booked ({when})."
    if claim.kind is ClaimKind.RESERVATION:
        text = f"{resource.name} is reserved by {claim.reserved_by} ({when})"
        return f"{text}: {claim.reason}." if claim.reason else f"{text}."
    until = ensure_utc(claim.expires_at).strftime("%H:%M UTC") if claim.expires_at else "later"
    return f"{resource.name} is on hold for another member's pending payment ({when}) until {until}."


def find_conflict(
    resource: Resource,
    extent: TemporalExtent | None,
    claims: Sequence[Claim],
    claimant_id: str | None = None,
    exclude: Exclusion | None = None,
    today: date | None = None,
) -> ConflictResult:
    """Evaluate one candidate extent against already-loaded claims.

    ``claims`` may contain claims on other resources; they are ignored.
    ``extent=None`` is a whole-resource request and meets every claim that
    has not ended before ``today``.
    """
    regime = regime_for(resource.kind)
    today = today or club_today()
    relevant = [c for c in claims if c.resource_id == resource.id and not _is_excluded(c, exclude)]

    for kind in EVALUATION_ORDER:
        for claim in relevant:
            if claim.kind is not kind:
                continue
            if kind is ClaimKind.HOLD and claimant_id is not None and claim.claimant_id == claimant_id:
                continue
            if _intersects(claim, extent, regime, today):
                return ConflictResult(
                    has_conflict=True,
                    kind=kind,
                    message=conflict_message(resource, claim, regime),
                    resource_id=resource.id,
                    resource_name=resource.name,
                )

    return ConflictResult(has_conflict=False, resource_id=resource.id, resource_name=resource.name)


def _window(extent: TemporalExtent | None) -> tuple[date, date] | None:
    if extent is None:
        return None
    return (extent.start_date, extent.end_date)


async def check_conflict(
    db: AsyncSession,
    resource: Resource,
    extent: TemporalExtent | None,
    claimant_id: str | None = None,
    exclude: Exclusion | None = None,
    now: datetime | None = None,
) -> ConflictResult:
    now = resolve_now(now)
    claims = await load_claims(db, [resource], _window(extent), now)
    return find_conflict(resource, extent, claims, claimant_id, exclude, club_today(now))


async def check_conflicts(
    db: AsyncSession,
    resources: Sequence[Resource],
    extent: TemporalExtent | None,
    claimant_id: str | None = None,
    exclude: Exclusion | None = None,
    now: datetime | None = None,
) -> list[ConflictResult]:
    """Check every resource and return all conflicting results, in resource order.

    Nothing short-circuits: a bulk caller gets every offending resource at once.
    """
    now = resolve_now(now)
    claims = await load_claims(db, list(resources), _window(extent), now)
    today = club_today(now)
    results = [find_conflict(r, extent, claims, claimant_id, exclude, today) for r in resources]
    return [r for r in results if r.has_conflict]
