"""Staff-side claims: bulk administrative reservations and blackouts.

Both write straight into the occupancy ledger, outside the member payment
flow, and both recompute the resources' derived flags in the same
transaction.
"""

import logging
from collections import Counter
from datetime import date, datetime

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from clubhouse.core.clock import club_today, resolve_now
from clubhouse.core.exceptions import ConflictError, NotFoundError, ValidationError
from clubhouse.models.booking import Slot
from clubhouse.models.claims import AdministrativeReservation, Blackout
from clubhouse.models.resource import Resource
from clubhouse.services import booking_rules
from clubhouse.services.conflicts import find_conflict
from clubhouse.services.extent import (
    TemporalExtent,
    blackout_extent,
    extents_overlap,
    parse_slot,
    regime_for,
)
from clubhouse.services.occupancy import ClaimKind, load_claims, lock_resources, refresh_resource_flags

logger = logging.getLogger(__name__)


async def _locked(db: AsyncSession, resource_ids: list[int]) -> list[Resource]:
    resources = await lock_resources(db, resource_ids)
    missing = sorted(set(resource_ids) - {r.id for r in resources})
    if missing:
        raise NotFoundError("resource_not_found", f"Resource(s) {', '.join(map(str, missing))} not found.")
    return resources


def _extent_for(resource: Resource, start: date, end: date, slot: Slot | None) -> TemporalExtent:
    """Lodging ignores the slot; venues always carry one."""
    return TemporalExtent(start, end, None if resource.kind.is_lodging else slot)


def _validate(
    resources: list[Resource], start: date | None, end: date | None, slot: str | Slot | None, today: date
) -> Slot | None:
    violations: list[ValidationError] = []
    v = booking_rules.check_dates_present(start, end)
    if v:
        raise v
    for kind in dict.fromkeys(r.kind for r in resources):
        v = booking_rules.check_date_order(kind, start, end)
        if v and v.message not in {x.message for x in violations}:
            violations.append(v)
    v = booking_rules.check_not_in_past(start, today)
    if v:
        violations.append(v)

    parsed = None
    venue_kinds = [r.kind for r in resources if not r.kind.is_lodging]
    if venue_kinds:
        parsed, v = booking_rules.check_slot(venue_kinds[0], slot)
        if v:
            violations.append(v)
    if violations:
        raise ValidationError.collect(violations)
    return parsed


async def _delete_exact(
    db: AsyncSession, resources: list[Resource], start: date, end: date, slot: Slot | None
) -> int:
    removed = 0
    for resource in resources:
        extent = _extent_for(resource, start, end, slot)
        result = await db.execute(
            delete(AdministrativeReservation).where(
                AdministrativeReservation.resource_id == resource.id,
                AdministrativeReservation.start_date == extent.start_date,
                AdministrativeReservation.end_date == extent.end_date,
                AdministrativeReservation.slot.is_(None)
                if extent.slot is None
                else AdministrativeReservation.slot == extent.slot,
            )
        )
        removed += result.rowcount or 0
    return removed


async def reserve_bulk(
    db: AsyncSession,
    resource_ids: list[int],
    start_date: date | None,
    end_date: date | None,
    slot: str | Slot | None,
    remarks: str | None,
    reserve: bool,
    reserved_by: str,
    now: datetime | None = None,
) -> dict:
    """Reserve (or release) many resources for one extent, all or nothing.

    Reserving first drops any exact-match reservation so that re-applying the
    same call is idempotent, then checks every resource and fails with every
    conflict at once. Releasing removes only exact matches.
    """
    now = resolve_now(now)
    today = club_today(now)
    ids = list(dict.fromkeys(resource_ids))
    if not ids:
        raise ValidationError("missing_resources", "At least one resource must be selected.")
    resources = await _locked(db, ids)

    if not reserve:
        if start_date is None or end_date is None:
            return {"message": "No reservation dates given; nothing was removed.", "count": 0}
        parsed = None
        if any(not r.kind.is_lodging for r in resources):
            if slot is None:
                return {"message": "No time slot given; nothing was removed.", "count": 0}
            parsed = parse_slot(slot)
        removed = await _delete_exact(db, resources, start_date, end_date, parsed)
        await refresh_resource_flags(db, ids, now)
        logger.info("Reservations released by %s: %d on %s", reserved_by, removed, ids)
        return {"message": f"{removed} reservation(s) removed.", "count": removed}

    parsed = _validate(resources, start_date, end_date, slot, today)
    await _delete_exact(db, resources, start_date, end_date, parsed)
    await db.flush()

    claims = await load_claims(db, resources, (start_date, end_date), now)
    conflicts = []
    for resource in resources:
        result = find_conflict(resource, _extent_for(resource, start_date, end_date, parsed), claims, today=today)
        if result.has_conflict:
            conflicts.append(result)
    if conflicts:
        raise ConflictError.from_results(conflicts)

    for resource in resources:
        extent = _extent_for(resource, start_date, end_date, parsed)
        db.add(
            AdministrativeReservation(
                resource_id=resource.id,
                start_date=extent.start_date,
                end_date=extent.end_date,
                slot=extent.slot,
                reserved_by=reserved_by,
                remarks=remarks,
            )
        )
    await db.flush()
    await refresh_resource_flags(db, ids, now)

    when = _extent_for(resources[0], start_date, end_date, parsed).describe(regime_for(resources[0].kind))
    logger.info("Reservations created by %s: %s for %s", reserved_by, ids, when)
    return {"message": f"{len(resources)} resource(s) reserved for {when}.", "count": len(resources)}


async def create_blackout(
    db: AsyncSession,
    resource_id: int,
    start_date: date | None,
    end_date: date | None,
    reason: str,
    created_by: str | None = None,
    now: datetime | None = None,
) -> Blackout:
    """Put a resource out of service for an inclusive day range.

    Refused while a confirmed booking, a staff reservation or a live hold sits
    in the range. Expired holds do not count.
    """
    now = resolve_now(now)
    violations: list[ValidationError] = []
    v = booking_rules.check_dates_present(start_date, end_date)
    if v:
        violations.append(v)
    elif end_date < start_date:
        violations.append(ValidationError("date_order", "End date cannot be before start date."))
    if not reason or not reason.strip():
        violations.append(ValidationError("missing_reason", "A reason is required."))
    if violations:
        raise ValidationError.collect(violations)

    (resource,) = await _locked(db, [resource_id])
    regime = regime_for(resource.kind)
    extent = blackout_extent(start_date, end_date, regime)

    claims = await load_claims(
        db,
        [resource],
        (extent.start_date, extent.end_date),
        now,
        kinds=(ClaimKind.BOOKING, ClaimKind.RESERVATION, ClaimKind.HOLD),
    )
    hits = [c for c in claims if c.extent is None or extents_overlap(c.extent, extent, regime)]
    if hits:
        counts = Counter(c.kind for c in {(c.kind, c.id): c for c in hits}.values())
        summary = ", ".join(f"{n} {kind.value}(s)" for kind, n in counts.items())
        raise ConflictError(
            f"{resource.name} has {summary} between {start_date} and {end_date}. Cancel or move them first.",
            rule="blackout_conflict",
        )

    blackout = Blackout(
        resource_id=resource.id,
        start_date=start_date,
        end_date=end_date,
        reason=reason.strip(),
        created_by=created_by,
    )
    db.add(blackout)
    await db.flush()
    await refresh_resource_flags(db, [resource.id], now)
    logger.info("Blackout %s on %s: %s..%s (%s)", blackout.id, resource.name, start_date, end_date, blackout.reason)
    return blackout


async def delete_blackout(db: AsyncSession, blackout_id: int, now: datetime | None = None) -> None:
    blackout = await db.get(Blackout, blackout_id)
    if blackout is None:
        raise NotFoundError("blackout_not_found", f"Blackout {blackout_id} not found.")
    resource_id = blackout.resource_id
    await db.delete(blackout)
    await db.flush()
    await refresh_resource_flags(db, [resource_id], now)
    logger.info("Blackout %s removed from resource %s", blackout_id, resource_id)
