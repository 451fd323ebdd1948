"""Resource routes: catalog, calendar, staff log and blackouts."""

from datetime import date

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from clubhouse.core.database import get_db
from clubhouse.core.dependencies import Principal, require_staff
from clubhouse.models.resource import ResourceKind
from clubhouse.schemas import BlackoutCreate, BlackoutOut, DateStatuses, ResourceListing, ResourceLog, ResourceOut
from clubhouse.services import calendar, reservations

router = APIRouter(prefix="/resources", tags=["resources"])


@router.get("", response_model=list[ResourceListing])
async def list_resources(
    kind: ResourceKind | None = None,
    db: AsyncSession = Depends(get_db),
):
    listing = await calendar.list_resources(db, kind)
    return [
        ResourceListing(
            **ResourceOut.model_validate(resource).model_dump(),
            available_today=blackout is None,
            out_of_service_reason=blackout.reason if blackout else None,
        )
        for resource, blackout in listing
    ]


@router.get("/calendar", response_model=DateStatuses)
async def date_statuses(
    resource_ids: list[int] = Query(...),
    date_from: date = Query(..., alias="from"),
    date_to: date = Query(..., alias="to"),
    db: AsyncSession = Depends(get_db),
):
    return await calendar.get_date_statuses(db, resource_ids, date_from, date_to)


@router.get("/{resource_id}/log", response_model=ResourceLog)
async def resource_log(
    resource_id: int,
    date_from: date | None = Query(None, alias="from"),
    date_to: date | None = Query(None, alias="to"),
    staff: Principal = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    return await calendar.get_resource_log(db, resource_id, date_from, date_to)


@router.post("/{resource_id}/blackouts", response_model=BlackoutOut, status_code=status.HTTP_201_CREATED)
async def create_blackout(
    resource_id: int,
    body: BlackoutCreate,
    staff: Principal = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    return await reservations.create_blackout(
        db, resource_id, body.start_date, body.end_date, body.reason, created_by=staff.display_name
    )


@router.delete("/blackouts/{blackout_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_blackout(
    blackout_id: int,
    staff: Principal = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    await reservations.delete_blackout(db, blackout_id)
