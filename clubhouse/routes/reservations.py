"""Bulk administrative reservation route (staff only)."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from clubhouse.core.database import get_db
from clubhouse.core.dependencies import Principal, require_staff
from clubhouse.schemas import BulkReservationRequest, BulkReservationResult
from clubhouse.services.reservations import reserve_bulk

router = APIRouter(prefix="/reservations", tags=["reservations"])


@router.post("/bulk", response_model=BulkReservationResult)
async def bulk_reserve(
    body: BulkReservationRequest,
    staff: Principal = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    return await reserve_bulk(
        db,
        body.resource_ids,
        body.start_date,
        body.end_date,
        body.slot,
        body.remarks,
        body.reserve,
        reserved_by=staff.display_name,
    )
