"""
Admin Operations API Endpoints.

Inspect and replay courier pushes that failed after every retry.
"""

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from delivery_tracking.app.db.session import get_db
from delivery_tracking.app.models.enums import UserRole
from delivery_tracking.app.models.failed_push import FailedPushStatus
from delivery_tracking.app.core.guards import require_role
from delivery_tracking.app.core.dependencies import get_tracking_service
from delivery_tracking.app.schemas.tracking import FailedPushResponse
from delivery_tracking.app.services.tracking import OrderTrackingService

router = APIRouter(prefix="/admin/ops", tags=["Admin - Ops"])


@router.get("/courier-pushes", response_model=List[FailedPushResponse])
async def list_failed_courier_pushes(
    status: Optional[FailedPushStatus] = Query(FailedPushStatus.PENDING),
    limit: int = Query(50, ge=1, le=200),
    current_user: dict = Depends(require_role([UserRole.ADMIN])),
    service: OrderTrackingService = Depends(get_tracking_service),
    db: AsyncSession = Depends(get_db)
):
    """Failed courier pushes, newest first. Pending ones by default."""
    return await service.list_failed_pushes(db, status=status, limit=limit)


@router.post("/courier-pushes/{push_id}/replay", response_model=FailedPushResponse)
async def replay_failed_courier_push(
    push_id: int = Path(..., description="Failed push ID"),
    current_user: dict = Depends(require_role([UserRole.ADMIN])),
    service: OrderTrackingService = Depends(get_tracking_service),
    db: AsyncSession = Depends(get_db)
):
    """
    Send a failed push to the courier platform again.

    Pushes for a stage the order has since left are discarded instead.
    A replay that fails again stays PENDING with the new error.
    """
    return await service.replay_failed_push(db, push_id)
