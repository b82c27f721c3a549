"""
Delivery stage endpoints.

The registered stage sequence, used by clients to draw the progress tracker.
"""

from fastapi import APIRouter, Depends
from typing import List

from delivery_tracking.app.core.dependencies import get_current_user, get_tracking_service
from delivery_tracking.app.schemas.tracking import StageResponse
from delivery_tracking.app.services.tracking import OrderTrackingService

router = APIRouter(prefix="/stages", tags=["Delivery Stages"])


@router.get("", response_model=List[StageResponse])
async def list_stages(
    current_user: dict = Depends(get_current_user),
    service: OrderTrackingService = Depends(get_tracking_service),
):
    """All delivery stages in position order."""
    return [
        StageResponse(
            code=stage.code,
            display_name=stage.display_name,
            position=stage.position,
            description=stage.description,
        )
        for stage in service.registry.list_stages()
    ]
