"""
Order Tracking API Endpoints.

Buyers and sellers follow an order's delivery; the seller records stage
changes. Every write goes through the transition authority.
"""

from fastapi import APIRouter, Body, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from delivery_tracking.app.db.session import get_db
from delivery_tracking.app.models.enums import UserRole
from delivery_tracking.app.schemas.tracking import (
    StageResponse, LocationResponse, TrackingResponse,
    StatusHistoryEntryResponse, HistoryResponse,
    TransitionRequest, CacheRefreshResponse
)
from delivery_tracking.app.core.dependencies import get_current_user, get_tracking_service
from delivery_tracking.app.core.guards import (
    require_role, actor_from_user, enforce_order_visibility, enforce_order_seller
)
from delivery_tracking.app.services.stage_registry import Stage
from delivery_tracking.app.services.tracking import OrderTrackingService, TrackingSnapshot

router = APIRouter(prefix="/orders", tags=["Order Tracking"])


def _stage_response(stage: Stage) -> StageResponse:
    return StageResponse(
        code=stage.code,
        display_name=stage.display_name,
        position=stage.position,
        description=stage.description,
    )


def _tracking_response(snapshot: TrackingSnapshot, service: OrderTrackingService) -> TrackingResponse:
    order = snapshot.order
    projection = snapshot.projection
    location = None
    if snapshot.last_location is not None:
        location = LocationResponse(
            latitude=snapshot.last_location.latitude,
            longitude=snapshot.last_location.longitude,
            recorded_at=snapshot.last_location.created_at,
        )
    return TrackingResponse(
        order_id=order.id,
        started=snapshot.started,
        current_stage=_stage_response(projection.current_stage) if projection else None,
        progress_percent=projection.progress_percent if projection else None,
        last_status_change_at=projection.entry.created_at if projection else None,
        last_location=location,
        stages=[_stage_response(stage) for stage in service.registry.list_stages()],
    )


@router.get("/{order_id}/tracking", response_model=TrackingResponse)
async def get_order_tracking(
    order_id: int = Path(..., description="Order ID"),
    current_user: dict = Depends(get_current_user),
    service: OrderTrackingService = Depends(get_tracking_service),
    db: AsyncSession = Depends(get_db)
):
    """
    Current stage and progress of an order (buyer or seller).

    An order that has not been started yet returns started=false and no
    current stage.
    """
    order = await service.get_order(db, order_id)
    enforce_order_visibility(order, current_user)

    snapshot = await service.get_current_stage(db, order_id)
    return _tracking_response(snapshot, service)


@router.get("/{order_id}/history", response_model=HistoryResponse)
async def get_order_history(
    order_id: int = Path(..., description="Order ID"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_user: dict = Depends(get_current_user),
    service: OrderTrackingService = Depends(get_tracking_service),
    db: AsyncSession = Depends(get_db)
):
    """Status history of an order, most recent first (buyer or seller)."""
    order = await service.get_order(db, order_id)
    enforce_order_visibility(order, current_user)

    page = await service.get_history(db, order_id, limit=limit, offset=offset)
    return HistoryResponse(
        order_id=order_id,
        entries=[StatusHistoryEntryResponse.model_validate(entry) for entry in page.entries],
        total=page.total,
        limit=page.limit,
        offset=page.offset,
        has_more=page.has_more,
    )


@router.post(
    "/{order_id}/status",
    response_model=StatusHistoryEntryResponse,
    status_code=status.HTTP_201_CREATED
)
async def update_order_status(
    order_id: int = Path(..., description="Order ID"),
    request: TransitionRequest = Body(...),
    current_user: dict = Depends(get_current_user),
    service: OrderTrackingService = Depends(get_tracking_service),
    db: AsyncSession = Depends(get_db)
):
    """
    Record a new delivery stage for an order (seller only).

    Validates:
    - Caller is the order's seller
    - Stage is registered
    - Location, if given, is within bounds

    Buyers get 403 and nothing is recorded.
    """
    coordinate = (request.location.lat, request.location.lng) if request.location else None
    entry = await service.request_transition(
        db,
        order_id,
        actor_from_user(current_user),
        request.stage_code,
        note=request.note,
        coordinate=coordinate,
    )
    return StatusHistoryEntryResponse.model_validate(entry)


@router.post("/{order_id}/status/refresh", response_model=CacheRefreshResponse)
async def refresh_order_status_cache(
    order_id: int = Path(..., description="Order ID"),
    current_user: dict = Depends(require_role([UserRole.SELLER])),
    service: OrderTrackingService = Depends(get_tracking_service),
    db: AsyncSession = Depends(get_db)
):
    """Re-derive the order's cached stage from its status history (seller only)."""
    order = await service.get_order(db, order_id)
    enforce_order_seller(order, current_user)

    order = await service.refresh_cache(db, order_id)
    return CacheRefreshResponse(
        order_id=order.id,
        current_stage_code=order.current_stage_code,
        last_status_change_at=order.last_status_change_at,
        version=order.version,
    )
