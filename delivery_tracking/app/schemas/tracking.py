"""
Order tracking schemas.

Defines request and response models for stages, projections and history.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List
from delivery_tracking.app.models.enums import SourceActor
from delivery_tracking.app.models.failed_push import FailedPushStatus


class StageResponse(BaseModel):
    """A registered delivery stage."""
    code: str
    display_name: str
    position: int
    description: Optional[str] = None

    class Config:
        from_attributes = True


class LocationResponse(BaseModel):
    latitude: float
    longitude: float
    recorded_at: datetime


class TrackingResponse(BaseModel):
    """Projected state of an order. current_stage is null while unstarted."""
    order_id: int
    started: bool
    current_stage: Optional[StageResponse] = None
    progress_percent: Optional[int] = None
    last_status_change_at: Optional[datetime] = None
    last_location: Optional[LocationResponse] = None
    stages: List[StageResponse]


class StatusHistoryEntryResponse(BaseModel):
    id: int
    order_id: int
    sequence: int
    stage_code: str
    note: Optional[str]
    latitude: Optional[float]
    longitude: Optional[float]
    source_actor: SourceActor
    created_by: Optional[int]
    created_at: datetime

    class Config:
        from_attributes = True


class HistoryResponse(BaseModel):
    """Page of status history, most recent first."""
    order_id: int
    entries: List[StatusHistoryEntryResponse]
    total: int
    limit: int
    offset: int
    has_more: bool


class LocationInput(BaseModel):
    """Where the parcel was when the status was recorded."""
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class TransitionRequest(BaseModel):
    """Seller status update."""
    stage_code: str = Field(..., min_length=1, max_length=50)
    note: Optional[str] = Field(None, max_length=2000)
    location: Optional[LocationInput] = None


class CacheRefreshResponse(BaseModel):
    order_id: int
    current_stage_code: Optional[str]
    last_status_change_at: Optional[datetime]
    version: int


class FailedPushResponse(BaseModel):
    """Courier push that is waiting for, or went through, an operator replay."""
    id: int
    order_id: int
    external_ref: str
    stage_code: str
    external_status_code: str
    error_message: str
    attempts: int
    status: FailedPushStatus
    created_at: datetime
    last_attempt_at: Optional[datetime]

    class Config:
        from_attributes = True
