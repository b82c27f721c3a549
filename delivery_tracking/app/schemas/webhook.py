"""
Courier webhook schemas.
"""

from pydantic import BaseModel, Field, field_validator
from typing import Optional


class CourierWebhookEvent(BaseModel):
    """
    Status event pushed by the courier platform.

    Both the platform's camelCase keys and snake_case are accepted.
    """
    order_number: str = Field(..., alias="orderNumber", description="Courier order reference")
    external_status_code: str = Field(..., alias="externalStatusCode", description="Courier status code")
    note: Optional[str] = Field(None, max_length=2000)
    lat: Optional[float] = None
    lng: Optional[float] = None

    class Config:
        populate_by_name = True

    @field_validator("order_number", "external_status_code", mode="before")
    @classmethod
    def non_blank_string(cls, value):
        if isinstance(value, bool) or value is None:
            raise ValueError("must be a non-empty string")
        if isinstance(value, int):
            value = str(value)
        if not isinstance(value, str) or not value.strip():
            raise ValueError("must be a non-empty string")
        return value.strip()

    @property
    def coordinate(self) -> Optional[tuple]:
        if self.lat is None and self.lng is None:
            return None
        return (self.lat, self.lng)


class WebhookAck(BaseModel):
    """Response body for every accepted webhook call."""
    status: str  # verified, applied, skipped
    reason: Optional[str] = None
    entry_id: Optional[int] = None
    stage_code: Optional[str] = None
