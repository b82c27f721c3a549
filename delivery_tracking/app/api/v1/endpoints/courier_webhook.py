"""
Courier Webhook Endpoints.

The courier platform verifies the endpoint with an empty call, then posts
status events for the orders it carries.
"""

import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from delivery_tracking.app.db.session import get_db
from delivery_tracking.app.core.config import settings
from delivery_tracking.app.core.dependencies import get_tracking_service
from delivery_tracking.app.core.exceptions import AuthenticationError, ValidationError
from delivery_tracking.app.core.guards import webhook_token_valid
from delivery_tracking.app.schemas.webhook import WebhookAck
from delivery_tracking.app.services.courier_sync import WebhookOutcome, is_verification_probe
from delivery_tracking.app.services.tracking import OrderTrackingService

logger = logging.getLogger("delivery_tracking.courier")

router = APIRouter(prefix="/webhooks", tags=["Courier Webhooks"])


@router.get("/courier", response_model=WebhookAck)
async def verify_courier_webhook():
    """Endpoint verification handshake. No authentication, no side effects."""
    return WebhookAck(status=WebhookOutcome.VERIFIED)


@router.post("/courier", response_model=WebhookAck)
async def receive_courier_webhook(
    request: Request,
    x_webhook_token: Optional[str] = Header(None),
    service: OrderTrackingService = Depends(get_tracking_service),
    db: AsyncSession = Depends(get_db)
):
    """
    Ingest a courier status event.

    - Empty body or {}: verification probe, answered without authentication
    - Otherwise X-Webhook-Token must match one of the configured tokens
    - Unrecognised statuses, unknown orders and refused regressions are
      acknowledged and dropped
    """
    raw = await request.body()
    if not raw.strip():
        return WebhookAck(status=WebhookOutcome.VERIFIED)

    try:
        payload = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.warning("Rejected courier webhook: body is not valid JSON")
        raise ValidationError("Webhook body must be valid JSON")

    if is_verification_probe(payload):
        return WebhookAck(status=WebhookOutcome.VERIFIED)

    if not webhook_token_valid(x_webhook_token, settings.courier_webhook_tokens):
        logger.warning("Rejected courier webhook: missing or invalid token")
        raise AuthenticationError("Invalid webhook token")

    try:
        outcome = await service.handle_courier_webhook(db, payload)
    except ValidationError as exc:
        logger.warning("Rejected courier webhook: %s %s", exc.message, exc.details)
        raise

    entry = outcome.entry
    return WebhookAck(
        status=outcome.status,
        reason=outcome.reason,
        entry_id=entry.id if entry else None,
        stage_code=entry.stage_code if entry else None,
    )
