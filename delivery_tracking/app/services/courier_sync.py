"""
External Sync Adapter for the courier platform.

Outbound: internal stage codes are translated and pushed to the courier
with retries; failures never reach the transition that triggered them.

Inbound: webhook calls are either a verification probe (answered without
side effects) or a status event, which is translated back to an internal
stage and submitted to the transition authority as the external system.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Mapping, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from delivery_tracking.app.core.exceptions import (
    ValidationError,
    ResourceNotFoundError,
    StageRegressionError,
    UpstreamError,
)
from delivery_tracking.app.core.reliability import CircuitBreaker, CircuitOpenError, retry_with_backoff
from delivery_tracking.app.models.failed_push import FailedCourierPush, FailedPushStatus
from delivery_tracking.app.models.order import Order
from delivery_tracking.app.models.status_history import StatusHistoryEntry
from delivery_tracking.app.schemas.webhook import CourierWebhookEvent
from delivery_tracking.app.services.courier_client import CourierPort
from delivery_tracking.app.services.stage_registry import StageRegistry
from delivery_tracking.app.services.transition_authority import Actor, TransitionAuthority

logger = logging.getLogger("delivery_tracking.courier")

# internal stage code -> courier status code
DEFAULT_STATUS_MAP: Dict[str, str] = {
    "confirmed": "accepted",
    "pickup_scheduled": "scheduled",
    "picked_up": "picked_up",
    "in_transit": "on_the_way",
    "out_for_delivery": "out_for_delivery",
    "delivered": "delivered",
}

# orders.id is a 32-bit INTEGER column
MAX_ORDER_ID = 2 ** 31 - 1

# Preferred delivery window -> hour of day on the following day
DELIVERY_WINDOW_HOURS: Dict[str, int] = {
    "morning": 10,
    "afternoon": 14,
    "evening": 19,
}

ORDER_SOURCE = "Marketplace"


def courier_order_payload(order: Order, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Courier create-order body built from the order's delivery details.

    A preferred delivery window becomes a concrete expected delivery time
    on the following day. Missing details are left out of the body.
    """
    details = order.delivery_details or {}
    now = now or datetime.now(timezone.utc)
    address = details.get("formattedAddress") or details.get("address")

    payload: Dict[str, Any] = {
        "orderNumber": order.courier_ref,
        "customerName": details.get("fullName") or details.get("name"),
        "customerAddress": address,
        "deliveryAddress": address,
        "customerEmail": details.get("email"),
        "customerPhoneNumber": details.get("phone") or details.get("contact"),
        "deliveryLatitude": details.get("latitude"),
        "deliveryLongitude": details.get("longitude"),
        "totalPrice": float(order.amount) if order.amount is not None else None,
        "orderSource": ORDER_SOURCE,
    }
    hour = DELIVERY_WINDOW_HOURS.get(details.get("deliveryTime"))
    if hour is not None:
        expected = (now + timedelta(days=1)).replace(hour=hour, minute=0, second=0, microsecond=0)
        payload["expectedDeliveryTime"] = expected.isoformat()
    return {key: value for key, value in payload.items() if value is not None}


class StatusMapping:
    """
    Bidirectional internal <-> courier vocabulary.

    Two finite maps built from one table, so adding a courier code is a
    configuration change. Outbound lookups fall back to the internal code;
    inbound lookups accept that same pass-through code and nothing else.
    """

    def __init__(self, internal_to_external: Mapping[str, str]):
        self._outbound: Dict[str, str] = dict(internal_to_external)
        self._inbound: Dict[str, str] = {}
        for internal, external in self._outbound.items():
            if external in self._inbound:
                raise ValueError(
                    f"Courier status '{external}' is mapped from both "
                    f"'{self._inbound[external]}' and '{internal}'"
                )
            self._inbound[external] = internal

    @classmethod
    def with_overrides(cls, overrides: Optional[Mapping[str, str]] = None) -> "StatusMapping":
        table = dict(DEFAULT_STATUS_MAP)
        table.update(overrides or {})
        return cls(table)

    def to_external(self, internal_code: str) -> str:
        return self._outbound.get(internal_code, internal_code)

    def to_internal(self, external_code: str, registry: StageRegistry) -> Optional[str]:
        """Internal stage for a courier code, or None if it is not recognised."""
        internal = self._inbound.get(external_code)
        if internal is not None:
            return internal if registry.contains(internal) else None
        # Pass-through codes: unmapped internal stages are pushed as-is
        if registry.contains(external_code) and external_code not in self._outbound:
            return external_code
        return None

    def as_dict(self) -> Dict[str, str]:
        return dict(self._outbound)


@dataclass
class WebhookOutcome:
    status: str  # verified, applied, skipped
    reason: Optional[str] = None
    entry: Optional[StatusHistoryEntry] = None

    VERIFIED = "verified"
    APPLIED = "applied"
    SKIPPED = "skipped"


def is_verification_probe(payload: Any) -> bool:
    """A call with no body, or an empty JSON object, is the endpoint handshake."""
    return payload is None or payload == {} or payload == b"" or payload == ""


class CourierSyncAdapter:

    def __init__(
        self,
        registry: StageRegistry,
        mapping: StatusMapping,
        courier: CourierPort,
        session_factory: async_sessionmaker,
        authority: Optional[TransitionAuthority] = None,
        max_attempts: int = 3,
        backoff_seconds: float = 0.5,
        breaker: Optional[CircuitBreaker] = None,
        handoff_stage: Optional[str] = "confirmed",
    ):
        self.registry = registry
        self.handoff_stage = handoff_stage
        self.mapping = mapping
        self.courier = courier
        self.session_factory = session_factory
        self.authority = authority
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.breaker = breaker or CircuitBreaker(failure_threshold=5, reset_timeout=30)

    # --- outbound ---

    async def push_stage(self, order_id: int, external_ref: str, stage_code: str) -> bool:
        """
        Push an internal stage to the courier platform.

        Reaching the handoff stage first creates the delivery on the courier
        platform. Returns False when the push was given up on. The failure
        is logged and stored as a FailedCourierPush, never raised.
        """
        external_code = self.mapping.to_external(stage_code)
        try:
            if stage_code == self.handoff_stage:
                await self._hand_off(order_id)
            await self._push_with_retries(order_id, external_ref, external_code)
            return True
        except UpstreamError as exc:
            logger.error(
                "Giving up courier push for order %s (ref=%s, status=%s) after %d attempts: %s",
                order_id, external_ref, external_code, self.max_attempts, exc.message
            )
            await self._record_failure(order_id, external_ref, stage_code, external_code, exc)
            return False

    async def replay_failed_push(self, db: AsyncSession, push_id: int) -> FailedCourierPush:
        """
        Retry a stored failed push.

        A push whose stage is no longer the order's current stage is
        discarded instead, so the courier never moves backwards.

        Raises:
            ResourceNotFoundError: unknown push id
            ValidationError: the push was already replayed or discarded
        """
        failed = await db.get(FailedCourierPush, push_id)
        if failed is None:
            raise ResourceNotFoundError("Failed courier push", push_id)
        if failed.status != FailedPushStatus.PENDING:
            raise ValidationError(
                f"Failed courier push {push_id} is already {failed.status.value}",
                details={"status": failed.status.value}
            )

        order = await db.get(Order, failed.order_id)
        if order is None or order.current_stage_code != failed.stage_code:
            failed.status = FailedPushStatus.DISCARDED
            logger.info(
                "Discarded failed courier push %s: order %s moved on to %s",
                push_id, failed.order_id, order.current_stage_code if order else None
            )
        else:
            try:
                if failed.stage_code == self.handoff_stage:
                    await self.hand_off_order(db, order)
                await self._push_with_retries(failed.order_id, failed.external_ref, failed.external_status_code)
                failed.status = FailedPushStatus.REPLAYED
                logger.info("Replayed courier push %s for order %s", push_id, failed.order_id)
            except UpstreamError as exc:
                failed.error_message = exc.message
                failed.error_details = exc.details
                logger.error("Replay of courier push %s failed: %s", push_id, exc.message)
            failed.attempts += self.max_attempts
            failed.last_attempt_at = datetime.now(timezone.utc)

        await db.commit()
        await db.refresh(failed)
        return failed

    async def hand_off_order(self, db: AsyncSession, order: Order) -> bool:
        """
        Create the order's delivery on the courier platform, once per order.

        Returns False when the order was already handed off.

        Raises:
            UpstreamError: the platform still failed after every retry
        """
        if order.courier_handoff_at is not None:
            return False
        await self._call_with_retries(
            self.courier.create_order,
            order.courier_ref,
            courier_order_payload(order),
            operation=f"courier order creation for order {order.id}",
            details={"order_ref": order.courier_ref},
        )
        order.courier_handoff_at = datetime.now(timezone.utc)
        await db.commit()
        logger.info("Handed order %s over to the courier as %s", order.id, order.courier_ref)
        return True

    async def _hand_off(self, order_id: int) -> None:
        async with self.session_factory() as db:
            order = await db.get(Order, order_id)
            if order is not None:
                await self.hand_off_order(db, order)

    async def _push_with_retries(self, order_id: int, external_ref: str, external_code: str) -> None:
        await self._call_with_retries(
            self.courier.push_status,
            external_ref,
            external_code,
            operation=f"courier push {external_code} for order {order_id}",
            details={"order_ref": external_ref, "status": external_code},
        )

    async def _call_with_retries(self, func, *args, operation: str, details: Dict[str, Any]) -> None:
        try:
            await retry_with_backoff(
                self.breaker.call,
                func,
                *args,
                attempts=self.max_attempts,
                base_delay=self.backoff_seconds,
                retry_on=(UpstreamError, CircuitOpenError),
                operation=operation,
            )
        except CircuitOpenError as exc:
            raise UpstreamError(f"Courier platform circuit is open: {exc}", details=details) from exc

    async def _record_failure(
        self,
        order_id: int,
        external_ref: str,
        stage_code: str,
        external_code: str,
        error: UpstreamError,
    ) -> None:
        try:
            async with self.session_factory() as db:
                db.add(FailedCourierPush(
                    order_id=order_id,
                    external_ref=external_ref,
                    stage_code=stage_code,
                    external_status_code=external_code,
                    error_message=error.message,
                    error_details=error.details,
                    attempts=self.max_attempts,
                    status=FailedPushStatus.PENDING,
                    last_attempt_at=datetime.now(timezone.utc),
                ))
                await db.commit()
        except Exception:
            logger.exception("Could not record failed courier push for order %s", order_id)

    # --- inbound ---

    def parse_event(self, payload: Any) -> CourierWebhookEvent:
        """
        Raises:
            ValidationError: payload is not an object or misses required fields
        """
        if not isinstance(payload, dict):
            raise ValidationError("Webhook payload must be a JSON object")
        try:
            return CourierWebhookEvent.model_validate(payload)
        except PydanticValidationError as exc:
            raise ValidationError(
                "Malformed courier webhook payload",
                details={"errors": [
                    {"loc": list(err.get("loc", ())), "msg": err.get("msg")} for err in exc.errors()
                ]}
            )

    async def handle_webhook(self, db: AsyncSession, payload: Any) -> WebhookOutcome:
        """
        Ingest one webhook call.

        Raises:
            ValidationError: malformed payload or coordinate; nothing is written
        """
        if is_verification_probe(payload):
            return WebhookOutcome(WebhookOutcome.VERIFIED)

        event = self.parse_event(payload)

        internal_code = self.mapping.to_internal(event.external_status_code, self.registry)
        if internal_code is None:
            logger.warning(
                "Dropping courier event for order ref %s: unrecognised status '%s'",
                event.order_number, event.external_status_code
            )
            return WebhookOutcome(WebhookOutcome.SKIPPED, reason="unrecognised_status")

        order = await self._find_order(db, event.order_number)
        if order is None:
            logger.warning(
                "Dropping courier event '%s': no order with ref %s",
                event.external_status_code, event.order_number
            )
            return WebhookOutcome(WebhookOutcome.SKIPPED, reason="unknown_order")

        if self.authority is None:
            raise RuntimeError("CourierSyncAdapter has no transition authority attached")

        try:
            entry = await self.authority.transition(
                db,
                order.id,
                Actor.external_system(),
                internal_code,
                note=event.note,
                coordinate=event.coordinate,
            )
        except StageRegressionError as exc:
            await db.rollback()
            logger.warning("Dropping courier event for order %s: %s", order.id, exc.message)
            return WebhookOutcome(WebhookOutcome.SKIPPED, reason="stage_regression")
        return WebhookOutcome(WebhookOutcome.APPLIED, entry=entry)

    async def _find_order(self, db: AsyncSession, order_ref: str) -> Optional[Order]:
        """Match on external_ref, then on the order id for plain ASCII numbers."""
        result = await db.execute(select(Order).where(Order.external_ref == order_ref))
        order = result.scalar_one_or_none()
        if order is not None or not (order_ref.isascii() and order_ref.isdigit()):
            return order
        order_id = int(order_ref)
        if order_id > MAX_ORDER_ID:
            return None
        return await db.get(Order, order_id)
