"""
Notification services.

NotificationService manages in-app notification rows. NotificationDispatcher
fans a stage change out to the in-app and email sinks on a best-effort basis.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List, Tuple

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from delivery_tracking.app.models.enums import SourceActor
from delivery_tracking.app.models.notification import Notification, NotificationType
from delivery_tracking.app.models.order import Order
from delivery_tracking.app.services.stage_registry import StageRegistry

logger = logging.getLogger("delivery_tracking.notifications")


class NotificationService:

    @staticmethod
    async def create_notification(
        db: AsyncSession,
        user_id: int,
        title: str,
        message: str,
        type: NotificationType = NotificationType.INFO,
        template_kind: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Notification:
        """Create a single notification."""
        notif = Notification(
            user_id=user_id,
            type=type,
            template_kind=template_kind,
            title=title,
            message=message,
            metadata_payload=metadata
        )
        db.add(notif)
        await db.flush()  # Caller commits
        return notif

    @staticmethod
    async def mark_read(db: AsyncSession, notification_id: int, user_id: int) -> bool:
        """Mark a notification as read."""
        stmt = update(Notification).where(
            Notification.id == notification_id,
            Notification.user_id == user_id
        ).values(
            is_read=True,
            read_at=datetime.now(timezone.utc)
        )
        result = await db.execute(stmt)
        return result.rowcount > 0

    @staticmethod
    async def mark_all_read(db: AsyncSession, user_id: int) -> int:
        """Mark all notifications for user as read."""
        stmt = update(Notification).where(
            Notification.user_id == user_id,
            Notification.is_read == False  # noqa: E712
        ).values(
            is_read=True,
            read_at=datetime.now(timezone.utc)
        )
        result = await db.execute(stmt)
        return result.rowcount


# --- Sinks ---

class NotificationSink(ABC):
    """A channel that accepts (user_id, template_kind, payload)."""

    name = "sink"

    @abstractmethod
    async def send(self, user_id: int, template_kind: str, payload: Dict[str, Any]) -> None:
        ...


class InAppNotificationSink(NotificationSink):
    """Writes notification rows the buyer/seller inbox reads from."""

    name = "in_app"

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def send(self, user_id: int, template_kind: str, payload: Dict[str, Any]) -> None:
        async with self.session_factory() as db:
            await NotificationService.create_notification(
                db,
                user_id=user_id,
                title=payload.get("title", "Order update"),
                message=payload.get("message", ""),
                type=NotificationType.DELIVERY_UPDATE,
                template_kind=template_kind,
                metadata=payload,
            )
            await db.commit()


class EmailSink(NotificationSink):
    """Email channel. Concrete delivery is owned by the mail provider integration."""

    name = "email"


class LoggingEmailSink(EmailSink):
    """Default email sink: records the message in the service log."""

    async def send(self, user_id: int, template_kind: str, payload: Dict[str, Any]) -> None:
        logger.info(
            "Email queued user_id=%s template=%s order_id=%s",
            user_id, template_kind, payload.get("order_id")
        )


# --- Dispatcher ---

IN_APP_STATUS_TEMPLATE = "order_status_changed"

# stage code -> (recipient, email template)
EMAIL_TEMPLATES: Dict[str, Tuple[str, str]] = {
    "confirmed": ("seller", "order_purchased"),
    "out_for_delivery": ("buyer", "order_out_for_delivery"),
    "delivered": ("buyer", "order_delivered"),
}


class NotificationDispatcher:
    """
    Best-effort fan-out of stage changes.

    Every sink call is time-bounded and isolated: a failing or slow channel
    is logged and skipped, it never reaches the transition caller.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        registry: StageRegistry,
        in_app: Optional[NotificationSink] = None,
        email: Optional[NotificationSink] = None,
        timeout_seconds: float = 5.0,
    ):
        self.session_factory = session_factory
        self.registry = registry
        self.in_app = in_app or InAppNotificationSink(session_factory)
        self.email = email or LoggingEmailSink()
        self.timeout_seconds = timeout_seconds

    async def notify(
        self,
        order_id: int,
        previous_stage: Optional[str],
        new_stage: str,
        source_actor: SourceActor = SourceActor.SELLER,
    ) -> int:
        """
        Notify the order's parties that its stage changed.

        Returns:
            Number of messages the sinks accepted
        """
        try:
            async with self.session_factory() as db:
                order = await db.get(Order, order_id)
        except Exception:
            logger.exception("Could not load order %s for notification", order_id)
            return 0
        if order is None:
            logger.warning("Skipping notification for missing order %s", order_id)
            return 0

        payload = self._payload(order, previous_stage, new_stage, source_actor)
        deliveries: List[Tuple[NotificationSink, int, str]] = [
            (self.in_app, order.buyer_id, IN_APP_STATUS_TEMPLATE),
        ]
        if source_actor == SourceActor.EXTERNAL_SYSTEM:
            deliveries.append((self.in_app, order.seller_id, IN_APP_STATUS_TEMPLATE))

        email = EMAIL_TEMPLATES.get(new_stage)
        if email:
            recipient, template_kind = email
            user_id = order.seller_id if recipient == "seller" else order.buyer_id
            deliveries.append((self.email, user_id, template_kind))

        delivered = 0
        for sink, user_id, template_kind in deliveries:
            if await self._deliver(sink, user_id, template_kind, payload):
                delivered += 1
        return delivered

    async def _deliver(self, sink: NotificationSink, user_id: int, template_kind: str, payload: Dict[str, Any]) -> bool:
        try:
            await asyncio.wait_for(sink.send(user_id, template_kind, payload), timeout=self.timeout_seconds)
            return True
        except asyncio.TimeoutError:
            logger.error(
                "Notification via %s timed out after %.1fs (user_id=%s, template=%s, order_id=%s)",
                sink.name, self.timeout_seconds, user_id, template_kind, payload.get("order_id")
            )
        except Exception:
            logger.exception(
                "Notification via %s failed (user_id=%s, template=%s, order_id=%s)",
                sink.name, user_id, template_kind, payload.get("order_id")
            )
        return False

    def _payload(self, order: Order, previous_stage: Optional[str], new_stage: str, source_actor: SourceActor) -> Dict[str, Any]:
        stage = self.registry.get(new_stage)
        stage_name = stage.display_name if stage else new_stage
        return {
            "order_id": order.id,
            "product_id": order.product_id,
            "previous_stage": previous_stage,
            "new_stage": new_stage,
            "source_actor": source_actor.value,
            "title": f"Order #{order.id} is now {stage_name}",
            "message": f"Your order status changed to {stage_name}.",
        }
