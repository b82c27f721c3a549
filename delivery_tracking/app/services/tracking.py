"""
Order tracking service.

The API the rest of the marketplace uses: get_current_stage, get_history
and request_transition, plus the wiring that assembles the tracking core.
"""

from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from delivery_tracking.app.core.config import Settings, settings as default_settings
from delivery_tracking.app.core.exceptions import NoHistoryError, ResourceNotFoundError
from delivery_tracking.app.core.reliability import CircuitBreaker, courier_circuit_breaker
from delivery_tracking.app.models.failed_push import FailedCourierPush, FailedPushStatus
from delivery_tracking.app.models.order import Order
from delivery_tracking.app.models.status_history import StatusHistoryEntry
from delivery_tracking.app.services.courier_client import CourierPort, build_courier_client
from delivery_tracking.app.services.courier_sync import CourierSyncAdapter, StatusMapping, WebhookOutcome
from delivery_tracking.app.services.notification_service import NotificationDispatcher, NotificationSink
from delivery_tracking.app.services.projector import OrderStateProjector, Projection
from delivery_tracking.app.services.stage_registry import StageRegistry, stage_registry
from delivery_tracking.app.services.status_ledger import HistoryPage, StatusLedger
from delivery_tracking.app.services.transition_authority import Actor, TransitionAuthority


@dataclass
class TrackingSnapshot:
    """Current stage view of an order; projection is None while unstarted."""
    order: Order
    projection: Optional[Projection]
    last_location: Optional[StatusHistoryEntry]

    @property
    def started(self) -> bool:
        return self.projection is not None


class OrderTrackingService:

    def __init__(
        self,
        registry: StageRegistry,
        ledger: StatusLedger,
        projector: OrderStateProjector,
        authority: TransitionAuthority,
        sync: CourierSyncAdapter,
    ):
        self.registry = registry
        self.ledger = ledger
        self.projector = projector
        self.authority = authority
        self.sync = sync

    async def get_order(self, db: AsyncSession, order_id: int) -> Order:
        order = await db.get(Order, order_id)
        if order is None:
            raise ResourceNotFoundError("Order", order_id)
        return order

    async def get_current_stage(self, db: AsyncSession, order_id: int) -> TrackingSnapshot:
        """
        Projected stage of an order.

        An order without history comes back with projection=None rather
        than an error.
        """
        order = await self.get_order(db, order_id)
        try:
            projection = await self.projector.project(db, order_id)
        except NoHistoryError:
            projection = None
        last_location = await self.ledger.latest_with_location(db, order_id)
        return TrackingSnapshot(order=order, projection=projection, last_location=last_location)

    async def get_history(self, db: AsyncSession, order_id: int, limit: int = 50, offset: int = 0) -> HistoryPage:
        await self.get_order(db, order_id)
        return await self.ledger.history(db, order_id, limit=limit, offset=offset)

    async def request_transition(
        self,
        db: AsyncSession,
        order_id: int,
        actor: Actor,
        stage_code: str,
        note: Optional[str] = None,
        coordinate=None,
    ) -> StatusHistoryEntry:
        return await self.authority.transition(db, order_id, actor, stage_code, note=note, coordinate=coordinate)

    async def refresh_cache(self, db: AsyncSession, order_id: int) -> Order:
        return await self.authority.refresh_cache(db, order_id)

    async def handle_courier_webhook(self, db: AsyncSession, payload) -> WebhookOutcome:
        return await self.sync.handle_webhook(db, payload)

    async def list_failed_pushes(
        self,
        db: AsyncSession,
        status: Optional[FailedPushStatus] = FailedPushStatus.PENDING,
        limit: int = 50,
    ) -> List[FailedCourierPush]:
        query = select(FailedCourierPush)
        if status is not None:
            query = query.where(FailedCourierPush.status == status)
        query = query.order_by(FailedCourierPush.created_at.desc(), FailedCourierPush.id.desc()).limit(limit)
        result = await db.execute(query)
        return list(result.scalars().all())

    async def replay_failed_push(self, db: AsyncSession, push_id: int) -> FailedCourierPush:
        return await self.sync.replay_failed_push(db, push_id)

    async def shutdown(self) -> None:
        await self.authority.drain()
        await self.sync.courier.aclose()


def build_tracking_service(
    session_factory: Optional[async_sessionmaker] = None,
    registry: StageRegistry = stage_registry,
    courier: Optional[CourierPort] = None,
    in_app_sink: Optional[NotificationSink] = None,
    email_sink: Optional[NotificationSink] = None,
    dispatcher: Optional[NotificationDispatcher] = None,
    breaker: Optional[CircuitBreaker] = None,
    config: Settings = default_settings,
) -> OrderTrackingService:
    """Assemble the tracking core from settings and optional collaborators."""
    if session_factory is None:
        from delivery_tracking.app.db.session import AsyncSessionLocal
        session_factory = AsyncSessionLocal

    ledger = StatusLedger(registry)
    projector = OrderStateProjector(registry, ledger)
    if dispatcher is None:
        dispatcher = NotificationDispatcher(
            session_factory,
            registry,
            in_app=in_app_sink,
            email=email_sink,
            timeout_seconds=config.notification_timeout_seconds,
        )
    sync = CourierSyncAdapter(
        registry=registry,
        mapping=StatusMapping.with_overrides(config.courier_status_map),
        courier=courier or build_courier_client(config),
        session_factory=session_factory,
        max_attempts=config.courier_push_max_attempts,
        backoff_seconds=config.courier_push_backoff_seconds,
        breaker=breaker or courier_circuit_breaker,
        handoff_stage=config.courier_handoff_stage,
    )
    authority = TransitionAuthority(
        registry,
        ledger,
        dispatcher=dispatcher,
        outbound=sync,
        policy=config.transition_policy,
        exit_stage_codes=config.exit_stage_codes,
        max_attempts=config.transition_max_attempts,
    )
    sync.authority = authority
    return OrderTrackingService(registry, ledger, projector, authority, sync)
