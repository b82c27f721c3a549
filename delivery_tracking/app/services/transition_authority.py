"""
Transition Authority.

The only component allowed to append to the status ledger. Checks who is
asking and what they are asking for, then appends the entry and updates the
order's cached stage as one atomic unit.

Per-order writes are serialized by the database, not by this process:
the order row is updated with a compare-and-set on orders.version and the
ledger entry takes sequence = version + 1, which is unique per order. A
writer that loses the race rolls back and retries from a fresh read.
"""

import asyncio
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Iterable, NamedTuple, Optional, Set

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from delivery_tracking.app.core.exceptions import (
    ValidationError,
    StageRegressionError,
    InsufficientPermissionsError,
    ResourceNotFoundError,
    ConcurrentTransitionError,
)
from delivery_tracking.app.models.enums import SourceActor
from delivery_tracking.app.models.order import Order
from delivery_tracking.app.models.status_history import StatusHistoryEntry
from delivery_tracking.app.services.stage_registry import StageRegistry
from delivery_tracking.app.services.status_ledger import StatusLedger

logger = logging.getLogger("delivery_tracking.transitions")

POLICY_PERMISSIVE = "permissive"
POLICY_FORWARD_ONLY = "forward_only"


@dataclass(frozen=True)
class Actor:
    """Who is requesting a transition."""
    user_id: Optional[int]
    external: bool = False

    @classmethod
    def external_system(cls) -> "Actor":
        return cls(user_id=None, external=True)

    @property
    def source_actor(self) -> SourceActor:
        return SourceActor.EXTERNAL_SYSTEM if self.external else SourceActor.SELLER


class Coordinate(NamedTuple):
    lat: float
    lng: float


def validate_coordinate(coordinate) -> Optional[Coordinate]:
    """
    Check a (lat, lng) pair.

    Raises:
        ValidationError: half a coordinate, non-numeric or out of range
    """
    if coordinate is None:
        return None
    lat, lng = coordinate
    if lat is None and lng is None:
        return None
    if lat is None or lng is None:
        raise ValidationError(
            "Both latitude and longitude are required for a location",
            details={"lat": lat, "lng": lng}
        )
    try:
        lat, lng = float(lat), float(lng)
    except (TypeError, ValueError):
        raise ValidationError("Coordinates must be numbers", details={"lat": lat, "lng": lng})
    if not (math.isfinite(lat) and -90 <= lat <= 90):
        raise ValidationError("Latitude must be between -90 and 90", details={"lat": lat})
    if not (math.isfinite(lng) and -180 <= lng <= 180):
        raise ValidationError("Longitude must be between -180 and 180", details={"lng": lng})
    return Coordinate(lat, lng)


class TransitionAuthority:

    def __init__(
        self,
        registry: StageRegistry,
        ledger: StatusLedger,
        dispatcher=None,
        outbound=None,
        policy: str = POLICY_PERMISSIVE,
        exit_stage_codes: Iterable[str] = (),
        max_attempts: int = 3,
        side_effect_timeout: float = 30.0,
    ):
        if policy not in (POLICY_PERMISSIVE, POLICY_FORWARD_ONLY):
            raise ValueError(f"Unknown transition policy '{policy}'")
        self.registry = registry
        self.ledger = ledger
        self.dispatcher = dispatcher
        self.outbound = outbound
        self.policy = policy
        self.exit_stage_codes = frozenset(exit_stage_codes)
        self.max_attempts = max(1, max_attempts)
        self.side_effect_timeout = side_effect_timeout
        self._pending: Set[asyncio.Task] = set()

    async def transition(
        self,
        db: AsyncSession,
        order_id: int,
        actor: Actor,
        new_stage_code: str,
        note: Optional[str] = None,
        coordinate=None,
    ) -> StatusHistoryEntry:
        """
        Move an order to a stage.

        Validation order:
        1. actor is the order's seller or the courier platform
        2. new_stage_code is registered
        3. coordinate, if any, is within bounds
        4. the configured regression policy allows the move

        Raises:
            ResourceNotFoundError: unknown order
            InsufficientPermissionsError: buyer or any other non-seller user
            ValidationError: bad stage, bad coordinate, forbidden regression
            ConcurrentTransitionError: lost the write race on every attempt
        """
        for attempt in range(1, self.max_attempts + 1):
            order = await self._load_order(db, order_id)
            self._check_permission(order, actor)
            self._check_stage(new_stage_code)
            location = validate_coordinate(coordinate)

            head = await self.ledger.latest(db, order_id)
            previous_code = head.stage_code if head else None
            self._check_policy(previous_code, new_stage_code)

            courier_ref = order.courier_ref
            changed_at = datetime.now(timezone.utc)
            sequence = await self._claim_next_sequence(db, order, actor, new_stage_code, changed_at)
            if sequence is None:
                await db.rollback()
                logger.warning(
                    "Order %s changed concurrently (attempt %d/%d), retrying",
                    order_id, attempt, self.max_attempts
                )
                continue

            entry = StatusHistoryEntry(
                order_id=order_id,
                sequence=sequence,
                stage_code=new_stage_code,
                note=note,
                latitude=location.lat if location else None,
                longitude=location.lng if location else None,
                source_actor=actor.source_actor,
                created_by=actor.user_id,
                created_at=changed_at,
            )
            try:
                await self.ledger.append(db, entry)
                await db.commit()
            except IntegrityError:
                await db.rollback()
                logger.warning(
                    "Sequence %d for order %s already taken (attempt %d/%d), retrying",
                    sequence, order_id, attempt, self.max_attempts
                )
                continue
            except Exception:
                await db.rollback()
                raise

            await db.refresh(entry)
            logger.info(
                "Order %s: %s -> %s by %s (seq=%d)",
                order_id, previous_code, new_stage_code, actor.source_actor.value, sequence
            )
            self._after_commit(order_id, courier_ref, previous_code, new_stage_code, actor)
            return entry

        raise ConcurrentTransitionError(order_id, self.max_attempts)

    async def refresh_cache(self, db: AsyncSession, order_id: int) -> Order:
        """
        Re-derive orders.current_stage_code from the ledger head.

        The write is conditional on the version matching the head sequence,
        so it cannot overwrite the cache of a transition that committed in
        the meantime.
        """
        order = await self._load_order(db, order_id)
        head = await self.ledger.latest(db, order_id)
        head_sequence = head.sequence if head else 0

        result = await db.execute(
            update(Order)
            .where(Order.id == order_id, Order.version == head_sequence)
            .values(
                current_stage_code=head.stage_code if head else None,
                last_status_change_at=head.created_at if head else None,
            )
        )
        await db.commit()
        if result.rowcount != 1:
            logger.warning(
                "Cache refresh for order %s skipped: version %s does not match ledger head %s",
                order_id, order.version, head_sequence
            )
        await db.refresh(order)
        return order

    async def drain(self) -> None:
        """Wait for scheduled notifications and courier pushes to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # --- checks ---

    async def _load_order(self, db: AsyncSession, order_id: int) -> Order:
        result = await db.execute(
            select(Order)
            .where(Order.id == order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        order = result.scalar_one_or_none()
        if order is None:
            raise ResourceNotFoundError("Order", order_id)
        return order

    def _check_permission(self, order: Order, actor: Actor) -> None:
        if actor.external:
            return
        if actor.user_id is not None and actor.user_id == order.seller_id:
            return
        raise InsufficientPermissionsError(
            "Only the seller or the courier platform can update this order's status",
            details={"order_id": order.id, "user_id": actor.user_id}
        )

    def _check_stage(self, stage_code: str) -> None:
        if not stage_code or not self.registry.contains(stage_code):
            raise ValidationError(
                f"Unknown delivery stage '{stage_code}'",
                details={"stage_code": stage_code, "allowed": self.registry.codes()}
            )

    def _check_policy(self, previous_code: Optional[str], new_code: str) -> None:
        if self.policy != POLICY_FORWARD_ONLY or previous_code is None:
            return
        if new_code in self.exit_stage_codes or not self.registry.contains(previous_code):
            return
        if self.registry.rank(new_code) < self.registry.rank(previous_code):
            raise StageRegressionError(previous_code, new_code)

    # --- write ---

    async def _claim_next_sequence(
        self,
        db: AsyncSession,
        order: Order,
        actor: Actor,
        new_stage_code: str,
        changed_at: datetime,
    ) -> Optional[int]:
        """
        Compare-and-set the order row. Returns the new version, which is the
        ledger sequence for this transition, or None if another writer got
        there first. changed_at is also the ledger entry's created_at.
        """
        expected_version = order.version
        result = await db.execute(
            update(Order)
            .where(Order.id == order.id, Order.version == expected_version)
            .values(
                current_stage_code=new_stage_code,
                last_status_change_at=changed_at,
                last_updated_by=actor.user_id,
                version=expected_version + 1,
            )
        )
        if result.rowcount != 1:
            return None
        return expected_version + 1

    # --- side effects ---

    def _after_commit(
        self,
        order_id: int,
        courier_ref: str,
        previous_code: Optional[str],
        new_code: str,
        actor: Actor,
    ) -> None:
        if previous_code == new_code:
            return
        if self.dispatcher is not None:
            self._spawn(
                self.dispatcher.notify(order_id, previous_code, new_code, actor.source_actor),
                f"notify order {order_id}"
            )
        # Events that came from the courier are not echoed back to it
        if self.outbound is not None and not actor.external:
            self._spawn(
                self.outbound.push_stage(order_id, courier_ref, new_code),
                f"courier push order {order_id}"
            )

    def _spawn(self, coro: Awaitable, label: str) -> None:
        task = asyncio.create_task(asyncio.wait_for(coro, timeout=self.side_effect_timeout))
        self._pending.add(task)

        def _done(t: asyncio.Task) -> None:
            self._pending.discard(t)
            if t.cancelled():
                logger.warning("Side effect cancelled: %s", label)
            elif t.exception() is not None:
                logger.error("Side effect failed: %s: %r", label, t.exception())

        task.add_done_callback(_done)
