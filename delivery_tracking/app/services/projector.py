"""
Order State Projector.

Derives an order's current stage and progress from its status ledger.
The orders.current_stage_code cache is never consulted here.
"""

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from delivery_tracking.app.core.exceptions import NoHistoryError, StageRegistryError
from delivery_tracking.app.models.order import Order
from delivery_tracking.app.models.status_history import StatusHistoryEntry
from delivery_tracking.app.services.stage_registry import Stage, StageRegistry
from delivery_tracking.app.services.status_ledger import StatusLedger


@dataclass(frozen=True)
class Projection:
    current_stage: Stage
    progress_percent: int
    entry: StatusHistoryEntry


def compute_progress(registry: StageRegistry, stage_code: str) -> int:
    """
    Progress of a stage: round(p / (n - 1) * 100).

    p is the stage's rank among the n registered stages, so the first stage
    is 0 and the last is 100. A single-stage registry is always complete.
    """
    n = registry.size
    if n == 0:
        raise StageRegistryError("Stage registry has not been loaded")
    if n == 1:
        return 100
    p = registry.rank(stage_code)
    return int(round(p / (n - 1) * 100))


class OrderStateProjector:

    def __init__(self, registry: StageRegistry, ledger: StatusLedger):
        self.registry = registry
        self.ledger = ledger

    async def project(self, db: AsyncSession, order_id: int) -> Projection:
        """
        Current stage and progress of an order.

        Raises:
            NoHistoryError: the order has no ledger entries yet (unstarted)
            StageRegistryError: the latest entry references a stage that is
                no longer registered
        """
        entry = await self.ledger.latest(db, order_id)
        if entry is None:
            raise NoHistoryError(order_id)

        stage = self.registry.get(entry.stage_code)
        if stage is None:
            raise StageRegistryError(
                f"Order {order_id} is at stage '{entry.stage_code}' which is not registered"
            )

        return Projection(
            current_stage=stage,
            progress_percent=compute_progress(self.registry, stage.code),
            entry=entry,
        )

    async def is_cache_consistent(self, db: AsyncSession, order_id: int) -> bool:
        """True when orders.current_stage_code matches the ledger head."""
        order = await db.get(Order, order_id)
        if order is None:
            return False
        entry = await self.ledger.latest(db, order_id)
        expected = entry.stage_code if entry else None
        return order.current_stage_code == expected
