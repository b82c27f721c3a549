"""
Status Ledger.

Append-only per-order log of stage transitions. This module exposes no
update or delete operations.
"""

from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from delivery_tracking.app.core.exceptions import ValidationError, ResourceNotFoundError
from delivery_tracking.app.models.order import Order
from delivery_tracking.app.models.status_history import StatusHistoryEntry
from delivery_tracking.app.services.stage_registry import StageRegistry


@dataclass
class HistoryPage:
    entries: List[StatusHistoryEntry]
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.entries) < self.total


class StatusLedger:

    def __init__(self, registry: StageRegistry):
        self.registry = registry

    async def append(self, db: AsyncSession, entry: StatusHistoryEntry) -> StatusHistoryEntry:
        """
        Add an entry to the ledger.

        The entry joins the caller's transaction (flushed, not committed) so
        it can be committed atomically with the order cache update.

        Raises:
            ValidationError: stage_code is not in the stage registry
            ResourceNotFoundError: order_id does not exist
        """
        if not self.registry.contains(entry.stage_code):
            raise ValidationError(
                f"Unknown delivery stage '{entry.stage_code}'",
                details={"stage_code": entry.stage_code, "allowed": self.registry.codes()}
            )

        order = await db.get(Order, entry.order_id)
        if order is None:
            raise ResourceNotFoundError("Order", entry.order_id)

        db.add(entry)
        await db.flush()  # Raises IntegrityError if the sequence slot is taken
        return entry

    async def history(
        self,
        db: AsyncSession,
        order_id: int,
        limit: int = 50,
        offset: int = 0
    ) -> HistoryPage:
        """
        Entries for an order, most recent first.

        Paging by limit/offset is stable because entries are only ever
        appended at the head.
        """
        total_result = await db.execute(
            select(func.count(StatusHistoryEntry.id)).where(StatusHistoryEntry.order_id == order_id)
        )
        total = total_result.scalar() or 0

        result = await db.execute(
            select(StatusHistoryEntry)
            .where(StatusHistoryEntry.order_id == order_id)
            .order_by(StatusHistoryEntry.sequence.desc())
            .limit(limit)
            .offset(offset)
        )
        return HistoryPage(
            entries=list(result.scalars().all()),
            total=total,
            limit=limit,
            offset=offset,
        )

    async def latest(self, db: AsyncSession, order_id: int) -> Optional[StatusHistoryEntry]:
        result = await db.execute(
            select(StatusHistoryEntry)
            .where(StatusHistoryEntry.order_id == order_id)
            .order_by(StatusHistoryEntry.sequence.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def latest_with_location(self, db: AsyncSession, order_id: int) -> Optional[StatusHistoryEntry]:
        """Most recent entry that carries a coordinate, for map display."""
        result = await db.execute(
            select(StatusHistoryEntry)
            .where(
                StatusHistoryEntry.order_id == order_id,
                StatusHistoryEntry.latitude.is_not(None),
                StatusHistoryEntry.longitude.is_not(None),
            )
            .order_by(StatusHistoryEntry.sequence.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def count(self, db: AsyncSession, order_id: int) -> int:
        result = await db.execute(
            select(func.count(StatusHistoryEntry.id)).where(StatusHistoryEntry.order_id == order_id)
        )
        return result.scalar() or 0
