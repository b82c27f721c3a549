"""
Stage Registry.

Ordered, read-only catalogue of delivery stages, loaded once per process.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from delivery_tracking.app.core.exceptions import StageRegistryError
from delivery_tracking.app.models.delivery_stage import DeliveryStage

logger = logging.getLogger("delivery_tracking.stages")


@dataclass(frozen=True)
class Stage:
    """Immutable in-memory view of a delivery_stages row."""
    code: str
    display_name: str
    position: int
    description: Optional[str] = None


# Marketplace default lifecycle, in display order
DEFAULT_STAGES: Tuple[Stage, ...] = (
    Stage("pending", "Pending", 0, "Order placed, waiting for the seller"),
    Stage("confirmed", "Confirmed", 1, "Seller accepted the order"),
    Stage("preparing", "Preparing", 2, "Seller is packing the item"),
    Stage("pickup_scheduled", "Pickup Scheduled", 3, "Courier pickup booked"),
    Stage("picked_up", "Picked Up", 4, "Courier collected the parcel"),
    Stage("in_transit", "In Transit", 5, "Parcel is on its way"),
    Stage("out_for_delivery", "Out for Delivery", 6, "Courier is heading to the buyer"),
    Stage("delivered", "Delivered", 7, "Parcel handed to the buyer"),
)


class StageRegistry:
    """
    In-process cache of the stage catalogue.

    The registry is populated at startup with load() (or directly with
    replace() in tooling and tests) and is read-only afterwards.
    """

    def __init__(self, stages: Optional[Iterable[Stage]] = None):
        self._stages: Tuple[Stage, ...] = ()
        self._by_code: Dict[str, Stage] = {}
        self._rank: Dict[str, int] = {}
        if stages is not None:
            self.replace(stages)

    def replace(self, stages: Iterable[Stage]) -> None:
        ordered = tuple(sorted(stages, key=lambda s: s.position))
        if not ordered:
            raise StageRegistryError("Stage registry is empty")

        positions = [s.position for s in ordered]
        if len(set(positions)) != len(positions):
            raise StageRegistryError(f"Stage positions must be unique, got {positions}")
        codes = [s.code for s in ordered]
        if len(set(codes)) != len(codes):
            raise StageRegistryError(f"Stage codes must be unique, got {codes}")

        self._stages = ordered
        self._by_code = {s.code: s for s in ordered}
        self._rank = {s.code: index for index, s in enumerate(ordered)}

    async def load(self, db: AsyncSession) -> Tuple[Stage, ...]:
        """
        Read the catalogue from the database and cache it.

        Raises:
            StageRegistryError: if the table is empty or inconsistent.
        """
        result = await db.execute(select(DeliveryStage).order_by(DeliveryStage.position))
        rows = result.scalars().all()
        self.replace(
            Stage(
                code=row.code,
                display_name=row.display_name,
                position=row.position,
                description=row.description,
            )
            for row in rows
        )
        logger.info("Loaded %d delivery stages: %s", self.size, ", ".join(self.codes()))
        return self._stages

    @property
    def is_loaded(self) -> bool:
        return bool(self._stages)

    @property
    def size(self) -> int:
        return len(self._stages)

    def list_stages(self) -> Tuple[Stage, ...]:
        self._ensure_loaded()
        return self._stages

    def codes(self) -> List[str]:
        return [s.code for s in self._stages]

    def contains(self, code: str) -> bool:
        return code in self._by_code

    def get(self, code: str) -> Optional[Stage]:
        return self._by_code.get(code)

    def rank(self, code: str) -> int:
        """Zero-based index of the stage in the registry ordering."""
        self._ensure_loaded()
        return self._rank[code]

    def first(self) -> Stage:
        return self.list_stages()[0]

    def last(self) -> Stage:
        return self.list_stages()[-1]

    def _ensure_loaded(self) -> None:
        if not self._stages:
            raise StageRegistryError("Stage registry has not been loaded")


async def seed_default_stages(db: AsyncSession, stages: Iterable[Stage] = DEFAULT_STAGES) -> int:
    """
    Insert the given stages when the catalogue table is empty.

    Returns the number of rows created (0 when stages already exist).
    """
    existing = await db.execute(select(DeliveryStage.id).limit(1))
    if existing.scalar_one_or_none() is not None:
        return 0

    rows = [
        DeliveryStage(
            code=stage.code,
            display_name=stage.display_name,
            description=stage.description,
            position=stage.position,
        )
        for stage in stages
    ]
    db.add_all(rows)
    await db.commit()
    return len(rows)


# Process-wide registry
stage_registry = StageRegistry()
