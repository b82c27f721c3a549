"""
Status History database model.

Append-only ledger of stage transitions per order.
"""

from sqlalchemy import Column, Integer, String, Float, Text, DateTime, ForeignKey, Enum, UniqueConstraint, event
from sqlalchemy.sql import func
from delivery_tracking.app.db.session import Base
from delivery_tracking.app.models.enums import SourceActor


class StatusHistoryEntry(Base):
    """
    Status history entry model.

    One row per accepted transition. Rows are never updated or deleted.
    sequence numbers entries 1..n per order; the unique constraint on
    (order_id, sequence) makes the store reject a second writer that
    computed the same successor.
    """
    __tablename__ = "order_status_history"
    __table_args__ = (
        UniqueConstraint("order_id", "sequence", name="uq_status_history_order_sequence"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    sequence = Column(Integer, nullable=False)
    stage_code = Column(String(50), ForeignKey("delivery_stages.code"), nullable=False)

    note = Column(Text, nullable=True)

    # Optional geolocation of the parcel when the status was recorded
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)

    source_actor = Column(Enum(SourceActor), nullable=False)
    created_by = Column(Integer, nullable=True)  # user id, null for the courier

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    def __repr__(self):
        return f"<StatusHistoryEntry(order_id={self.order_id}, seq={self.sequence}, stage='{self.stage_code}')>"


class ImmutableLedgerError(Exception):
    """Raised when code tries to rewrite or delete a ledger row."""


@event.listens_for(StatusHistoryEntry, "before_update")
def _reject_update(mapper, connection, target):
    raise ImmutableLedgerError(
        f"Status history entry {target.id} is append-only and cannot be updated"
    )


@event.listens_for(StatusHistoryEntry, "before_delete")
def _reject_delete(mapper, connection, target):
    raise ImmutableLedgerError(
        f"Status history entry {target.id} is append-only and cannot be deleted"
    )
