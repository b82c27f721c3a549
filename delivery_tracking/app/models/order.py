"""
Order database model.

Only the fulfilment-relevant columns of a marketplace order live here;
catalogue, payment and wallet data belong to other services.
"""

from sqlalchemy import Column, Integer, String, Numeric, DateTime, ForeignKey, Enum, JSON
from sqlalchemy.sql import func
from delivery_tracking.app.db.session import Base
from delivery_tracking.app.models.enums import DisputeState


class Order(Base):
    """
    Order model.

    current_stage_code is a denormalized cache of the latest status history
    entry. It is written only by the transition authority, inside the same
    transaction as the ledger append, and can always be re-derived from the
    ledger.

    version is bumped on every transition and used as the compare-and-set
    key that serializes writers of the same order across service instances.
    """
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Parties
    buyer_id = Column(Integer, nullable=False, index=True)
    seller_id = Column(Integer, nullable=False, index=True)
    product_id = Column(Integer, nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)

    # Tracking cache
    current_stage_code = Column(String(50), ForeignKey("delivery_stages.code"), nullable=True, index=True)
    last_status_change_at = Column(DateTime(timezone=True), nullable=True)
    last_updated_by = Column(Integer, nullable=True)
    version = Column(Integer, nullable=False, default=0)

    # Courier platform reference (defaults to the order id when unset)
    external_ref = Column(String(100), unique=True, nullable=True, index=True)
    # Set once the delivery has been created on the courier platform
    courier_handoff_at = Column(DateTime(timezone=True), nullable=True)

    # Address, contact, preferred time window and optional lat/lng
    delivery_details = Column(JSON, nullable=True)
    dispute_state = Column(Enum(DisputeState), default=DisputeState.NONE, nullable=False)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    @property
    def courier_ref(self) -> str:
        return self.external_ref or str(self.id)

    def __repr__(self):
        return f"<Order(id={self.id}, stage='{self.current_stage_code}', version={self.version})>"
