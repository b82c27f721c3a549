"""
Failed courier push model.

A status push the courier platform still rejected after every retry. The
ledger is unaffected; these rows let operators see what the courier missed
and replay it.
"""

from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, JSON, Enum
from sqlalchemy.sql import func
from delivery_tracking.app.db.session import Base
import enum


class FailedPushStatus(str, enum.Enum):
    PENDING = "PENDING"      # Waiting for an operator replay
    REPLAYED = "REPLAYED"    # Courier accepted it on replay
    DISCARDED = "DISCARDED"  # Superseded by a later stage


class FailedCourierPush(Base):
    __tablename__ = "failed_courier_pushes"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    external_ref = Column(String(100), nullable=False)
    stage_code = Column(String(50), nullable=False)
    external_status_code = Column(String(50), nullable=False)

    error_message = Column(Text, nullable=False)
    error_details = Column(JSON, nullable=True)
    attempts = Column(Integer, default=0, nullable=False)

    status = Column(Enum(FailedPushStatus), default=FailedPushStatus.PENDING, nullable=False, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    last_attempt_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<FailedCourierPush(id={self.id}, order_id={self.order_id}, status='{self.status}')>"
