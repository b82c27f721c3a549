"""
Delivery Stage database model.

The ordered catalogue of lifecycle steps an order moves through.
"""

from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.sql import func
from delivery_tracking.app.db.session import Base


class DeliveryStage(Base):
    """
    Delivery stage model.

    Rows are written by seeding/migration tooling only. Positions are unique
    and their ordering is the sole definition of delivery progress.
    """
    __tablename__ = "delivery_stages"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    code = Column(String(50), unique=True, nullable=False, index=True)
    display_name = Column(String(100), nullable=False)
    description = Column(String(255), nullable=True)
    position = Column(Integer, unique=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<DeliveryStage(code='{self.code}', position={self.position})>"
