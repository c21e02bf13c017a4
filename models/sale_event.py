"""
Applied sale events - idempotency record for aggregation updates.
"""
from sqlalchemy import Column, Integer, String, DECIMAL, Boolean, DateTime, ForeignKey
from models.base import Base, _get_current_time


class SaleEvent(Base):
    """One row per applied recordSale call."""
    __tablename__ = 'sale_events'

    eventID = Column(Integer, primary_key=True, autoincrement=True)
    eventKey = Column(String(128), nullable=False, unique=True)
    memberID = Column(Integer, ForeignKey('members.memberID'), nullable=False, index=True)
    amount = Column(DECIMAL(18, 2), nullable=False)
    newBuyer = Column(Boolean, nullable=False, default=False)
    createdAt = Column(DateTime, default=_get_current_time, index=True)

    def __repr__(self):
        return f"<SaleEvent(eventKey={self.eventKey}, memberID={self.memberID}, amount={self.amount})>"
