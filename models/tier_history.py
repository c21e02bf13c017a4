"""
TierHistory model - audit trail of tier changes.
"""
from sqlalchemy import Column, Integer, String, DECIMAL, DateTime, ForeignKey
from models.base import Base, _get_current_time


class TierHistory(Base):
    __tablename__ = 'tier_history'

    historyID = Column(Integer, primary_key=True, autoincrement=True)
    memberID = Column(Integer, ForeignKey('members.memberID'), nullable=False, index=True)

    previousTier = Column(Integer, nullable=False)
    newTier = Column(Integer, nullable=False)

    metricValue = Column(DECIMAL(18, 2), nullable=True)  # metric at the time of change
    qualificationMethod = Column(String(20), nullable=False, default="natural")  # natural, assigned
    assignedBy = Column(Integer, nullable=True)
    notes = Column(String, nullable=True)

    createdAt = Column(DateTime, default=_get_current_time)

    def __repr__(self):
        return (
            f"<TierHistory(memberID={self.memberID}, "
            f"{self.previousTier} -> {self.newTier}, method={self.qualificationMethod})>"
        )
