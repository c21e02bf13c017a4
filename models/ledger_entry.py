"""
LedgerEntry model - append-only points journal.

Member.pointsBalance = SUM(LedgerEntry.delta)
Member.pointsFrozen = SUM(LedgerEntry.frozenDelta)
"""
from decimal import Decimal
from enum import Enum

from sqlalchemy import Column, Integer, String, DECIMAL, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship
from models.base import Base, _get_current_time


class LedgerReason(Enum):
    """Reason codes for ledger entries."""
    PURCHASE = "PURCHASE"
    TRANSFER_OUT = "TRANSFER_OUT"
    TRANSFER_IN = "TRANSFER_IN"
    RECHARGE = "RECHARGE"
    WITHDRAW = "WITHDRAW"
    REFUND = "REFUND"
    COMMISSION = "COMMISSION"
    REWARD = "REWARD"
    FREEZE = "FREEZE"
    UNFREEZE = "UNFREEZE"
    ADJUSTMENT = "ADJUSTMENT"  # administrative override

    @property
    def isAdministrative(self) -> bool:
        return self is LedgerReason.ADJUSTMENT


class LedgerEntry(Base):
    __tablename__ = 'ledger_entries'

    # Primary key
    entryID = Column(Integer, primary_key=True, autoincrement=True)

    # Relations
    memberID = Column(Integer, ForeignKey('members.memberID'), nullable=False)
    counterpartyID = Column(Integer, nullable=True)  # other side of a transfer

    # Movement
    delta = Column(DECIMAL(18, 2), nullable=False, default=Decimal("0"))
    frozenDelta = Column(DECIMAL(18, 2), nullable=False, default=Decimal("0"))
    reason = Column(String(20), nullable=False)

    # Snapshot after this entry
    balanceBefore = Column(DECIMAL(18, 2), nullable=False)
    balanceAfter = Column(DECIMAL(18, 2), nullable=False)

    # Identification
    transactionNo = Column(String(64), nullable=False, unique=True)
    referenceKey = Column(String(160), nullable=True, index=True)  # business event grouping

    notes = Column(String, nullable=True)
    createdAt = Column(DateTime, default=_get_current_time, nullable=False)

    # Relationships
    member = relationship('Member', backref='ledgerEntries')

    __table_args__ = (
        Index('ix_ledger_member_created', 'memberID', 'createdAt'),
    )

    def __repr__(self):
        return (
            f"<LedgerEntry(entryID={self.entryID}, memberID={self.memberID}, "
            f"delta={self.delta}, reason={self.reason})>"
        )
