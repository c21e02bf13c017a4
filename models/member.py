"""
Member model - referral tree node with aggregated sales and points balance.
"""
from decimal import Decimal
from typing import List

from sqlalchemy import Column, Integer, String, DECIMAL, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship
from models.base import Base, AuditMixin

ROOT_PATH = "/"


class Member(Base, AuditMixin):
    __tablename__ = 'members'

    # Primary key
    memberID = Column(Integer, primary_key=True, autoincrement=True)

    # Referral tree (parent is fixed at creation, never re-assigned)
    parentID = Column(Integer, ForeignKey('members.memberID'), nullable=True, index=True)
    treePath = Column(String, nullable=False, default=ROOT_PATH, index=True)  # "/1/5/" = root..parent
    depth = Column(Integer, nullable=False, default=1)

    # Identity
    memberNumber = Column(String, nullable=True, unique=True)
    nickname = Column(String, nullable=True)
    phone = Column(String, nullable=True, index=True)
    status = Column(String, nullable=False, default="active")  # active, inactive

    # Tier (id in the tier catalog)
    tier = Column(Integer, nullable=False, default=1)

    # Aggregates
    directSales = Column(DECIMAL(18, 2), nullable=False, default=Decimal("0"))
    teamSales = Column(DECIMAL(18, 2), nullable=False, default=Decimal("0"))
    directCount = Column(Integer, nullable=False, default=0)
    teamCount = Column(Integer, nullable=False, default=0)

    # Points - maintained by ledger listeners, never assigned directly
    pointsBalance = Column(DECIMAL(18, 2), nullable=False, default=Decimal("0"))
    pointsFrozen = Column(DECIMAL(18, 2), nullable=False, default=Decimal("0"))

    # Relationships
    parent = relationship('Member', remote_side=[memberID], backref='children')

    __table_args__ = (
        CheckConstraint("depth >= 1", name="ck_member_depth_positive"),
    )

    @property
    def teamPath(self) -> List[int]:
        """Ancestor ids from root to immediate parent."""
        return [int(part) for part in (self.treePath or ROOT_PATH).split("/") if part]

    @property
    def subtreePrefix(self) -> str:
        """treePath prefix shared by every descendant."""
        return f"{self.treePath or ROOT_PATH}{self.memberID}/"

    @property
    def isRoot(self) -> bool:
        return self.parentID is None

    @property
    def isActive(self) -> bool:
        return self.status == "active"

    @property
    def availablePoints(self) -> Decimal:
        return (self.pointsBalance or Decimal("0")) - (self.pointsFrozen or Decimal("0"))

    def __repr__(self):
        return (
            f"<Member(memberID={self.memberID}, parentID={self.parentID}, "
            f"tier={self.tier}, depth={self.depth})>"
        )
