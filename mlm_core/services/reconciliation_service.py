# mlm_core/services/reconciliation_service.py
"""
Reconciliation service - audits stored state against its sources of truth.

Checks per member:
- pointsBalance == SUM(delta) and pointsFrozen == SUM(frozenDelta)
- 0 <= pointsFrozen <= pointsBalance
- balanceBefore/balanceAfter snapshots chain in replay order
- teamSales >= directSales, teamCount >= directCount
- stored treePath/depth match the parent linkage
"""
from decimal import Decimal
from typing import Dict, Iterable, List, Optional
from sqlalchemy.orm import Session
import logging

from models.member import Member
from mlm_core.errors import MemberNotFound
from mlm_core.services.ledger_service import LedgerService
from mlm_core.utils.chain_walker import ChainWalker

logger = logging.getLogger(__name__)


class ReconciliationService:
    """Read-only consistency checks; never repairs data."""

    def __init__(self, session: Session):
        self.session = session
        self.ledger = LedgerService(session)
        self.walker = ChainWalker(session)

    def checkMember(self, memberId: int) -> List[str]:
        """
        Run all checks for one member.

        Returns:
            List of human-readable issues, empty when consistent
        """
        member = self.session.get(Member, memberId)
        if member is None:
            raise MemberNotFound(memberId)

        self.session.refresh(member)
        issues = []

        # Journal replay
        running = Decimal("0")
        frozen = Decimal("0")
        for entry in self.ledger.replay(memberId):
            if entry.balanceBefore != running:
                issues.append(
                    f"entry {entry.entryID}: balanceBefore={entry.balanceBefore}, "
                    f"replayed={running}"
                )
            running += entry.delta
            frozen += entry.frozenDelta
            if entry.balanceAfter != running:
                issues.append(
                    f"entry {entry.entryID}: balanceAfter={entry.balanceAfter}, "
                    f"replayed={running}"
                )

        balance = member.pointsBalance or Decimal("0")
        storedFrozen = member.pointsFrozen or Decimal("0")

        if balance != running:
            issues.append(f"pointsBalance={balance} but journal sums to {running}")
        if storedFrozen != frozen:
            issues.append(f"pointsFrozen={storedFrozen} but journal sums to {frozen}")
        if balance < 0:
            issues.append(f"pointsBalance is negative ({balance})")
        if storedFrozen < 0 or storedFrozen > balance:
            issues.append(f"pointsFrozen={storedFrozen} outside [0, {balance}]")

        # Aggregates
        if member.teamSales < member.directSales:
            issues.append(f"teamSales={member.teamSales} < directSales={member.directSales}")
        if member.teamCount < member.directCount:
            issues.append(f"teamCount={member.teamCount} < directCount={member.directCount}")
        if member.directSales < 0 or member.directCount < 0:
            issues.append("negative direct metrics")

        # Tree
        if not self.walker.validate_path(member):
            issues.append(f"treePath {member.treePath} (depth {member.depth}) does not match parent chain")

        if issues:
            for issue in issues:
                logger.error(f"Reconciliation issue for member {memberId}: {issue}")

        return issues

    def checkAll(self, memberIds: Optional[Iterable[int]] = None) -> Dict:
        """
        Check many members (all when memberIds is None).

        Returns:
            Dict with checked, withIssues and issues {memberId: [...]}
        """
        if memberIds is None:
            memberIds = [row[0] for row in self.session.query(Member.memberID).order_by(Member.memberID)]

        results = {
            "checked": 0,
            "withIssues": 0,
            "issues": {},
        }

        for memberId in memberIds:
            results["checked"] += 1
            issues = self.checkMember(memberId)
            if issues:
                results["withIssues"] += 1
                results["issues"][memberId] = issues

        logger.info(
            f"Reconciliation complete: checked={results['checked']}, "
            f"withIssues={results['withIssues']}"
        )

        return results
