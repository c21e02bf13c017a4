# mlm_core/services/aggregation_service.py
"""
Aggregation service - direct/team sales and counts, tier qualification.

recordSale updates the buyer's direct metrics and the team metrics of the
buyer and every ancestor in one transaction, guarded by an idempotency key.
Tier changes triggered by crossing a threshold are applied in the same
transaction and recorded in TierHistory.
"""
from decimal import Decimal
from typing import Dict, List, Optional, Tuple
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
import logging

from config import Config
from mlm_core.utils.locks import LockRegistry, get_lock_registry
from models.member import Member
from models.sale_event import SaleEvent
from models.tier_history import TierHistory
from mlm_core.config.plans import ShopPurchasePlan
from mlm_core.config.tiers import TIER_CATALOG, TierCatalog
from mlm_core.errors import DuplicateEvent, InvariantViolation, MemberNotFound

logger = logging.getLogger(__name__)


class AggregationService:
    """Service for tracking direct and team metrics along the referral tree."""

    def __init__(
            self,
            session: Session,
            catalog: Optional[TierCatalog] = None,
            locks: Optional[LockRegistry] = None
    ):
        self.session = session
        self.catalog = catalog or TIER_CATALOG()
        self.locks = locks or get_lock_registry()

    # ============================================================
    # PUBLIC API - Main entry points
    # ============================================================

    async def recordSale(
            self,
            memberId: int,
            amount: Decimal,
            eventKey: str,
            newBuyer: bool = False
    ) -> Dict:
        """
        Apply a sale to the buyer and the whole upline.

        Args:
            memberId: Member credited with the sale
            amount: Positive sale amount
            eventKey: Caller-supplied idempotency key
            newBuyer: Sale represents a new distinct buyer (bumps counts)

        Returns:
            Result dict with eventKey, memberId, amount, nodesUpdated, tierChanges

        Raises:
            DuplicateEvent: eventKey was already applied
            InvariantViolation: Update would leave team < direct anywhere
            Contention: Locks not acquired within the bounded wait
        """
        amount = Decimal(str(amount))
        if amount <= 0:
            raise ValueError(f"Sale amount must be positive, got {amount}")
        if not eventKey:
            raise ValueError("eventKey is required")

        if self._isApplied(eventKey):
            logger.info(f"Sale event {eventKey} already applied, skipping")
            raise DuplicateEvent(eventKey)

        member = self.session.get(Member, memberId)
        if member is None:
            raise MemberNotFound(memberId)

        # Root to leaf: ancestors in path order, then the buyer
        chainIds = member.teamPath + [member.memberID]

        async with self.locks.hold([("tree", nodeId) for nodeId in chainIds]):
            # Another writer may have applied the key while we waited
            if self._isApplied(eventKey):
                raise DuplicateEvent(eventKey)

            try:
                nodes = self._lockChain(chainIds)
                buyer = nodes[-1]

                buyer.directSales = (buyer.directSales or Decimal("0")) + amount
                if newBuyer:
                    buyer.directCount = (buyer.directCount or 0) + 1

                for node in nodes:
                    node.teamSales = (node.teamSales or Decimal("0")) + amount
                    if newBuyer:
                        node.teamCount = (node.teamCount or 0) + 1

                self._checkInvariants(nodes)

                self.session.add(SaleEvent(
                    eventKey=eventKey,
                    memberID=buyer.memberID,
                    amount=amount,
                    newBuyer=newBuyer
                ))

                tierChanges = []
                for node in nodes:
                    change = self._applyQualification(node)
                    if change:
                        tierChanges.append(change)

                self.session.commit()

            except IntegrityError:
                self.session.rollback()
                logger.info(f"Sale event {eventKey} applied concurrently, skipping")
                raise DuplicateEvent(eventKey)
            except InvariantViolation as e:
                self.session.rollback()
                logger.error(f"Invariant violation recording sale {eventKey}: {e}")
                raise
            except Exception:
                self.session.rollback()
                raise

        logger.info(
            f"Sale {eventKey} recorded: member={memberId}, amount={amount}, "
            f"nodes={len(chainIds)}, newBuyer={newBuyer}"
        )

        return {
            "eventKey": eventKey,
            "memberId": memberId,
            "amount": amount,
            "nodesUpdated": len(chainIds),
            "tierChanges": tierChanges,
        }

    async def recordPlanPurchase(
            self,
            memberId: int,
            plan: ShopPurchasePlan,
            eventKey: str
    ) -> Dict:
        """
        Record a bundle-plan purchase as a new-buyer sale of plan.entryFee.

        Returns:
            recordSale result plus plan name and bundled gift units
        """
        result = await self.recordSale(memberId, plan.entryFee, eventKey, newBuyer=True)
        result["plan"] = plan.name
        result["giftUnits"] = plan.bundleGiftUnits

        logger.info(
            f"Plan '{plan.name}' purchased by member {memberId}: "
            f"{plan.bundledUnits} units + {plan.bundleGiftUnits} gift"
        )
        return result

    async def recomputeTier(self, memberId: int) -> Tuple[int, int]:
        """
        Re-derive member's tier from the configured metric.

        Targets are inclusive lower bounds. Tiers are not downgraded unless
        TIER_ALLOW_DOWNGRADE is set.

        Returns:
            (oldTier, newTier) - equal when nothing changed
        """
        async with self.locks.hold([("tree", memberId)]):
            member = self.session.query(Member).filter_by(
                memberID=memberId
            ).populate_existing().with_for_update().first()

            if member is None:
                raise MemberNotFound(memberId)

            oldTier = member.tier
            try:
                change = self._applyQualification(member)
                self.session.commit()
            except Exception:
                self.session.rollback()
                raise

        if change:
            return change["previousTier"], change["newTier"]
        return oldTier, oldTier

    async def assignTier(
            self,
            memberId: int,
            tierId: int,
            assignedBy: Optional[int] = None,
            notes: Optional[str] = None
    ) -> Tuple[int, int]:
        """
        Assign tier manually (administrative).

        Returns:
            (oldTier, newTier)
        """
        self.catalog.get(tierId)

        async with self.locks.hold([("tree", memberId)]):
            member = self.session.query(Member).filter_by(
                memberID=memberId
            ).populate_existing().with_for_update().first()

            if member is None:
                raise MemberNotFound(memberId)

            oldTier = member.tier
            if oldTier == tierId:
                return oldTier, oldTier

            try:
                member.tier = tierId
                self.session.add(TierHistory(
                    memberID=memberId,
                    previousTier=oldTier,
                    newTier=tierId,
                    metricValue=self._metricValue(member),
                    qualificationMethod="assigned",
                    assignedBy=assignedBy,
                    notes=notes or (f"Assigned by member {assignedBy}" if assignedBy else None)
                ))
                self.session.commit()
            except Exception:
                self.session.rollback()
                raise

        logger.info(f"Tier {tierId} assigned to member {memberId} (was {oldTier}) by {assignedBy}")
        return oldTier, tierId

    async def checkAllTiers(self) -> Dict[str, int]:
        """
        Recompute tiers for all members.

        Returns:
            Statistics dict with checked, updated, errors
        """
        results = {
            "checked": 0,
            "updated": 0,
            "errors": 0
        }

        memberIds = [row[0] for row in self.session.query(Member.memberID).order_by(Member.memberID)]

        for memberId in memberIds:
            try:
                results["checked"] += 1
                oldTier, newTier = await self.recomputeTier(memberId)
                if oldTier != newTier:
                    results["updated"] += 1
            except Exception as e:
                logger.error(f"Error checking tier for member {memberId}: {e}", exc_info=True)
                results["errors"] += 1

        logger.info(
            f"Tier check complete: checked={results['checked']}, "
            f"updated={results['updated']}, errors={results['errors']}"
        )

        return results

    # ============================================================
    # PRIVATE HELPERS
    # ============================================================

    def _isApplied(self, eventKey: str) -> bool:
        return self.session.query(SaleEvent.eventID).filter_by(
            eventKey=eventKey
        ).first() is not None

    def _lockChain(self, chainIds: List[int]) -> List[Member]:
        """Load chain rows FOR UPDATE, ordered root to leaf."""
        rows = self.session.query(Member).filter(
            Member.memberID.in_(chainIds)
        ).populate_existing().with_for_update().all()

        byId = {row.memberID: row for row in rows}
        missing = [nodeId for nodeId in chainIds if nodeId not in byId]
        if missing:
            raise InvariantViolation(
                f"Path of member {chainIds[-1]} references missing ancestors {missing}",
                memberId=chainIds[-1]
            )

        return [byId[nodeId] for nodeId in chainIds]

    def _checkInvariants(self, nodes: List[Member]):
        for node in nodes:
            if node.teamSales < node.directSales:
                raise InvariantViolation(
                    f"Member {node.memberID}: teamSales={node.teamSales} "
                    f"< directSales={node.directSales}",
                    memberId=node.memberID
                )
            if node.teamCount < node.directCount:
                raise InvariantViolation(
                    f"Member {node.memberID}: teamCount={node.teamCount} "
                    f"< directCount={node.directCount}",
                    memberId=node.memberID
                )

    def _metricValue(self, member: Member) -> Decimal:
        metric = Config.get(Config.TIER_METRIC, "teamSales")
        if metric == "directSales":
            return member.directSales or Decimal("0")
        return member.teamSales or Decimal("0")

    def _applyQualification(self, member: Member) -> Optional[Dict]:
        """
        Move member to the tier its metric qualifies for.
        Does not commit.

        Returns:
            Change dict or None when tier is unchanged
        """
        metricValue = self._metricValue(member)
        qualified = self.catalog.tierFor(metricValue)

        # Below the lowest target the member keeps its current tier
        if qualified is None:
            return None

        oldTier = member.tier or self.catalog.lowest.tierId
        newTier = qualified.tierId

        if newTier == oldTier:
            return None

        if newTier < oldTier and not Config.get(Config.TIER_ALLOW_DOWNGRADE, False):
            logger.debug(
                f"Member {member.memberID} qualifies for tier {newTier} "
                f"below current {oldTier}, downgrade disabled"
            )
            return None

        member.tier = newTier
        self.session.add(TierHistory(
            memberID=member.memberID,
            previousTier=oldTier,
            newTier=newTier,
            metricValue=metricValue,
            qualificationMethod="natural"
        ))

        logger.info(
            f"Member {member.memberID} tier updated: {oldTier} → {newTier} "
            f"(metric={metricValue})"
        )

        return {
            "memberId": member.memberID,
            "previousTier": oldTier,
            "newTier": newTier,
        }
