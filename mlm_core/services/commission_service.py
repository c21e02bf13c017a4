# mlm_core/services/commission_service.py
"""
Commission payout service - differential commissions up the referral chain.
"""
from decimal import Decimal
from typing import Dict, List, Optional
from sqlalchemy.orm import Session
import logging

from mlm_core.utils.locks import LockRegistry, get_lock_registry
from models.ledger_entry import LedgerEntry, LedgerReason
from models.member import Member
from mlm_core.config.tiers import TIER_CATALOG, TierCatalog
from mlm_core.errors import DuplicateEvent, MemberNotFound
from mlm_core.services.ledger_service import LedgerService, CENT
from mlm_core.utils.chain_walker import ChainWalker

logger = logging.getLogger(__name__)


class CommissionService:
    """Service for calculating and paying differential commissions."""

    def __init__(
            self,
            session: Session,
            catalog: Optional[TierCatalog] = None,
            locks: Optional[LockRegistry] = None
    ):
        self.session = session
        self.catalog = catalog or TIER_CATALOG()
        self.locks = locks or get_lock_registry()
        self.ledger = LedgerService(session, locks=self.locks)

    @staticmethod
    def referenceKeyFor(eventKey: str) -> str:
        return f"commission:{eventKey}"

    async def distributeSaleCommission(
            self,
            memberId: int,
            amount: Decimal,
            eventKey: str
    ) -> Dict:
        """
        Pay differential commissions for a sale to the buyer's upline.

        All entries are committed together under one reference key.

        Returns:
            Dict with eventKey, commissions (list) and totalDistributed

        Raises:
            DuplicateEvent: Commissions for eventKey were already paid
        """
        amount = Decimal(str(amount))
        if amount <= 0:
            raise ValueError(f"Sale amount must be positive, got {amount}")

        referenceKey = self.referenceKeyFor(eventKey)
        if self._isPaid(referenceKey):
            raise DuplicateEvent(referenceKey)

        buyer = self.session.get(Member, memberId)
        if buyer is None:
            raise MemberNotFound(memberId)

        commissions = self.calculateDifferentialCommissions(buyer, amount)
        payable = [c for c in commissions if c["amount"] > 0]

        results = {
            "eventKey": eventKey,
            "commissions": commissions,
            "totalDistributed": Decimal("0"),
        }

        if not payable:
            logger.info(f"No commissions payable for sale {eventKey}")
            return results

        # Ledger locks and row locks both in ascending member ID order
        payoutOrder = sorted(payable, key=lambda c: c["memberId"])
        lockKeys = [("ledger", c["memberId"]) for c in payoutOrder]

        async with self.locks.hold(lockKeys):
            if self._isPaid(referenceKey):
                raise DuplicateEvent(referenceKey)

            try:
                for commission in payoutOrder:
                    beneficiary = self.ledger._lockMember(commission["memberId"])
                    entry = self.ledger._append(
                        beneficiary,
                        commission["amount"],
                        LedgerReason.COMMISSION,
                        notes=(
                            f"Level {commission['level']} commission "
                            f"{commission['percentage']} on sale {eventKey}"
                        ),
                        counterpartyID=memberId,
                        referenceKey=referenceKey
                    )
                    commission["entryId"] = entry.entryID
                    results["totalDistributed"] += commission["amount"]

                self.session.commit()
            except Exception:
                self.session.rollback()
                raise

        logger.info(
            f"Distributed commissions for sale {eventKey}: "
            f"{len(payable)} payouts, total {results['totalDistributed']}"
        )

        return results

    def calculateDifferentialCommissions(self, buyer: Member, amount: Decimal) -> List[Dict]:
        """
        Walk the upline nearest-first and compute differentials.

        COMPRESSION:
        - Inactive members are skipped (get 0)
        - lastPaidRate is NOT updated for inactive members, so the next
          active member receives the differential from the last PAID rate
        - Walking stops once lastPaidRate reaches the catalog maximum

        Example with rates L1=8%, L2=10% (inactive), L3=12%, sale 1000:
        - L1: 8% - 0% = 8% = 80
        - L2: inactive, 0
        - L3: 12% - 8% = 4% = 40
        """
        commissions = []
        lastPaidRate = Decimal("0")
        maxRate = self.catalog.maxCommissionRate

        walker = ChainWalker(self.session)

        def process_upline(upline: Member, level: int) -> bool:
            nonlocal lastPaidRate

            rate = self.catalog.get(upline.tier).commissionRate

            if not upline.isActive:
                commissions.append({
                    "memberId": upline.memberID,
                    "percentage": Decimal("0"),
                    "amount": Decimal("0"),
                    "level": level,
                    "tier": upline.tier,
                    "isActive": False,
                    "compressed": True,
                })
                logger.debug(
                    f"Skipping inactive member {upline.memberID} (tier {upline.tier}), "
                    f"lastPaidRate stays at {lastPaidRate}"
                )

            else:
                differential = rate - lastPaidRate

                if differential > 0:
                    payout = (amount * differential).quantize(CENT)
                    commissions.append({
                        "memberId": upline.memberID,
                        "percentage": differential,
                        "amount": payout,
                        "level": level,
                        "tier": upline.tier,
                        "isActive": True,
                        "compressed": False,
                    })
                    lastPaidRate = rate

            return lastPaidRate < maxRate

        walker.walk_upline(buyer, process_upline)
        return commissions

    def _isPaid(self, referenceKey: str) -> bool:
        return self.session.query(LedgerEntry.entryID).filter(
            LedgerEntry.referenceKey == referenceKey,
            LedgerEntry.reason == LedgerReason.COMMISSION.value
        ).first() is not None
