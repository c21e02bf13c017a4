# mlm_core/services/ledger_service.py
"""
Points ledger service - append-only journal, source of truth for balances.

Balances are never written here: inserting a LedgerEntry fires the
listener that overwrites Member.pointsBalance/pointsFrozen with the
journal sums (see models/listeners/ledger_listeners.py). Constructing a
LedgerService installs those listeners if nothing has yet.
"""
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterator, Optional, Union
from sqlalchemy.orm import Session
import logging

from mlm_core.utils.locks import LockRegistry, get_lock_registry
from models.ledger_entry import LedgerEntry, LedgerReason
from models.listeners import register_all_listeners
from models.member import Member
from mlm_core.errors import InsufficientBalance, MemberNotFound

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


@dataclass(frozen=True)
class TransferResult:
    """Committed transfer: both entries exist or the transfer raised."""
    transactionNo: str
    fromMemberId: int
    toMemberId: int
    amount: Decimal
    debitEntryId: int
    creditEntryId: int
    fromBalanceAfter: Decimal
    toBalanceAfter: Decimal


def generate_transaction_no() -> str:
    return f"PT{uuid.uuid4().hex[:20].upper()}"


def _toAmount(value: Union[Decimal, int, str, float]) -> Decimal:
    return Decimal(str(value)).quantize(CENT)


class LedgerService:
    """Service for posting and replaying points movements."""

    def __init__(self, session: Session, locks: Optional[LockRegistry] = None):
        register_all_listeners()
        self.session = session
        self.locks = locks or get_lock_registry()

    # ============================================================
    # PUBLIC API
    # ============================================================

    async def post(
            self,
            memberId: int,
            delta: Decimal,
            reason: LedgerReason,
            notes: Optional[str] = None,
            referenceKey: Optional[str] = None
    ) -> LedgerEntry:
        """
        Append one entry and update the member's balance snapshot.

        Debits are checked against availablePoints (pointsBalance -
        pointsFrozen), so frozen points block ordinary debits. Only
        ADJUSTMENT is checked against pointsBalance: it may consume frozen
        points but never take the balance below zero.

        Args:
            memberId: Member ID
            delta: Signed non-zero amount
            reason: Reason code
            notes: Free text
            referenceKey: Business event grouping key

        Raises:
            InsufficientBalance: Debit exceeds availablePoints
                (pointsBalance for ADJUSTMENT)
        """
        delta = _toAmount(delta)
        if delta == 0:
            raise ValueError("delta must be non-zero")

        async with self.locks.hold([("ledger", memberId)]):
            try:
                member = self._lockMember(memberId)
                entry = self._append(
                    member, delta, reason,
                    notes=notes, referenceKey=referenceKey
                )
                self.session.commit()
            except Exception:
                self.session.rollback()
                raise

        logger.info(
            f"Posted {delta} ({reason.value}) to member {memberId}, "
            f"balance={entry.balanceAfter}"
        )
        return entry

    async def transfer(
            self,
            fromId: int,
            toId: int,
            amount: Decimal,
            notes: Optional[str] = None
    ) -> TransferResult:
        """
        Move points between two members as a single unit of work.

        Both ledger locks and both row locks are taken in ascending member
        ID order, whichever way the points flow. The debit is checked
        before anything is written; both entries are committed together or
        the session is rolled back.

        Raises:
            InsufficientBalance: Sender's available points < amount
            MemberNotFound: Either member does not exist
        """
        amount = _toAmount(amount)
        if amount <= 0:
            raise ValueError("Transfer amount must be positive")
        if fromId == toId:
            raise ValueError("Cannot transfer to self")

        transactionNo = generate_transaction_no()
        lockOrder = sorted((fromId, toId))
        lockKeys = [("ledger", memberId) for memberId in lockOrder]

        async with self.locks.hold(lockKeys):
            try:
                rows = {memberId: self._lockMember(memberId) for memberId in lockOrder}
                sender = rows[fromId]
                recipient = rows[toId]

                # Check before writing anything
                self._checkDebit(sender, -amount, LedgerReason.TRANSFER_OUT)

                debit = self._append(
                    sender, -amount, LedgerReason.TRANSFER_OUT,
                    notes=notes or f"Transfer to member {toId}",
                    counterpartyID=toId,
                    transactionNo=f"{transactionNo}_OUT",
                    referenceKey=f"transfer:{transactionNo}"
                )
                credit = self._append(
                    recipient, amount, LedgerReason.TRANSFER_IN,
                    notes=notes or f"Transfer from member {fromId}",
                    counterpartyID=fromId,
                    transactionNo=f"{transactionNo}_IN",
                    referenceKey=f"transfer:{transactionNo}"
                )

                self.session.commit()

            except Exception as e:
                self.session.rollback()
                logger.info(f"Transfer {fromId} → {toId} ({amount}) rolled back: {e}")
                raise

        logger.info(
            f"Transfer {transactionNo}: {fromId} → {toId}, amount={amount}"
        )

        return TransferResult(
            transactionNo=transactionNo,
            fromMemberId=fromId,
            toMemberId=toId,
            amount=amount,
            debitEntryId=debit.entryID,
            creditEntryId=credit.entryID,
            fromBalanceAfter=debit.balanceAfter,
            toBalanceAfter=credit.balanceAfter,
        )

    async def freeze(self, memberId: int, amount: Decimal, notes: Optional[str] = None) -> LedgerEntry:
        """
        Reserve available points (balance unchanged, frozen increases).

        Raises:
            InsufficientBalance: Available points < amount
        """
        amount = _toAmount(amount)
        if amount <= 0:
            raise ValueError("Freeze amount must be positive")

        async with self.locks.hold([("ledger", memberId)]):
            try:
                member = self._lockMember(memberId)
                available = member.availablePoints
                if amount > available:
                    logger.info(
                        f"Freeze rejected for member {memberId}: "
                        f"requested={amount}, available={available}"
                    )
                    raise InsufficientBalance(memberId, amount, available)

                entry = self._append(
                    member, Decimal("0"), LedgerReason.FREEZE,
                    frozenDelta=amount, notes=notes
                )
                self.session.commit()
            except Exception:
                self.session.rollback()
                raise

        logger.info(f"Froze {amount} for member {memberId}")
        return entry

    async def unfreeze(self, memberId: int, amount: Decimal, notes: Optional[str] = None) -> LedgerEntry:
        """
        Release previously frozen points.

        Raises:
            InsufficientBalance: Frozen points < amount
        """
        amount = _toAmount(amount)
        if amount <= 0:
            raise ValueError("Unfreeze amount must be positive")

        async with self.locks.hold([("ledger", memberId)]):
            try:
                member = self._lockMember(memberId)
                frozen = member.pointsFrozen or Decimal("0")
                if amount > frozen:
                    raise InsufficientBalance(memberId, amount, frozen)

                entry = self._append(
                    member, Decimal("0"), LedgerReason.UNFREEZE,
                    frozenDelta=-amount, notes=notes
                )
                self.session.commit()
            except Exception:
                self.session.rollback()
                raise

        logger.info(f"Unfroze {amount} for member {memberId}")
        return entry

    def replay(self, memberId: int) -> Iterator[LedgerEntry]:
        """
        Lazy iterator over member's entries in timestamp order.

        Summing delta over the sequence reproduces Member.pointsBalance.
        """
        if self.session.get(Member, memberId) is None:
            raise MemberNotFound(memberId)
        return self._iterEntries(memberId)

    def _iterEntries(self, memberId: int) -> Iterator[LedgerEntry]:
        query = (
            self.session.query(LedgerEntry)
            .filter(LedgerEntry.memberID == memberId)
            .order_by(LedgerEntry.createdAt, LedgerEntry.entryID)
            .yield_per(500)
        )
        for entry in query:
            yield entry

    def getBalance(self, memberId: int) -> Dict[str, Decimal]:
        member = self.session.get(Member, memberId)
        if member is None:
            raise MemberNotFound(memberId)
        self.session.refresh(member, ["pointsBalance", "pointsFrozen"])
        return {
            "balance": member.pointsBalance,
            "frozen": member.pointsFrozen,
            "available": member.availablePoints,
        }

    def resolveMember(self, identifier: Union[int, str]) -> Member:
        """
        Find member by ID, memberNumber or phone (in that order).

        Raises:
            MemberNotFound: If nothing matches
        """
        member = None

        if isinstance(identifier, int) or str(identifier).isdigit():
            member = self.session.get(Member, int(identifier))

        if member is None:
            member = self.session.query(Member).filter_by(memberNumber=str(identifier)).first()

        if member is None:
            member = self.session.query(Member).filter_by(phone=str(identifier)).first()

        if member is None:
            raise MemberNotFound(identifier)

        return member

    # ============================================================
    # UNIT-OF-WORK HELPERS (no commit)
    # ============================================================

    def _lockMember(self, memberId: int) -> Member:
        member = self.session.query(Member).filter_by(
            memberID=memberId
        ).populate_existing().with_for_update().first()

        if member is None:
            raise MemberNotFound(memberId)
        return member

    def _checkDebit(self, member: Member, delta: Decimal, reason: LedgerReason):
        """Raise InsufficientBalance if a negative delta cannot be covered."""
        if delta >= 0:
            return

        if reason.isAdministrative:
            # Override may dip into frozen points but not below zero
            available = member.pointsBalance or Decimal("0")
        else:
            available = member.availablePoints

        if -delta > available:
            logger.info(
                f"Debit rejected for member {member.memberID}: "
                f"requested={-delta}, available={available}, reason={reason.value}"
            )
            raise InsufficientBalance(member.memberID, -delta, available)

    def _append(
            self,
            member: Member,
            delta: Decimal,
            reason: LedgerReason,
            frozenDelta: Decimal = Decimal("0"),
            notes: Optional[str] = None,
            counterpartyID: Optional[int] = None,
            transactionNo: Optional[str] = None,
            referenceKey: Optional[str] = None
    ) -> LedgerEntry:
        """
        Validate, insert and flush one entry; the listener recalculates
        the member's points. Caller commits or rolls back.
        """
        self._checkDebit(member, delta, reason)

        balanceBefore = member.pointsBalance or Decimal("0")
        entry = LedgerEntry(
            memberID=member.memberID,
            delta=delta,
            frozenDelta=frozenDelta,
            reason=reason.value,
            balanceBefore=balanceBefore,
            balanceAfter=balanceBefore + delta,
            transactionNo=transactionNo or generate_transaction_no(),
            referenceKey=referenceKey,
            counterpartyID=counterpartyID,
            notes=notes,
        )
        self.session.add(entry)
        self.session.flush()

        # Listener wrote the new sums through the connection
        self.session.expire(member, ["pointsBalance", "pointsFrozen"])

        return entry
