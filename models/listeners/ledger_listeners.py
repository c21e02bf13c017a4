# models/listeners/ledger_listeners.py
"""
Ledger Event Listeners - Auto-sync Member points on journal inserts.

Architecture:
    LedgerEntry (INSERT) → Member.pointsBalance = SUM(delta)
                         → Member.pointsFrozen = SUM(frozenDelta)

Member.pointsBalance/pointsFrozen ALWAYS equal the journal sums, so
replaying a member's entries reproduces the stored balance exactly.

NOTE: All points movements MUST go through LedgerEntry.
      Direct Member.pointsBalance = X is FORBIDDEN.
      Ledger rows are append-only: UPDATE and DELETE are rejected.
"""
import logging

from sqlalchemy import event, func, select

logger = logging.getLogger(__name__)


def register_ledger_listeners():
    """
    Register event listeners for points synchronization.

    Called once during application startup from models/listeners/__init__.py
    """
    from models.ledger_entry import LedgerEntry
    from models.member import Member

    ledger = LedgerEntry.__table__
    members = Member.__table__

    def recalc_member_points(mapper, connection, target):
        """
        Full recalculation of Member points from journal.

        Formula: Member.pointsBalance = SUM(LedgerEntry.delta) WHERE memberID=X
                 Member.pointsFrozen = SUM(LedgerEntry.frozenDelta) WHERE memberID=X
        """
        result = connection.execute(
            select(
                func.coalesce(func.sum(ledger.c.delta), 0),
                func.coalesce(func.sum(ledger.c.frozenDelta), 0),
            ).where(ledger.c.memberID == target.memberID)
        )
        real_balance, real_frozen = result.one()

        # Overwrite (NOT increment!)
        connection.execute(
            members.update()
            .where(members.c.memberID == target.memberID)
            .values(pointsBalance=real_balance, pointsFrozen=real_frozen)
        )

        logger.info(
            f"Points RECALC: member={target.memberID}, "
            f"balance={real_balance}, frozen={real_frozen}, trigger={target.reason}"
        )

    event.listen(LedgerEntry, 'after_insert', recalc_member_points)


# =========================================================================
# SAFETY: Append-only journal, no direct balance modification
# =========================================================================

def register_ledger_protection():
    """
    Reject UPDATE/DELETE of ledger rows and warn on direct balance writes.
    """
    from models.ledger_entry import LedgerEntry
    from models.member import Member
    from mlm_core.errors import InvariantViolation

    def reject_mutation(mapper, connection, target):
        logger.error(
            f"Attempt to modify ledger entry {target.entryID} "
            f"(member={target.memberID}) - journal is append-only"
        )
        raise InvariantViolation(
            f"Ledger entry {target.entryID} is append-only",
            memberId=target.memberID,
        )

    event.listen(LedgerEntry, 'before_update', reject_mutation)
    event.listen(LedgerEntry, 'before_delete', reject_mutation)

    @event.listens_for(Member.pointsBalance, 'set')
    def warn_direct_points_balance_set(target, value, oldvalue, initiator):
        """Warn when pointsBalance is set directly (not via listener)."""
        if oldvalue is not None and value != oldvalue:
            import traceback
            stack = ''.join(traceback.format_stack()[-5:-1])

            logger.warning(
                f"DIRECT pointsBalance modification detected! "
                f"member={target.memberID}, {oldvalue} → {value}\n"
                f"Stack:\n{stack}"
            )
