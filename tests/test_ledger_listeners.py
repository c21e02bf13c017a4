# tests/test_ledger_listeners.py
"""
Tests for ledger event listeners.

    Member.pointsBalance = SUM(LedgerEntry.delta)
    Member.pointsFrozen = SUM(LedgerEntry.frozenDelta)

Ledger rows are append-only: UPDATE and DELETE are rejected.
"""
import logging
from decimal import Decimal

import pytest

from models import LedgerEntry, Member
from models.listeners import register_all_listeners
from mlm_core.errors import InvariantViolation


@pytest.fixture(autouse=True)
def ledger_listeners():
    """Rows here are inserted directly, without a LedgerService."""
    register_all_listeners()


def _entry(memberId, delta, frozenDelta="0", transactionNo="T1"):
    return LedgerEntry(
        memberID=memberId,
        delta=Decimal(delta),
        frozenDelta=Decimal(frozenDelta),
        reason="RECHARGE",
        balanceBefore=Decimal("0"),
        balanceAfter=Decimal(delta),
        transactionNo=transactionNo
    )


# =============================================================================
# TEST CLASS: INSERT
# =============================================================================

class TestLedgerInsert:

    @pytest.mark.asyncio
    async def test_insert_recalculates_balance(self, session, chain, reload):
        session.add(_entry(chain["A"], "100.00"))
        session.commit()

        assert reload(chain["A"]).pointsBalance == Decimal("100.00")

    @pytest.mark.asyncio
    async def test_multiple_inserts(self, session, chain, reload):
        amounts = ["100.00", "200.00", "-50.00", "75.00"]
        for i, amount in enumerate(amounts):
            session.add(_entry(chain["A"], amount, transactionNo=f"T{i}"))
        session.commit()

        assert reload(chain["A"]).pointsBalance == Decimal("325.00")

    @pytest.mark.asyncio
    async def test_frozen_recalculated(self, session, chain, reload):
        session.add(_entry(chain["A"], "100.00", transactionNo="T1"))
        session.add(_entry(chain["A"], "0", frozenDelta="40.00", transactionNo="T2"))
        session.commit()

        member = reload(chain["A"])
        assert member.pointsFrozen == Decimal("40.00")
        assert member.availablePoints == Decimal("60.00")

    @pytest.mark.asyncio
    async def test_stale_snapshot_self_heals(self, session, chain, reload):
        session.execute(
            Member.__table__.update()
            .where(Member.__table__.c.memberID == chain["A"])
            .values(pointsBalance=Decimal("999"))
        )
        session.commit()

        session.add(_entry(chain["A"], "10.00"))
        session.commit()

        assert reload(chain["A"]).pointsBalance == Decimal("10.00")


# =============================================================================
# TEST CLASS: Append-only protection
# =============================================================================

class TestLedgerProtection:

    @pytest.mark.asyncio
    async def test_update_rejected(self, session, chain, reload):
        entry = _entry(chain["A"], "100.00")
        session.add(entry)
        session.commit()

        entry.delta = Decimal("5000.00")
        with pytest.raises(InvariantViolation, match="append-only"):
            session.commit()
        session.rollback()

        assert reload(chain["A"]).pointsBalance == Decimal("100.00")

    @pytest.mark.asyncio
    async def test_delete_rejected(self, session, chain):
        entry = _entry(chain["A"], "100.00")
        session.add(entry)
        session.commit()

        session.delete(entry)
        with pytest.raises(InvariantViolation):
            session.commit()
        session.rollback()

        assert session.query(LedgerEntry).count() == 1

    @pytest.mark.asyncio
    async def test_direct_balance_write_warns(self, session, chain, caplog):
        member = session.get(Member, chain["A"])
        session.refresh(member)

        with caplog.at_level(logging.WARNING):
            member.pointsBalance = Decimal("123.00")

        assert "DIRECT pointsBalance modification" in caplog.text
        session.rollback()
