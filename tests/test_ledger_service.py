# tests/test_ledger_service.py
"""
Tests for LedgerService: posting, atomic transfers, freeze/unfreeze,
administrative overrides and replay.

Key principle: Member.pointsBalance ALWAYS equals SUM(LedgerEntry.delta),
and a failed operation leaves no entries behind.
"""
import asyncio
from decimal import Decimal

import pytest

from models.ledger_entry import LedgerEntry, LedgerReason
from models.listeners import listeners_registered
from mlm_core.errors import Contention, InsufficientBalance, MemberNotFound
from mlm_core.services import ledger_service
from mlm_core.services.ledger_service import LedgerService, TransferResult


# =============================================================================
# TEST CLASS: post
# =============================================================================

class TestPost:

    @pytest.mark.asyncio
    async def test_credit(self, ledger, chain, reload):
        entry = await ledger.post(chain["A"], Decimal("100"), LedgerReason.RECHARGE)

        assert entry.balanceBefore == Decimal("0")
        assert entry.balanceAfter == Decimal("100")
        assert entry.reason == "RECHARGE"
        assert reload(chain["A"]).pointsBalance == Decimal("100")

    @pytest.mark.asyncio
    async def test_debit(self, ledger, chain, funded, reload):
        await funded(chain["A"], 100)

        entry = await ledger.post(chain["A"], Decimal("-30"), LedgerReason.PURCHASE, referenceKey="order-1")

        assert entry.balanceAfter == Decimal("70")
        assert entry.referenceKey == "order-1"
        assert reload(chain["A"]).pointsBalance == Decimal("70")

    @pytest.mark.asyncio
    async def test_debit_beyond_balance(self, ledger, chain, funded, session, reload):
        await funded(chain["A"], 20)

        with pytest.raises(InsufficientBalance) as exc_info:
            await ledger.post(chain["A"], Decimal("-30"), LedgerReason.WITHDRAW)

        assert exc_info.value.requested == Decimal("30")
        assert exc_info.value.available == Decimal("20")
        assert reload(chain["A"]).pointsBalance == Decimal("20")
        assert session.query(LedgerEntry).count() == 1

    @pytest.mark.asyncio
    async def test_zero_delta_rejected(self, ledger, chain):
        with pytest.raises(ValueError):
            await ledger.post(chain["A"], Decimal("0"), LedgerReason.RECHARGE)

    @pytest.mark.asyncio
    async def test_amount_quantized_to_cents(self, ledger, chain):
        entry = await ledger.post(chain["A"], Decimal("10.004"), LedgerReason.RECHARGE)

        assert entry.delta == Decimal("10.00")

    @pytest.mark.asyncio
    async def test_unknown_member(self, ledger, session):
        with pytest.raises(MemberNotFound):
            await ledger.post(42, Decimal("10"), LedgerReason.RECHARGE)

        assert session.query(LedgerEntry).count() == 0


# =============================================================================
# TEST CLASS: transfer
# =============================================================================

class TestTransfer:

    @pytest.mark.asyncio
    async def test_insufficient_balance_leaves_no_trace(self, ledger, chain, funded, session, reload):
        await funded(chain["A"], 50)

        with pytest.raises(InsufficientBalance):
            await ledger.transfer(chain["A"], chain["B"], Decimal("100"))

        assert reload(chain["A"]).pointsBalance == Decimal("50")
        assert reload(chain["B"]).pointsBalance == Decimal("0")
        assert session.query(LedgerEntry).count() == 1

    @pytest.mark.asyncio
    async def test_successful_transfer(self, ledger, chain, funded, session, reload):
        await funded(chain["A"], 100)

        result = await ledger.transfer(chain["A"], chain["B"], Decimal("40"), notes="gift")

        assert isinstance(result, TransferResult)
        assert result.fromBalanceAfter == Decimal("60")
        assert result.toBalanceAfter == Decimal("40")
        assert reload(chain["A"]).pointsBalance == Decimal("60")
        assert reload(chain["B"]).pointsBalance == Decimal("40")

        entries = session.query(LedgerEntry).filter_by(
            referenceKey=f"transfer:{result.transactionNo}"
        ).order_by(LedgerEntry.entryID).all()

        assert [e.reason for e in entries] == ["TRANSFER_OUT", "TRANSFER_IN"]
        assert [e.delta for e in entries] == [Decimal("-40"), Decimal("40")]
        assert entries[0].counterpartyID == chain["B"]
        assert entries[1].counterpartyID == chain["A"]
        assert entries[0].transactionNo == f"{result.transactionNo}_OUT"

    @pytest.mark.asyncio
    async def test_transfer_to_self(self, ledger, chain):
        with pytest.raises(ValueError):
            await ledger.transfer(chain["A"], chain["A"], Decimal("1"))

    @pytest.mark.asyncio
    async def test_non_positive_amount(self, ledger, chain):
        with pytest.raises(ValueError):
            await ledger.transfer(chain["A"], chain["B"], Decimal("-5"))

    @pytest.mark.asyncio
    async def test_unknown_recipient(self, ledger, chain, funded, session, reload):
        await funded(chain["A"], 100)

        with pytest.raises(MemberNotFound):
            await ledger.transfer(chain["A"], 42, Decimal("10"))

        assert reload(chain["A"]).pointsBalance == Decimal("100")
        assert session.query(LedgerEntry).count() == 1

    @pytest.mark.asyncio
    async def test_opposite_transfers_do_not_deadlock(self, ledger, chain, funded, reload):
        await funded(chain["A"], 100)
        await funded(chain["B"], 100)

        await asyncio.gather(
            ledger.transfer(chain["A"], chain["B"], Decimal("10")),
            ledger.transfer(chain["B"], chain["A"], Decimal("25")),
        )

        assert reload(chain["A"]).pointsBalance == Decimal("115")
        assert reload(chain["B"]).pointsBalance == Decimal("85")

    @pytest.mark.asyncio
    async def test_held_lock_raises_contention(self, ledger, locks, chain, funded, reload):
        await funded(chain["A"], 100)

        async with locks.hold([("ledger", chain["B"])]):
            with pytest.raises(Contention):
                await ledger.transfer(chain["A"], chain["B"], Decimal("10"))

        assert reload(chain["A"]).pointsBalance == Decimal("100")

    @pytest.mark.asyncio
    async def test_rows_locked_in_ascending_id_order(self, ledger, chain, funded, monkeypatch):
        await funded(chain["B"], 100)
        lockOrder = []
        lockMember = ledger._lockMember

        def recordingLock(memberId):
            lockOrder.append(memberId)
            return lockMember(memberId)

        monkeypatch.setattr(ledger, "_lockMember", recordingLock)

        # Points flow from the higher ID to the lower one
        result = await ledger.transfer(chain["B"], chain["A"], Decimal("10"))

        assert chain["A"] < chain["B"]
        assert lockOrder == [chain["A"], chain["B"]]
        assert result.fromBalanceAfter == Decimal("90")
        assert result.toBalanceAfter == Decimal("10")


# =============================================================================
# TEST CLASS: freeze / unfreeze / override
# =============================================================================

class TestFrozenPoints:

    @pytest.mark.asyncio
    async def test_freeze_reduces_available(self, ledger, chain, funded):
        await funded(chain["A"], 100)

        entry = await ledger.freeze(chain["A"], Decimal("80"))

        assert entry.delta == Decimal("0")
        assert entry.frozenDelta == Decimal("80")
        assert ledger.getBalance(chain["A"]) == {
            "balance": Decimal("100"),
            "frozen": Decimal("80"),
            "available": Decimal("20"),
        }

    @pytest.mark.asyncio
    async def test_transfer_cannot_use_frozen(self, ledger, chain, funded):
        await funded(chain["A"], 100)
        await ledger.freeze(chain["A"], Decimal("80"))

        with pytest.raises(InsufficientBalance):
            await ledger.transfer(chain["A"], chain["B"], Decimal("30"))

    @pytest.mark.asyncio
    async def test_freeze_beyond_available(self, ledger, chain, funded):
        await funded(chain["A"], 100)
        await ledger.freeze(chain["A"], Decimal("80"))

        with pytest.raises(InsufficientBalance):
            await ledger.freeze(chain["A"], Decimal("30"))

    @pytest.mark.asyncio
    async def test_unfreeze(self, ledger, chain, funded):
        await funded(chain["A"], 100)
        await ledger.freeze(chain["A"], Decimal("80"))

        await ledger.unfreeze(chain["A"], Decimal("50"))

        assert ledger.getBalance(chain["A"])["available"] == Decimal("70")

        with pytest.raises(InsufficientBalance):
            await ledger.unfreeze(chain["A"], Decimal("31"))

    @pytest.mark.asyncio
    async def test_adjustment_may_consume_frozen(self, ledger, chain, funded, reload):
        await funded(chain["A"], 100)
        await ledger.freeze(chain["A"], Decimal("80"))

        with pytest.raises(InsufficientBalance):
            await ledger.post(chain["A"], Decimal("-50"), LedgerReason.WITHDRAW)

        await ledger.post(chain["A"], Decimal("-50"), LedgerReason.ADJUSTMENT, notes="admin correction")

        assert reload(chain["A"]).pointsBalance == Decimal("50")

    @pytest.mark.asyncio
    async def test_adjustment_never_below_zero(self, ledger, chain, funded, reload):
        await funded(chain["A"], 100)

        with pytest.raises(InsufficientBalance):
            await ledger.post(chain["A"], Decimal("-101"), LedgerReason.ADJUSTMENT)

        assert reload(chain["A"]).pointsBalance == Decimal("100")


# =============================================================================
# TEST CLASS: replay / lookup
# =============================================================================

class TestReplay:

    @pytest.mark.asyncio
    async def test_replay_sums_to_balance(self, ledger, chain, funded, reload):
        await funded(chain["A"], 100)
        await ledger.transfer(chain["A"], chain["B"], Decimal("30"))
        await ledger.post(chain["A"], Decimal("12.50"), LedgerReason.COMMISSION)
        await ledger.transfer(chain["B"], chain["A"], Decimal("5"))

        for memberId in (chain["A"], chain["B"]):
            entries = list(ledger.replay(memberId))
            assert sum((e.delta for e in entries), Decimal("0")) == reload(memberId).pointsBalance

    @pytest.mark.asyncio
    async def test_replay_order(self, ledger, chain, funded):
        await funded(chain["A"], 100)
        await ledger.post(chain["A"], Decimal("-10"), LedgerReason.PURCHASE)
        await ledger.post(chain["A"], Decimal("5"), LedgerReason.REFUND)

        reasons = [e.reason for e in ledger.replay(chain["A"])]

        assert reasons == ["RECHARGE", "PURCHASE", "REFUND"]

    @pytest.mark.asyncio
    async def test_replay_empty(self, ledger, chain):
        assert list(ledger.replay(chain["R"])) == []

    def test_replay_unknown_member(self, ledger):
        with pytest.raises(MemberNotFound):
            ledger.replay(42)

    @pytest.mark.asyncio
    async def test_resolve_member(self, ledger, chain):
        assert ledger.resolveMember(chain["B"]).memberID == chain["B"]
        assert ledger.resolveMember("A001").memberID == chain["A"]
        assert ledger.resolveMember("13800000001").memberID == chain["B"]

        with pytest.raises(MemberNotFound):
            ledger.resolveMember("nobody")


# =============================================================================
# TEST CLASS: listener wiring
# =============================================================================

class TestListenerWiring:

    def test_service_installs_listeners(self, session, monkeypatch):
        calls = []
        monkeypatch.setattr(ledger_service, "register_all_listeners", lambda: calls.append("installed"))

        LedgerService(session)

        assert calls == ["installed"]

    def test_listeners_active_after_construction(self, session):
        LedgerService(session)

        assert listeners_registered()

    @pytest.mark.asyncio
    async def test_fresh_service_keeps_balance_in_step(self, session, chain, reload):
        ledger = LedgerService(session)

        await ledger.post(chain["B"], Decimal("80"), LedgerReason.RECHARGE)
        await ledger.post(chain["B"], Decimal("-30"), LedgerReason.PURCHASE)

        balance = reload(chain["B"]).pointsBalance
        assert balance == Decimal("50")
        assert sum(e.delta for e in ledger.replay(chain["B"])) == balance
