# tests/conftest.py
"""
Pytest configuration and shared fixtures for MLM core tests.

Every test gets a fresh in-memory SQLite database, a fresh lock registry
and a small tier catalog:

    tier 1: target 0      commission 5%
    tier 2: target 5000   commission 10%
    tier 3: target 15000  commission 15%

Run:
    pytest tests -v
"""
import os
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("DATABASE_URL", "sqlite://")

from config import Config
from models import Base, Member
from mlm_core.config.tiers import TierCatalog
from mlm_core.services.aggregation_service import AggregationService
from mlm_core.services.commission_service import CommissionService
from mlm_core.services.ledger_service import LedgerService
from mlm_core.services.reconciliation_service import ReconciliationService
from mlm_core.services.tree_service import TreeService
from mlm_core.utils.locks import LockRegistry

# =============================================================================
# INITIALIZE CONFIG
# =============================================================================

Config.initialize_from_env()

# =============================================================================
# CONSTANTS
# =============================================================================

TEST_TIERS = [
    {"tierId": 1, "name": "Member", "purchaseDiscount": "0.10", "monthlyTarget": "0",
     "commissionRate": "0.05"},
    {"tierId": 2, "name": "Manager", "purchaseDiscount": "0.20", "monthlyTarget": "5000",
     "commissionRate": "0.10"},
    {"tierId": 3, "name": "Director", "purchaseDiscount": "0.30", "monthlyTarget": "15000",
     "commissionRate": "0.15"},
]


# =============================================================================
# CONFIG FIXTURES
# =============================================================================

@pytest.fixture(autouse=True)
def tier_settings():
    """Restore tier settings changed by a test."""
    saved = {
        key: Config.get(key)
        for key in (Config.TIER_METRIC, Config.TIER_ALLOW_DOWNGRADE)
    }
    yield
    for key, value in saved.items():
        Config.set(key, value, source="test teardown")


# =============================================================================
# DATABASE FIXTURES
# =============================================================================

@pytest.fixture
def engine():
    """Fresh in-memory database per test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session(engine):
    """Create database session for each test."""
    Session = sessionmaker(bind=engine)
    session = Session()
    yield session
    session.close()


# =============================================================================
# SERVICE FIXTURES
# =============================================================================

@pytest.fixture
def catalog():
    return TierCatalog.from_dicts(TEST_TIERS)


@pytest.fixture
def locks():
    """Short timeout so contention tests fail fast."""
    return LockRegistry(timeout=0.2)


@pytest.fixture
def tree(session, catalog):
    return TreeService(session, catalog=catalog)


@pytest.fixture
def aggregation(session, catalog, locks):
    return AggregationService(session, catalog=catalog, locks=locks)


@pytest.fixture
def ledger(session, locks):
    return LedgerService(session, locks=locks)


@pytest.fixture
def commissions(session, catalog, locks):
    return CommissionService(session, catalog=catalog, locks=locks)


@pytest.fixture
def reconciliation(session):
    return ReconciliationService(session)


# =============================================================================
# TREE FIXTURES
# =============================================================================

@pytest_asyncio.fixture
async def chain(tree):
    """
    Three-level chain R -> A -> B.

    Returns dict {'R': id, 'A': id, 'B': id}.
    """
    rootId = await tree.addMember(None, {"memberNumber": "R001", "nickname": "root"})
    aId = await tree.addMember(rootId, {"memberNumber": "A001", "nickname": "alice"})
    bId = await tree.addMember(aId, {"memberNumber": "B001", "nickname": "bob", "phone": "13800000001"})
    return {"R": rootId, "A": aId, "B": bId}


@pytest.fixture
def reload(session):
    """Re-read a member from the database, bypassing the identity map."""

    def _reload(memberId: int) -> Member:
        return session.query(Member).filter_by(
            memberID=memberId
        ).populate_existing().one()

    return _reload


@pytest.fixture
def funded(ledger):
    """Credit a member with points via a RECHARGE entry."""
    from models.ledger_entry import LedgerReason

    async def _fund(memberId: int, amount) -> None:
        await ledger.post(memberId, Decimal(str(amount)), LedgerReason.RECHARGE, notes="test funding")

    return _fund
