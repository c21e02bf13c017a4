# mlm_core/__init__.py
"""
MLM core - referral tree, team aggregation, tier catalog and points ledger.
"""

# Services
from mlm_core.services.tree_service import TreeService
from mlm_core.services.aggregation_service import AggregationService
from mlm_core.services.ledger_service import LedgerService, TransferResult
from mlm_core.services.commission_service import CommissionService
from mlm_core.services.reconciliation_service import ReconciliationService

# Models and configuration
from mlm_core.config.tiers import TierDefinition, TierCatalog, TIER_CATALOG
from mlm_core.config.plans import ShopPurchasePlan, WUTONG_SHOP_PLAN

# Errors
from mlm_core.errors import (
    MLMError,
    MemberNotFound,
    InvalidParent,
    DuplicateEvent,
    InvariantViolation,
    InsufficientBalance,
    Contention,
)

__all__ = [
    # Services
    'TreeService',
    'AggregationService',
    'LedgerService',
    'TransferResult',
    'CommissionService',
    'ReconciliationService',

    # Config
    'TierDefinition',
    'TierCatalog',
    'TIER_CATALOG',
    'ShopPurchasePlan',
    'WUTONG_SHOP_PLAN',

    # Errors
    'MLMError',
    'MemberNotFound',
    'InvalidParent',
    'DuplicateEvent',
    'InvariantViolation',
    'InsufficientBalance',
    'Contention',
]
