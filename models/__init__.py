"""
Database models for the MLM core.
Import all models here for easy access.
"""

# Base and mixins
from models.base import Base, AuditMixin

# Core models
from models.member import Member
from models.ledger_entry import LedgerEntry, LedgerReason
from models.sale_event import SaleEvent
from models.tier_history import TierHistory

# Event listeners
from models.listeners import register_all_listeners

__all__ = [
    # Base
    'Base',
    'AuditMixin',

    # Core
    'Member',
    'LedgerEntry',
    'LedgerReason',
    'SaleEvent',
    'TierHistory',

    # Listeners
    'register_all_listeners',
]
