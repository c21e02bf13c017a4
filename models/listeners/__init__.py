"""
Ledger listeners - keep Member points in step with the journal.

Installed by core.db (session factory / setup_database) and by every
LedgerService, so no caller has to remember a startup hook:

    ledger_listeners.register_ledger_listeners
        LedgerEntry INSERT → Member.pointsBalance/pointsFrozen = journal SUMs
    ledger_listeners.register_ledger_protection
        LedgerEntry UPDATE/DELETE → InvariantViolation;
        direct Member.pointsBalance writes → warning
"""
import logging

logger = logging.getLogger(__name__)

_installed = False


def listeners_registered() -> bool:
    """True once the ledger listeners are attached to the mappers."""
    return _installed


def register_all_listeners():
    """
    Attach points-sync and append-only listeners to LedgerEntry/Member.

    Idempotent: SQLAlchemy would fire a listener twice if it were
    attached twice, so repeated calls are no-ops.
    """
    global _installed

    if _installed:
        return

    from models.listeners.ledger_listeners import (
        register_ledger_listeners,
        register_ledger_protection
    )

    register_ledger_listeners()
    register_ledger_protection()

    _installed = True
    logger.info("Ledger listeners installed: points sync on insert, journal append-only")
