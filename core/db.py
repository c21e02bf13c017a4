# mlm-core/core/db.py
"""
Engine and sessions for the member / ledger store.

Every session handed out here has the ledger listeners registered, so
Member.pointsBalance/pointsFrozen follow the journal from the first insert.
SQLite URLs get foreign keys switched on; in-memory SQLite shares one
connection so all sessions see the same tables.
"""
import logging
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

from sqlalchemy import create_engine, event, inspect
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from config import Config
from models.base import Base
from models.listeners import register_all_listeners
from mlm_core.errors import MLMError

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///mlm_core.db"

_engine: Optional[Engine] = None
_SessionFactory: Optional[sessionmaker] = None


def _engine_options(database_url: str) -> Dict[str, Any]:
    url = make_url(database_url)
    if url.get_backend_name() != "sqlite":
        return {"pool_pre_ping": True}

    options: Dict[str, Any] = {"connect_args": {"check_same_thread": False}}
    if url.database in (None, "", ":memory:"):
        options["poolclass"] = StaticPool
    return options


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    # ledger_entries.memberID and members.parentID must point at real members
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def get_engine() -> Engine:
    """Engine for Config.DATABASE_URL, created on first use."""
    global _engine
    if _engine is None:
        database_url = Config.get(Config.DATABASE_URL) or DEFAULT_DATABASE_URL
        _engine = create_engine(database_url, echo=False, **_engine_options(database_url))

        if _engine.dialect.name == "sqlite":
            event.listen(_engine, "connect", _enable_sqlite_foreign_keys)

        logger.info(f"Database engine created: {_engine.url.render_as_string(hide_password=True)}")
    return _engine


def get_session_factory() -> sessionmaker:
    """Session factory bound to the engine; registers ledger listeners first."""
    global _SessionFactory
    if _SessionFactory is None:
        register_all_listeners()
        _SessionFactory = sessionmaker(bind=get_engine())
        logger.info("Session factory created")
    return _SessionFactory


def get_session() -> Session:
    return get_session_factory()()


def reset_engine():
    """Dispose the cached engine so the next call picks up a new DATABASE_URL."""
    global _engine, _SessionFactory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionFactory = None


@contextmanager
def get_db_session_ctx():
    """
    Unit of work: commit on success, roll back on any exception.

    Domain errors (InsufficientBalance, DuplicateEvent, ...) are expected
    outcomes and logged at info; anything else is logged at error.

    Usage:
        with get_db_session_ctx() as session:
            await LedgerService(session).post(memberId, delta, reason)
    """
    session = get_session()
    try:
        yield session
        session.commit()
    except MLMError as e:
        session.rollback()
        logger.info(f"Unit of work rolled back: {type(e).__name__}: {e}")
        raise
    except Exception as e:
        session.rollback()
        logger.error(f"Database error, unit of work rolled back: {e}", exc_info=True)
        raise
    finally:
        session.close()


def setup_database() -> List[str]:
    """
    Create member, ledger, sale-event and tier-history tables.

    Returns:
        Table names present after setup
    """
    # Register every mapped class on Base.metadata
    import models  # noqa: F401

    register_all_listeners()

    engine = get_engine()
    Base.metadata.create_all(engine)

    tables = sorted(inspect(engine).get_table_names())
    logger.info(f"Database ready: {', '.join(tables)}")
    return tables


def drop_all_tables():
    """Drop all tables - USE WITH CAUTION!"""
    engine = get_engine()
    logger.warning(f"Dropping all tables on {engine.url.render_as_string(hide_password=True)}")
    Base.metadata.drop_all(engine)
