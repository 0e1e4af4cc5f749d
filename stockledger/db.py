import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from stockledger.config import settings
from stockledger.errors import RetryableConflict

logger = logging.getLogger(__name__)

# lock_not_available, serialization_failure, deadlock_detected, query_canceled
_RETRYABLE_SQLSTATES = {"55P03", "40001", "40P01", "57014"}


class Base(DeclarativeBase):
    pass


def make_engine(url: str, **kw) -> Engine:
    eng = create_engine(url, **kw)
    if eng.dialect.name == "sqlite":
        @event.listens_for(eng, "connect")
        def _sqlite_fk(dbapi_conn, _rec):
            cur = dbapi_conn.cursor()
            cur.execute("PRAGMA foreign_keys=ON")
            cur.close()
    return eng


engine = make_engine(settings.DB_URL, echo=settings.DB_ECHO, pool_pre_ping=True)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


# ── Transaction context ─────────────────────────────────────────────────────
@dataclass
class LedgerTx:
    """One ledger operation: the session it writes through, who is acting,
    and every balance/asset change applied so far (snapshotted by the audit
    writer)."""
    db: Session
    actor_user_id: str
    changes: list = field(default_factory=list)

    def record(self, change) -> None:
        self.changes.append(change)

    def changes_of(self, kind: type) -> list:
        return [c for c in self.changes if isinstance(c, kind)]


def _apply_timeouts(db: Session) -> None:
    if db.get_bind().dialect.name != "postgresql":
        return
    # SET does not take bind parameters
    db.execute(text(f"SET LOCAL lock_timeout = {int(settings.LOCK_TIMEOUT_MS)}"))
    db.execute(text(f"SET LOCAL statement_timeout = {int(settings.STATEMENT_TIMEOUT_MS)}"))


def _is_retryable(exc: Exception) -> bool:
    if isinstance(exc, StaleDataError):
        return True
    orig = getattr(exc, "orig", None)
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if code in _RETRYABLE_SQLSTATES:
        return True
    return "database is locked" in str(orig or exc)


@contextmanager
def ledger_tx(db: Session, actor_user_id: str) -> Iterator[LedgerTx]:
    """Run one ledger operation atomically: commit on success, roll back
    everything on any error. Lock waits and version conflicts surface as
    RetryableConflict; the caller decides whether to retry."""
    tx = LedgerTx(db=db, actor_user_id=actor_user_id)
    try:
        _apply_timeouts(db)
        yield tx
        db.commit()
    except (OperationalError, StaleDataError) as exc:
        db.rollback()
        if _is_retryable(exc):
            logger.warning("ledger transaction conflict, rolled back: %s", exc)
            raise RetryableConflict(str(exc)) from exc
        raise
    except Exception:
        db.rollback()
        raise
