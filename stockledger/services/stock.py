import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from stockledger.db import LedgerTx
from stockledger.errors import InvariantViolation
from stockledger.models.common import utcnow
from stockledger.models.core import StockBalance

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

# dialects with INSERT ... ON CONFLICT DO NOTHING
_UPSERT = {"postgresql": postgresql.insert, "sqlite": sqlite.insert}


@dataclass(frozen=True)
class BalanceChange:
    item_id: str
    location_id: str
    before: Decimal
    after: Decimal

    def as_dict(self) -> dict:
        return {
            "kind": "balance",
            "item_id": self.item_id,
            "location_id": self.location_id,
            "before": self.before,
            "after": self.after,
        }


def get_balance(db: Session, item_id: str, location_id: str) -> Decimal:
    qty = db.execute(
        select(StockBalance.qty_on_hand)
        .where(StockBalance.item_id == item_id, StockBalance.location_id == location_id)
    ).scalar_one_or_none()
    return Decimal(qty) if qty is not None else ZERO


def lock_balance(db: Session, item_id: str, location_id: str) -> StockBalance | None:
    stmt = (
        select(StockBalance)
        .where(StockBalance.item_id == item_id, StockBalance.location_id == location_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return db.execute(stmt).scalar_one_or_none()


def lock_balances(db: Session, keys: Iterable[tuple[str, str]]) -> None:
    """Lock existing (item, location) rows in a fixed order so two slips that
    touch the same balances cannot deadlock on each other."""
    for item_id, location_id in sorted(set(keys)):
        lock_balance(db, item_id, location_id)


def _create_empty(db: Session, item_id: str, location_id: str) -> StockBalance:
    upsert = _UPSERT.get(db.get_bind().dialect.name)
    if upsert is None:
        row = StockBalance(item_id=item_id, location_id=location_id, qty_on_hand=ZERO)
        db.add(row)
        db.flush()
        return row
    now = utcnow()
    db.execute(
        upsert(StockBalance)
        .values(id=str(uuid.uuid4()), item_id=item_id, location_id=location_id,
                qty_on_hand=ZERO, version=1, created_at=now, updated_at=now)
        .on_conflict_do_nothing(index_elements=["item_id", "location_id"])
    )
    # whoever won the insert race, we now hold the lock on the single row
    return lock_balance(db, item_id, location_id)


def adjust(tx: LedgerTx, item_id: str, location_id: str, delta: Decimal) -> BalanceChange:
    """Apply a signed quantity delta to one (item, location) balance.

    Raises InvariantViolation if the balance would drop below zero; the caller's
    transaction is then rolled back as a whole.
    """
    db = tx.db
    row = lock_balance(db, item_id, location_id)
    current = Decimal(row.qty_on_hand) if row is not None else ZERO
    nxt = current + delta
    if nxt < 0:
        raise InvariantViolation(
            "Stock cannot go negative for the source location.",
            item_id=item_id, location_id=location_id,
            on_hand=str(current), delta=str(delta),
        )
    if row is None:
        row = _create_empty(db, item_id, location_id)
    row.qty_on_hand = nxt
    db.flush()

    change = BalanceChange(item_id=item_id, location_id=location_id, before=current, after=nxt)
    tx.record(change)
    logger.debug("balance %s@%s: %s -> %s", item_id, location_id, current, nxt)
    return change
