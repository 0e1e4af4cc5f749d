import json
from datetime import datetime
from decimal import Decimal
from enum import Enum

from stockledger.db import LedgerTx
from stockledger.models.core import AuditAction, AuditEvent, EntityType


def _encode(v):
    if isinstance(v, Decimal):
        return str(v)
    if isinstance(v, Enum):
        return v.value
    if isinstance(v, datetime):
        return v.isoformat()
    raise TypeError(f"not JSON serializable: {type(v).__name__}")


def _dump(value: dict | None) -> str | None:
    return json.dumps(value, default=_encode, sort_keys=True) if value is not None else None


def audit(tx: LedgerTx, entity: EntityType, entity_id: str, action: AuditAction,
          before: dict | None = None, after: dict | None = None) -> AuditEvent:
    entry = AuditEvent(
        entity_type=entity, entity_id=entity_id, action=action,
        old_value=_dump(before), new_value=_dump(after),
        created_by_id=tx.actor_user_id,
    )
    tx.db.add(entry)
    return entry


def change_snapshot(tx: LedgerTx) -> list[dict]:
    """Old/new values of every balance and asset touched in this transaction."""
    return [c.as_dict() for c in tx.changes]
