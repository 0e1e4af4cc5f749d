from decimal import Decimal

from stockledger.db import LedgerTx
from stockledger.models.core import Condition, MovementLog, MovementType, SlipType

MOVEMENT_BY_SLIP_TYPE = {
    SlipType.RECEIVE: MovementType.RECEIVE_IN,
    SlipType.ISSUE: MovementType.ISSUE_OUT,
    SlipType.RETURN: MovementType.RETURN_IN,
    SlipType.TRANSFER: MovementType.TRANSFER,
    SlipType.MAINT: MovementType.MAINT_OUT,
}


def movement_type_for(slip_type: SlipType) -> MovementType:
    return MOVEMENT_BY_SLIP_TYPE[slip_type]


def record_movement(
    tx: LedgerTx,
    movement_type: MovementType,
    item_id: str,
    *,
    asset_id: str | None = None,
    qty: Decimal | None = None,
    slip_id: str | None = None,
    ticket_id: str | None = None,
    from_location_id: str | None = None,
    to_location_id: str | None = None,
    condition: Condition | None = None,
    note: str | None = None,
) -> MovementLog:
    """Append one entry to the movement ledger. Entries are never updated."""
    entry = MovementLog(
        movement_type=movement_type, item_id=item_id, asset_id=asset_id, qty=qty,
        slip_id=slip_id, ticket_id=ticket_id,
        from_location_id=from_location_id, to_location_id=to_location_id,
        condition=condition, note=note,
    )
    tx.db.add(entry)
    return entry
