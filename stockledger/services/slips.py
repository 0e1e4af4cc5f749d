import logging
import secrets
import time
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from stockledger.config import settings
from stockledger.db import LedgerTx, ledger_tx
from stockledger.errors import (
    AssetMismatch, ItemNotFound, LedgerError, LocationNotFound, PropertyNotFound,
    RetryableConflict, SlipNotFound, TypeMismatch,
)
from stockledger.models.core import (
    AuditAction, EntityType, Item, Location, Property, Signature, Slip, SlipLine, SlipType,
)
from stockledger.schemas.slips import AssetLineIn, SignatureAddIn, SignatureIn, SlipIn, StockLineIn
from stockledger.services.assets import CAUSE_BY_SLIP_TYPE, AssetStateMachine
from stockledger.services.movements import movement_type_for, record_movement
from stockledger.services.returns import validate_return
from stockledger.services.stock import adjust, lock_balances
from stockledger.util.audit import audit, change_snapshot

logger = logging.getLogger(__name__)

SLIP_PREFIX = {
    SlipType.RECEIVE: "RCV",
    SlipType.ISSUE: "ISS",
    SlipType.RETURN: "RET",
    SlipType.TRANSFER: "TRF",
    SlipType.MAINT: "MNT",
}

_B36 = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"


def _base36(n: int) -> str:
    out = ""
    while True:
        n, r = divmod(n, 36)
        out = _B36[r] + out
        if n == 0:
            return out


def generate_slip_no(slip_type: SlipType) -> str:
    """e.g. ISS-LZ3K9Q2A-0042: type prefix, base36 epoch millis, random suffix."""
    ts = _base36(int(time.time() * 1000))
    return f"{SLIP_PREFIX[slip_type]}-{ts}-{secrets.randbelow(10_000):04d}"


def _unique_slip_no(db: Session, slip_type: SlipType) -> str:
    for _ in range(settings.SLIP_NO_ATTEMPTS):
        candidate = generate_slip_no(slip_type)
        if db.execute(select(Slip.id).where(Slip.slip_no == candidate)).first() is None:
            return candidate
    raise RetryableConflict("Could not allocate a unique slip number.", slip_type=slip_type.value)


def _check_references(db: Session, body: SlipIn) -> None:
    if db.get(Property, body.property_id) is None:
        raise PropertyNotFound("Property not found.", property_id=body.property_id)
    for location_id in (body.from_location_id, body.to_location_id):
        if location_id and db.get(Location, location_id) is None:
            raise LocationNotFound("Location not found.", location_id=location_id)


def _prelock(tx: LedgerTx, body: SlipIn, machine: AssetStateMachine) -> None:
    keys = []
    for line in body.stock_lines():
        keys.append((line.item_id, body.to_location_id))
        if body.slip_type != SlipType.RECEIVE:
            keys.append((line.item_id, body.from_location_id))
    lock_balances(tx.db, keys)
    machine.lock_all(line.asset_id for line in body.asset_lines())


def _load_item(db: Session, line: StockLineIn | AssetLineIn) -> Item:
    item = db.get(Item, line.item_id)
    if item is None:
        raise ItemNotFound("Selected item does not exist.", item_id=line.item_id)
    if item.item_type.value != line.item_type:
        raise TypeMismatch(
            "Submitted line type does not match item type.",
            item_id=item.id, item_type=item.item_type.value, declared=line.item_type,
        )
    return item


def _apply_stock_line(tx: LedgerTx, slip: Slip, line: StockLineIn, item: Item) -> None:
    qty = Decimal(line.qty)
    if slip.slip_type == SlipType.RECEIVE:
        # nothing to debit: stock enters the organisation here
        adjust(tx, item.id, slip.to_location_id, qty)
    else:
        adjust(tx, item.id, slip.from_location_id, -qty)
        adjust(tx, item.id, slip.to_location_id, qty)

    tx.db.add(SlipLine(slip_id=slip.id, item_id=item.id, qty=qty, notes=line.notes))
    record_movement(
        tx, movement_type_for(slip.slip_type), item.id,
        qty=qty, slip_id=slip.id,
        from_location_id=slip.from_location_id, to_location_id=slip.to_location_id,
        note=line.notes,
    )


def _apply_asset_line(tx: LedgerTx, machine: AssetStateMachine, slip: Slip,
                      line: AssetLineIn, item: Item) -> None:
    asset = machine.load(line.asset_id)
    if asset.item_id != item.id:
        raise AssetMismatch(
            "Selected asset does not match the line item.",
            asset_id=asset.id, item_id=item.id,
        )

    if slip.slip_type == SlipType.RETURN and line.condition_at_move is not None:
        next_condition = line.condition_at_move
    else:
        next_condition = asset.condition

    machine.transition(asset, slip.to_location_id, next_condition, CAUSE_BY_SLIP_TYPE[slip.slip_type])

    tx.db.add(SlipLine(
        slip_id=slip.id, item_id=item.id, asset_id=asset.id,
        condition_at_move=line.condition_at_move, notes=line.notes,
    ))
    record_movement(
        tx, movement_type_for(slip.slip_type), item.id,
        asset_id=asset.id, slip_id=slip.id,
        from_location_id=slip.from_location_id, to_location_id=slip.to_location_id,
        condition=next_condition, note=line.notes,
    )


def _attach_signature(tx: LedgerTx, slip_id: str, sig: SignatureIn) -> Signature:
    signature = Signature(
        slip_id=slip_id,
        signed_by_name=sig.signed_by_name,
        signed_by_user_id=sig.signed_by_user_id,
        method=sig.method,
    )
    tx.db.add(signature)
    tx.db.flush()
    return signature


def _create_slip(tx: LedgerTx, body: SlipIn) -> Slip:
    db = tx.db
    _check_references(db, body)

    if body.source_slip_id:
        validate_return(tx, body)

    machine = AssetStateMachine(tx)
    _prelock(tx, body, machine)

    slip = Slip(
        slip_no=_unique_slip_no(db, body.slip_type),
        slip_type=body.slip_type,
        property_id=body.property_id,
        from_location_id=body.from_location_id,
        to_location_id=body.to_location_id,
        department=body.department,
        requested_by_id=body.requested_by_id,
        issued_by_id=body.issued_by_id,
        received_by_id=body.received_by_id,
        created_by_id=tx.actor_user_id,
        vendor_id=body.vendor_id,
        source_slip_id=body.source_slip_id,
    )
    db.add(slip)
    db.flush()

    for line in body.lines:
        item = _load_item(db, line)
        if isinstance(line, StockLineIn):
            _apply_stock_line(tx, slip, line, item)
        else:
            _apply_asset_line(tx, machine, slip, line, item)

    if body.signature:
        _attach_signature(tx, slip.id, body.signature)

    audit(tx, EntityType.SLIP, slip.id, AuditAction.CREATE, after={
        "slip_no": slip.slip_no,
        "slip_type": slip.slip_type,
        "source_slip_id": body.source_slip_id,
        "line_count": len(body.lines),
        "has_signature": body.signature is not None,
        "changes": change_snapshot(tx),
    })
    db.flush()
    return slip


def create_slip(db: Session, body: SlipIn, actor_user_id: str) -> Slip:
    """Post one movement slip: every line lands or none does."""
    try:
        with ledger_tx(db, actor_user_id) as tx:
            slip = _create_slip(tx, body)
    except LedgerError as exc:
        logger.warning("%s slip rejected: %s %s", body.slip_type.value, exc.kind, exc.detail)
        raise
    logger.info("slip %s posted (%s, %d lines)", slip.slip_no, slip.slip_type.value, len(body.lines))
    return slip


def add_signature(db: Session, body: SignatureAddIn, actor_user_id: str) -> Signature:
    with ledger_tx(db, actor_user_id) as tx:
        slip = db.get(Slip, body.slip_id)
        if slip is None:
            raise SlipNotFound("Slip not found.", slip_id=body.slip_id)
        signature = _attach_signature(tx, slip.id, body)
        audit(tx, EntityType.SLIP, slip.id, AuditAction.UPDATE, after={
            "signature_id": signature.id,
            "method": signature.method,
            "signed_by_name": signature.signed_by_name,
        })
    return signature
