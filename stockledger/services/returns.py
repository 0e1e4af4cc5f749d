from collections import defaultdict
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from stockledger.db import LedgerTx
from stockledger.errors import AssetNotInSource, InvalidReturnSource, OverReturn, SlipNotFound
from stockledger.models.core import Item, ItemType, Slip, SlipLine, SlipType
from stockledger.schemas.slips import SlipIn

ZERO = Decimal("0")


def _issued(db: Session, source_slip_id: str) -> tuple[dict[str, Decimal], set[str]]:
    """Stock quantity per item and the set of asset ids moved by the source slip."""
    rows = db.execute(
        select(SlipLine.item_id, SlipLine.asset_id, SlipLine.qty, Item.item_type)
        .join(Item, Item.id == SlipLine.item_id)
        .where(SlipLine.slip_id == source_slip_id)
    ).all()
    qty_by_item: dict[str, Decimal] = defaultdict(Decimal)
    asset_ids: set[str] = set()
    for item_id, asset_id, qty, item_type in rows:
        if item_type == ItemType.STOCK and qty is not None:
            qty_by_item[item_id] += Decimal(qty)
        elif item_type == ItemType.ASSET and asset_id:
            asset_ids.add(asset_id)
    return qty_by_item, asset_ids


def _already_returned(db: Session, source_slip_id: str) -> dict[str, Decimal]:
    rows = db.execute(
        select(SlipLine.item_id, func.sum(SlipLine.qty))
        .join(Slip, Slip.id == SlipLine.slip_id)
        .where(
            Slip.source_slip_id == source_slip_id,
            Slip.slip_type == SlipType.RETURN,
            SlipLine.qty.is_not(None),
        )
        .group_by(SlipLine.item_id)
    ).all()
    return {item_id: Decimal(str(total)) for item_id, total in rows if total is not None}


def validate_return(tx: LedgerTx, body: SlipIn) -> Slip:
    """Check a RETURN slip against the ISSUE slip it references.

    The source slip row is locked for the rest of the transaction, so two
    returns against the same issue are checked one after the other and the
    quantities they return together can never exceed what was issued.
    """
    db = tx.db
    source = db.execute(
        select(Slip).where(Slip.id == body.source_slip_id).with_for_update()
    ).scalar_one_or_none()
    if source is None:
        raise SlipNotFound("Selected source issue slip does not exist.", slip_id=body.source_slip_id)
    if source.slip_type != SlipType.ISSUE:
        raise InvalidReturnSource(
            "Only ISSUE slips can be used as a source for returns.",
            source_slip_id=source.id, slip_type=source.slip_type.value,
        )
    if source.property_id != body.property_id:
        raise InvalidReturnSource(
            "Return property must match the source issue slip property.",
            source_slip_id=source.id, property_id=body.property_id,
        )
    if body.from_location_id != source.to_location_id or body.to_location_id != source.from_location_id:
        raise InvalidReturnSource(
            "Return locations must reverse the original issue locations.",
            source_slip_id=source.id,
            from_location_id=body.from_location_id, to_location_id=body.to_location_id,
        )

    issued_qty, issued_assets = _issued(db, source.id)
    returned_qty = _already_returned(db, source.id)

    requested: dict[str, Decimal] = defaultdict(Decimal)
    for line in body.stock_lines():
        requested[line.item_id] += line.qty

    for item_id, qty in requested.items():
        issued = issued_qty.get(item_id, ZERO)
        prior = returned_qty.get(item_id, ZERO)
        if prior + qty > issued:
            raise OverReturn(
                "Return quantity cannot exceed quantity issued in the source slip.",
                source_slip_id=source.id, item_id=item_id,
                issued=str(issued), already_returned=str(prior), requested=str(qty),
            )

    for line in body.asset_lines():
        if line.asset_id not in issued_assets:
            raise AssetNotInSource(
                "Selected asset was not part of the source issue slip.",
                source_slip_id=source.id, asset_id=line.asset_id,
            )
    return source
