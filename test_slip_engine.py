# test_slip_engine.py
import json
import re
from decimal import Decimal

import pytest
from pydantic import ValidationError
from sqlalchemy import select

from stockledger.errors import (
    AssetMismatch, IneligibleAssetState, InvariantViolation, ItemNotFound,
    LocationNotFound, PropertyNotFound, RetryableConflict, SlipNotFound, TypeMismatch,
)
from stockledger.models import (
    Asset, AuditAction, AuditEvent, Condition, DepartmentType, EntityType, MovementLog, MovementType,
    Signature, SignatureMethod, Slip, SlipLine, SlipType,
)
from stockledger.schemas.slips import SignatureAddIn
from stockledger.services import slips as slip_service
from stockledger.services.slips import add_signature, generate_slip_no
from stockledger.services.stock import get_balance


def stock(item_id, qty, **kw):
    return {"item_type": "STOCK", "item_id": item_id, "qty": qty, **kw}


def asset(item_id, asset_id, **kw):
    return {"item_type": "ASSET", "item_id": item_id, "asset_id": asset_id, **kw}


def slip_audits(db, slip_id):
    return db.execute(
        select(AuditEvent).where(AuditEvent.entity_type == EntityType.SLIP, AuditEvent.entity_id == slip_id)
        .order_by(AuditEvent.seq)
    ).scalars().all()


# ── stock lines ─────────────────────────────────────────────────────────────
def test_issue_debits_store_and_credits_department(db, seed, post_slip, count):
    slip = post_slip(SlipType.ISSUE, [stock(seed.bulb, "10")],
                     from_location_id=seed.store, to_location_id=seed.kitchen)

    assert get_balance(db, seed.bulb, seed.store) == Decimal("40")
    assert get_balance(db, seed.bulb, seed.kitchen) == Decimal("10")
    moves = db.execute(select(MovementLog).where(MovementLog.slip_id == slip.id)).scalars().all()
    assert len(moves) == 1
    m = moves[0]
    assert m.movement_type == MovementType.ISSUE_OUT
    assert m.qty == Decimal("10")
    assert (m.from_location_id, m.to_location_id) == (seed.store, seed.kitchen)
    assert count(SlipLine, SlipLine.slip_id == slip.id) == 1


def test_over_issue_fails_and_leaves_store_untouched(db, seed, post_slip, count):
    with pytest.raises(InvariantViolation) as ei:
        post_slip(SlipType.ISSUE, [stock(seed.bulb, 60)],
                  from_location_id=seed.store, to_location_id=seed.kitchen)
    assert ei.value.detail["item_id"] == seed.bulb
    assert get_balance(db, seed.bulb, seed.store) == Decimal("50")
    assert get_balance(db, seed.bulb, seed.kitchen) == 0
    assert count(Slip) == 0
    assert count(MovementLog) == 0
    assert count(AuditEvent) == 0


def test_failing_later_line_rolls_back_earlier_lines(db, seed, post_slip, count):
    with pytest.raises(InvariantViolation):
        post_slip(SlipType.ISSUE, [
            stock(seed.bulb, 5),
            asset(seed.chair, seed.chair_a),
            stock(seed.soap, 4),  # only 3 on hand
        ], from_location_id=seed.store, to_location_id=seed.kitchen)

    assert get_balance(db, seed.bulb, seed.store) == Decimal("50")
    assert get_balance(db, seed.soap, seed.store) == Decimal("3")
    chair = db.get(Asset, seed.chair_a)
    assert chair.current_location_id == seed.store
    assert count(Slip) == 0 and count(SlipLine) == 0 and count(MovementLog) == 0


def test_receive_credits_destination_only(db, seed, post_slip):
    slip = post_slip(SlipType.RECEIVE, [stock(seed.bulb, "12.50"), stock(seed.soap, 1)],
                     to_location_id=seed.store)
    assert slip.slip_no.startswith("RCV-")
    assert get_balance(db, seed.bulb, seed.store) == Decimal("62.50")
    assert get_balance(db, seed.soap, seed.store) == Decimal("4")
    moves = db.execute(select(MovementLog).where(MovementLog.slip_id == slip.id)).scalars().all()
    assert {m.movement_type for m in moves} == {MovementType.RECEIVE_IN}
    assert all(m.from_location_id is None for m in moves)


def test_transfer_moves_stock_between_locations(db, seed, post_slip):
    post_slip(SlipType.TRANSFER, [stock(seed.bulb, 50)],
              from_location_id=seed.store, to_location_id=seed.laundry)
    assert get_balance(db, seed.bulb, seed.store) == 0
    assert get_balance(db, seed.bulb, seed.laundry) == Decimal("50")
    assert db.scalar(select(MovementLog.movement_type)) == MovementType.TRANSFER


def test_repeated_item_lines_are_applied_in_order(db, seed, post_slip):
    with pytest.raises(InvariantViolation):
        post_slip(SlipType.ISSUE, [stock(seed.soap, 2), stock(seed.soap, 2)],
                  from_location_id=seed.store, to_location_id=seed.kitchen)
    assert get_balance(db, seed.soap, seed.store) == Decimal("3")


# ── asset lines ─────────────────────────────────────────────────────────────
def test_issue_asset_then_issue_again_from_new_location(db, seed, post_slip):
    post_slip(SlipType.ISSUE, [asset(seed.chair, seed.chair_a)],
              from_location_id=seed.store, to_location_id=seed.kitchen)
    chair = db.get(Asset, seed.chair_a)
    assert chair.current_location_id == seed.kitchen
    assert chair.condition == Condition.GOOD

    post_slip(SlipType.ISSUE, [asset(seed.chair, seed.chair_a)],
              from_location_id=seed.kitchen, to_location_id=seed.laundry)
    assert db.get(Asset, seed.chair_a).current_location_id == seed.laundry


def test_scrapped_asset_is_not_issued(db, seed, post_slip, count):
    with pytest.raises(IneligibleAssetState):
        post_slip(SlipType.ISSUE, [asset(seed.chair, seed.chair_s)],
                  from_location_id=seed.store, to_location_id=seed.kitchen)
    assert count(Slip) == 0


def test_asset_movement_records_resulting_condition(db, seed, post_slip):
    slip = post_slip(SlipType.TRANSFER, [asset(seed.chair, seed.chair_b, notes="banquet hall")],
                     from_location_id=seed.store, to_location_id=seed.laundry)
    m = db.execute(select(MovementLog).where(MovementLog.slip_id == slip.id)).scalar_one()
    assert m.asset_id == seed.chair_b
    assert m.qty is None
    assert m.condition == Condition.NEW
    assert m.note == "banquet hall"


def test_maint_slip_sends_asset_out_for_repair(db, seed, post_slip):
    slip = post_slip(SlipType.MAINT, [asset(seed.kettle, seed.kettle_k)],
                     from_location_id=seed.kitchen, to_location_id=seed.store,
                     department=DepartmentType.ELECTRICAL)
    assert slip.slip_no.startswith("MNT-")
    m = db.execute(select(MovementLog).where(MovementLog.slip_id == slip.id)).scalar_one()
    assert m.movement_type == MovementType.MAINT_OUT
    assert (m.from_location_id, m.to_location_id) == (seed.kitchen, seed.store)
    kettle = db.get(Asset, seed.kettle_k)
    assert kettle.current_location_id == seed.store
    assert kettle.condition == Condition.GOOD


def test_receive_of_existing_asset_only_moves_it(db, seed, post_slip):
    slip = post_slip(SlipType.RECEIVE, [asset(seed.kettle, seed.kettle_k)], to_location_id=seed.laundry)
    m = db.execute(select(MovementLog).where(MovementLog.slip_id == slip.id)).scalar_one()
    assert m.movement_type == MovementType.RECEIVE_IN
    assert m.from_location_id is None and m.condition == Condition.GOOD
    kettle = db.get(Asset, seed.kettle_k)
    assert kettle.current_location_id == seed.laundry
    assert kettle.condition == Condition.GOOD


def test_asset_of_another_item_is_rejected(db, seed, post_slip):
    with pytest.raises(AssetMismatch):
        post_slip(SlipType.ISSUE, [asset(seed.chair, seed.kettle_k)],
                  from_location_id=seed.kitchen, to_location_id=seed.laundry)


@pytest.mark.parametrize("line_of", [
    lambda s: stock(s.chair, 1),
    lambda s: asset(s.bulb, s.chair_a),
])
def test_declared_line_type_must_match_item(db, seed, post_slip, line_of):
    with pytest.raises(TypeMismatch):
        post_slip(SlipType.ISSUE, [line_of(seed)],
                  from_location_id=seed.store, to_location_id=seed.kitchen)


def test_unknown_item(db, seed, post_slip):
    with pytest.raises(ItemNotFound):
        post_slip(SlipType.RECEIVE, [stock("no-such-item", 1)], to_location_id=seed.store)


def test_unknown_property_and_location(db, seed, post_slip):
    with pytest.raises(PropertyNotFound):
        post_slip(SlipType.RECEIVE, [stock(seed.bulb, 1)], to_location_id=seed.store,
                  property_id="no-such-property")
    with pytest.raises(LocationNotFound) as ei:
        post_slip(SlipType.ISSUE, [stock(seed.bulb, 1)],
                  from_location_id=seed.store, to_location_id="nowhere")
    assert ei.value.to_dict()["location_id"] == "nowhere"


# ── input validation ────────────────────────────────────────────────────────
@pytest.mark.parametrize("slip_type,lines,kw", [
    (SlipType.ISSUE, [], {"from_location_id": "a"}),
    (SlipType.ISSUE, [{"item_type": "STOCK", "item_id": "x", "qty": 0}], {"from_location_id": "a"}),
    (SlipType.ISSUE, [{"item_type": "STOCK", "item_id": "x", "qty": "1.005"}], {"from_location_id": "a"}),
    (SlipType.ISSUE, [{"item_type": "STOCK", "item_id": "x", "qty": 1, "asset_id": "y"}], {"from_location_id": "a"}),
    (SlipType.ISSUE, [{"item_type": "ASSET", "item_id": "x"}], {"from_location_id": "a"}),
    (SlipType.ISSUE, [{"item_type": "STOCK", "item_id": "x", "qty": 1}], {}),
    (SlipType.ISSUE, [{"item_type": "STOCK", "item_id": "x", "qty": 1}],
     {"from_location_id": "a", "source_slip_id": "s"}),
    (SlipType.TRANSFER, [{"item_type": "ASSET", "item_id": "x", "asset_id": "y", "condition_at_move": "WORN"}],
     {"from_location_id": "a"}),
])
def test_malformed_slips_are_rejected_before_any_write(db, seed, post_slip, count, slip_type, lines, kw):
    with pytest.raises(ValidationError):
        post_slip(slip_type, lines, to_location_id=seed.kitchen, **kw)
    assert count(Slip) == 0


# ── numbering, audit, signatures ────────────────────────────────────────────
def test_slip_numbers_carry_type_prefix():
    assert re.fullmatch(r"ISS-[0-9A-Z]+-\d{4}", generate_slip_no(SlipType.ISSUE))
    assert generate_slip_no(SlipType.MAINT).startswith("MNT-")
    assert generate_slip_no(SlipType.RETURN).startswith("RET-")


def test_slip_number_allocation_gives_up_after_bounded_attempts(db, seed, post_slip, monkeypatch, count):
    first = post_slip(SlipType.RECEIVE, [stock(seed.bulb, 1)], to_location_id=seed.store)
    monkeypatch.setattr(slip_service, "generate_slip_no", lambda slip_type: first.slip_no)
    with pytest.raises(RetryableConflict):
        post_slip(SlipType.RECEIVE, [stock(seed.bulb, 1)], to_location_id=seed.store)
    assert count(Slip) == 1
    assert get_balance(db, seed.bulb, seed.store) == Decimal("51")


def test_slip_creation_writes_one_audit_event_with_changes(db, seed, post_slip, actor):
    slip = post_slip(SlipType.ISSUE, [stock(seed.bulb, 10), asset(seed.chair, seed.chair_a)],
                     from_location_id=seed.store, to_location_id=seed.kitchen)
    events = slip_audits(db, slip.id)
    assert len(events) == 1
    ev = events[0]
    assert ev.action == AuditAction.CREATE
    assert ev.created_by_id == actor
    assert ev.old_value is None
    body = json.loads(ev.new_value)
    assert body["slip_no"] == slip.slip_no
    assert body["slip_type"] == "ISSUE"
    assert body["line_count"] == 2
    assert body["has_signature"] is False

    balances = [c for c in body["changes"] if c["kind"] == "balance"]
    assets = [c for c in body["changes"] if c["kind"] == "asset"]
    assert {(c["location_id"], Decimal(c["before"]), Decimal(c["after"])) for c in balances} == {
        (seed.store, Decimal("50"), Decimal("40")),
        (seed.kitchen, Decimal("0"), Decimal("10")),
    }
    assert assets == [{
        "kind": "asset", "asset_id": seed.chair_a,
        "from_location_id": seed.store, "to_location_id": seed.kitchen,
        "from_condition": "GOOD", "to_condition": "GOOD", "cause": "SLIP_ISSUE",
    }]


def test_signature_on_creation_and_added_later(db, seed, post_slip, actor, count):
    slip = post_slip(SlipType.ISSUE, [stock(seed.bulb, 1)],
                     from_location_id=seed.store, to_location_id=seed.kitchen,
                     signature={"signed_by_name": "Ravi Kumar"})
    assert json.loads(slip_audits(db, slip.id)[0].new_value)["has_signature"] is True

    sig = add_signature(db, SignatureAddIn(slip_id=slip.id, signed_by_name="Chef Anna",
                                           method=SignatureMethod.DRAWN), actor)
    assert sig.slip_id == slip.id
    assert count(Signature, Signature.slip_id == slip.id) == 2

    events = slip_audits(db, slip.id)
    assert [e.action for e in events] == [AuditAction.CREATE, AuditAction.UPDATE]
    update = json.loads(events[1].new_value)
    assert update == {"signature_id": sig.id, "method": "DRAWN", "signed_by_name": "Chef Anna"}


def test_signature_needs_an_existing_slip(db, seed, actor, count):
    with pytest.raises(SlipNotFound):
        add_signature(db, SignatureAddIn(slip_id="missing", signed_by_name="Someone"), actor)
    assert count(Signature) == 0
