"""Maintenance tickets: one open repair episode per asset.

Opening a ticket puts the asset UNDER_MAINTENANCE and writes a MAINT_OUT
movement; closing it sets the final condition and writes MAINT_IN. Status
updates only touch the ticket and its log, including an update straight to
CLOSED or SCRAPPED, which ends the ticket without touching the asset.
"""
import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from stockledger.db import LedgerTx, ledger_tx
from stockledger.errors import (
    AssetScrapped, DuplicateOpenTicket, InvalidTransition, LedgerError,
    TicketClosed, TicketNotFound, TicketScrapped,
)
from stockledger.models.common import utcnow
from stockledger.models.core import (
    Asset, AuditAction, Condition, EntityType, MaintenanceLog, MaintenanceStatus,
    MaintenanceTicket, MovementType, TERMINAL_TICKET_STATUSES,
)
from stockledger.schemas.maintenance import CloseTicketIn, MaintenanceTicketIn, StatusUpdateIn
from stockledger.services.assets import AssetStateMachine, TransitionCause
from stockledger.services.movements import record_movement
from stockledger.util.audit import audit, change_snapshot

logger = logging.getLogger(__name__)

# once work has started a ticket may not fall back to REPORTED
_NO_RETURN_TO_REPORTED = (
    MaintenanceStatus.SENT_TO_VENDOR,
    MaintenanceStatus.IN_REPAIR,
    MaintenanceStatus.FIXED,
)

_DEFAULT_CLOSE_CONDITION = {
    MaintenanceStatus.FIXED: Condition.GOOD,
    MaintenanceStatus.UNREPAIRABLE: Condition.DAMAGED,
}


def _short(ticket_id: str) -> str:
    return ticket_id[-6:]


def ensure_not_terminal(ticket: MaintenanceTicket) -> None:
    if ticket.status == MaintenanceStatus.CLOSED:
        raise TicketClosed("Ticket is already closed.", ticket_id=ticket.id)
    if ticket.status == MaintenanceStatus.SCRAPPED:
        raise TicketScrapped("Ticket is scrapped.", ticket_id=ticket.id)


def check_transition(ticket: MaintenanceTicket, target: MaintenanceStatus) -> None:
    ensure_not_terminal(ticket)
    if target == MaintenanceStatus.REPORTED and ticket.status in _NO_RETURN_TO_REPORTED:
        raise InvalidTransition(
            f"Cannot transition from {ticket.status.value} to {target.value}.",
            ticket_id=ticket.id, status=ticket.status.value, target=target.value,
        )


def final_condition(ticket: MaintenanceTicket, asset: Asset, override: Condition | None) -> Condition:
    if override is not None:
        return override
    return _DEFAULT_CLOSE_CONDITION.get(ticket.status, asset.condition)


def find_open_ticket(db: Session, asset_id: str) -> MaintenanceTicket | None:
    return db.execute(
        select(MaintenanceTicket)
        .where(
            MaintenanceTicket.asset_id == asset_id,
            MaintenanceTicket.status.not_in(TERMINAL_TICKET_STATUSES),
        )
        .limit(1)
    ).scalar_one_or_none()


def _load_ticket(db: Session, ticket_id: str) -> MaintenanceTicket:
    ticket = db.execute(
        select(MaintenanceTicket)
        .where(MaintenanceTicket.id == ticket_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if ticket is None:
        raise TicketNotFound("Maintenance ticket not found.", ticket_id=ticket_id)
    return ticket


def _log(tx: LedgerTx, ticket: MaintenanceTicket, status: MaintenanceStatus, note: str | None) -> MaintenanceLog:
    entry = MaintenanceLog(ticket_id=ticket.id, status=status, note=note, created_by_id=tx.actor_user_id)
    tx.db.add(entry)
    return entry


# ── Operations ──────────────────────────────────────────────────────────────
def _open(tx: LedgerTx, body: MaintenanceTicketIn) -> MaintenanceTicket:
    db = tx.db
    machine = AssetStateMachine(tx)
    # the asset row lock also serialises concurrent ticket creation for it
    asset = machine.load(body.asset_id)
    if asset.condition == Condition.SCRAP:
        raise AssetScrapped("Cannot create maintenance ticket for scrapped asset.", asset_id=asset.id)
    existing = find_open_ticket(db, asset.id)
    if existing is not None:
        raise DuplicateOpenTicket(
            "Asset already has an open maintenance ticket.",
            asset_id=asset.id, ticket_id=existing.id,
        )

    ticket = MaintenanceTicket(
        asset_id=asset.id,
        status=MaintenanceStatus.REPORTED,
        problem_text=body.problem_text,
        vendor_name=body.vendor_name,
        vendor_id=body.vendor_id,
        estimated_cost=body.estimated_cost,
        opened_at=utcnow(),
        created_by_id=tx.actor_user_id,
    )
    db.add(ticket)
    db.flush()
    _log(tx, ticket, MaintenanceStatus.REPORTED, body.problem_text)

    location_id = asset.current_location_id
    machine.transition(asset, location_id, Condition.UNDER_MAINTENANCE, TransitionCause.TICKET_OPEN)
    record_movement(
        tx, MovementType.MAINT_OUT, asset.item_id,
        asset_id=asset.id, ticket_id=ticket.id,
        from_location_id=location_id,
        condition=Condition.UNDER_MAINTENANCE,
        note=f"Ticket #{_short(ticket.id)}",
    )

    audit(tx, EntityType.TICKET, ticket.id, AuditAction.CREATE, after={
        "asset_tag": asset.asset_tag,
        "status": ticket.status,
        "problem_text": body.problem_text,
        "changes": change_snapshot(tx),
    })
    db.flush()
    return ticket


def _update(tx: LedgerTx, body: StatusUpdateIn) -> MaintenanceTicket:
    ticket = _load_ticket(tx.db, body.ticket_id)
    check_transition(ticket, body.status)

    old_status = ticket.status
    ticket.status = body.status
    if body.status in TERMINAL_TICKET_STATUSES:
        ticket.closed_at = utcnow()
    if body.vendor_name is not None:
        ticket.vendor_name = body.vendor_name
    if body.estimated_cost is not None:
        ticket.estimated_cost = body.estimated_cost
    if body.actual_cost is not None:
        ticket.actual_cost = body.actual_cost
    _log(tx, ticket, body.status, body.note)

    audit(tx, EntityType.TICKET, ticket.id, AuditAction.UPDATE,
          before={"status": old_status},
          after={"status": body.status, "note": body.note})
    tx.db.flush()
    return ticket


def _close(tx: LedgerTx, body: CloseTicketIn) -> MaintenanceTicket:
    ticket = _load_ticket(tx.db, body.ticket_id)
    ensure_not_terminal(ticket)

    machine = AssetStateMachine(tx)
    asset = machine.load(ticket.asset_id)
    condition = final_condition(ticket, asset, body.final_condition)

    old_status = ticket.status
    ticket.status = MaintenanceStatus.CLOSED
    ticket.closed_at = utcnow()
    if body.actual_cost is not None:
        ticket.actual_cost = body.actual_cost
    _log(tx, ticket, MaintenanceStatus.CLOSED, body.note or "Ticket closed")

    location_id = asset.current_location_id
    machine.transition(asset, location_id, condition, TransitionCause.TICKET_CLOSE)
    record_movement(
        tx, MovementType.MAINT_IN, asset.item_id,
        asset_id=asset.id, ticket_id=ticket.id,
        to_location_id=location_id,
        condition=condition,
        note=body.note or f"Ticket #{_short(ticket.id)} closed",
    )

    audit(tx, EntityType.TICKET, ticket.id, AuditAction.UPDATE,
          before={"status": old_status, "closed_at": None},
          after={
              "status": ticket.status,
              "closed_at": ticket.closed_at,
              "final_condition": condition,
              "changes": change_snapshot(tx),
          })
    tx.db.flush()
    return ticket


def create_maintenance_ticket(db: Session, body: MaintenanceTicketIn, actor_user_id: str) -> MaintenanceTicket:
    try:
        with ledger_tx(db, actor_user_id) as tx:
            ticket = _open(tx, body)
    except LedgerError as exc:
        logger.warning("maintenance ticket for asset %s rejected: %s %s", body.asset_id, exc.kind, exc.detail)
        raise
    logger.info("maintenance ticket %s opened for asset %s", ticket.id, ticket.asset_id)
    return ticket


def update_maintenance_status(db: Session, body: StatusUpdateIn, actor_user_id: str) -> MaintenanceTicket:
    try:
        with ledger_tx(db, actor_user_id) as tx:
            ticket = _update(tx, body)
    except LedgerError as exc:
        logger.warning("status update on ticket %s rejected: %s %s", body.ticket_id, exc.kind, exc.detail)
        raise
    logger.info("maintenance ticket %s -> %s", ticket.id, ticket.status.value)
    return ticket


def close_maintenance_ticket(db: Session, body: CloseTicketIn, actor_user_id: str) -> MaintenanceTicket:
    try:
        with ledger_tx(db, actor_user_id) as tx:
            ticket = _close(tx, body)
    except LedgerError as exc:
        logger.warning("closing ticket %s rejected: %s %s", body.ticket_id, exc.kind, exc.detail)
        raise
    logger.info("maintenance ticket %s closed as %s", ticket.id, ticket.status.value)
    return ticket
