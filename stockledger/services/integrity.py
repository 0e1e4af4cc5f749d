"""Read-only consistency scan over stored ledger data.

Errors mean rows were written around the engine (imports, manual edits).
Warnings and info findings can arise in normal operation and are reported
for follow-up.
"""
import logging
from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from stockledger.models.core import (
    Asset, AuditAction, AuditEvent, Condition, EntityType, Item, ItemType,
    Location, MaintenanceTicket, MovementLog, Slip, SlipLine, SlipType, StockBalance,
    TERMINAL_TICKET_STATUSES,
)
from stockledger.services.assets import ISSUE_BLOCKED

logger = logging.getLogger(__name__)

ERROR = "error"
WARNING = "warning"
INFO = "info"


@dataclass
class LedgerIssue:
    category: str
    issue: str
    severity: str
    entity_id: str | None = None
    details: str | None = None


def _negative_balances(db: Session) -> list[LedgerIssue]:
    rows = db.execute(
        select(StockBalance, Item.name, Location.name)
        .join(Item, Item.id == StockBalance.item_id)
        .join(Location, Location.id == StockBalance.location_id)
        .where(StockBalance.qty_on_hand < 0)
    ).all()
    return [
        LedgerIssue("Stock Balance", "Negative stock quantity detected", ERROR, bal.id,
                    f"Item: {item}, Location: {loc}, Qty: {bal.qty_on_hand}")
        for bal, item, loc in rows
    ]


def _low_stock(db: Session) -> list[LedgerIssue]:
    rows = db.execute(
        select(StockBalance, Item, Location.name)
        .join(Item, Item.id == StockBalance.item_id)
        .join(Location, Location.id == StockBalance.location_id)
        .where(
            Item.item_type == ItemType.STOCK,
            Item.reorder_level.is_not(None),
            StockBalance.qty_on_hand <= Item.reorder_level,
        )
    ).all()
    return [
        LedgerIssue("Stock Balance", "Stock below reorder level", INFO, item.id,
                    f"Item: {item.name}, Location: {loc}, Current: {bal.qty_on_hand}, "
                    f"Reorder Level: {item.reorder_level}")
        for bal, item, loc in rows
    ]


def _duplicate_open_tickets(db: Session) -> list[LedgerIssue]:
    rows = db.execute(
        select(MaintenanceTicket.asset_id, func.count(MaintenanceTicket.id))
        .where(MaintenanceTicket.status.not_in(TERMINAL_TICKET_STATUSES))
        .group_by(MaintenanceTicket.asset_id)
        .having(func.count(MaintenanceTicket.id) > 1)
    ).all()
    return [
        LedgerIssue("Maintenance", "Asset has more than one open ticket", ERROR, asset_id,
                    f"Open tickets: {n}")
        for asset_id, n in rows
    ]


def _orphaned_maintenance(db: Session) -> list[LedgerIssue]:
    open_assets = (
        select(MaintenanceTicket.asset_id)
        .where(MaintenanceTicket.status.not_in(TERMINAL_TICKET_STATUSES))
    )
    rows = db.execute(
        select(Asset)
        .where(Asset.condition == Condition.UNDER_MAINTENANCE, Asset.id.not_in(open_assets))
    ).scalars().all()
    return [
        LedgerIssue("Maintenance", "Asset under maintenance without an open ticket", WARNING,
                    a.id, f"Asset tag: {a.asset_tag}")
        for a in rows
    ]


def _unaudited_slips(db: Session) -> list[LedgerIssue]:
    audited = (
        select(AuditEvent.entity_id)
        .where(AuditEvent.entity_type == EntityType.SLIP, AuditEvent.action == AuditAction.CREATE)
    )
    rows = db.execute(select(Slip).where(Slip.id.not_in(audited))).scalars().all()
    return [
        LedgerIssue("Audit", "Slip has no creation audit event", WARNING, s.id, f"Slip: {s.slip_no}")
        for s in rows
    ]


def _slips_without_movements(db: Session) -> list[LedgerIssue]:
    moved = select(MovementLog.slip_id).where(MovementLog.slip_id.is_not(None))
    rows = db.execute(select(Slip).where(Slip.id.not_in(moved))).scalars().all()
    return [
        LedgerIssue("Movement Logs", "Slip missing movement logs", ERROR, s.id,
                    f"Slip: {s.slip_no}, Type: {s.slip_type.value}")
        for s in rows
    ]


def _ineligible_issues(db: Session) -> list[LedgerIssue]:
    # condition at issue time: line override, else the paired movement, else the asset today
    at_issue = func.coalesce(SlipLine.condition_at_move, MovementLog.condition, Asset.condition)
    rows = db.execute(
        select(Slip, Asset.asset_tag, at_issue)
        .join(SlipLine, SlipLine.slip_id == Slip.id)
        .join(Asset, Asset.id == SlipLine.asset_id)
        .outerjoin(MovementLog, (MovementLog.slip_id == Slip.id) & (MovementLog.asset_id == Asset.id))
        .where(Slip.slip_type == SlipType.ISSUE, at_issue.in_(ISSUE_BLOCKED))
    ).all()
    return [
        LedgerIssue("Asset Condition", "ISSUE slip contains SCRAP or UNDER_MAINTENANCE asset", ERROR,
                    slip.id, f"Slip: {slip.slip_no}, Asset: {tag}, Condition: {cond.value}")
        for slip, tag, cond in rows
    ]


def validate_ledger(db: Session) -> list[LedgerIssue]:
    issues: list[LedgerIssue] = []
    for check in (_negative_balances, _low_stock, _duplicate_open_tickets,
                  _orphaned_maintenance, _unaudited_slips,
                  _slips_without_movements, _ineligible_issues):
        issues.extend(check(db))

    for i in issues:
        level = logging.WARNING if i.severity in (ERROR, WARNING) else logging.INFO
        logger.log(level, "[%s] %s (%s) %s", i.category, i.issue, i.entity_id, i.details or "")
    if not any(i.severity == ERROR for i in issues):
        logger.info("ledger check passed: %d findings, no errors", len(issues))
    return issues
