import logging
from dataclasses import dataclass
from enum import Enum as PyEnum
from typing import Iterable

from sqlalchemy import select

from stockledger.db import LedgerTx
from stockledger.errors import AssetNotFound, ConditionChangeNotAllowed, IneligibleAssetState
from stockledger.models.core import Asset, Condition, SlipType

logger = logging.getLogger(__name__)


class TransitionCause(PyEnum):
    SLIP_RECEIVE = "SLIP_RECEIVE"
    SLIP_ISSUE = "SLIP_ISSUE"
    SLIP_RETURN = "SLIP_RETURN"
    SLIP_TRANSFER = "SLIP_TRANSFER"
    SLIP_MAINT = "SLIP_MAINT"
    TICKET_OPEN = "TICKET_OPEN"
    TICKET_CLOSE = "TICKET_CLOSE"


CAUSE_BY_SLIP_TYPE = {
    SlipType.RECEIVE: TransitionCause.SLIP_RECEIVE,
    SlipType.ISSUE: TransitionCause.SLIP_ISSUE,
    SlipType.RETURN: TransitionCause.SLIP_RETURN,
    SlipType.TRANSFER: TransitionCause.SLIP_TRANSFER,
    SlipType.MAINT: TransitionCause.SLIP_MAINT,
}

ISSUE_BLOCKED = (Condition.SCRAP, Condition.UNDER_MAINTENANCE)

# causes that may set any condition; everything else carries it forward
_FREE_CONDITION = (TransitionCause.SLIP_RETURN, TransitionCause.TICKET_CLOSE)


@dataclass(frozen=True)
class AssetTransition:
    asset_id: str
    from_location_id: str | None
    to_location_id: str | None
    from_condition: Condition
    to_condition: Condition
    cause: TransitionCause

    def as_dict(self) -> dict:
        return {
            "kind": "asset",
            "asset_id": self.asset_id,
            "from_location_id": self.from_location_id,
            "to_location_id": self.to_location_id,
            "from_condition": self.from_condition,
            "to_condition": self.to_condition,
            "cause": self.cause,
        }


class AssetStateMachine:
    """The only writer of an asset's location and condition.

    Both fields change together through ``transition``; the issue gate and the
    condition-change policy are enforced there so no caller can bypass them.
    """

    def __init__(self, tx: LedgerTx):
        self.tx = tx

    def load(self, asset_id: str) -> Asset:
        stmt = (
            select(Asset)
            .where(Asset.id == asset_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        asset = self.tx.db.execute(stmt).scalar_one_or_none()
        if asset is None:
            raise AssetNotFound("Asset not found.", asset_id=asset_id)
        return asset

    def lock_all(self, asset_ids: Iterable[str]) -> None:
        for asset_id in sorted(set(asset_ids)):
            self.tx.db.execute(select(Asset.id).where(Asset.id == asset_id).with_for_update())

    @staticmethod
    def check_issuable(asset: Asset) -> None:
        if asset.condition in ISSUE_BLOCKED:
            raise IneligibleAssetState(
                f"Asset cannot be issued in {asset.condition.value} condition.",
                asset_id=asset.id, condition=asset.condition.value,
            )

    @staticmethod
    def _check_condition_change(asset: Asset, condition: Condition, cause: TransitionCause) -> None:
        if condition == asset.condition or cause in _FREE_CONDITION:
            return
        if cause is TransitionCause.TICKET_OPEN and condition is Condition.UNDER_MAINTENANCE:
            return
        raise ConditionChangeNotAllowed(
            f"{cause.value} cannot change asset condition from {asset.condition.value} to {condition.value}.",
            asset_id=asset.id, condition=asset.condition.value, requested=condition.value,
        )

    def transition(self, asset: Asset, to_location_id: str | None, condition: Condition,
                   cause: TransitionCause) -> AssetTransition:
        if cause is TransitionCause.SLIP_ISSUE:
            self.check_issuable(asset)
        self._check_condition_change(asset, condition, cause)

        change = AssetTransition(
            asset_id=asset.id,
            from_location_id=asset.current_location_id,
            to_location_id=to_location_id,
            from_condition=asset.condition,
            to_condition=condition,
            cause=cause,
        )
        asset.current_location_id = to_location_id
        asset.condition = condition
        self.tx.db.flush()
        self.tx.record(change)
        logger.debug("asset %s: %s@%s -> %s@%s (%s)", asset.id,
                     change.from_condition.value, change.from_location_id,
                     condition.value, to_location_id, cause.value)
        return change
