"""Error taxonomy for ledger operations.

Every error carries a stable ``kind`` code and a ``detail`` dict holding the
offending identifiers, so a caller can render a specific message without
parsing text.
"""


class LedgerError(Exception):
    kind = "LEDGER_ERROR"

    def __init__(self, message: str, **detail):
        super().__init__(message)
        self.message = message
        self.detail = detail

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message, **self.detail}


class RetryableConflict(LedgerError):
    """Lock wait timed out, serialization failed or a row changed underneath us."""
    kind = "RETRYABLE_CONFLICT"


# ── Not found ───────────────────────────────────────────────────────────────
class NotFoundError(LedgerError):
    kind = "NOT_FOUND"


class ItemNotFound(NotFoundError):
    kind = "ITEM_NOT_FOUND"


class AssetNotFound(NotFoundError):
    kind = "ASSET_NOT_FOUND"


class SlipNotFound(NotFoundError):
    kind = "SLIP_NOT_FOUND"


class TicketNotFound(NotFoundError):
    kind = "TICKET_NOT_FOUND"


class LocationNotFound(NotFoundError):
    kind = "LOCATION_NOT_FOUND"


class PropertyNotFound(NotFoundError):
    kind = "PROPERTY_NOT_FOUND"


# ── Invariant violations ────────────────────────────────────────────────────
class LedgerInvariantError(LedgerError):
    kind = "INVARIANT"


class InvariantViolation(LedgerInvariantError):
    """Stock would go negative at a location."""
    kind = "NEGATIVE_STOCK"


class IneligibleAssetState(LedgerInvariantError):
    kind = "INELIGIBLE_ASSET_STATE"


class ConditionChangeNotAllowed(LedgerInvariantError):
    kind = "CONDITION_CHANGE_NOT_ALLOWED"


class OverReturn(LedgerInvariantError):
    kind = "OVER_RETURN"


class AssetNotInSource(LedgerInvariantError):
    kind = "ASSET_NOT_IN_SOURCE"


class InvalidReturnSource(LedgerInvariantError):
    kind = "INVALID_RETURN_SOURCE"


class TypeMismatch(LedgerInvariantError):
    kind = "TYPE_MISMATCH"


class AssetMismatch(LedgerInvariantError):
    kind = "ASSET_MISMATCH"


class AssetScrapped(LedgerInvariantError):
    kind = "ASSET_SCRAPPED"


class DuplicateOpenTicket(LedgerInvariantError):
    kind = "DUPLICATE_OPEN_TICKET"


# ── Maintenance state machine ───────────────────────────────────────────────
class StateMachineError(LedgerError):
    kind = "STATE_MACHINE"


class InvalidTransition(StateMachineError):
    kind = "INVALID_TRANSITION"


class TicketClosed(StateMachineError):
    kind = "TICKET_CLOSED"


class TicketScrapped(StateMachineError):
    kind = "TICKET_SCRAPPED"
