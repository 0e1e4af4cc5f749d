from stockledger.services.slips import create_slip, add_signature  # noqa: F401
from stockledger.services.maintenance import (  # noqa: F401
    create_maintenance_ticket, update_maintenance_status, close_maintenance_ticket,
)
from stockledger.services.integrity import validate_ledger  # noqa: F401

__all__ = [
    "create_slip", "add_signature",
    "create_maintenance_ticket", "update_maintenance_status", "close_maintenance_ticket",
    "validate_ledger",
]
