# Importing the module registers tables with Base for create_all()
from .core import (  # noqa: F401
    # Enums
    ItemType, Condition, SlipType, MovementType, DepartmentType,
    SignatureMethod, MaintenanceStatus, AuditAction, EntityType,
    TERMINAL_TICKET_STATUSES,

    # Reference data
    User, Property, Location, Category, Vendor, Item,

    # Ledger state
    StockBalance, Asset,

    # Slips
    Slip, SlipLine, Signature,

    # Maintenance
    MaintenanceTicket, MaintenanceLog,

    # Append-only ledgers
    MovementLog, AuditEvent,
)

__all__ = [
    # Enums
    "ItemType", "Condition", "SlipType", "MovementType", "DepartmentType",
    "SignatureMethod", "MaintenanceStatus", "AuditAction", "EntityType",
    "TERMINAL_TICKET_STATUSES",

    # Reference data
    "User", "Property", "Location", "Category", "Vendor", "Item",

    # Ledger state
    "StockBalance", "Asset",

    # Slips
    "Slip", "SlipLine", "Signature",

    # Maintenance
    "MaintenanceTicket", "MaintenanceLog",

    # Append-only ledgers
    "MovementLog", "AuditEvent",
]
