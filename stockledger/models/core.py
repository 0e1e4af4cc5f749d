from sqlalchemy import (
    String, ForeignKey, Boolean, Numeric, Enum, Text, DateTime, Integer, UniqueConstraint, Index
)
from sqlalchemy.orm import Mapped, mapped_column
from enum import Enum as PyEnum
from datetime import datetime
from decimal import Decimal
from stockledger.db import Base
from stockledger.models.common import IdMixin, TSMMixin, CreatedMixin, utcnow

# ── Enums ───────────────────────────────────────────────────────────────────
class ItemType(PyEnum):
    STOCK = "STOCK"
    ASSET = "ASSET"

class Condition(PyEnum):
    NEW = "NEW"
    GOOD = "GOOD"
    WORN = "WORN"
    DAMAGED = "DAMAGED"
    UNDER_MAINTENANCE = "UNDER_MAINTENANCE"
    SCRAP = "SCRAP"

class SlipType(PyEnum):
    RECEIVE = "RECEIVE"
    ISSUE = "ISSUE"
    RETURN = "RETURN"
    TRANSFER = "TRANSFER"
    MAINT = "MAINT"

class MovementType(PyEnum):
    RECEIVE_IN = "RECEIVE_IN"
    ISSUE_OUT = "ISSUE_OUT"
    RETURN_IN = "RETURN_IN"
    TRANSFER = "TRANSFER"
    MAINT_OUT = "MAINT_OUT"
    MAINT_IN = "MAINT_IN"
    ADJUSTMENT = "ADJUSTMENT"  # recorded by external adjustments, never emitted here
    SCRAP_OUT = "SCRAP_OUT"    # likewise

class DepartmentType(PyEnum):
    KITCHEN = "KITCHEN"
    ELECTRICAL = "ELECTRICAL"
    HOUSEKEEPING = "HOUSEKEEPING"
    FRONT_OFFICE = "FRONT_OFFICE"
    OTHER = "OTHER"

class SignatureMethod(PyEnum):
    TYPED = "TYPED"
    DRAWN = "DRAWN"
    OTP = "OTP"

class MaintenanceStatus(PyEnum):
    REPORTED = "REPORTED"
    DIAGNOSING = "DIAGNOSING"
    SENT_TO_VENDOR = "SENT_TO_VENDOR"
    IN_REPAIR = "IN_REPAIR"
    FIXED = "FIXED"
    UNREPAIRABLE = "UNREPAIRABLE"
    CLOSED = "CLOSED"
    SCRAPPED = "SCRAPPED"

class AuditAction(PyEnum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    CORRECT = "CORRECT"

class EntityType(PyEnum):
    SLIP = "SLIP"
    ASSET = "ASSET"
    ITEM = "ITEM"
    TICKET = "TICKET"
    PROPERTY = "PROPERTY"
    LOCATION = "LOCATION"
    CATEGORY = "CATEGORY"
    USER = "USER"

TERMINAL_TICKET_STATUSES = (MaintenanceStatus.CLOSED, MaintenanceStatus.SCRAPPED)

# ── Reference data (maintained outside the ledger engine) ───────────────────
class User(Base, IdMixin, TSMMixin):
    __tablename__ = "user"
    name: Mapped[str] = mapped_column(String(160))
    phone: Mapped[str | None] = mapped_column(String(20))
    role: Mapped[str] = mapped_column(String(30), default="STORE_MANAGER")  # ADMIN | STORE_MANAGER | DEPARTMENT_USER | TECHNICIAN

class Property(Base, IdMixin, TSMMixin):
    __tablename__ = "property"
    name: Mapped[str] = mapped_column(String(160), unique=True)

class Location(Base, IdMixin, TSMMixin):
    __tablename__ = "location"
    property_id: Mapped[str] = mapped_column(String(36), ForeignKey("property.id"))
    name: Mapped[str] = mapped_column(String(160))
    floor: Mapped[str | None] = mapped_column(String(40))
    room: Mapped[str | None] = mapped_column(String(40))
    area: Mapped[str | None] = mapped_column(String(80))
    __table_args__ = (
        UniqueConstraint("property_id", "name", name="uq_location_property_name"),
    )

class Category(Base, IdMixin, TSMMixin):
    __tablename__ = "category"
    name: Mapped[str] = mapped_column(String(160))
    parent_category_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("category.id"))

class Vendor(Base, IdMixin, TSMMixin):
    __tablename__ = "vendor"
    name: Mapped[str] = mapped_column(String(200), unique=True)
    contact_person: Mapped[str | None] = mapped_column(String(160))
    phone: Mapped[str | None] = mapped_column(String(20))
    specialization: Mapped[str | None] = mapped_column(String(160))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

class Item(Base, IdMixin, TSMMixin):
    __tablename__ = "item"
    name: Mapped[str] = mapped_column(String(200))
    item_type: Mapped[ItemType] = mapped_column(Enum(ItemType))  # immutable once created
    category_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("category.id"))
    unit: Mapped[str | None] = mapped_column(String(20))  # pcs, kg, l ...
    reorder_level: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

# ── Ledger state ────────────────────────────────────────────────────────────
class StockBalance(Base, IdMixin, TSMMixin):
    __tablename__ = "stock_balance"
    item_id: Mapped[str] = mapped_column(String(36), ForeignKey("item.id"))
    location_id: Mapped[str] = mapped_column(String(36), ForeignKey("location.id"))
    qty_on_hand: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    __table_args__ = (
        UniqueConstraint("item_id", "location_id", name="uq_stock_balance_item_location"),
    )
    __mapper_args__ = {"version_id_col": version}

class Asset(Base, IdMixin, TSMMixin):
    __tablename__ = "asset"
    item_id: Mapped[str] = mapped_column(String(36), ForeignKey("item.id"))
    asset_tag: Mapped[str] = mapped_column(String(100), unique=True)
    serial_number: Mapped[str | None] = mapped_column(String(100))
    # location + condition are written only by AssetStateMachine.transition
    condition: Mapped[Condition] = mapped_column(Enum(Condition), default=Condition.NEW)
    current_location_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("location.id"))
    notes: Mapped[str | None] = mapped_column(Text)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    __mapper_args__ = {"version_id_col": version}

# ── Slips ───────────────────────────────────────────────────────────────────
class Slip(Base, IdMixin, TSMMixin):
    __tablename__ = "slip"
    slip_no: Mapped[str] = mapped_column(String(40), unique=True)
    slip_type: Mapped[SlipType] = mapped_column(Enum(SlipType))
    property_id: Mapped[str] = mapped_column(String(36), ForeignKey("property.id"))
    from_location_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("location.id"))
    to_location_id: Mapped[str] = mapped_column(String(36), ForeignKey("location.id"))
    department: Mapped[DepartmentType] = mapped_column(Enum(DepartmentType))
    requested_by_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("user.id"))
    issued_by_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("user.id"))
    received_by_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("user.id"))
    created_by_id: Mapped[str | None] = mapped_column(String(36))
    vendor_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("vendor.id"))
    source_slip_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("slip.id"))  # RETURN only

class SlipLine(Base, IdMixin, CreatedMixin):
    __tablename__ = "slip_line"
    slip_id: Mapped[str] = mapped_column(String(36), ForeignKey("slip.id"), index=True)
    item_id: Mapped[str] = mapped_column(String(36), ForeignKey("item.id"))
    asset_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("asset.id"))  # ASSET lines
    qty: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))                       # STOCK lines
    condition_at_move: Mapped[Condition | None] = mapped_column(Enum(Condition))
    notes: Mapped[str | None] = mapped_column(Text)

class Signature(Base, IdMixin, CreatedMixin):
    __tablename__ = "signature"
    slip_id: Mapped[str] = mapped_column(String(36), ForeignKey("slip.id"), index=True)
    signed_by_name: Mapped[str] = mapped_column(String(120))
    signed_by_user_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("user.id"))
    method: Mapped[SignatureMethod] = mapped_column(Enum(SignatureMethod), default=SignatureMethod.TYPED)
    signed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

# ── Maintenance ─────────────────────────────────────────────────────────────
class MaintenanceTicket(Base, IdMixin, TSMMixin):
    __tablename__ = "maintenance_ticket"
    asset_id: Mapped[str] = mapped_column(String(36), ForeignKey("asset.id"), index=True)
    status: Mapped[MaintenanceStatus] = mapped_column(Enum(MaintenanceStatus), default=MaintenanceStatus.REPORTED)
    problem_text: Mapped[str] = mapped_column(Text)
    vendor_name: Mapped[str | None] = mapped_column(String(200))
    vendor_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("vendor.id"))
    estimated_cost: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    actual_cost: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    opened_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_by_id: Mapped[str] = mapped_column(String(36))

class MaintenanceLog(Base, IdMixin, CreatedMixin):
    __tablename__ = "maintenance_log"
    ticket_id: Mapped[str] = mapped_column(String(36), ForeignKey("maintenance_ticket.id"), index=True)
    status: Mapped[MaintenanceStatus] = mapped_column(Enum(MaintenanceStatus))
    note: Mapped[str | None] = mapped_column(Text)
    created_by_id: Mapped[str] = mapped_column(String(36))

# ── Append-only ledgers ─────────────────────────────────────────────────────
class MovementLog(Base, CreatedMixin):
    __tablename__ = "movement_log"
    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    movement_type: Mapped[MovementType] = mapped_column(Enum(MovementType))
    item_id: Mapped[str] = mapped_column(String(36), ForeignKey("item.id"))
    asset_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("asset.id"), index=True)
    qty: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    slip_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("slip.id"), index=True)
    ticket_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("maintenance_ticket.id"))
    from_location_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("location.id"))
    to_location_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("location.id"))
    condition: Mapped[Condition | None] = mapped_column(Enum(Condition))  # resulting condition
    note: Mapped[str | None] = mapped_column(Text)
    moved_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

class AuditEvent(Base, CreatedMixin):
    __tablename__ = "audit_event"
    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    entity_type: Mapped[EntityType] = mapped_column(Enum(EntityType))
    entity_id: Mapped[str] = mapped_column(String(36))
    action: Mapped[AuditAction] = mapped_column(Enum(AuditAction))
    old_value: Mapped[str | None] = mapped_column(Text)  # JSON
    new_value: Mapped[str | None] = mapped_column(Text)  # JSON
    created_by_id: Mapped[str | None] = mapped_column(String(36))
    __table_args__ = (
        Index("ix_audit_event_entity", "entity_type", "entity_id", "created_at"),
    )
