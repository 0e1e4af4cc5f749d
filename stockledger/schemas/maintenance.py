from pydantic import BaseModel, StringConstraints
from typing import Annotated, Optional

from stockledger.models.core import Condition, MaintenanceStatus
from stockledger.schemas.common import Money, Note, VendorName

ProblemText = Annotated[str, StringConstraints(strip_whitespace=True, min_length=10, max_length=1000)]

class MaintenanceTicketIn(BaseModel):
    asset_id: str
    problem_text: ProblemText
    vendor_name: Optional[VendorName] = None
    vendor_id: Optional[str] = None
    estimated_cost: Optional[Money] = None

class StatusUpdateIn(BaseModel):
    ticket_id: str
    status: MaintenanceStatus
    note: Optional[Note] = None
    vendor_name: Optional[VendorName] = None
    estimated_cost: Optional[Money] = None
    actual_cost: Optional[Money] = None

class CloseTicketIn(BaseModel):
    ticket_id: str
    note: Optional[Note] = None
    actual_cost: Optional[Money] = None
    final_condition: Optional[Condition] = None
