from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing import Annotated, Literal, Optional, Union

from stockledger.models.core import Condition, DepartmentType, SignatureMethod, SlipType
from stockledger.schemas.common import Qty, SignerName

# A line is either a quantity of a STOCK item or one tagged ASSET unit, never both.
class StockLineIn(BaseModel):
    model_config = ConfigDict(extra="forbid")
    item_type: Literal["STOCK"] = "STOCK"
    item_id: str
    qty: Qty
    notes: Optional[str] = Field(default=None, max_length=500)

class AssetLineIn(BaseModel):
    model_config = ConfigDict(extra="forbid")
    item_type: Literal["ASSET"] = "ASSET"
    item_id: str
    asset_id: str
    condition_at_move: Optional[Condition] = None  # honoured on RETURN slips only
    notes: Optional[str] = Field(default=None, max_length=500)

SlipLineIn = Annotated[Union[StockLineIn, AssetLineIn], Field(discriminator="item_type")]

class SignatureIn(BaseModel):
    signed_by_name: SignerName
    signed_by_user_id: Optional[str] = None
    method: SignatureMethod = SignatureMethod.TYPED

class SignatureAddIn(SignatureIn):
    slip_id: str

class SlipIn(BaseModel):
    slip_type: SlipType
    property_id: str
    from_location_id: Optional[str] = None
    to_location_id: str
    department: DepartmentType
    requested_by_id: Optional[str] = None
    issued_by_id: Optional[str] = None
    received_by_id: Optional[str] = None
    vendor_id: Optional[str] = None
    source_slip_id: Optional[str] = None
    lines: list[SlipLineIn] = Field(min_length=1)
    signature: Optional[SignatureIn] = None

    @model_validator(mode="after")
    def _check_shape(self):
        if self.slip_type != SlipType.RECEIVE and not self.from_location_id:
            raise ValueError(f"from_location_id is required for {self.slip_type.value} slips")
        if self.source_slip_id and self.slip_type != SlipType.RETURN:
            raise ValueError("source_slip_id can only be used on RETURN slips")
        if self.slip_type != SlipType.RETURN:
            for line in self.lines:
                if isinstance(line, AssetLineIn) and line.condition_at_move is not None:
                    raise ValueError("condition_at_move can only be set on RETURN slips")
        return self

    def stock_lines(self) -> list[StockLineIn]:
        return [l for l in self.lines if isinstance(l, StockLineIn)]

    def asset_lines(self) -> list[AssetLineIn]:
        return [l for l in self.lines if isinstance(l, AssetLineIn)]
