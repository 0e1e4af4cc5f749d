from decimal import Decimal
from typing import Annotated
from pydantic import Field, StringConstraints

# exact decimals only; Numeric(12, 2) in storage
Qty = Annotated[Decimal, Field(gt=0, max_digits=12, decimal_places=2)]
Money = Annotated[Decimal, Field(gt=0, max_digits=12, decimal_places=2)]

Note = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=500)]
SignerName = Annotated[str, StringConstraints(strip_whitespace=True, min_length=2, max_length=120)]
VendorName = Annotated[str, StringConstraints(strip_whitespace=True, min_length=2, max_length=200)]
