from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class PriceCalculationRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", alias_generator=to_camel)

    variant_id: int
    start_date: datetime
    end_date: datetime
    quantity: int = Field(1, gt=0)


class QuotationItemDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", alias_generator=to_camel)

    variant_id: int
    start_date: datetime
    end_date: datetime
    quantity: int = Field(1, gt=0)


class QuotationRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", alias_generator=to_camel)

    items: List[QuotationItemDto] = []
    vendor_jurisdiction: Optional[str] = None
    customer_jurisdiction: Optional[str] = None


class LateFeeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", alias_generator=to_camel)

    end_date: datetime
    returned_at: datetime
    base_price: float = Field(..., ge=0)
    rate: Optional[float] = Field(None, ge=0)
