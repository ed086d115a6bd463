from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class OrderItemDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", alias_generator=to_camel)

    variant_id: int
    quantity: int = Field(1, gt=0)
    start_date: datetime
    end_date: datetime


class CreateOrderDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", alias_generator=to_camel)

    vendor_id: Optional[int] = None
    items: List[OrderItemDto] = []
    vendor_jurisdiction: Optional[str] = None
    customer_jurisdiction: Optional[str] = None
    billing_address: Optional[str] = None
    shipping_address: Optional[str] = None
    customer_notes: Optional[str] = None


class OrderDetailsUpdate(BaseModel):
    """Editable order fields. Only the fields present in the request are applied."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", alias_generator=to_camel)

    billing_address: Optional[str] = None
    shipping_address: Optional[str] = None
    customer_notes: Optional[str] = None


class PaymentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", alias_generator=to_camel)

    amount: float = Field(..., gt=0)
    payment_method: Optional[str] = None
    transaction_id: Optional[str] = None
