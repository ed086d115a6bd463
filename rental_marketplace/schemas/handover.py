from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class PickupRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", alias_generator=to_camel)

    order_id: int
    reservation_ids: Optional[List[int]] = None
    picked_up_by: str
    notes: Optional[str] = None


class ReturnRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", alias_generator=to_camel)

    order_id: int
    reservation_id: int
    pickup_id: Optional[int] = None
    condition_notes: Optional[str] = None
    returned_at: Optional[datetime] = None
