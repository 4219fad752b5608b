"""Kitchen display schemas."""

from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel

from checkcore.models.kds import TicketStatus


class KdsTicketItemResponse(BaseModel):
    id: int
    check_item_id: int
    status: str
    is_ready: bool
    ready_at: Optional[datetime] = None
    is_modified: bool

    model_config = {"from_attributes": True}


class KdsTicketResponse(BaseModel):
    id: int
    check_id: int
    round_id: Optional[int] = None
    rvc_id: Optional[int] = None
    kds_device_id: Optional[int] = None
    order_device_id: Optional[int] = None
    station_type: Optional[str] = None
    status: TicketStatus
    is_preview: bool
    paid: bool
    is_recalled: bool
    recalled_at: Optional[datetime] = None
    bumped_at: Optional[datetime] = None
    bumped_by_employee_id: Optional[int] = None
    created_at: datetime
    items: List[KdsTicketItemResponse] = []

    model_config = {"from_attributes": True}


class BumpRequest(BaseModel):
    employee_id: Optional[int] = None


class RecallRequest(BaseModel):
    scope: Literal["all", "expo"] = "all"


class BumpAllRequest(BaseModel):
    rvc_id: Optional[int] = None
    station_type: Optional[str] = None
    employee_id: Optional[int] = None


class BumpAllResponse(BaseModel):
    bumped: int


class ItemReadyRequest(BaseModel):
    ready: bool = True
