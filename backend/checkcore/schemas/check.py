"""Guest check schemas."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, model_validator

from checkcore.models.check import CheckStatus


class VersionedRequest(BaseModel):
    """Mutations carry the check version the terminal last saw."""

    employee_id: Optional[int] = None
    expected_version: Optional[int] = Field(default=None, ge=1)


class ModifierIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    price_delta: Decimal = Decimal("0.00")


class LinkedEntityRef(BaseModel):
    """Gift card, loyalty reward or other entity a line item stands for."""

    kind: str = Field(..., min_length=1, max_length=50)
    id: str = Field(..., min_length=1, max_length=64)


class CheckCreate(BaseModel):
    rvc_id: int
    employee_id: int
    order_type: str = "dine_in"
    table_number: Optional[str] = Field(default=None, max_length=20)
    guest_count: int = Field(default=1, ge=1)
    customer_id: Optional[str] = None


class CheckItemCreate(VersionedRequest):
    menu_item_id: Optional[int] = None
    menu_item_name: Optional[str] = Field(default=None, max_length=200)
    unit_price: Optional[Decimal] = Field(default=None, ge=0)
    quantity: int = Field(default=1, ge=1)
    modifiers: List[ModifierIn] = []
    item_status: Literal["active", "pending"] = "active"
    linked_entity_ref: Optional[LinkedEntityRef] = None

    @model_validator(mode="after")
    def require_menu_item_or_price(self):
        if self.menu_item_id is None and (self.unit_price is None or not self.menu_item_name):
            raise ValueError("Open items need menu_item_name and unit_price")
        return self


class CheckItemUpdate(VersionedRequest):
    modifiers: Optional[List[ModifierIn]] = None
    quantity: Optional[int] = Field(default=None, ge=1)
    item_status: Optional[Literal["active", "pending"]] = None


class VoidItemRequest(VersionedRequest):
    reason: Optional[str] = Field(default=None, max_length=200)
    manager_pin: Optional[str] = None


class PriceOverrideRequest(VersionedRequest):
    new_price: Decimal = Field(..., ge=0)
    manager_pin: str
    reason: Optional[str] = Field(default=None, max_length=100)


class DiscountRequest(VersionedRequest):
    discount_id: int
    discount_name: str = Field(..., min_length=1, max_length=100)
    amount: Decimal = Field(..., gt=0)
    manager_pin: Optional[str] = None


class CancelCheckRequest(VersionedRequest):
    reason: Optional[str] = Field(default=None, max_length=100)


class ShareItemIn(BaseModel):
    item_id: int
    ratio: Decimal = Field(..., gt=0, lt=1)


class SplitCheckRequest(VersionedRequest):
    move_item_ids: List[int] = []
    share_items: List[ShareItemIn] = []


class MergeChecksRequest(VersionedRequest):
    source_check_ids: List[int] = Field(..., min_length=1)


class TransferCheckRequest(VersionedRequest):
    to_employee_id: int


class PaymentCreate(VersionedRequest):
    amount: Decimal = Field(..., gt=0)
    tender_type: Literal["cash", "credit", "debit", "gift", "other"] = "cash"
    tender_id: Optional[int] = None
    tender_name: Optional[str] = Field(default=None, max_length=100)
    tip_amount: Decimal = Field(default=Decimal("0.00"), ge=0)
    payment_status: Literal["authorized", "completed"] = "completed"


class ReopenCheckRequest(VersionedRequest):
    manager_pin: str
    reason: Optional[str] = Field(default=None, max_length=100)


# ===================== Responses =====================

class ModifierResponse(BaseModel):
    name: str
    price_delta: Decimal


class CheckItemResponse(BaseModel):
    id: int
    check_id: int
    round_id: Optional[int] = None
    menu_item_id: Optional[int] = None
    menu_item_name: str
    quantity: int
    unit_price: Decimal
    modifiers: List[ModifierResponse] = []
    item_status: str
    sent: bool
    voided: bool
    void_reason: Optional[str] = None
    tax_group_id_at_sale: Optional[int] = None
    tax_mode_at_sale: Optional[str] = None
    tax_rate_at_sale: Optional[Decimal] = None
    taxable_amount: Optional[Decimal] = None
    tax_amount: Optional[Decimal] = None
    discount_id: Optional[int] = None
    discount_name: Optional[str] = None
    discount_amount: Optional[Decimal] = None
    linked_entity_ref: Optional[LinkedEntityRef] = None
    added_at: datetime

    model_config = {"from_attributes": True}


class CheckDiscountResponse(BaseModel):
    id: int
    discount_id: int
    discount_name: str
    amount: Decimal
    employee_id: Optional[int] = None
    manager_approval_id: Optional[int] = None
    applied_at: datetime

    model_config = {"from_attributes": True}


class PaymentResponse(BaseModel):
    id: int
    tender_id: Optional[int] = None
    tender_name: str
    tender_type: str
    amount: Decimal
    tip_amount: Decimal
    payment_status: str
    employee_id: Optional[int] = None
    paid_at: datetime
    business_date: Optional[str] = None

    model_config = {"from_attributes": True}


class RoundResponse(BaseModel):
    id: int
    check_id: int
    round_number: int
    sent_by_employee_id: Optional[int] = None
    sent_at: datetime

    model_config = {"from_attributes": True}


class CheckSummary(BaseModel):
    id: int
    check_number: int
    rvc_id: int
    employee_id: int
    status: CheckStatus
    order_type: str
    table_number: Optional[str] = None
    subtotal: Decimal
    discount_total: Decimal
    tax_total: Decimal
    total: Decimal
    version: int
    opened_at: datetime
    closed_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class CheckResponse(CheckSummary):
    customer_id: Optional[str] = None
    guest_count: int
    origin_business_date: Optional[str] = None
    business_date: Optional[str] = None
    paid_amount: Decimal = Decimal("0.00")
    items: List[CheckItemResponse] = []
    discounts: List[CheckDiscountResponse] = []
    payments: List[PaymentResponse] = []
    rounds: List[RoundResponse] = []


class SendResponse(BaseModel):
    round: Optional[RoundResponse] = None
    updated_items: List[CheckItemResponse] = []
    ticket_ids: List[int] = []
    check: CheckResponse


class PaymentResultResponse(BaseModel):
    payment: PaymentResponse
    paid_amount: Decimal
    balance_due: Decimal
    change_due: Decimal
    closed: bool
    check: CheckResponse
