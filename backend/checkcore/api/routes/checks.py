"""Guest check routes.

Thin transport over CheckLifecycleManager. Domain errors are translated
to HTTP responses by the app-level CheckCoreError handler.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Query, status

from checkcore.api.deps import Lifecycle
from checkcore.models.check import Check, CheckStatus
from checkcore.schemas.check import (
    CancelCheckRequest,
    CheckCreate,
    CheckItemCreate,
    CheckItemResponse,
    CheckItemUpdate,
    CheckResponse,
    CheckSummary,
    DiscountRequest,
    MergeChecksRequest,
    PaymentCreate,
    PaymentResponse,
    PaymentResultResponse,
    PriceOverrideRequest,
    ReopenCheckRequest,
    RoundResponse,
    SendResponse,
    SplitCheckRequest,
    TransferCheckRequest,
    VersionedRequest,
    VoidItemRequest,
)
from checkcore.services.check_lifecycle_service import CheckLifecycleManager, ShareRequest

logger = logging.getLogger(__name__)

router = APIRouter()


def _check_response(lifecycle: CheckLifecycleManager, check: Check) -> CheckResponse:
    response = CheckResponse.model_validate(check)
    response.paid_amount = lifecycle.paid_amount(check.id)
    return response


@router.get("", response_model=List[CheckSummary])
def list_checks(
    lifecycle: Lifecycle,
    rvc_id: Optional[int] = Query(None, description="Filter by revenue center"),
    check_status: Optional[CheckStatus] = Query(None, alias="status"),
):
    """List checks, newest first."""
    return lifecycle.list_checks(rvc_id=rvc_id, status=check_status)


@router.post("", response_model=CheckResponse, status_code=status.HTTP_201_CREATED)
def create_check(body: CheckCreate, lifecycle: Lifecycle):
    check = lifecycle.create_check(
        rvc_id=body.rvc_id,
        employee_id=body.employee_id,
        order_type=body.order_type,
        table_number=body.table_number,
        guest_count=body.guest_count,
        customer_id=body.customer_id,
    )
    return _check_response(lifecycle, check)


@router.get("/{check_id}", response_model=CheckResponse)
def get_check(check_id: int, lifecycle: Lifecycle):
    return _check_response(lifecycle, lifecycle.get_check(check_id))


# ===================== Items =====================

@router.post("/{check_id}/items", response_model=CheckItemResponse, status_code=status.HTTP_201_CREATED)
def add_item(check_id: int, body: CheckItemCreate, lifecycle: Lifecycle):
    """Ring an item onto the check."""
    return lifecycle.add_item(
        check_id,
        employee_id=body.employee_id,
        menu_item_id=body.menu_item_id,
        menu_item_name=body.menu_item_name,
        unit_price=body.unit_price,
        quantity=body.quantity,
        modifiers=[m.model_dump() for m in body.modifiers],
        item_status=body.item_status,
        linked_entity_ref=body.linked_entity_ref.model_dump() if body.linked_entity_ref else None,
        expected_version=body.expected_version,
    )


@router.patch("/{check_id}/items/{item_id}", response_model=CheckItemResponse)
def modify_item(check_id: int, item_id: int, body: CheckItemUpdate, lifecycle: Lifecycle):
    """Change modifiers or quantity of an unsent or pending item."""
    return lifecycle.modify_item(
        check_id,
        item_id,
        employee_id=body.employee_id,
        modifiers=[m.model_dump() for m in body.modifiers] if body.modifiers is not None else None,
        quantity=body.quantity,
        item_status=body.item_status,
        expected_version=body.expected_version,
    )


@router.post("/{check_id}/items/{item_id}/void", response_model=CheckItemResponse)
def void_item(check_id: int, item_id: int, body: VoidItemRequest, lifecycle: Lifecycle):
    return lifecycle.void_item(
        check_id,
        item_id,
        employee_id=body.employee_id,
        reason=body.reason,
        manager_pin=body.manager_pin,
        expected_version=body.expected_version,
    )


@router.post("/{check_id}/items/{item_id}/price-override", response_model=CheckItemResponse)
def price_override(check_id: int, item_id: int, body: PriceOverrideRequest, lifecycle: Lifecycle):
    return lifecycle.price_override(
        check_id,
        item_id,
        body.new_price,
        employee_id=body.employee_id,
        manager_pin=body.manager_pin,
        reason=body.reason,
        expected_version=body.expected_version,
    )


@router.post("/{check_id}/items/{item_id}/discount", response_model=CheckItemResponse)
def apply_item_discount(check_id: int, item_id: int, body: DiscountRequest, lifecycle: Lifecycle):
    return lifecycle.apply_item_discount(
        check_id,
        item_id,
        discount_id=body.discount_id,
        discount_name=body.discount_name,
        amount=body.amount,
        employee_id=body.employee_id,
        manager_pin=body.manager_pin,
        expected_version=body.expected_version,
    )


@router.delete("/{check_id}/items/{item_id}/discount", response_model=CheckItemResponse)
def remove_item_discount(
    check_id: int,
    item_id: int,
    lifecycle: Lifecycle,
    employee_id: Optional[int] = None,
    expected_version: Optional[int] = None,
):
    return lifecycle.remove_item_discount(
        check_id, item_id, employee_id=employee_id, expected_version=expected_version
    )


# ===================== Check discounts =====================

@router.post("/{check_id}/discounts", response_model=CheckResponse, status_code=status.HTTP_201_CREATED)
def apply_check_discount(check_id: int, body: DiscountRequest, lifecycle: Lifecycle):
    lifecycle.apply_check_discount(
        check_id,
        discount_id=body.discount_id,
        discount_name=body.discount_name,
        amount=body.amount,
        employee_id=body.employee_id,
        manager_pin=body.manager_pin,
        expected_version=body.expected_version,
    )
    return _check_response(lifecycle, lifecycle.get_check(check_id))


@router.delete("/{check_id}/discounts/{check_discount_id}", response_model=CheckResponse)
def remove_check_discount(
    check_id: int,
    check_discount_id: int,
    lifecycle: Lifecycle,
    employee_id: Optional[int] = None,
    expected_version: Optional[int] = None,
):
    check = lifecycle.remove_check_discount(
        check_id, check_discount_id, employee_id=employee_id, expected_version=expected_version
    )
    return _check_response(lifecycle, check)


# ===================== Send / cancel =====================

@router.post("/{check_id}/send", response_model=SendResponse)
def send_check(check_id: int, body: VersionedRequest, lifecycle: Lifecycle):
    """Send unsent items to the kitchen as the next round."""
    result = lifecycle.send(check_id, employee_id=body.employee_id, expected_version=body.expected_version)
    return SendResponse(
        round=RoundResponse.model_validate(result.round) if result.round else None,
        updated_items=[CheckItemResponse.model_validate(item) for item in result.updated_items],
        ticket_ids=[ticket.id for ticket in result.tickets],
        check=_check_response(lifecycle, lifecycle.get_check(check_id)),
    )


@router.post("/{check_id}/cancel", response_model=CheckResponse)
def cancel_check(check_id: int, body: CancelCheckRequest, lifecycle: Lifecycle):
    check = lifecycle.cancel_check(
        check_id, employee_id=body.employee_id, reason=body.reason, expected_version=body.expected_version
    )
    return _check_response(lifecycle, check)


# ===================== Split / merge / transfer =====================

@router.post("/{check_id}/split", response_model=CheckResponse, status_code=status.HTTP_201_CREATED)
def split_check(check_id: int, body: SplitCheckRequest, lifecycle: Lifecycle):
    """Split items onto a new check; returns the new check."""
    new_check = lifecycle.split_check(
        check_id,
        employee_id=body.employee_id,
        move_item_ids=body.move_item_ids,
        share_items=[ShareRequest(item_id=s.item_id, ratio=s.ratio) for s in body.share_items],
        expected_version=body.expected_version,
    )
    return _check_response(lifecycle, new_check)


@router.post("/{check_id}/merge", response_model=CheckResponse)
def merge_checks(check_id: int, body: MergeChecksRequest, lifecycle: Lifecycle):
    check = lifecycle.merge_checks(
        check_id,
        body.source_check_ids,
        employee_id=body.employee_id,
        expected_version=body.expected_version,
    )
    return _check_response(lifecycle, check)


@router.post("/{check_id}/transfer", response_model=CheckResponse)
def transfer_check(check_id: int, body: TransferCheckRequest, lifecycle: Lifecycle):
    check = lifecycle.transfer_check(
        check_id,
        body.to_employee_id,
        employee_id=body.employee_id,
        expected_version=body.expected_version,
    )
    return _check_response(lifecycle, check)


# ===================== Payments =====================

@router.post("/{check_id}/payments", response_model=PaymentResultResponse, status_code=status.HTTP_201_CREATED)
def apply_payment(check_id: int, body: PaymentCreate, lifecycle: Lifecycle):
    result = lifecycle.apply_payment(
        check_id,
        body.amount,
        employee_id=body.employee_id,
        tender_type=body.tender_type,
        tender_id=body.tender_id,
        tender_name=body.tender_name,
        tip_amount=body.tip_amount,
        payment_status=body.payment_status,
        expected_version=body.expected_version,
    )
    return PaymentResultResponse(
        payment=PaymentResponse.model_validate(result.payment),
        paid_amount=result.paid_amount,
        balance_due=result.balance_due,
        change_due=result.change_due,
        closed=result.closed,
        check=_check_response(lifecycle, result.check),
    )


@router.post("/{check_id}/close", response_model=CheckResponse)
def close_check(check_id: int, body: VersionedRequest, lifecycle: Lifecycle):
    """Close a check with no balance due."""
    check = lifecycle.close_check(
        check_id, employee_id=body.employee_id, expected_version=body.expected_version
    )
    return _check_response(lifecycle, check)


@router.post("/{check_id}/reopen", response_model=CheckResponse)
def reopen_check(check_id: int, body: ReopenCheckRequest, lifecycle: Lifecycle):
    check = lifecycle.reopen_check(
        check_id,
        employee_id=body.employee_id,
        manager_pin=body.manager_pin,
        reason=body.reason,
        expected_version=body.expected_version,
    )
    return _check_response(lifecycle, check)
