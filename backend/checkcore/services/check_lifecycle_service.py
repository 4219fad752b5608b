"""
Check lifecycle service.

Orchestrates every mutation of a guest check: opening, item entry,
voids, discounts, price overrides, send, split, merge, transfer, payment,
close, cancel and reopen.

Each public operation runs as one unit of work. It checks the caller's
version token, applies its writes, recalls bumped kitchen tickets where
the kitchen needs to see the change, and ends with a totals recompute.
Events are published only after the commit.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Iterable, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.orm import Session

from checkcore.core.business_date import BusinessDateProvider, current_business_date
from checkcore.core.config import settings
from checkcore.core.errors import NotFoundError, PreconditionError, ValidationError
from checkcore.core.money import ZERO, quantize_money, to_decimal
from checkcore.db.session import unit_of_work
from checkcore.models.check import (
    Check,
    CheckDiscount,
    CheckItem,
    CheckPayment,
    CheckStatus,
    ItemStatus,
    PaymentStatus,
    Round,
    TenderType,
    utcnow,
)
from checkcore.models.menu import Employee, MenuItem, RevenueCenter
from checkcore.services.audit_service import log_action
from checkcore.services.check_totals_service import CheckTotals, CheckTotalsEngine
from checkcore.services.dynamic_order_service import DynamicOrderController
from checkcore.services.event_notifier import EventNotifier, NullEventNotifier
from checkcore.services.item_availability_service import ItemAvailabilityService
from checkcore.services.kds_routing import RoutingResolver, SqlRoutingResolver
from checkcore.services.kds_ticket_service import KdsTicketService
from checkcore.services.manager_approval import (
    APPLY_DISCOUNT,
    PRICE_OVERRIDE,
    REOPEN_CHECK,
    VOID_SENT,
    ManagerApprovalService,
)
from checkcore.services.round_dispatcher import DispatchResult, RoundDispatcher
from checkcore.services.tax_snapshot_service import TaxSnapshotCalculator

logger = logging.getLogger(__name__)


@dataclass
class ShareRequest:
    """Move ``ratio`` of an item onto the new check of a split."""

    item_id: int
    ratio: Decimal


@dataclass
class PaymentResult:
    payment: CheckPayment
    check: Check
    paid_amount: Decimal
    balance_due: Decimal
    change_due: Decimal
    closed: bool
    dispatch: Optional[DispatchResult] = None


def normalize_modifiers(modifiers: Optional[Iterable[Any]]) -> list[dict]:
    """Validate modifiers into [{"name", "price_delta"}] with string deltas."""
    normalized = []
    for modifier in modifiers or []:
        if not isinstance(modifier, dict):
            raise ValidationError("Modifier must be an object")
        name = modifier.get("name")
        if not name:
            raise ValidationError("Modifier name is required")
        delta = modifier.get("price_delta", modifier.get("priceDelta"))
        try:
            delta = quantize_money(delta)
        except ValueError:
            raise ValidationError(f"Invalid modifier price {delta!r}", modifier=name)
        normalized.append({"name": str(name), "price_delta": str(delta)})
    return normalized


class CheckLifecycleManager:
    """Entry point for every guest check mutation."""

    def __init__(
        self,
        db: Session,
        resolver: Optional[RoutingResolver] = None,
        notifier: Optional[EventNotifier] = None,
        business_date_provider: Optional[BusinessDateProvider] = None,
    ):
        self.db = db
        self.resolver = resolver or SqlRoutingResolver(db)
        self.notifier = notifier or NullEventNotifier()
        self.business_date = business_date_provider or current_business_date

        self.tax = TaxSnapshotCalculator(db)
        self.totals = CheckTotalsEngine(db, self.tax)
        self.tickets = KdsTicketService(db, self.notifier)
        self.dispatcher = RoundDispatcher(db, self.resolver, self.notifier, self.tickets)
        self.dom = DynamicOrderController(db, self.dispatcher, self.resolver, self.tickets)
        self.availability = ItemAvailabilityService(db)
        self.approvals = ManagerApprovalService(db)

    # ===================== Loading =====================

    def get_check(self, check_id: int) -> Check:
        check = self.db.get(Check, check_id)
        if check is None:
            raise NotFoundError("Check not found", check_id=check_id)
        return check

    def list_checks(self, rvc_id: Optional[int] = None, status: Optional[CheckStatus] = None) -> list[Check]:
        query = self.db.query(Check)
        if rvc_id is not None:
            query = query.filter(Check.rvc_id == rvc_id)
        if status is not None:
            query = query.filter(Check.status == status)
        return query.order_by(Check.id.desc()).all()

    def active_items(self, check_id: int) -> list[CheckItem]:
        self.db.flush()
        return (
            self.db.query(CheckItem)
            .filter(CheckItem.check_id == check_id, CheckItem.voided.is_(False))
            .order_by(CheckItem.id)
            .all()
        )

    def paid_amount(self, check_id: int) -> Decimal:
        """Sum of completed payments."""
        self.db.flush()
        paid = (
            self.db.query(CheckPayment)
            .filter(
                CheckPayment.check_id == check_id,
                CheckPayment.payment_status == PaymentStatus.COMPLETED.value,
            )
            .all()
        )
        return quantize_money(sum((to_decimal(p.amount) for p in paid), Decimal("0")))

    def _has_payments(self, check_id: int) -> bool:
        self.db.flush()
        return (
            self.db.query(CheckPayment.id).filter(CheckPayment.check_id == check_id).first() is not None
        )

    def _round_count(self, check_id: int) -> int:
        self.db.flush()
        return self.db.query(func.count(Round.id)).filter(Round.check_id == check_id).scalar() or 0

    def _open_check(self, check_id: int, expected_version: Optional[int]) -> Check:
        check = self.get_check(check_id)
        if settings.enforce_check_version:
            check.check_version(expected_version)
        if not check.is_open:
            raise PreconditionError(
                f"Check is {check.status.value}", check_id=check_id, status=check.status.value
            )
        return check

    def _item(self, check: Check, item_id: int) -> CheckItem:
        item = self.db.get(CheckItem, item_id)
        if item is None or item.check_id != check.id:
            raise NotFoundError("Item not found on check", check_id=check.id, item_id=item_id)
        if item.voided:
            raise PreconditionError("Item is voided", item_id=item_id)
        return item

    def _employee(self, employee_id: int) -> Employee:
        employee = self.db.get(Employee, employee_id)
        if employee is None:
            raise NotFoundError("Employee not found", employee_id=employee_id)
        return employee

    def _property_id(self, check: Check) -> Optional[int]:
        rvc = self.db.get(RevenueCenter, check.rvc_id)
        return rvc.property_id if rvc else None

    def _finish(self, check: Check, recall_kitchen: bool = False) -> CheckTotals:
        """Common tail of every mutation."""
        if recall_kitchen:
            self.tickets.recall_bumped_for_check(check.id)
        check.increment_version()
        return self.totals.recompute(check.id)

    # ===================== Check creation =====================

    def next_check_number(self, rvc_id: int) -> int:
        self.db.flush()
        current = self.db.query(func.max(Check.check_number)).filter(Check.rvc_id == rvc_id).scalar()
        return (current or 0) + 1

    def create_check(
        self,
        rvc_id: int,
        employee_id: int,
        order_type: str = "dine_in",
        table_number: Optional[str] = None,
        guest_count: int = 1,
        customer_id: Optional[str] = None,
    ) -> Check:
        if guest_count < 1:
            raise ValidationError("Guest count must be at least 1", guest_count=guest_count)
        with unit_of_work(self.db):
            rvc = self.db.get(RevenueCenter, rvc_id)
            if rvc is None or not rvc.active:
                raise NotFoundError("Revenue center not found", rvc_id=rvc_id)
            self._employee(employee_id)
            check = self._new_check(
                rvc_id,
                employee_id,
                order_type=order_type,
                table_number=table_number,
                guest_count=guest_count,
                customer_id=customer_id,
            )
        logger.info(f"Opened check {check.id} (#{check.check_number}) in RVC {rvc_id}")
        return check

    def _new_check(self, rvc_id: int, employee_id: int, **fields: Any) -> Check:
        business_date = self.business_date()
        check = Check(
            check_number=self.next_check_number(rvc_id),
            rvc_id=rvc_id,
            employee_id=employee_id,
            status=CheckStatus.OPEN,
            origin_business_date=business_date,
            business_date=business_date,
            subtotal=ZERO,
            discount_total=ZERO,
            tax_total=ZERO,
            total=ZERO,
            opened_at=utcnow(),
            **fields,
        )
        self.db.add(check)
        self.db.flush()
        return check

    # ===================== Items =====================

    def add_item(
        self,
        check_id: int,
        employee_id: Optional[int] = None,
        menu_item_id: Optional[int] = None,
        menu_item_name: Optional[str] = None,
        unit_price: Any = None,
        quantity: int = 1,
        modifiers: Optional[Iterable[dict]] = None,
        item_status: str = ItemStatus.ACTIVE.value,
        linked_entity_ref: Optional[dict] = None,
        expected_version: Optional[int] = None,
    ) -> CheckItem:
        """Ring an item onto a check and snapshot its tax."""
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1", quantity=quantity)
        if item_status not in (ItemStatus.ACTIVE.value, ItemStatus.PENDING.value):
            raise ValidationError(f"Unknown item status {item_status!r}")
        modifiers = normalize_modifiers(modifiers)

        with unit_of_work(self.db):
            check = self._open_check(check_id, expected_version)
            property_id = self._property_id(check)

            menu_item = None
            if menu_item_id is not None:
                menu_item = self.db.get(MenuItem, menu_item_id)
                if menu_item is None:
                    raise NotFoundError("Menu item not found", menu_item_id=menu_item_id)
                if property_id is not None and not self.availability.is_available(
                    menu_item_id, property_id, quantity
                ):
                    raise PreconditionError(
                        f"{menu_item.name} is 86'd", menu_item_id=menu_item_id
                    )
            if unit_price is None:
                if menu_item is None:
                    raise ValidationError("Unit price is required for open items")
                unit_price = menu_item.price
            try:
                price = quantize_money(unit_price)
            except ValueError:
                raise ValidationError(f"Invalid unit price {unit_price!r}")
            if price < 0:
                raise ValidationError("Unit price cannot be negative", unit_price=str(price))
            name = menu_item_name or (menu_item.name if menu_item else None)
            if not name:
                raise ValidationError("Item name is required")

            snapshot = self.tax.compute(menu_item_id, price, modifiers, quantity)
            link_kind, link_id = self._linked_entity(linked_entity_ref)
            item = CheckItem(
                check_id=check.id,
                menu_item_id=menu_item_id,
                menu_item_name=name,
                unit_price=price,
                quantity=quantity,
                modifiers=modifiers,
                item_status=item_status,
                sent=False,
                voided=False,
                added_at=utcnow(),
                business_date=self.business_date(),
                linked_entity_kind=link_kind,
                linked_entity_id=link_id,
                **snapshot.as_item_fields(),
            )
            self.db.add(item)
            self.db.flush()

            if property_id is not None:
                self.availability.decrement(menu_item_id, property_id, quantity)
            self.dom.on_item_added(check, item)
            self._finish(check, recall_kitchen=True)
        logger.debug(f"Added {item.menu_item_name} x{quantity} to check {check_id} (employee={employee_id})")
        return item

    @staticmethod
    def _linked_entity(ref: Optional[dict]) -> tuple[Optional[str], Optional[str]]:
        if not ref:
            return None, None
        kind, entity_id = ref.get("kind"), ref.get("id")
        if not kind or entity_id is None:
            raise ValidationError("Linked entity needs a kind and an id")
        return str(kind), str(entity_id)

    def modify_item(
        self,
        check_id: int,
        item_id: int,
        employee_id: Optional[int] = None,
        modifiers: Optional[Iterable[dict]] = None,
        quantity: Optional[int] = None,
        item_status: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> CheckItem:
        """Change an item's modifiers, quantity or pending status.

        Allowed while the item is unsent, or when it is still pending
        (sent ahead of its modifiers in Dynamic Order Mode).
        """
        if quantity is not None and quantity < 1:
            raise ValidationError("Quantity must be at least 1", quantity=quantity)
        if item_status is not None and item_status not in (ItemStatus.ACTIVE.value, ItemStatus.PENDING.value):
            raise ValidationError(f"Unknown item status {item_status!r}")
        new_modifiers = normalize_modifiers(modifiers) if modifiers is not None else None

        with unit_of_work(self.db):
            check = self._open_check(check_id, expected_version)
            item = self._item(check, item_id)
            was_pending = item.item_status == ItemStatus.PENDING.value
            if item.sent and not was_pending:
                raise PreconditionError("Sent items cannot be modified", item_id=item_id)

            old_quantity = item.quantity
            if new_modifiers is not None:
                item.modifiers = new_modifiers
            if quantity is not None:
                item.quantity = quantity
            if item_status is not None:
                item.item_status = item_status

            self.tax.refresh_amounts(item)
            if to_decimal(item.discount_amount) > to_decimal(item.taxable_amount):
                raise ValidationError("Item discount would exceed the item amount", item_id=item_id)

            property_id = self._property_id(check)
            if property_id is not None and item.quantity != old_quantity:
                if item.quantity > old_quantity:
                    self.availability.decrement(item.menu_item_id, property_id, item.quantity - old_quantity)
                else:
                    self.availability.restore(item.menu_item_id, property_id, old_quantity - item.quantity)

            if item.sent:
                self.tickets.mark_items_modified(item.id)

            finalized = was_pending and item.item_status == ItemStatus.ACTIVE.value
            log_action(
                self.db,
                "finalize_pending_item" if finalized else "modify_item",
                "check_item",
                item.id,
                rvc_id=check.rvc_id,
                employee_id=employee_id,
                details={
                    "menuItemName": item.menu_item_name,
                    "modifiers": item.modifiers,
                    "quantity": item.quantity,
                },
            )
            self.tickets.notify_check(check, "modify")
            self._finish(check, recall_kitchen=True)
        return item

    def void_item(
        self,
        check_id: int,
        item_id: int,
        employee_id: Optional[int] = None,
        reason: Optional[str] = None,
        manager_pin: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> CheckItem:
        """Void an item. Sent items need manager approval. The row is kept."""
        with unit_of_work(self.db):
            check = self._open_check(check_id, expected_version)
            item = self._item(check, item_id)

            approver = None
            if item.sent:
                approver = self.approvals.authorize(manager_pin, VOID_SENT)

            item.voided = True
            item.void_reason = reason
            item.voided_by_employee_id = employee_id
            item.voided_at = utcnow()
            self.tickets.void_ticket_items_for(item.id)

            property_id = self._property_id(check)
            if property_id is not None:
                self.availability.restore(item.menu_item_id, property_id, item.quantity)

            log_action(
                self.db,
                "void_sent" if item.sent else "void_unsent",
                "check_item",
                item.id,
                rvc_id=check.rvc_id,
                employee_id=employee_id,
                details={
                    "menuItemName": item.menu_item_name,
                    "reason": reason,
                    "amount": item.taxable_amount,
                },
                reason_code=reason,
                manager_approval_id=approver.id if approver else None,
            )
            self.tickets.notify_check(check, "void")
            self._finish(check, recall_kitchen=True)
        return item

    def price_override(
        self,
        check_id: int,
        item_id: int,
        new_price: Any,
        employee_id: Optional[int] = None,
        manager_pin: Optional[str] = None,
        reason: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> CheckItem:
        try:
            price = quantize_money(new_price)
        except ValueError:
            raise ValidationError(f"Invalid price {new_price!r}")
        if price < 0:
            raise ValidationError("Price cannot be negative", new_price=str(price))

        with unit_of_work(self.db):
            check = self._open_check(check_id, expected_version)
            item = self._item(check, item_id)
            approver = self.approvals.authorize(manager_pin, PRICE_OVERRIDE)

            old_price = item.unit_price
            item.unit_price = price
            self.tax.refresh_amounts(item)
            if to_decimal(item.discount_amount) > to_decimal(item.taxable_amount):
                raise ValidationError("Item discount would exceed the new price", item_id=item_id)
            if item.sent:
                self.tickets.mark_items_modified(item.id)

            log_action(
                self.db,
                "price_override",
                "check_item",
                item.id,
                rvc_id=check.rvc_id,
                employee_id=employee_id,
                details={"menuItemName": item.menu_item_name, "oldPrice": old_price, "newPrice": price},
                reason_code=reason,
                manager_approval_id=approver.id,
            )
            self._finish(check, recall_kitchen=True)
        return item

    # ===================== Discounts =====================

    def _discount_approver(self, manager_pin: Optional[str]) -> Optional[Employee]:
        if manager_pin or settings.require_discount_approval:
            return self.approvals.authorize(manager_pin, APPLY_DISCOUNT)
        return None

    @staticmethod
    def _discount_amount(amount: Any) -> Decimal:
        try:
            value = quantize_money(amount)
        except ValueError:
            raise ValidationError(f"Invalid discount amount {amount!r}")
        if value <= 0:
            raise ValidationError("Discount amount must be positive", amount=str(value))
        return value

    def apply_item_discount(
        self,
        check_id: int,
        item_id: int,
        discount_id: int,
        discount_name: str,
        amount: Any,
        employee_id: Optional[int] = None,
        manager_pin: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> CheckItem:
        value = self._discount_amount(amount)
        with unit_of_work(self.db):
            check = self._open_check(check_id, expected_version)
            item = self._item(check, item_id)
            if item.discount_amount:
                raise PreconditionError("Item already has a discount", item_id=item_id)
            if value > to_decimal(item.taxable_amount):
                raise ValidationError(
                    "Discount exceeds the item amount",
                    amount=str(value),
                    item_amount=str(item.taxable_amount),
                )
            approver = self._discount_approver(manager_pin)

            item.discount_id = discount_id
            item.discount_name = discount_name
            item.discount_amount = value
            item.discount_applied_by = employee_id
            item.discount_approved_by = approver.id if approver else None

            log_action(
                self.db,
                "apply_item_discount",
                "check_item",
                item.id,
                rvc_id=check.rvc_id,
                employee_id=employee_id,
                details={"discountId": discount_id, "discountName": discount_name, "amount": value},
                manager_approval_id=approver.id if approver else None,
            )
            self._finish(check)
        return item

    def remove_item_discount(
        self,
        check_id: int,
        item_id: int,
        employee_id: Optional[int] = None,
        expected_version: Optional[int] = None,
    ) -> CheckItem:
        with unit_of_work(self.db):
            check = self._open_check(check_id, expected_version)
            item = self._item(check, item_id)
            if not item.discount_amount:
                raise PreconditionError("Item has no discount", item_id=item_id)
            removed = item.discount_amount
            item.discount_id = None
            item.discount_name = None
            item.discount_amount = None
            item.discount_applied_by = None
            item.discount_approved_by = None
            log_action(
                self.db,
                "remove_item_discount",
                "check_item",
                item.id,
                rvc_id=check.rvc_id,
                employee_id=employee_id,
                details={"amount": removed},
            )
            self._finish(check)
        return item

    def apply_check_discount(
        self,
        check_id: int,
        discount_id: int,
        discount_name: str,
        amount: Any,
        employee_id: Optional[int] = None,
        manager_pin: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> CheckDiscount:
        value = self._discount_amount(amount)
        with unit_of_work(self.db):
            check = self._open_check(check_id, expected_version)
            totals = self.totals.recompute(check.id)
            discountable = totals.subtotal - totals.discount_total
            if value > discountable:
                raise ValidationError(
                    "Discount exceeds the discountable amount",
                    amount=str(value),
                    discountable=str(discountable),
                )
            approver = self._discount_approver(manager_pin)

            discount = CheckDiscount(
                check_id=check.id,
                discount_id=discount_id,
                discount_name=discount_name,
                amount=value,
                employee_id=employee_id,
                manager_approval_id=approver.id if approver else None,
                applied_at=utcnow(),
            )
            self.db.add(discount)
            self.db.flush()

            log_action(
                self.db,
                "apply_check_discount",
                "check",
                check.id,
                rvc_id=check.rvc_id,
                employee_id=employee_id,
                details={"discountId": discount_id, "discountName": discount_name, "amount": value},
                manager_approval_id=discount.manager_approval_id,
            )
            self._finish(check)
        return discount

    def remove_check_discount(
        self,
        check_id: int,
        check_discount_id: int,
        employee_id: Optional[int] = None,
        expected_version: Optional[int] = None,
    ) -> Check:
        with unit_of_work(self.db):
            check = self._open_check(check_id, expected_version)
            discount = self.db.get(CheckDiscount, check_discount_id)
            if discount is None or discount.check_id != check.id:
                raise NotFoundError("Discount not found on check", check_discount_id=check_discount_id)
            log_action(
                self.db,
                "remove_check_discount",
                "check",
                check.id,
                rvc_id=check.rvc_id,
                employee_id=employee_id,
                details={"discountId": discount.discount_id, "amount": discount.amount},
            )
            self.db.delete(discount)
            self._finish(check)
        return check

    # ===================== Send =====================

    def _send_unsent(
        self, check: Check, employee_id: Optional[int], audit_action: str = "send_to_kitchen"
    ) -> DispatchResult:
        """Finalize the preview ticket, or send unsent items as a new round."""
        result = self.dom.finalize_preview_ticket(check, employee_id)
        if result is not None:
            return result
        unsent = [item for item in self.active_items(check.id) if not item.sent]
        return self.dispatcher.send(check, employee_id, unsent, audit_action=audit_action)

    def send(
        self,
        check_id: int,
        employee_id: Optional[int] = None,
        expected_version: Optional[int] = None,
    ) -> DispatchResult:
        """Send every unsent item to the kitchen as the next round."""
        with unit_of_work(self.db):
            check = self._open_check(check_id, expected_version)
            result = self._send_unsent(check, employee_id)
            if result.round is not None:
                check.increment_version()
        return result

    # ===================== Cancel =====================

    def cancel_check(
        self,
        check_id: int,
        employee_id: Optional[int] = None,
        reason: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> Check:
        """Cancel a check that never reached the kitchen."""
        with unit_of_work(self.db):
            check = self._open_check(check_id, expected_version)
            if self._round_count(check.id) > 0:
                raise PreconditionError("Check has sent rounds; void items instead", check_id=check_id)
            if self._has_payments(check.id):
                raise PreconditionError("Check has payments", check_id=check_id)

            property_id = self._property_id(check)
            now = utcnow()
            items = self.active_items(check.id)
            for item in items:
                item.voided = True
                item.void_reason = reason or "check_cancelled"
                item.voided_by_employee_id = employee_id
                item.voided_at = now
                if property_id is not None:
                    self.availability.restore(item.menu_item_id, property_id, item.quantity)

            preview = self.tickets.get_preview_ticket(check.id)
            if preview is not None:
                self.tickets.void_ticket(preview)

            check.status = CheckStatus.VOIDED
            check.closed_at = now
            log_action(
                self.db,
                "cancel_check",
                "check",
                check.id,
                rvc_id=check.rvc_id,
                employee_id=employee_id,
                details={"itemCount": len(items)},
                reason_code=reason,
            )
            self.tickets.notify_check(check, "cancel")
            self._finish(check)
        logger.info(f"Cancelled check {check_id}")
        return check

    # ===================== Split / merge / transfer =====================

    def split_check(
        self,
        check_id: int,
        employee_id: Optional[int] = None,
        move_item_ids: Sequence[int] = (),
        share_items: Sequence[ShareRequest] = (),
        expected_version: Optional[int] = None,
    ) -> Check:
        """Split items onto a new check. Returns the new check.

        ``move_item_ids`` are reassigned whole. Each share request carves
        ``ratio`` of an item off onto the new check.
        """
        move_ids = list(dict.fromkeys(move_item_ids))
        shares = list(share_items)
        if not move_ids and not shares:
            raise ValidationError("Nothing to split")
        share_ids = [share.item_id for share in shares]
        if len(set(share_ids)) != len(share_ids) or set(share_ids) & set(move_ids):
            raise ValidationError("Each item can be split only once")
        for share in shares:
            ratio = to_decimal(share.ratio)
            if not Decimal("0") < ratio < Decimal("1"):
                raise ValidationError("Share ratio must be between 0 and 1", item_id=share.item_id)

        with unit_of_work(self.db):
            source = self._open_check(check_id, expected_version)
            if any(not item.sent for item in self.active_items(source.id)):
                raise PreconditionError("Send unsent items before splitting", check_id=check_id)
            if self._has_payments(source.id):
                raise PreconditionError("Cannot split a check with payments", check_id=check_id)

            moved = [self._item(source, item_id) for item_id in move_ids]
            shared = [(self._item(source, share.item_id), to_decimal(share.ratio)) for share in shares]

            target = self._new_check(
                source.rvc_id,
                source.employee_id,
                order_type=source.order_type,
                table_number=source.table_number,
                guest_count=1,
                customer_id=source.customer_id,
            )
            for item in moved:
                item.check_id = target.id
            for item, ratio in shared:
                self._share_item(item, ratio, target)

            log_action(
                self.db,
                "split_check",
                "check",
                source.id,
                rvc_id=source.rvc_id,
                employee_id=employee_id,
                details={
                    "newCheckId": target.id,
                    "movedItemIds": move_ids,
                    "sharedItemIds": share_ids,
                },
            )
            self._finish(source)
            self.totals.recompute(target.id)
        logger.info(f"Split check {check_id} into new check {target.id}")
        return target

    def _share_item(self, item: CheckItem, ratio: Decimal, target: Check) -> CheckItem:
        """Carve ``ratio`` of an item onto the target check.

        Quantities split as whole units when there are two or more;
        a single unit is split by price. Both pieces keep the frozen tax
        snapshot and the pieces always add back up to the original.
        """
        discount = to_decimal(item.discount_amount)
        piece = CheckItem(
            check_id=target.id,
            round_id=item.round_id,
            menu_item_id=item.menu_item_id,
            menu_item_name=item.menu_item_name,
            item_status=item.item_status,
            sent=item.sent,
            voided=False,
            added_at=utcnow(),
            business_date=item.business_date,
            tax_group_id_at_sale=item.tax_group_id_at_sale,
            tax_mode_at_sale=item.tax_mode_at_sale,
            tax_rate_at_sale=item.tax_rate_at_sale,
            discount_id=item.discount_id,
            discount_name=item.discount_name,
            discount_applied_by=item.discount_applied_by,
            discount_approved_by=item.discount_approved_by,
        )

        if item.quantity >= 2:
            units = int((item.quantity * ratio).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
            units = min(max(units, 1), item.quantity - 1)
            share = Decimal(units) / Decimal(item.quantity)
            piece.quantity = units
            piece.unit_price = item.unit_price
            piece.modifiers = [dict(m) for m in item.modifiers or []]
            item.quantity -= units
        else:
            share = ratio
            taxable = to_decimal(item.taxable_amount)
            piece_amount = quantize_money(taxable * ratio)
            piece.quantity = 1
            piece.unit_price = piece_amount
            piece.modifiers = [{"name": m.get("name"), "price_delta": "0.00"} for m in item.modifiers or []]
            item.unit_price = taxable - piece_amount
            item.modifiers = [{"name": m.get("name"), "price_delta": "0.00"} for m in item.modifiers or []]

        if discount > 0:
            piece_discount = quantize_money(discount * share)
            piece.discount_amount = piece_discount
            item.discount_amount = discount - piece_discount

        self.tax.refresh_amounts(item)
        self.tax.refresh_amounts(piece)
        self.db.add(piece)
        self.db.flush()
        return piece

    def merge_checks(
        self,
        target_check_id: int,
        source_check_ids: Sequence[int],
        employee_id: Optional[int] = None,
        expected_version: Optional[int] = None,
    ) -> Check:
        """Move every live item and check discount of the sources onto the target."""
        source_ids = list(dict.fromkeys(source_check_ids))
        if not source_ids:
            raise ValidationError("No checks to merge")
        if target_check_id in source_ids:
            raise ValidationError("A check cannot be merged into itself")

        with unit_of_work(self.db):
            target = self._open_check(target_check_id, expected_version)
            sources = []
            for source_id in source_ids:
                source = self.get_check(source_id)
                if not source.is_open:
                    raise PreconditionError("Source check is not open", check_id=source_id)
                if source.rvc_id != target.rvc_id:
                    raise PreconditionError("Checks belong to different revenue centers", check_id=source_id)
                if self._has_payments(source.id):
                    raise PreconditionError("Source check has payments", check_id=source_id)
                sources.append(source)

            now = utcnow()
            moved_count = 0
            previewed: list[int] = []
            for source in sources:
                # A closed source must not keep a live preview ticket
                preview = self.tickets.get_preview_ticket(source.id)
                if preview is not None:
                    previewed.extend(self.tickets.live_item_ids(preview.id))
                    self.tickets.void_ticket(preview)
                    self.tickets.notify_check(source, "preview_voided")
                for item in self.active_items(source.id):
                    item.check_id = target.id
                    moved_count += 1
                for discount in self.db.query(CheckDiscount).filter(CheckDiscount.check_id == source.id).all():
                    discount.check_id = target.id
                source.status = CheckStatus.CLOSED
                source.closed_at = now
                self._finish(source)

            if previewed:
                target_preview = self.tickets.get_or_create_preview_ticket(target)
                for check_item_id in previewed:
                    self.tickets.add_item(target_preview, check_item_id)
                self.tickets.notify_check(target, "preview")

            log_action(
                self.db,
                "merge_checks",
                "check",
                target.id,
                rvc_id=target.rvc_id,
                employee_id=employee_id,
                details={"sourceCheckIds": source_ids, "itemCount": moved_count},
            )
            self._finish(target)
        logger.info(f"Merged checks {source_ids} into {target_check_id}")
        return target

    def transfer_check(
        self,
        check_id: int,
        to_employee_id: int,
        employee_id: Optional[int] = None,
        expected_version: Optional[int] = None,
    ) -> Check:
        """Hand a check to another employee. No financial effect."""
        with unit_of_work(self.db):
            check = self._open_check(check_id, expected_version)
            new_owner = self._employee(to_employee_id)
            if not new_owner.active:
                raise ValidationError("Employee is not active", employee_id=to_employee_id)
            previous = check.employee_id
            check.employee_id = new_owner.id
            check.increment_version()
            log_action(
                self.db,
                "transfer_check",
                "check",
                check.id,
                rvc_id=check.rvc_id,
                employee_id=employee_id,
                details={"fromEmployeeId": previous, "toEmployeeId": new_owner.id},
            )
        return check

    # ===================== Payment / close / reopen =====================

    def apply_payment(
        self,
        check_id: int,
        amount: Any,
        employee_id: Optional[int] = None,
        tender_type: str = TenderType.CASH.value,
        tender_id: Optional[int] = None,
        tender_name: Optional[str] = None,
        tip_amount: Any = None,
        payment_status: str = PaymentStatus.COMPLETED.value,
        expected_version: Optional[int] = None,
    ) -> PaymentResult:
        """Record a tender and close the check once it is paid.

        Cash over-tender records the balance and returns change; other
        tenders may not exceed the balance.
        """
        try:
            tender = TenderType(tender_type)
            status = PaymentStatus(payment_status)
        except ValueError as e:
            raise ValidationError(str(e))
        try:
            tendered = quantize_money(amount)
            tip = quantize_money(tip_amount)
        except ValueError:
            raise ValidationError("Invalid payment amount")
        if tendered <= 0:
            raise ValidationError("Payment amount must be positive", amount=str(tendered))
        if tip < 0:
            raise ValidationError("Tip cannot be negative", tip_amount=str(tip))

        with unit_of_work(self.db):
            check = self._open_check(check_id, expected_version)
            totals = self.totals.recompute(check.id)
            balance = totals.total - self.paid_amount(check.id)
            if balance <= 0:
                raise PreconditionError("Check has no balance due; close it instead", check_id=check_id)

            recorded, change = tendered, ZERO
            if tendered > balance:
                if tender != TenderType.CASH:
                    raise ValidationError(
                        "Payment exceeds the balance due", amount=str(tendered), balance_due=str(balance)
                    )
                recorded, change = balance, tendered - balance

            business_date = self.business_date()
            payment = CheckPayment(
                check_id=check.id,
                tender_id=tender_id,
                tender_name=tender_name or tender.value.title(),
                tender_type=tender.value,
                amount=recorded,
                tip_amount=tip,
                payment_status=status.value,
                employee_id=employee_id,
                paid_at=utcnow(),
                business_date=business_date,
            )
            self.db.add(payment)
            self.db.flush()

            self.dom.send_pending_fire_on_next_items(check)

            paid = self.paid_amount(check.id)
            closed = paid >= totals.total - settings.payment_close_tolerance
            dispatch = None
            if closed:
                dispatch = self._close(check, employee_id, paid, business_date)
            check.increment_version()

        logger.info(f"Payment of {recorded} on check {check_id} (closed={closed}, change={change})")
        return PaymentResult(
            payment=payment,
            check=check,
            paid_amount=paid,
            balance_due=max(totals.total - paid, ZERO),
            change_due=change,
            closed=closed,
            dispatch=dispatch,
        )

    def _close(
        self, check: Check, employee_id: Optional[int], paid: Decimal, business_date: str
    ) -> Optional[DispatchResult]:
        result = self.dom.finalize_preview_ticket(check, employee_id)
        if result is None:
            unsent = [item for item in self.active_items(check.id) if not item.sent]
            result = self.dispatcher.send(check, employee_id, unsent, audit_action="payment_auto_send")
        self.tickets.mark_paid(check.id)

        check.status = CheckStatus.CLOSED
        check.closed_at = utcnow()
        # Revenue posts on the day the check is paid
        check.business_date = business_date
        log_action(
            self.db,
            "close_check",
            "check",
            check.id,
            rvc_id=check.rvc_id,
            employee_id=employee_id,
            details={"total": check.total, "paidAmount": paid},
        )
        logger.info(f"Closed check {check.id} on business date {business_date}")
        return result if result.round is not None else None

    def close_check(
        self,
        check_id: int,
        employee_id: Optional[int] = None,
        expected_version: Optional[int] = None,
    ) -> Check:
        """Close a check with nothing left to pay, such as a fully comped one.

        Closes once completed payments reach total minus the close
        tolerance, the same rule a payment applies.
        """
        with unit_of_work(self.db):
            check = self._open_check(check_id, expected_version)
            totals = self.totals.recompute(check.id)
            paid = self.paid_amount(check.id)
            balance = totals.total - paid
            if balance > settings.payment_close_tolerance:
                raise PreconditionError(
                    "Check has a balance due", check_id=check_id, balance_due=str(balance)
                )
            self._close(check, employee_id, paid, self.business_date())
            check.increment_version()
        return check

    def reopen_check(
        self,
        check_id: int,
        employee_id: Optional[int] = None,
        manager_pin: Optional[str] = None,
        reason: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> Check:
        """Reopen a closed check. Rounds, tickets and payments are kept."""
        with unit_of_work(self.db):
            check = self.get_check(check_id)
            if settings.enforce_check_version:
                check.check_version(expected_version)
            if check.status != CheckStatus.CLOSED:
                raise PreconditionError("Only closed checks can be reopened", check_id=check_id)
            approver = self.approvals.authorize(manager_pin, REOPEN_CHECK)

            check.status = CheckStatus.OPEN
            check.closed_at = None
            check.increment_version()
            log_action(
                self.db,
                "reopen_check",
                "check",
                check.id,
                rvc_id=check.rvc_id,
                employee_id=employee_id,
                details={"checkNumber": check.check_number},
                reason_code=reason,
                manager_approval_id=approver.id,
            )
        logger.info(f"Reopened check {check_id}")
        return check
