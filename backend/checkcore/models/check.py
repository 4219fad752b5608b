"""Guest check models: checks, line items, rounds, discounts and payments."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    JSON, Boolean, DateTime, Enum as SQLEnum, ForeignKey, Integer, String, UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from checkcore.db.base import Base, Money, Rate, VersionMixin


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CheckStatus(str, Enum):
    """Status of a guest check."""

    OPEN = "open"
    CLOSED = "closed"
    VOIDED = "voided"  # cancelled before anything was sent


class ItemStatus(str, Enum):
    """Line item readiness; pending items still await modifiers."""

    PENDING = "pending"
    ACTIVE = "active"


class PaymentStatus(str, Enum):
    AUTHORIZED = "authorized"
    COMPLETED = "completed"


class TenderType(str, Enum):
    CASH = "cash"
    CREDIT = "credit"
    DEBIT = "debit"
    GIFT = "gift"
    OTHER = "other"


class Check(Base, VersionMixin):
    """A guest check owned by a revenue center."""

    __tablename__ = "checks"
    __table_args__ = (UniqueConstraint("rvc_id", "check_number"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    check_number: Mapped[int] = mapped_column(Integer, nullable=False)
    rvc_id: Mapped[int] = mapped_column(
        ForeignKey("revenue_centers.id"), nullable=False, index=True
    )
    employee_id: Mapped[int] = mapped_column(ForeignKey("employees.id"), nullable=False)
    customer_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    order_type: Mapped[str] = mapped_column(String(20), default="dine_in", nullable=False)
    status: Mapped[CheckStatus] = mapped_column(
        SQLEnum(CheckStatus), default=CheckStatus.OPEN, nullable=False, index=True
    )

    subtotal: Mapped[Decimal] = mapped_column(Money(), default=Decimal("0.00"), nullable=False)
    discount_total: Mapped[Decimal] = mapped_column(Money(), default=Decimal("0.00"), nullable=False)
    tax_total: Mapped[Decimal] = mapped_column(Money(), default=Decimal("0.00"), nullable=False)
    total: Mapped[Decimal] = mapped_column(Money(), default=Decimal("0.00"), nullable=False)

    guest_count: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    table_number: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    opened_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    # Date the check was opened; never changes. Used for aging reports.
    origin_business_date: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    # Date revenue posts on; overwritten when the check closes.
    business_date: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)

    items: Mapped[list["CheckItem"]] = relationship(
        "CheckItem", back_populates="check", order_by="CheckItem.id"
    )
    discounts: Mapped[list["CheckDiscount"]] = relationship(
        "CheckDiscount", back_populates="check", order_by="CheckDiscount.id"
    )
    payments: Mapped[list["CheckPayment"]] = relationship(
        "CheckPayment", back_populates="check", order_by="CheckPayment.id"
    )
    rounds: Mapped[list["Round"]] = relationship(
        "Round", back_populates="check", order_by="Round.round_number"
    )

    @property
    def is_open(self) -> bool:
        return self.status == CheckStatus.OPEN


class Round(Base):
    """One send-to-kitchen batch. Immutable once created."""

    __tablename__ = "rounds"
    __table_args__ = (UniqueConstraint("check_id", "round_number"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    check_id: Mapped[int] = mapped_column(ForeignKey("checks.id"), nullable=False, index=True)
    round_number: Mapped[int] = mapped_column(Integer, nullable=False)
    sent_by_employee_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("employees.id"), nullable=True
    )
    sent_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    check: Mapped["Check"] = relationship("Check", back_populates="rounds")


class CheckItem(Base):
    """A line item on a check.

    The ``*_at_sale`` tax fields are frozen at ring-in. Only
    ``taxable_amount`` and ``tax_amount`` are ever recomputed, and only
    when this item's own price, quantity or modifiers change.
    A null ``tax_rate_at_sale`` marks a legacy item without a snapshot.
    """

    __tablename__ = "check_items"

    id: Mapped[int] = mapped_column(primary_key=True)
    check_id: Mapped[int] = mapped_column(ForeignKey("checks.id"), nullable=False, index=True)
    round_id: Mapped[Optional[int]] = mapped_column(ForeignKey("rounds.id"), nullable=True)
    menu_item_id: Mapped[Optional[int]] = mapped_column(ForeignKey("menu_items.id"), nullable=True)
    menu_item_name: Mapped[str] = mapped_column(String(200), nullable=False)

    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    # [{"name": "Extra cheese", "price_delta": "1.50"}]
    modifiers: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    item_status: Mapped[str] = mapped_column(String(20), default=ItemStatus.ACTIVE.value, nullable=False)

    sent: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    voided: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    void_reason: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    voided_by_employee_id: Mapped[Optional[int]] = mapped_column(ForeignKey("employees.id"), nullable=True)
    voided_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    added_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    business_date: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)

    # Tax snapshot
    tax_group_id_at_sale: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    tax_mode_at_sale: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    tax_rate_at_sale: Mapped[Optional[Decimal]] = mapped_column(Rate(), nullable=True)
    taxable_amount: Mapped[Optional[Decimal]] = mapped_column(Money(), nullable=True)
    tax_amount: Mapped[Optional[Decimal]] = mapped_column(Money(), nullable=True)

    # Item-level discount
    discount_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    discount_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    discount_amount: Mapped[Optional[Decimal]] = mapped_column(Money(), nullable=True)
    discount_applied_by: Mapped[Optional[int]] = mapped_column(ForeignKey("employees.id"), nullable=True)
    discount_approved_by: Mapped[Optional[int]] = mapped_column(ForeignKey("employees.id"), nullable=True)

    # Linked entity (gift card, loyalty reward, ...) this line represents
    linked_entity_kind: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    linked_entity_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    check: Mapped["Check"] = relationship("Check", back_populates="items")

    @property
    def is_legacy(self) -> bool:
        return self.tax_rate_at_sale is None

    @property
    def linked_entity_ref(self) -> Optional[dict]:
        if not self.linked_entity_kind:
            return None
        return {"kind": self.linked_entity_kind, "id": self.linked_entity_id}


class CheckDiscount(Base):
    """Check-level discount, distinct from an item's discount_amount."""

    __tablename__ = "check_discounts"

    id: Mapped[int] = mapped_column(primary_key=True)
    check_id: Mapped[int] = mapped_column(ForeignKey("checks.id"), nullable=False, index=True)
    discount_id: Mapped[int] = mapped_column(Integer, nullable=False)
    discount_name: Mapped[str] = mapped_column(String(100), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    employee_id: Mapped[Optional[int]] = mapped_column(ForeignKey("employees.id"), nullable=True)
    manager_approval_id: Mapped[Optional[int]] = mapped_column(ForeignKey("employees.id"), nullable=True)
    applied_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    check: Mapped["Check"] = relationship("Check", back_populates="discounts")


class CheckPayment(Base):
    """A tender applied to a check."""

    __tablename__ = "check_payments"

    id: Mapped[int] = mapped_column(primary_key=True)
    check_id: Mapped[int] = mapped_column(ForeignKey("checks.id"), nullable=False, index=True)
    tender_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    tender_name: Mapped[str] = mapped_column(String(100), nullable=False)
    tender_type: Mapped[str] = mapped_column(String(20), default=TenderType.CASH.value, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    tip_amount: Mapped[Decimal] = mapped_column(Money(), default=Decimal("0.00"), nullable=False)
    payment_status: Mapped[str] = mapped_column(
        String(20), default=PaymentStatus.COMPLETED.value, nullable=False
    )
    employee_id: Mapped[Optional[int]] = mapped_column(ForeignKey("employees.id"), nullable=True)
    paid_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    business_date: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)

    check: Mapped["Check"] = relationship("Check", back_populates="payments")
