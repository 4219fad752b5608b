"""Reference data read by the check core: revenue centers, tax groups,
menu items, employees and item availability."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from checkcore.db.base import Base, Money, Rate


class TaxMode(str, Enum):
    """How a tax group's rate applies to an item price."""

    ADD_ON = "add_on"
    INCLUSIVE = "inclusive"


class DomSendMode(str, Enum):
    """Dynamic Order Mode live-fire policy."""

    FIRE_ON_FLY = "fire_on_fly"
    FIRE_ON_NEXT = "fire_on_next"
    FIRE_ON_TENDER = "fire_on_tender"


class RevenueCenter(Base):
    """A sales outlet within a property."""

    __tablename__ = "revenue_centers"

    id: Mapped[int] = mapped_column(primary_key=True)
    property_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    dynamic_order_mode: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    dom_send_mode: Mapped[str] = mapped_column(
        String(20), default=DomSendMode.FIRE_ON_FLY.value, nullable=False
    )
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class TaxGroup(Base):
    """A tax rate and mode that menu items point at."""

    __tablename__ = "tax_groups"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    rate: Mapped[Decimal] = mapped_column(Rate(), nullable=False)  # 0.0825 for 8.25%
    tax_mode: Mapped[str] = mapped_column(String(20), default=TaxMode.ADD_ON.value, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class MenuItem(Base):
    """Menu item as configured by the property."""

    __tablename__ = "menu_items"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    price: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    tax_group_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("tax_groups.id", ondelete="SET NULL"), nullable=True
    )
    print_class_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("print_classes.id", ondelete="SET NULL"), nullable=True
    )
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    tax_group: Mapped[Optional["TaxGroup"]] = relationship("TaxGroup")


class Employee(Base):
    """Employee who rings checks; managers carry approval privileges."""

    __tablename__ = "employees"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    pin_hash: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    privileges: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def has_privilege(self, privilege: str) -> bool:
        return privilege in (self.privileges or [])


class ItemAvailability(Base):
    """Countdown of a menu item's remaining portions at a property.

    ``quantity_available`` of None means the item is not counted.
    """

    __tablename__ = "item_availability"
    __table_args__ = (UniqueConstraint("menu_item_id", "property_id"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    menu_item_id: Mapped[int] = mapped_column(
        ForeignKey("menu_items.id", ondelete="CASCADE"), nullable=False, index=True
    )
    property_id: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity_available: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    is_86ed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )
