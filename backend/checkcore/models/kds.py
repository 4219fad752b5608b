"""Kitchen display models: tickets, ticket items, and the device routing
tables used to resolve which station an item goes to."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, DateTime, Enum as SQLEnum, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from checkcore.db.base import Base
from checkcore.models.check import utcnow


class TicketStatus(str, Enum):
    """Kitchen ticket status. A recalled ticket is ACTIVE with is_recalled set."""

    ACTIVE = "active"
    BUMPED = "bumped"
    VOIDED = "voided"


class TicketItemStatus(str, Enum):
    PENDING = "pending"
    BUMPED = "bumped"
    VOIDED = "voided"


class KdsTicket(Base):
    """A kitchen ticket for one round at one station.

    ``round_id`` is null while the ticket is a Dynamic Order Mode preview.
    Null station fields mark the fallback ticket for unrouted items.
    """

    __tablename__ = "kds_tickets"

    id: Mapped[int] = mapped_column(primary_key=True)
    check_id: Mapped[int] = mapped_column(ForeignKey("checks.id"), nullable=False, index=True)
    round_id: Mapped[Optional[int]] = mapped_column(ForeignKey("rounds.id"), nullable=True)
    rvc_id: Mapped[Optional[int]] = mapped_column(ForeignKey("revenue_centers.id"), nullable=True, index=True)
    kds_device_id: Mapped[Optional[int]] = mapped_column(ForeignKey("kds_devices.id"), nullable=True)
    order_device_id: Mapped[Optional[int]] = mapped_column(ForeignKey("order_devices.id"), nullable=True)
    station_type: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)

    status: Mapped[TicketStatus] = mapped_column(
        SQLEnum(TicketStatus), default=TicketStatus.ACTIVE, nullable=False, index=True
    )
    is_preview: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    paid: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_recalled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    recalled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    bumped_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    bumped_by_employee_id: Mapped[Optional[int]] = mapped_column(ForeignKey("employees.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    items: Mapped[list["KdsTicketItem"]] = relationship(
        "KdsTicketItem", back_populates="ticket", order_by="KdsTicketItem.id"
    )

    @property
    def is_fallback(self) -> bool:
        return self.kds_device_id is None


class KdsTicketItem(Base):
    """Links a ticket to a check item."""

    __tablename__ = "kds_ticket_items"
    __table_args__ = (UniqueConstraint("kds_ticket_id", "check_item_id"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    kds_ticket_id: Mapped[int] = mapped_column(ForeignKey("kds_tickets.id"), nullable=False, index=True)
    check_item_id: Mapped[int] = mapped_column(ForeignKey("check_items.id"), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), default=TicketItemStatus.PENDING.value, nullable=False)
    is_ready: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    ready_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    is_modified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    modified_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    ticket: Mapped["KdsTicket"] = relationship("KdsTicket", back_populates="items")


# ===================== Routing =====================

class PrintClass(Base):
    """Logical routing category; decouples menu items from devices."""

    __tablename__ = "print_classes"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)


class OrderDevice(Base):
    """Logical order destination that fans out to KDS screens."""

    __tablename__ = "order_devices"

    id: Mapped[int] = mapped_column(primary_key=True)
    property_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)


class KdsDevice(Base):
    """A physical kitchen display."""

    __tablename__ = "kds_devices"

    id: Mapped[int] = mapped_column(primary_key=True)
    property_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    station_type: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class OrderDeviceKds(Base):
    __tablename__ = "order_device_kds"
    __table_args__ = (UniqueConstraint("order_device_id", "kds_device_id"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    order_device_id: Mapped[int] = mapped_column(ForeignKey("order_devices.id"), nullable=False)
    kds_device_id: Mapped[int] = mapped_column(ForeignKey("kds_devices.id"), nullable=False)


class PrintClassRouting(Base):
    """Routes a print class to an order device.

    Both scope columns null is the global default, ``property_id`` alone
    is property-wide, and ``rvc_id`` is the most specific.
    """

    __tablename__ = "print_class_routing"

    id: Mapped[int] = mapped_column(primary_key=True)
    print_class_id: Mapped[int] = mapped_column(ForeignKey("print_classes.id"), nullable=False, index=True)
    property_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    rvc_id: Mapped[Optional[int]] = mapped_column(ForeignKey("revenue_centers.id"), nullable=True)
    order_device_id: Mapped[int] = mapped_column(ForeignKey("order_devices.id"), nullable=False)
