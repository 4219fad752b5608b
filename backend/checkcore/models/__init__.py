"""SQLAlchemy models."""

from checkcore.models.menu import (
    DomSendMode,
    Employee,
    ItemAvailability,
    MenuItem,
    RevenueCenter,
    TaxGroup,
    TaxMode,
)
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
)
from checkcore.models.kds import (
    KdsDevice,
    KdsTicket,
    KdsTicketItem,
    OrderDevice,
    OrderDeviceKds,
    PrintClass,
    PrintClassRouting,
    TicketItemStatus,
    TicketStatus,
)
from checkcore.models.operations import AuditLogEntry

__all__ = [
    # Reference data
    "RevenueCenter",
    "TaxGroup",
    "TaxMode",
    "MenuItem",
    "Employee",
    "ItemAvailability",
    "DomSendMode",
    # Checks
    "Check",
    "CheckItem",
    "CheckDiscount",
    "CheckPayment",
    "Round",
    "CheckStatus",
    "ItemStatus",
    "PaymentStatus",
    "TenderType",
    # Kitchen
    "KdsTicket",
    "KdsTicketItem",
    "TicketStatus",
    "TicketItemStatus",
    "PrintClass",
    "OrderDevice",
    "KdsDevice",
    "OrderDeviceKds",
    "PrintClassRouting",
    # Operations
    "AuditLogEntry",
]
