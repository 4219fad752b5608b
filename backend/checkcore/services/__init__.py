# Services module

from checkcore.services.check_lifecycle_service import (
    CheckLifecycleManager,
    PaymentResult,
    ShareRequest,
)
from checkcore.services.check_totals_service import CheckTotals, CheckTotalsEngine
from checkcore.services.dynamic_order_service import DynamicOrderController
from checkcore.services.event_notifier import (
    ConnectionRegistry,
    EventNotifier,
    NullEventNotifier,
    WebSocketEventNotifier,
)
from checkcore.services.kds_routing import RoutingResolver, RoutingTarget, SqlRoutingResolver
from checkcore.services.kds_ticket_service import KdsTicketService
from checkcore.services.round_dispatcher import DispatchResult, RoundDispatcher
from checkcore.services.tax_snapshot_service import TaxSnapshot, TaxSnapshotCalculator

__all__ = [
    "CheckLifecycleManager",
    "PaymentResult",
    "ShareRequest",
    "CheckTotals",
    "CheckTotalsEngine",
    "DynamicOrderController",
    "ConnectionRegistry",
    "EventNotifier",
    "NullEventNotifier",
    "WebSocketEventNotifier",
    "RoutingResolver",
    "RoutingTarget",
    "SqlRoutingResolver",
    "KdsTicketService",
    "DispatchResult",
    "RoundDispatcher",
    "TaxSnapshot",
    "TaxSnapshotCalculator",
]
