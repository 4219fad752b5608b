"""Kitchen display routing.

Menu items map to a print class; a print class routes to an order device,
which fans out to one or more KDS screens. Routing is looked up from the
most specific scope to the least: revenue center, then property, then
the global default.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from checkcore.models.kds import KdsDevice, OrderDevice, OrderDeviceKds, PrintClassRouting
from checkcore.models.menu import DomSendMode, MenuItem, RevenueCenter

logger = logging.getLogger(__name__)

DEFAULT_STATION_TYPE = "hot"


@dataclass(frozen=True)
class RoutingTarget:
    """One kitchen display an item should appear on."""

    kds_device_id: int
    station_type: str
    order_device_id: Optional[int]
    kds_device_name: str = ""
    order_device_name: str = ""


class RoutingResolver(ABC):
    """Read-only routing lookups used by the dispatcher."""

    @abstractmethod
    def resolve_targets(
        self, menu_item_id: int, property_id: Optional[int], rvc_id: Optional[int]
    ) -> list[RoutingTarget]:
        """Return the KDS targets for a menu item. Empty means unrouted."""
        pass

    @abstractmethod
    def resolve_send_mode(self, rvc_id: int) -> Optional[DomSendMode]:
        """Return the live-fire policy, or None when Dynamic Order Mode is off."""
        pass


class SqlRoutingResolver(RoutingResolver):
    """Resolves routing from the print class routing tables."""

    def __init__(self, db: Session):
        self.db = db

    def resolve_targets(
        self, menu_item_id: int, property_id: Optional[int], rvc_id: Optional[int]
    ) -> list[RoutingTarget]:
        menu_item = self.db.get(MenuItem, menu_item_id)
        if menu_item is None or menu_item.print_class_id is None:
            return []
        return self.resolve_targets_for_print_class(menu_item.print_class_id, property_id, rvc_id)

    def resolve_targets_for_print_class(
        self, print_class_id: int, property_id: Optional[int], rvc_id: Optional[int]
    ) -> list[RoutingTarget]:
        routing = self._find_routing(print_class_id, property_id, rvc_id)
        if routing is None:
            return []

        order_device = self.db.get(OrderDevice, routing.order_device_id)
        if order_device is None:
            logger.warning(
                f"Print class {print_class_id} routes to missing order device {routing.order_device_id}"
            )
            return []

        devices = (
            self.db.query(KdsDevice)
            .join(OrderDeviceKds, OrderDeviceKds.kds_device_id == KdsDevice.id)
            .filter(OrderDeviceKds.order_device_id == order_device.id, KdsDevice.active.is_(True))
            .order_by(KdsDevice.id)
            .all()
        )
        return [
            RoutingTarget(
                kds_device_id=device.id,
                station_type=device.station_type or DEFAULT_STATION_TYPE,
                order_device_id=order_device.id,
                kds_device_name=device.name,
                order_device_name=order_device.name,
            )
            for device in devices
        ]

    def _find_routing(
        self, print_class_id: int, property_id: Optional[int], rvc_id: Optional[int]
    ) -> Optional[PrintClassRouting]:
        base = self.db.query(PrintClassRouting).filter(
            PrintClassRouting.print_class_id == print_class_id
        ).order_by(PrintClassRouting.id)

        if rvc_id is not None:
            routing = base.filter(PrintClassRouting.rvc_id == rvc_id).first()
            if routing:
                return routing
        if property_id is not None:
            routing = base.filter(
                PrintClassRouting.property_id == property_id,
                PrintClassRouting.rvc_id.is_(None),
            ).first()
            if routing:
                return routing
        return base.filter(
            PrintClassRouting.property_id.is_(None),
            PrintClassRouting.rvc_id.is_(None),
        ).first()

    def resolve_send_mode(self, rvc_id: int) -> Optional[DomSendMode]:
        rvc = self.db.get(RevenueCenter, rvc_id)
        if rvc is None or not rvc.dynamic_order_mode:
            return None
        try:
            return DomSendMode(rvc.dom_send_mode or DomSendMode.FIRE_ON_FLY.value)
        except ValueError:
            logger.warning(f"RVC {rvc_id} has unknown send mode {rvc.dom_send_mode!r}; using fire_on_fly")
            return DomSendMode.FIRE_ON_FLY

    def station_types(self, property_id: Optional[int] = None) -> list[str]:
        """Distinct station types of the active displays, for KDS filters."""
        query = self.db.query(KdsDevice).filter(KdsDevice.active.is_(True))
        if property_id is not None:
            query = query.filter(KdsDevice.property_id == property_id)
        return sorted({device.station_type or DEFAULT_STATION_TYPE for device in query.all()})
