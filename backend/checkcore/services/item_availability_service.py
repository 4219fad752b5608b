"""Item availability (86) counters.

Ringing an item in takes portions off its countdown; voiding or
cancelling puts them back. Counter updates are best-effort: a failure is
logged and the check operation carries on.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from checkcore.models.menu import ItemAvailability

logger = logging.getLogger(__name__)


class ItemAvailabilityService:
    """Reads and adjusts per-property item countdowns."""

    def __init__(self, db: Session):
        self.db = db

    def _record(self, menu_item_id: int, property_id: int) -> Optional[ItemAvailability]:
        return (
            self.db.query(ItemAvailability)
            .filter(
                ItemAvailability.menu_item_id == menu_item_id,
                ItemAvailability.property_id == property_id,
            )
            .first()
        )

    def is_available(self, menu_item_id: int, property_id: int, quantity: int = 1) -> bool:
        """False when the item is 86'd or has fewer portions than requested."""
        record = self._record(menu_item_id, property_id)
        if record is None:
            return True
        if record.is_86ed:
            return False
        if record.quantity_available is not None and record.quantity_available < quantity:
            return False
        return True

    def decrement(self, menu_item_id: Optional[int], property_id: int, quantity: int = 1) -> None:
        if menu_item_id is None or quantity <= 0:
            return
        try:
            record = self._record(menu_item_id, property_id)
            if record is None or record.quantity_available is None:
                return
            record.quantity_available = max(0, record.quantity_available - quantity)
            if record.quantity_available == 0:
                record.is_86ed = True
                logger.info(f"Menu item {menu_item_id} sold out at property {property_id}")
        except SQLAlchemyError:
            logger.exception(f"Failed to decrement availability for menu item {menu_item_id}")

    def restore(self, menu_item_id: Optional[int], property_id: int, quantity: int = 1) -> None:
        if menu_item_id is None or quantity <= 0:
            return
        try:
            record = self._record(menu_item_id, property_id)
            if record is None or record.quantity_available is None:
                return
            record.quantity_available += quantity
            if record.is_86ed and record.quantity_available > 0:
                record.is_86ed = False
        except SQLAlchemyError:
            logger.exception(f"Failed to restore availability for menu item {menu_item_id}")
