"""Tax snapshot calculation for check line items.

The rate, mode and tax group in effect when an item is rung in are frozen
on the item. Later edits to the tax group never reach existing items;
only the item's own price, quantity or modifiers re-derive its amounts.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from checkcore.core.money import ZERO, modifier_total, quantize_money, quantize_rate, to_decimal
from checkcore.models.check import CheckItem
from checkcore.models.menu import MenuItem, TaxMode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TaxSnapshot:
    """Frozen tax facts for one line item."""

    tax_group_id_at_sale: Optional[int]
    tax_mode_at_sale: str
    tax_rate_at_sale: Decimal
    taxable_amount: Decimal
    tax_amount: Decimal

    def as_item_fields(self) -> dict:
        return {
            "tax_group_id_at_sale": self.tax_group_id_at_sale,
            "tax_mode_at_sale": self.tax_mode_at_sale,
            "tax_rate_at_sale": self.tax_rate_at_sale,
            "taxable_amount": self.taxable_amount,
            "tax_amount": self.tax_amount,
        }


def line_taxable_amount(unit_price, modifiers: Optional[Iterable[dict]], quantity: int) -> Decimal:
    """(unit price + modifier deltas) x quantity, rounded to cents."""
    return quantize_money((to_decimal(unit_price) + modifier_total(modifiers)) * quantity)


def line_tax_amount(taxable_amount, rate, tax_mode: Optional[str]) -> Decimal:
    """Add-on tax for a taxable base. Inclusive items carry no extra charge."""
    if tax_mode == TaxMode.INCLUSIVE.value:
        return ZERO
    return quantize_money(to_decimal(taxable_amount) * to_decimal(rate))


class TaxSnapshotCalculator:
    """Computes and refreshes item tax snapshots."""

    def __init__(self, db: Session):
        self.db = db

    def live_rate_for(self, menu_item_id: Optional[int]) -> tuple[Optional[int], str, Decimal]:
        """Current (tax group id, mode, rate) configured for a menu item.

        Items without a menu item or with no active tax group are untaxed.
        """
        if menu_item_id is None:
            return None, TaxMode.ADD_ON.value, Decimal("0")
        menu_item = self.db.get(MenuItem, menu_item_id)
        if menu_item is None or menu_item.tax_group is None or not menu_item.tax_group.active:
            return None, TaxMode.ADD_ON.value, Decimal("0")
        group = menu_item.tax_group
        return group.id, group.tax_mode or TaxMode.ADD_ON.value, to_decimal(group.rate)

    def compute(
        self,
        menu_item_id: Optional[int],
        unit_price,
        modifiers: Optional[Iterable[dict]] = None,
        quantity: int = 1,
    ) -> TaxSnapshot:
        """Capture the tax snapshot for a new line item."""
        group_id, mode, rate = self.live_rate_for(menu_item_id)
        rate = quantize_rate(rate)
        taxable = line_taxable_amount(unit_price, modifiers, quantity)
        return TaxSnapshot(
            tax_group_id_at_sale=group_id,
            tax_mode_at_sale=mode,
            tax_rate_at_sale=rate,
            taxable_amount=taxable,
            tax_amount=line_tax_amount(taxable, rate, mode),
        )

    def refresh_amounts(self, item: CheckItem) -> None:
        """Re-derive taxable and tax amounts after the item's own price,
        quantity or modifiers changed.

        The frozen rate, mode and group are never touched. Legacy items
        without a snapshot only get their taxable amount refreshed; their
        tax is resolved live during totals recompute.
        """
        taxable = line_taxable_amount(item.unit_price, item.modifiers, item.quantity)
        item.taxable_amount = taxable
        if item.is_legacy:
            logger.debug(f"Item {item.id} has no tax snapshot; tax left to live lookup")
            return
        item.tax_amount = line_tax_amount(taxable, item.tax_rate_at_sale, item.tax_mode_at_sale)
