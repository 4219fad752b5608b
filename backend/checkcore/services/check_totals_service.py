"""Check totals recomputation.

Totals are always rebuilt from the current item and discount rows, never
adjusted incrementally, so running the engine twice gives the same result.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from checkcore.core.errors import NotFoundError
from checkcore.core.money import quantize_money, to_decimal
from checkcore.models.check import Check, CheckDiscount, CheckItem
from checkcore.services.tax_snapshot_service import (
    TaxSnapshotCalculator,
    line_tax_amount,
    line_taxable_amount,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckTotals:
    subtotal: Decimal
    discount_total: Decimal
    tax_total: Decimal
    total: Decimal


class CheckTotalsEngine:
    """Rewrites a check's four money fields from its items and discounts."""

    def __init__(self, db: Session, tax_calculator: Optional[TaxSnapshotCalculator] = None):
        self.db = db
        self.tax_calculator = tax_calculator or TaxSnapshotCalculator(db)

    def calculate(
        self,
        items: Iterable[CheckItem],
        check_discounts: Iterable[CheckDiscount],
    ) -> CheckTotals:
        """Compute totals for the given non-voided items and check discounts."""
        gross_subtotal = Decimal("0")
        add_on_tax = Decimal("0")
        item_discount_total = Decimal("0")

        for item in items:
            discount = to_decimal(item.discount_amount)
            if item.is_legacy:
                taxable = line_taxable_amount(item.unit_price, item.modifiers, item.quantity)
                _, mode, rate = self.tax_calculator.live_rate_for(item.menu_item_id)
                tax = line_tax_amount(taxable - discount, rate, mode)
            else:
                taxable = item.taxable_amount
                if taxable is None:
                    taxable = line_taxable_amount(item.unit_price, item.modifiers, item.quantity)
                taxable = to_decimal(taxable)
                if discount > 0:
                    tax = line_tax_amount(taxable - discount, item.tax_rate_at_sale, item.tax_mode_at_sale)
                else:
                    tax = to_decimal(item.tax_amount)

            gross_subtotal += taxable
            add_on_tax += tax
            item_discount_total += discount

        check_discount_total = sum((to_decimal(d.amount) for d in check_discounts), Decimal("0"))
        # Voids, splits and item discounts can shrink the base after a check
        # discount was applied; it never takes the check below zero.
        discountable = max(gross_subtotal - item_discount_total, Decimal("0"))
        if check_discount_total > discountable:
            logger.debug(f"Capping check discounts {check_discount_total} at {discountable}")
            check_discount_total = discountable

        # Proportional relief: the check discount lowers the taxable base
        # by the same share it takes of the gross subtotal.
        if check_discount_total > 0 and gross_subtotal > 0:
            relief = check_discount_total / gross_subtotal
            add_on_tax = max(add_on_tax * (1 - relief), Decimal("0"))

        subtotal = quantize_money(gross_subtotal)
        tax_total = quantize_money(add_on_tax)
        discount_total = quantize_money(item_discount_total + check_discount_total)
        return CheckTotals(
            subtotal=subtotal,
            discount_total=discount_total,
            tax_total=tax_total,
            total=quantize_money(subtotal - discount_total + tax_total),
        )

    def recompute(self, check_id: int) -> CheckTotals:
        """Recompute and persist totals for a check. Does not broadcast."""
        self.db.flush()
        check = self.db.get(Check, check_id)
        if check is None:
            raise NotFoundError("Check not found", check_id=check_id)

        items = (
            self.db.query(CheckItem)
            .filter(CheckItem.check_id == check_id, CheckItem.voided.is_(False))
            .order_by(CheckItem.id)
            .all()
        )
        discounts = self.db.query(CheckDiscount).filter(CheckDiscount.check_id == check_id).all()

        totals = self.calculate(items, discounts)
        check.subtotal = totals.subtotal
        check.discount_total = totals.discount_total
        check.tax_total = totals.tax_total
        check.total = totals.total
        self.db.flush()

        logger.debug(
            f"Check {check_id} totals: subtotal={totals.subtotal} discount={totals.discount_total} "
            f"tax={totals.tax_total} total={totals.total}"
        )
        return totals
