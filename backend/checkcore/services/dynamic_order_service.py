"""
Dynamic Order Mode (live-fire) controller.

In revenue centers with Dynamic Order Mode, items show up on the kitchen
display as they are rung instead of only at Send. Each check has at most
one mutable preview ticket; Send or payment converts it in place into a
normal round ticket.

Send modes:
- fire_on_fly: every new item goes straight onto the preview ticket.
- fire_on_next: the newest item is withheld; ringing another item flushes
  the withheld ones onto the preview ticket.
- fire_on_tender: nothing is shown until Send or payment sweeps all
  unsent items onto the ticket and finalizes it at once.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.orm import Session

from checkcore.models.check import Check, CheckItem
from checkcore.models.kds import KdsTicket, KdsTicketItem, TicketItemStatus
from checkcore.models.menu import DomSendMode
from checkcore.services.audit_service import log_action
from checkcore.services.kds_routing import RoutingResolver
from checkcore.services.kds_ticket_service import KdsTicketService
from checkcore.services.round_dispatcher import DispatchResult, RoundDispatcher

logger = logging.getLogger(__name__)


class DynamicOrderController:
    """Manages the preview ticket of checks in Dynamic Order Mode."""

    def __init__(
        self,
        db: Session,
        dispatcher: RoundDispatcher,
        resolver: RoutingResolver,
        tickets: Optional[KdsTicketService] = None,
    ):
        self.db = db
        self.dispatcher = dispatcher
        self.resolver = resolver
        self.tickets = tickets or dispatcher.tickets

    def send_mode(self, check: Check) -> Optional[DomSendMode]:
        return self.resolver.resolve_send_mode(check.rvc_id)

    def unsent_items(self, check: Check) -> list[CheckItem]:
        self.db.flush()
        return (
            self.db.query(CheckItem)
            .filter(
                CheckItem.check_id == check.id,
                CheckItem.sent.is_(False),
                CheckItem.voided.is_(False),
            )
            .order_by(CheckItem.id)
            .all()
        )

    def withheld_items(self, check: Check, preview: Optional[KdsTicket]) -> list[CheckItem]:
        """Unsent items not yet on the preview ticket."""
        unsent = self.unsent_items(check)
        if preview is None:
            return unsent
        on_ticket = set(self.tickets.ticket_item_ids(preview.id))
        return [item for item in unsent if item.id not in on_ticket]

    def on_item_added(self, check: Check, item: CheckItem) -> Optional[KdsTicket]:
        """Apply the live-fire policy to a newly rung item.

        Returns the preview ticket when it changed.
        """
        mode = self.send_mode(check)
        if mode is None or mode == DomSendMode.FIRE_ON_TENDER:
            return None

        if mode == DomSendMode.FIRE_ON_FLY:
            preview = self.tickets.get_or_create_preview_ticket(check)
            self.tickets.add_item(preview, item.id)
            self.tickets.notify_check(check, "preview")
            return preview

        # fire_on_next: the new item waits, everything rung before it fires
        preview = self.tickets.get_preview_ticket(check.id)
        previous = [w for w in self.withheld_items(check, preview) if w.id != item.id]
        if not previous:
            return None
        if preview is None:
            preview = self.tickets.get_or_create_preview_ticket(check)
        for withheld in previous:
            self.tickets.add_item(preview, withheld.id)
        self.tickets.notify_check(check, "preview")
        logger.debug(f"Check {check.id}: flushed {len(previous)} withheld items to preview {preview.id}")
        return preview

    def send_pending_fire_on_next_items(self, check: Check) -> int:
        """Flush every withheld fire_on_next item onto the preview ticket."""
        if self.send_mode(check) != DomSendMode.FIRE_ON_NEXT:
            return 0
        preview = self.tickets.get_preview_ticket(check.id)
        withheld = self.withheld_items(check, preview)
        if not withheld:
            return 0
        if preview is None:
            preview = self.tickets.get_or_create_preview_ticket(check)
        for item in withheld:
            self.tickets.add_item(preview, item.id)
        self.tickets.notify_check(check, "preview")
        return len(withheld)

    def finalize_preview_ticket(
        self,
        check: Check,
        employee_id: Optional[int],
        audit_action: str = "send_to_kitchen",
    ) -> Optional[DispatchResult]:
        """Convert the preview ticket into a round ticket.

        Sweeps every unsent item onto the ticket first, so withheld
        fire_on_next items and fire_on_tender items are included. Returns
        None when the check is not in Dynamic Order Mode and has no
        preview ticket, or when there is nothing to send.
        """
        preview = self.tickets.get_preview_ticket(check.id)
        mode = self.send_mode(check)
        if preview is None and mode is None:
            return None

        unsent = self.unsent_items(check)
        if not unsent:
            if preview is not None and not self._has_live_items(preview):
                self.tickets.void_ticket(preview)
                self.tickets.notify_check(check, "preview_voided")
                logger.info(f"Voided empty preview ticket {preview.id} for check {check.id}")
            return None

        if preview is None:
            preview = self.tickets.get_or_create_preview_ticket(check)
        for item in unsent:
            self.tickets.add_item(preview, item.id)

        round_ = self.dispatcher.create_round(check, employee_id)
        updated = self.dispatcher.mark_sent(unsent, round_)
        preview.is_preview = False
        preview.round_id = round_.id
        self.db.flush()

        log_action(
            self.db,
            audit_action,
            "check",
            check.id,
            rvc_id=check.rvc_id,
            employee_id=employee_id,
            details={"roundNumber": round_.round_number, "itemCount": len(unsent)},
        )
        self.tickets.notify_check(check, "send")
        logger.info(
            f"Check {check.id}: finalized preview ticket {preview.id} as round {round_.round_number}"
        )
        return DispatchResult(round=round_, updated_items=updated, tickets=[preview])

    def _has_live_items(self, ticket: KdsTicket) -> bool:
        return (
            self.db.query(KdsTicketItem)
            .filter(
                KdsTicketItem.kds_ticket_id == ticket.id,
                KdsTicketItem.status != TicketItemStatus.VOIDED.value,
            )
            .first()
            is not None
        )
