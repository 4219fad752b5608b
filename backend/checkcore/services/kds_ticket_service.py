"""
KDS ticket service.

Creates kitchen tickets for rounds and preview tickets, and implements the
kitchen-side operations: bump, recall, bump-all and item ready. Ticket
changes publish a kds_update to the check's revenue center channel.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.orm import Session

from checkcore.core.errors import NotFoundError, PreconditionError, ValidationError
from checkcore.db.session import unit_of_work
from checkcore.models.check import Check, utcnow
from checkcore.models.kds import KdsTicket, KdsTicketItem, TicketItemStatus, TicketStatus
from checkcore.services.event_notifier import (
    EventNotifier,
    NullEventNotifier,
    kds_update_event,
    queue_event,
)
from checkcore.services.kds_routing import RoutingTarget

logger = logging.getLogger(__name__)

RECALL_SCOPES = ("all", "expo")


class KdsTicketService:
    """Kitchen ticket persistence and lifecycle."""

    def __init__(self, db: Session, notifier: Optional[EventNotifier] = None):
        self.db = db
        self.notifier = notifier or NullEventNotifier()

    # ===================== Creation =====================

    def create_ticket(
        self,
        check: Check,
        round_id: Optional[int],
        target: Optional[RoutingTarget] = None,
        is_preview: bool = False,
    ) -> KdsTicket:
        """Create a ticket. No target means the fallback (unrouted) ticket."""
        ticket = KdsTicket(
            check_id=check.id,
            round_id=round_id,
            rvc_id=check.rvc_id,
            kds_device_id=target.kds_device_id if target else None,
            order_device_id=target.order_device_id if target else None,
            station_type=target.station_type if target else None,
            status=TicketStatus.ACTIVE,
            is_preview=is_preview,
            paid=False,
        )
        self.db.add(ticket)
        self.db.flush()
        return ticket

    def add_item(self, ticket: KdsTicket, check_item_id: int) -> KdsTicketItem:
        """Link a check item to a ticket. Idempotent per (ticket, item)."""
        existing = (
            self.db.query(KdsTicketItem)
            .filter(
                KdsTicketItem.kds_ticket_id == ticket.id,
                KdsTicketItem.check_item_id == check_item_id,
            )
            .first()
        )
        if existing:
            return existing
        ticket_item = KdsTicketItem(
            check_item_id=check_item_id,
            status=TicketItemStatus.PENDING.value,
            is_ready=False,
        )
        ticket.items.append(ticket_item)
        self.db.flush()
        return ticket_item

    def get_preview_ticket(self, check_id: int) -> Optional[KdsTicket]:
        return (
            self.db.query(KdsTicket)
            .filter(
                KdsTicket.check_id == check_id,
                KdsTicket.is_preview.is_(True),
                KdsTicket.status != TicketStatus.VOIDED,
            )
            .order_by(KdsTicket.id)
            .first()
        )

    def get_or_create_preview_ticket(self, check: Check) -> KdsTicket:
        """The check's single preview ticket, created on first use."""
        ticket = self.get_preview_ticket(check.id)
        if ticket is None:
            ticket = self.create_ticket(check, round_id=None, is_preview=True)
            logger.info(f"Opened preview ticket {ticket.id} for check {check.id}")
        return ticket

    # ===================== Queries =====================

    def get_ticket(self, ticket_id: int) -> KdsTicket:
        ticket = self.db.get(KdsTicket, ticket_id)
        if ticket is None:
            raise NotFoundError("KDS ticket not found", ticket_id=ticket_id)
        return ticket

    def tickets_for_check(self, check_id: int) -> list[KdsTicket]:
        return (
            self.db.query(KdsTicket)
            .filter(KdsTicket.check_id == check_id)
            .order_by(KdsTicket.id)
            .all()
        )

    def ticket_item_ids(self, ticket_id: int) -> list[int]:
        rows = (
            self.db.query(KdsTicketItem.check_item_id)
            .filter(KdsTicketItem.kds_ticket_id == ticket_id)
            .order_by(KdsTicketItem.id)
            .all()
        )
        return [row[0] for row in rows]

    def live_item_ids(self, ticket_id: int) -> list[int]:
        """Check item ids on a ticket, skipping voided lines."""
        self.db.flush()
        rows = (
            self.db.query(KdsTicketItem.check_item_id)
            .filter(
                KdsTicketItem.kds_ticket_id == ticket_id,
                KdsTicketItem.status != TicketItemStatus.VOIDED.value,
            )
            .order_by(KdsTicketItem.id)
            .all()
        )
        return [row[0] for row in rows]

    def list_tickets(
        self,
        rvc_id: Optional[int] = None,
        station_type: Optional[str] = None,
        kds_device_id: Optional[int] = None,
        status: Optional[TicketStatus] = None,
        include_paid: bool = True,
    ) -> list[KdsTicket]:
        """Tickets for a kitchen display, oldest first."""
        query = self.db.query(KdsTicket)
        if rvc_id is not None:
            query = query.filter(KdsTicket.rvc_id == rvc_id)
        if station_type:
            query = query.filter(KdsTicket.station_type == station_type)
        if kds_device_id is not None:
            query = query.filter(KdsTicket.kds_device_id == kds_device_id)
        if status is not None:
            query = query.filter(KdsTicket.status == status)
        else:
            query = query.filter(KdsTicket.status != TicketStatus.VOIDED)
        if not include_paid:
            query = query.filter(KdsTicket.paid.is_(False))
        return query.order_by(KdsTicket.created_at, KdsTicket.id).all()

    # ===================== Kitchen operations =====================

    def bump(self, ticket_id: int, employee_id: Optional[int] = None) -> KdsTicket:
        with unit_of_work(self.db):
            ticket = self.get_ticket(ticket_id)
            if ticket.status == TicketStatus.VOIDED:
                raise PreconditionError("Cannot bump a voided ticket", ticket_id=ticket_id)
            self._bump(ticket, employee_id)
            self._notify(ticket.rvc_id, ticket_id=ticket.id, check_id=ticket.check_id, action="bump")
        return ticket

    def recall(self, ticket_id: int, scope: str = "all") -> KdsTicket:
        """Return a bumped ticket to the active display.

        The ``expo`` scope re-targets the ticket to the expo station.
        """
        if scope not in RECALL_SCOPES:
            raise ValidationError(f"Unknown recall scope {scope!r}", scope=scope)
        with unit_of_work(self.db):
            ticket = self.get_ticket(ticket_id)
            if ticket.status == TicketStatus.VOIDED:
                raise PreconditionError("Cannot recall a voided ticket", ticket_id=ticket_id)
            self._recall(ticket)
            if scope == "expo":
                ticket.station_type = "expo"
            self._notify(ticket.rvc_id, ticket_id=ticket.id, check_id=ticket.check_id, action="recall")
        return ticket

    def bump_all(
        self,
        rvc_id: Optional[int] = None,
        employee_id: Optional[int] = None,
        station_type: Optional[str] = None,
    ) -> int:
        """Bump every active ticket in scope. Returns how many were bumped."""
        with unit_of_work(self.db):
            tickets = self.list_tickets(rvc_id=rvc_id, station_type=station_type, status=TicketStatus.ACTIVE)
            for ticket in tickets:
                self._bump(ticket, employee_id)
            if tickets:
                self._notify(rvc_id, action="bump_all", count=len(tickets))
        logger.info(f"Bumped {len(tickets)} tickets (rvc={rvc_id}, station={station_type})")
        return len(tickets)

    def mark_item_ready(self, ticket_item_id: int, ready: bool = True) -> KdsTicketItem:
        with unit_of_work(self.db):
            ticket_item = self.db.get(KdsTicketItem, ticket_item_id)
            if ticket_item is None:
                raise NotFoundError("KDS ticket item not found", ticket_item_id=ticket_item_id)
            if ticket_item.status == TicketItemStatus.VOIDED.value:
                raise PreconditionError("Item was voided", ticket_item_id=ticket_item_id)
            ticket_item.is_ready = ready
            ticket_item.ready_at = utcnow() if ready else None
            ticket = ticket_item.ticket
            self._notify(ticket.rvc_id, ticket_id=ticket.id, check_id=ticket.check_id, action="item_ready")
        return ticket_item

    # ===================== Check-driven updates =====================

    def recall_bumped_for_check(self, check_id: int) -> int:
        """Re-display every bumped ticket of a check after the check changed."""
        tickets = (
            self.db.query(KdsTicket)
            .filter(KdsTicket.check_id == check_id, KdsTicket.status == TicketStatus.BUMPED)
            .all()
        )
        for ticket in tickets:
            self._recall(ticket)
        if tickets:
            logger.info(f"Recalled {len(tickets)} bumped tickets for modified check {check_id}")
            self._notify(tickets[0].rvc_id, check_id=check_id, action="recall")
        return len(tickets)

    def mark_items_modified(self, check_item_id: int) -> None:
        now = utcnow()
        for ticket_item in self._ticket_items_for(check_item_id):
            if ticket_item.status == TicketItemStatus.VOIDED.value:
                continue
            ticket_item.is_modified = True
            ticket_item.modified_at = now

    def void_ticket_items_for(self, check_item_id: int) -> int:
        """Mark every ticket line of a voided check item as voided."""
        ticket_items = self._ticket_items_for(check_item_id)
        for ticket_item in ticket_items:
            ticket_item.status = TicketItemStatus.VOIDED.value
        return len(ticket_items)

    def void_ticket(self, ticket: KdsTicket) -> None:
        ticket.status = TicketStatus.VOIDED
        ticket.is_preview = False
        for ticket_item in ticket.items:
            ticket_item.status = TicketItemStatus.VOIDED.value

    def mark_paid(self, check_id: int) -> int:
        tickets = self.tickets_for_check(check_id)
        for ticket in tickets:
            ticket.paid = True
        if tickets:
            self._notify(tickets[0].rvc_id, check_id=check_id, action="paid")
        return len(tickets)

    def notify_check(self, check: Check, action: str) -> None:
        self._notify(check.rvc_id, check_id=check.id, action=action)

    # ===================== Internals =====================

    def _ticket_items_for(self, check_item_id: int) -> list[KdsTicketItem]:
        self.db.flush()
        return (
            self.db.query(KdsTicketItem)
            .filter(KdsTicketItem.check_item_id == check_item_id)
            .all()
        )

    def _bump(self, ticket: KdsTicket, employee_id: Optional[int]) -> None:
        ticket.status = TicketStatus.BUMPED
        ticket.bumped_at = utcnow()
        ticket.bumped_by_employee_id = employee_id
        for ticket_item in ticket.items:
            if ticket_item.status != TicketItemStatus.VOIDED.value:
                ticket_item.status = TicketItemStatus.BUMPED.value

    def _recall(self, ticket: KdsTicket) -> None:
        ticket.status = TicketStatus.ACTIVE
        ticket.is_recalled = True
        ticket.recalled_at = utcnow()
        ticket.bumped_at = None
        ticket.bumped_by_employee_id = None
        for ticket_item in ticket.items:
            if ticket_item.status != TicketItemStatus.VOIDED.value:
                ticket_item.status = TicketItemStatus.PENDING.value
                ticket_item.is_ready = False
                ticket_item.ready_at = None

    def _notify(self, rvc_id: Optional[int], **data) -> None:
        queue_event(
            self.db,
            self.notifier,
            kds_update_event(rvc_id, **data),
            str(rvc_id) if rvc_id is not None else None,
        )
