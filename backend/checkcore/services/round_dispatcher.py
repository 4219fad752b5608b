"""
Send-to-kitchen dispatch.

A send turns a batch of unsent items into one Round and one kitchen ticket
per resolved display. Items that resolve to several displays are
replicated onto each; items with no route land on a single fallback
ticket for the round so nothing is silently dropped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from checkcore.core.errors import NotFoundError, PartialWriteError
from checkcore.models.check import Check, CheckItem, Round, utcnow
from checkcore.models.kds import KdsTicket
from checkcore.models.menu import RevenueCenter
from checkcore.services.audit_service import log_action
from checkcore.services.event_notifier import EventNotifier, NullEventNotifier
from checkcore.services.kds_routing import RoutingResolver, RoutingTarget
from checkcore.services.kds_ticket_service import KdsTicketService

logger = logging.getLogger(__name__)


@dataclass
class DispatchResult:
    """Outcome of a send. ``round`` is None when there was nothing to send."""

    round: Optional[Round]
    updated_items: list[CheckItem] = field(default_factory=list)
    tickets: list[KdsTicket] = field(default_factory=list)


@dataclass
class RoutedGroup:
    target: RoutingTarget
    items: list[CheckItem] = field(default_factory=list)


class RoundDispatcher:
    """Creates rounds and the kitchen tickets for them."""

    def __init__(
        self,
        db: Session,
        resolver: RoutingResolver,
        notifier: Optional[EventNotifier] = None,
        tickets: Optional[KdsTicketService] = None,
    ):
        self.db = db
        self.resolver = resolver
        self.notifier = notifier or NullEventNotifier()
        self.tickets = tickets or KdsTicketService(db, self.notifier)

    def next_round_number(self, check_id: int) -> int:
        self.db.flush()
        existing = self.db.query(func.count(Round.id)).filter(Round.check_id == check_id).scalar()
        return (existing or 0) + 1

    def create_round(self, check: Check, employee_id: Optional[int]) -> Round:
        round_ = Round(
            check_id=check.id,
            round_number=self.next_round_number(check.id),
            sent_by_employee_id=employee_id,
            sent_at=utcnow(),
        )
        self.db.add(round_)
        self.db.flush()
        return round_

    def mark_sent(self, items: Sequence[CheckItem], round_: Round) -> list[CheckItem]:
        for item in items:
            item.sent = True
            item.round_id = round_.id
        return list(items)

    def route_items(
        self, check: Check, items: Sequence[CheckItem]
    ) -> tuple[dict[int, RoutedGroup], list[CheckItem]]:
        """Group items by KDS device. Returns (groups by device id, unrouted items)."""
        rvc = self.db.get(RevenueCenter, check.rvc_id)
        property_id = rvc.property_id if rvc else None

        groups: dict[int, RoutedGroup] = {}
        unrouted: list[CheckItem] = []
        for item in items:
            targets: list[RoutingTarget] = []
            if item.menu_item_id is not None:
                targets = self.resolver.resolve_targets(item.menu_item_id, property_id, check.rvc_id)
            if not targets:
                unrouted.append(item)
                continue
            for target in targets:
                group = groups.setdefault(target.kds_device_id, RoutedGroup(target=target))
                if item not in group.items:
                    group.items.append(item)
        return groups, unrouted

    def send(
        self,
        check: Check,
        employee_id: Optional[int],
        items: Sequence[CheckItem],
        audit_action: str = "send_to_kitchen",
    ) -> DispatchResult:
        """Send items to the kitchen as a new round.

        Runs inside the caller's unit of work; a storage failure part way
        through raises PartialWriteError and the caller rolls back.
        """
        if not items:
            return DispatchResult(round=None)
        if check is None:
            raise NotFoundError("Check not found")

        try:
            round_ = self.create_round(check, employee_id)
            updated = self.mark_sent(items, round_)
            groups, unrouted = self.route_items(check, updated)

            tickets: list[KdsTicket] = []
            for group in groups.values():
                ticket = self.tickets.create_ticket(check, round_.id, group.target)
                for item in group.items:
                    self.tickets.add_item(ticket, item.id)
                tickets.append(ticket)

            if unrouted:
                fallback = self.tickets.create_ticket(check, round_.id, None)
                for item in unrouted:
                    self.tickets.add_item(fallback, item.id)
                tickets.append(fallback)
                logger.info(
                    f"Check {check.id} round {round_.round_number}: "
                    f"{len(unrouted)} unrouted items on fallback ticket {fallback.id}"
                )

            self.db.flush()
        except SQLAlchemyError as e:
            logger.exception(f"Send to kitchen failed for check {check.id}")
            raise PartialWriteError("Send to kitchen failed", check_id=check.id) from e

        log_action(
            self.db,
            audit_action,
            "check",
            check.id,
            rvc_id=check.rvc_id,
            employee_id=employee_id,
            details={"roundNumber": round_.round_number, "itemCount": len(items)},
        )
        self.tickets.notify_check(check, "send")

        logger.info(
            f"Check {check.id} sent round {round_.round_number}: "
            f"{len(items)} items on {len(tickets)} tickets"
        )
        return DispatchResult(round=round_, updated_items=updated, tickets=tickets)
