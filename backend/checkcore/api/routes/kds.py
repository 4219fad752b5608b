"""Kitchen display ticket routes."""

from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Query

from checkcore.api.deps import TicketService
from checkcore.db.session import DbSession
from checkcore.models.kds import TicketStatus
from checkcore.schemas.kds import (
    BumpAllRequest,
    BumpAllResponse,
    BumpRequest,
    ItemReadyRequest,
    KdsTicketItemResponse,
    KdsTicketResponse,
    RecallRequest,
)
from checkcore.services.kds_routing import SqlRoutingResolver

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("", response_model=List[KdsTicketResponse])
def list_tickets(
    tickets: TicketService,
    rvc_id: Optional[int] = Query(None),
    station_type: Optional[str] = Query(None),
    kds_device_id: Optional[int] = Query(None),
    ticket_status: Optional[TicketStatus] = Query(None, alias="status"),
    include_paid: bool = Query(True),
):
    """Tickets for a kitchen display, oldest first. Voided tickets are hidden
    unless asked for by status."""
    return tickets.list_tickets(
        rvc_id=rvc_id,
        station_type=station_type,
        kds_device_id=kds_device_id,
        status=ticket_status,
        include_paid=include_paid,
    )


@router.get("/stations", response_model=List[str])
def list_station_types(db: DbSession, property_id: Optional[int] = Query(None)):
    return SqlRoutingResolver(db).station_types(property_id)


@router.post("/bump-all", response_model=BumpAllResponse)
def bump_all(body: BumpAllRequest, tickets: TicketService):
    count = tickets.bump_all(rvc_id=body.rvc_id, employee_id=body.employee_id, station_type=body.station_type)
    return BumpAllResponse(bumped=count)


@router.get("/{ticket_id}", response_model=KdsTicketResponse)
def get_ticket(ticket_id: int, tickets: TicketService):
    return tickets.get_ticket(ticket_id)


@router.post("/{ticket_id}/bump", response_model=KdsTicketResponse)
def bump_ticket(ticket_id: int, body: BumpRequest, tickets: TicketService):
    return tickets.bump(ticket_id, employee_id=body.employee_id)


@router.post("/{ticket_id}/recall", response_model=KdsTicketResponse)
def recall_ticket(ticket_id: int, body: RecallRequest, tickets: TicketService):
    return tickets.recall(ticket_id, scope=body.scope)


@router.post("/items/{ticket_item_id}/ready", response_model=KdsTicketItemResponse)
def mark_item_ready(ticket_item_id: int, body: ItemReadyRequest, tickets: TicketService):
    return tickets.mark_item_ready(ticket_item_id, ready=body.ready)
