"""Shared route dependencies."""

from typing import Annotated

from fastapi import Depends, Request

from checkcore.db.session import DbSession
from checkcore.services.check_lifecycle_service import CheckLifecycleManager
from checkcore.services.event_notifier import EventNotifier, NullEventNotifier
from checkcore.services.kds_ticket_service import KdsTicketService


def get_notifier(request: Request) -> EventNotifier:
    """The app's notifier, owned by the lifespan handler."""
    return getattr(request.app.state, "notifier", None) or NullEventNotifier()


Notifier = Annotated[EventNotifier, Depends(get_notifier)]


def get_lifecycle(db: DbSession, notifier: Notifier) -> CheckLifecycleManager:
    return CheckLifecycleManager(db, notifier=notifier)


def get_ticket_service(db: DbSession, notifier: Notifier) -> KdsTicketService:
    return KdsTicketService(db, notifier)


Lifecycle = Annotated[CheckLifecycleManager, Depends(get_lifecycle)]
TicketService = Annotated[KdsTicketService, Depends(get_ticket_service)]
