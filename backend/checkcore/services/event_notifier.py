"""
Kitchen display change notifications.

Services queue events on the database session; they are published only
after the session commits, and dropped if it rolls back. Delivery is
fire-and-forget: a subscriber that reconnects must re-fetch state.
"""
import asyncio
import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set

from fastapi import WebSocket
from sqlalchemy import event as sa_event
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

ALL_CHANNEL = "all"
PENDING_EVENTS_KEY = "checkcore.pending_events"


class EventNotifier(ABC):
    """Publishes change notifications to kitchen displays and terminals."""

    @abstractmethod
    def publish(self, event: Dict[str, Any], channel: Optional[str] = None) -> None:
        """Publish an event. At-most-once; never raises."""
        pass


class NullEventNotifier(EventNotifier):
    """Drops every event. Used when no transport is attached."""

    def publish(self, event: Dict[str, Any], channel: Optional[str] = None) -> None:
        logger.debug(f"Dropping event {event.get('type')} for channel {channel}")


class ConnectionRegistry:
    """
    Owned registry of WebSocket subscribers by channel.
    A channel is an RVC id or "all".
    """

    def __init__(self, max_connections_per_channel: int = 1000):
        self.max_connections_per_channel = max_connections_per_channel
        self.channel_connections: Dict[str, Set[WebSocket]] = {}
        self.connection_channels: Dict[WebSocket, str] = {}
        self.stats = {
            "total_connections": 0,
            "messages_sent": 0,
            "messages_broadcast": 0,
        }

    def subscribe(self, websocket: WebSocket, channel: str) -> bool:
        """Move a connection onto a channel. Returns False when the channel is full."""
        channel = str(channel)
        connections = self.channel_connections.setdefault(channel, set())
        if websocket not in connections and len(connections) >= self.max_connections_per_channel:
            logger.warning(f"WebSocket channel {channel} is full; rejecting subscription")
            return False

        self.disconnect(websocket)
        self.channel_connections.setdefault(channel, set()).add(websocket)
        self.connection_channels[websocket] = channel
        self.stats["total_connections"] += 1
        logger.info(f"WebSocket subscribed: channel={channel}")
        return True

    def disconnect(self, websocket: WebSocket) -> None:
        channel = self.connection_channels.pop(websocket, None)
        if channel is None:
            return
        connections = self.channel_connections.get(channel)
        if connections is not None:
            connections.discard(websocket)
            if not connections:
                del self.channel_connections[channel]
        logger.info(f"WebSocket unsubscribed: channel={channel}")

    async def broadcast(self, channel: str, message: Dict[str, Any]) -> int:
        """Send a message to every subscriber of a channel. Returns deliveries."""
        connections = list(self.channel_connections.get(str(channel), set()))
        if not connections:
            return 0

        payload = json.dumps(message, default=str)
        delivered = 0
        disconnected: List[WebSocket] = []
        for websocket in connections:
            try:
                await websocket.send_text(payload)
                delivered += 1
            except Exception as e:
                logger.debug(f"WebSocket send failed on channel {channel}: {e}")
                disconnected.append(websocket)

        for ws in disconnected:
            self.disconnect(ws)

        self.stats["messages_sent"] += delivered
        self.stats["messages_broadcast"] += 1
        return delivered

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self.stats,
            "active_channels": len(self.channel_connections),
            "active_connections": len(self.connection_channels),
        }


class WebSocketEventNotifier(EventNotifier):
    """
    Delivers events through a ConnectionRegistry.

    Sync request handlers run in a worker thread, so publishing hands the
    broadcast to the event loop the app started on. Without a running
    loop the event is dropped.
    """

    def __init__(self, registry: ConnectionRegistry, loop: Optional[asyncio.AbstractEventLoop] = None):
        self.registry = registry
        self.loop = loop

    def bind_loop(self, loop: Optional[asyncio.AbstractEventLoop]) -> None:
        self.loop = loop

    def publish(self, event: Dict[str, Any], channel: Optional[str] = None) -> None:
        loop = self.loop
        if loop is None or loop.is_closed():
            logger.debug(f"No event loop bound; dropping {event.get('type')}")
            return

        channels = [ALL_CHANNEL]
        if channel is not None and str(channel) != ALL_CHANNEL:
            channels.insert(0, str(channel))

        for target in channels:
            try:
                asyncio.run_coroutine_threadsafe(self.registry.broadcast(target, event), loop)
            except RuntimeError as e:
                logger.warning(f"Failed to schedule broadcast on channel {target}: {e}")


def kds_update_event(rvc_id: Optional[int], **data: Any) -> Dict[str, Any]:
    """Build the kds_update message kitchen displays refresh on."""
    message: Dict[str, Any] = {
        "type": "kds_update",
        "rvc_id": rvc_id,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    message.update(data)
    return message


def queue_event(
    db: Session,
    notifier: EventNotifier,
    event: Dict[str, Any],
    channel: Optional[str] = None,
) -> None:
    """Queue an event to publish once the session's transaction commits."""
    db.info.setdefault(PENDING_EVENTS_KEY, []).append((notifier, event, channel))


@sa_event.listens_for(Session, "after_commit")
def _publish_pending_events(session: Session) -> None:
    pending = session.info.pop(PENDING_EVENTS_KEY, None)
    if not pending:
        return
    for notifier, message, channel in pending:
        try:
            notifier.publish(message, channel)
        except Exception:
            logger.exception(f"Event publish failed for {message.get('type')}")


@sa_event.listens_for(Session, "after_transaction_end")
def _discard_pending_events(session: Session, transaction) -> None:
    # Runs after after_commit, so anything still queued was rolled back
    if transaction.nested or transaction.parent is not None:
        return
    dropped = session.info.pop(PENDING_EVENTS_KEY, None)
    if dropped:
        logger.debug(f"Discarded {len(dropped)} events from rolled back transaction")
