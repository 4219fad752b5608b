"""Tests for kitchen display notifications and the connection registry."""

import asyncio
import json
import threading
import time

import pytest
from sqlalchemy import text

from checkcore.core.errors import PreconditionError
from checkcore.db.session import unit_of_work
from checkcore.services.event_notifier import (
    ALL_CHANNEL,
    ConnectionRegistry,
    NullEventNotifier,
    WebSocketEventNotifier,
    kds_update_event,
    queue_event,
)


class FakeWebSocket:
    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail

    async def send_text(self, payload):
        if self.fail:
            raise RuntimeError("connection closed")
        self.sent.append(json.loads(payload))


class RecordingNotifier(NullEventNotifier):
    def __init__(self):
        self.events = []

    def publish(self, event, channel=None):
        self.events.append((channel, event))


class TestConnectionRegistry:
    def test_broadcast_to_channel(self):
        registry = ConnectionRegistry()
        ws_rvc, ws_other = FakeWebSocket(), FakeWebSocket()
        registry.subscribe(ws_rvc, "1")
        registry.subscribe(ws_other, "2")

        delivered = asyncio.run(registry.broadcast("1", kds_update_event(1, action="send")))

        assert delivered == 1
        assert ws_rvc.sent[0]["type"] == "kds_update"
        assert ws_rvc.sent[0]["rvc_id"] == 1
        assert ws_other.sent == []

    def test_full_channel_rejects(self):
        registry = ConnectionRegistry(max_connections_per_channel=1)
        assert registry.subscribe(FakeWebSocket(), "1") is True
        assert registry.subscribe(FakeWebSocket(), "1") is False

    def test_resubscribe_moves_channel(self):
        registry = ConnectionRegistry()
        ws = FakeWebSocket()
        registry.subscribe(ws, "1")
        registry.subscribe(ws, ALL_CHANNEL)
        stats = registry.get_stats()
        assert stats["active_connections"] == 1
        assert stats["active_channels"] == 1

    def test_failed_send_drops_connection(self):
        registry = ConnectionRegistry()
        registry.subscribe(FakeWebSocket(fail=True), "1")
        assert asyncio.run(registry.broadcast("1", {"type": "kds_update"})) == 0
        assert registry.get_stats()["active_connections"] == 0


class TestWebSocketEventNotifier:
    def test_without_loop_event_is_dropped(self):
        registry = ConnectionRegistry()
        ws = FakeWebSocket()
        registry.subscribe(ws, "1")
        WebSocketEventNotifier(registry).publish({"type": "kds_update"}, "1")
        assert ws.sent == []

    def test_publish_from_worker_thread(self):
        loop = asyncio.new_event_loop()
        thread = threading.Thread(target=loop.run_forever, daemon=True)
        thread.start()
        try:
            registry = ConnectionRegistry()
            rvc_ws, all_ws = FakeWebSocket(), FakeWebSocket()
            registry.subscribe(rvc_ws, "1")
            registry.subscribe(all_ws, ALL_CHANNEL)

            WebSocketEventNotifier(registry, loop).publish(kds_update_event(1, action="bump"), "1")

            deadline = time.monotonic() + 2
            while (not rvc_ws.sent or not all_ws.sent) and time.monotonic() < deadline:
                time.sleep(0.01)
            assert rvc_ws.sent[0]["action"] == "bump"
            assert all_ws.sent[0]["action"] == "bump"
        finally:
            loop.call_soon_threadsafe(loop.stop)
            thread.join(timeout=2)
            loop.close()


class TestQueuedEvents:
    def test_published_on_commit(self, db_session):
        notifier = RecordingNotifier()
        db_session.execute(text("SELECT 1"))
        queue_event(db_session, notifier, {"type": "kds_update"}, "1")
        assert notifier.events == []

        db_session.commit()
        assert notifier.events == [("1", {"type": "kds_update"})]

    def test_dropped_on_rollback(self, db_session):
        notifier = RecordingNotifier()
        db_session.execute(text("SELECT 1"))
        queue_event(db_session, notifier, {"type": "kds_update"}, "1")
        db_session.rollback()
        db_session.commit()
        assert notifier.events == []

    def test_failed_unit_of_work_publishes_nothing(self, db_session):
        notifier = RecordingNotifier()
        with pytest.raises(PreconditionError):
            with unit_of_work(db_session):
                db_session.execute(text("SELECT 1"))
                queue_event(db_session, notifier, {"type": "kds_update"}, "1")
                raise PreconditionError("Check is closed")
        db_session.commit()
        assert notifier.events == []
