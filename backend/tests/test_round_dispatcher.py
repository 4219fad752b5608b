"""Tests for kitchen routing and send-to-kitchen dispatch."""

from checkcore.models import AuditLogEntry, KdsDevice, KdsTicket, OrderDevice, OrderDeviceKds, PrintClassRouting, Round
from checkcore.models.menu import DomSendMode
from checkcore.services.kds_routing import RoutingResolver, RoutingTarget, SqlRoutingResolver
from checkcore.services.round_dispatcher import RoundDispatcher


class StaticResolver(RoutingResolver):
    """Routes from a fixed menu item -> targets table."""

    def __init__(self, routes):
        self.routes = routes

    def resolve_targets(self, menu_item_id, property_id, rvc_id):
        return self.routes.get(menu_item_id, [])

    def resolve_send_mode(self, rvc_id):
        return None


def _ticket_items(lifecycle, ticket):
    return lifecycle.tickets.ticket_item_ids(ticket.id)


class TestSqlRoutingResolver:
    def test_property_routing(self, db_session, reference_data):
        targets = SqlRoutingResolver(db_session).resolve_targets(
            reference_data["burger"].id, property_id=1, rvc_id=reference_data["rvc"].id
        )
        assert [t.kds_device_id for t in targets] == [reference_data["grill"].id]
        assert targets[0].station_type == "hot"
        assert targets[0].order_device_id == reference_data["kitchen"].id

    def test_item_without_print_class_is_unrouted(self, db_session, reference_data):
        resolver = SqlRoutingResolver(db_session)
        assert resolver.resolve_targets(reference_data["fries"].id, 1, reference_data["rvc"].id) == []

    def test_rvc_routing_wins_over_property(self, db_session, reference_data):
        bar = OrderDevice(property_id=1, name="Bar")
        bar_screen = KdsDevice(property_id=1, name="Bar Screen", station_type="bar")
        db_session.add_all([bar, bar_screen])
        db_session.flush()
        db_session.add(OrderDeviceKds(order_device_id=bar.id, kds_device_id=bar_screen.id))
        db_session.add(
            PrintClassRouting(
                print_class_id=reference_data["hot"].id,
                property_id=1,
                rvc_id=reference_data["rvc"].id,
                order_device_id=bar.id,
            )
        )
        db_session.commit()

        resolver = SqlRoutingResolver(db_session)
        targets = resolver.resolve_targets(reference_data["burger"].id, 1, reference_data["rvc"].id)
        assert [t.kds_device_id for t in targets] == [bar_screen.id]
        # Another RVC of the property still gets the property default
        other = resolver.resolve_targets(reference_data["burger"].id, 1, 999)
        assert [t.kds_device_id for t in other] == [reference_data["grill"].id]

    def test_global_default_routing(self, db_session, reference_data):
        resolver = SqlRoutingResolver(db_session)
        assert resolver.resolve_targets(reference_data["burger"].id, 2, None) == []

        db_session.add(
            PrintClassRouting(
                print_class_id=reference_data["hot"].id,
                property_id=None,
                rvc_id=None,
                order_device_id=reference_data["kitchen"].id,
            )
        )
        db_session.commit()
        targets = resolver.resolve_targets(reference_data["burger"].id, 2, None)
        assert [t.kds_device_id for t in targets] == [reference_data["grill"].id]

    def test_inactive_display_is_skipped(self, db_session, reference_data):
        reference_data["grill"].active = False
        db_session.commit()
        resolver = SqlRoutingResolver(db_session)
        assert resolver.resolve_targets(reference_data["burger"].id, 1, reference_data["rvc"].id) == []

    def test_send_mode(self, db_session, reference_data, enable_dom):
        resolver = SqlRoutingResolver(db_session)
        assert resolver.resolve_send_mode(reference_data["rvc"].id) is None

        enable_dom(DomSendMode.FIRE_ON_NEXT)
        assert resolver.resolve_send_mode(reference_data["rvc"].id) == DomSendMode.FIRE_ON_NEXT

    def test_unknown_send_mode_falls_back_to_fire_on_fly(self, db_session, reference_data):
        rvc = reference_data["rvc"]
        rvc.dynamic_order_mode = True
        rvc.dom_send_mode = "fire_whenever"
        db_session.commit()
        assert SqlRoutingResolver(db_session).resolve_send_mode(rvc.id) == DomSendMode.FIRE_ON_FLY

    def test_station_types(self, db_session, reference_data):
        db_session.add(KdsDevice(property_id=1, name="Expo", station_type="expo"))
        db_session.add(KdsDevice(property_id=1, name="Spare", station_type="cold", active=False))
        db_session.commit()
        assert SqlRoutingResolver(db_session).station_types(1) == ["expo", "hot"]


class TestRoundDispatch:
    def test_routed_and_unrouted_items(self, lifecycle, open_check, reference_data):
        burger = lifecycle.add_item(open_check.id, menu_item_id=reference_data["burger"].id)
        fries = lifecycle.add_item(open_check.id, menu_item_id=reference_data["fries"].id)

        result = lifecycle.send(open_check.id, employee_id=reference_data["server"].id)

        assert result.round.round_number == 1
        assert len(result.tickets) == 2
        grill_ticket = next(t for t in result.tickets if t.kds_device_id == reference_data["grill"].id)
        fallback = next(t for t in result.tickets if t.is_fallback)
        assert _ticket_items(lifecycle, grill_ticket) == [burger.id]
        assert _ticket_items(lifecycle, fallback) == [fries.id]
        assert fallback.station_type is None
        assert all(t.round_id == result.round.id for t in result.tickets)
        assert {item.id for item in result.updated_items} == {burger.id, fries.id}
        assert all(item.sent and item.round_id == result.round.id for item in result.updated_items)

    def test_item_replicated_to_every_station(self, db_session, lifecycle, open_check, reference_data):
        expo = KdsDevice(property_id=1, name="Expo", station_type="expo")
        db_session.add(expo)
        db_session.flush()
        db_session.add(OrderDeviceKds(order_device_id=reference_data["kitchen"].id, kds_device_id=expo.id))
        db_session.commit()

        burger = lifecycle.add_item(open_check.id, menu_item_id=reference_data["burger"].id)
        result = lifecycle.send(open_check.id)

        assert sorted(t.kds_device_id for t in result.tickets) == sorted([reference_data["grill"].id, expo.id])
        for ticket in result.tickets:
            assert _ticket_items(lifecycle, ticket) == [burger.id]

    def test_round_numbers_increase(self, db_session, lifecycle, open_check, reference_data):
        lifecycle.add_item(open_check.id, menu_item_id=reference_data["burger"].id)
        first = lifecycle.send(open_check.id)
        fries = lifecycle.add_item(open_check.id, menu_item_id=reference_data["fries"].id)
        lifecycle.void_item(open_check.id, fries.id)
        nothing = lifecycle.send(open_check.id)
        lifecycle.add_item(open_check.id, menu_item_id=reference_data["wine"].id)
        second = lifecycle.send(open_check.id)

        assert nothing.round is None
        assert first.round.round_number == 1
        assert second.round.round_number == 2
        numbers = [r.round_number for r in db_session.query(Round).filter(Round.check_id == open_check.id)]
        assert sorted(numbers) == [1, 2]

    def test_empty_send_does_not_bump_version(self, lifecycle, open_check):
        version = lifecycle.get_check(open_check.id).version
        result = lifecycle.send(open_check.id)
        assert result.round is None
        assert lifecycle.get_check(open_check.id).version == version

    def test_send_writes_audit_entry(self, db_session, lifecycle, open_check, reference_data):
        lifecycle.add_item(open_check.id, menu_item_id=reference_data["burger"].id)
        lifecycle.send(open_check.id, employee_id=reference_data["server"].id)

        entry = db_session.query(AuditLogEntry).filter(AuditLogEntry.action == "send_to_kitchen").one()
        assert entry.target_id == str(open_check.id)
        assert entry.employee_id == reference_data["server"].id
        assert entry.details == {"roundNumber": 1, "itemCount": 1}

    def test_send_publishes_after_commit(self, lifecycle, notifier, open_check, reference_data):
        lifecycle.add_item(open_check.id, menu_item_id=reference_data["burger"].id)
        lifecycle.send(open_check.id)

        channel, event = notifier.events[-1]
        assert channel == str(reference_data["rvc"].id)
        assert event["type"] == "kds_update"
        assert event["action"] == "send"
        assert event["check_id"] == open_check.id

    def test_dispatcher_with_static_resolver(self, db_session, lifecycle, open_check, reference_data):
        grill = reference_data["grill"]
        resolver = StaticResolver({
            reference_data["fries"].id: [RoutingTarget(kds_device_id=grill.id, station_type="fry", order_device_id=None)],
        })
        fries = lifecycle.add_item(open_check.id, menu_item_id=reference_data["fries"].id)
        dispatcher = RoundDispatcher(db_session, resolver)

        check = lifecycle.get_check(open_check.id)
        result = dispatcher.send(check, None, [fries])
        db_session.commit()

        assert len(result.tickets) == 1
        assert result.tickets[0].station_type == "fry"
        assert db_session.query(KdsTicket).filter(KdsTicket.check_id == open_check.id).count() == 1

    def test_nothing_to_send(self, db_session, lifecycle, open_check):
        dispatcher = RoundDispatcher(db_session, StaticResolver({}))
        result = dispatcher.send(lifecycle.get_check(open_check.id), None, [])
        assert result.round is None
        assert result.tickets == []
