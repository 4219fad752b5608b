"""Tests for Dynamic Order Mode preview tickets."""

from checkcore.models import AuditLogEntry, CheckStatus, KdsTicket, KdsTicketItem, TicketStatus
from checkcore.models.menu import DomSendMode


def _items_on(lifecycle, ticket):
    return lifecycle.tickets.ticket_item_ids(ticket.id)


class TestFireOnFly:
    def test_items_appear_as_rung(self, lifecycle, open_check, reference_data, enable_dom):
        enable_dom(DomSendMode.FIRE_ON_FLY)
        burger = lifecycle.add_item(open_check.id, menu_item_id=reference_data["burger"].id)

        preview = lifecycle.tickets.get_preview_ticket(open_check.id)
        assert preview is not None
        assert preview.round_id is None
        assert preview.paid is False
        assert _items_on(lifecycle, preview) == [burger.id]

        fries = lifecycle.add_item(open_check.id, menu_item_id=reference_data["fries"].id)
        assert lifecycle.tickets.get_preview_ticket(open_check.id).id == preview.id
        assert _items_on(lifecycle, preview) == [burger.id, fries.id]
        assert len(lifecycle.tickets.tickets_for_check(open_check.id)) == 1

    def test_send_converts_preview_in_place(self, lifecycle, open_check, reference_data, enable_dom):
        enable_dom(DomSendMode.FIRE_ON_FLY)
        lifecycle.add_item(open_check.id, menu_item_id=reference_data["burger"].id)
        preview_id = lifecycle.tickets.get_preview_ticket(open_check.id).id

        result = lifecycle.send(open_check.id)

        assert result.round.round_number == 1
        assert [t.id for t in result.tickets] == [preview_id]
        ticket = lifecycle.tickets.get_ticket(preview_id)
        assert ticket.is_preview is False
        assert ticket.round_id == result.round.id
        assert lifecycle.tickets.get_preview_ticket(open_check.id) is None

    def test_preview_publishes_event(self, lifecycle, notifier, open_check, reference_data, enable_dom):
        enable_dom(DomSendMode.FIRE_ON_FLY)
        lifecycle.add_item(open_check.id, menu_item_id=reference_data["burger"].id)
        assert "preview" in notifier.actions()


class TestFireOnNext:
    def test_withholds_newest_item(self, lifecycle, open_check, reference_data, enable_dom):
        enable_dom(DomSendMode.FIRE_ON_NEXT)
        x = lifecycle.add_item(open_check.id, menu_item_id=reference_data["burger"].id)
        assert lifecycle.tickets.tickets_for_check(open_check.id) == []

        y = lifecycle.add_item(open_check.id, menu_item_id=reference_data["fries"].id)
        preview = lifecycle.tickets.get_preview_ticket(open_check.id)
        assert _items_on(lifecycle, preview) == [x.id]

        result = lifecycle.send(open_check.id)

        assert result.round.round_number == 1
        assert [t.id for t in result.tickets] == [preview.id]
        assert _items_on(lifecycle, preview) == [x.id, y.id]
        tickets = lifecycle.tickets.tickets_for_check(open_check.id)
        assert len(tickets) == 1
        assert tickets[0].is_preview is False
        assert tickets[0].round_id == result.round.id

    def test_third_item_flushes_second(self, lifecycle, open_check, reference_data, enable_dom):
        enable_dom(DomSendMode.FIRE_ON_NEXT)
        x = lifecycle.add_item(open_check.id, menu_item_id=reference_data["burger"].id)
        y = lifecycle.add_item(open_check.id, menu_item_id=reference_data["fries"].id)
        lifecycle.add_item(open_check.id, menu_item_id=reference_data["wine"].id)

        preview = lifecycle.tickets.get_preview_ticket(open_check.id)
        assert _items_on(lifecycle, preview) == [x.id, y.id]

    def test_send_pending_items(self, lifecycle, open_check, reference_data, enable_dom):
        enable_dom(DomSendMode.FIRE_ON_NEXT)
        x = lifecycle.add_item(open_check.id, menu_item_id=reference_data["burger"].id)

        check = lifecycle.get_check(open_check.id)
        assert lifecycle.dom.send_pending_fire_on_next_items(check) == 1
        preview = lifecycle.tickets.get_preview_ticket(open_check.id)
        assert _items_on(lifecycle, preview) == [x.id]
        assert lifecycle.dom.send_pending_fire_on_next_items(check) == 0

    def test_payment_finalizes_preview(self, db_session, lifecycle, open_check, reference_data, enable_dom):
        enable_dom(DomSendMode.FIRE_ON_NEXT)
        x = lifecycle.add_item(open_check.id, menu_item_id=reference_data["wine"].id)

        result = lifecycle.apply_payment(open_check.id, "20.00", tender_type="credit")

        assert result.closed
        assert result.dispatch.round.round_number == 1
        tickets = lifecycle.tickets.tickets_for_check(open_check.id)
        assert len(tickets) == 1
        assert tickets[0].is_preview is False
        assert tickets[0].paid is True
        assert _items_on(lifecycle, tickets[0]) == [x.id]
        assert lifecycle.get_check(open_check.id).status == CheckStatus.CLOSED


class TestFireOnTender:
    def test_nothing_shown_until_send(self, lifecycle, open_check, reference_data, enable_dom):
        enable_dom(DomSendMode.FIRE_ON_TENDER)
        burger = lifecycle.add_item(open_check.id, menu_item_id=reference_data["burger"].id)
        fries = lifecycle.add_item(open_check.id, menu_item_id=reference_data["fries"].id)
        assert lifecycle.tickets.tickets_for_check(open_check.id) == []

        result = lifecycle.send(open_check.id)

        assert len(result.tickets) == 1
        ticket = result.tickets[0]
        assert ticket.is_preview is False
        assert ticket.round_id == result.round.id
        assert _items_on(lifecycle, ticket) == [burger.id, fries.id]


class TestPreviewHousekeeping:
    def test_empty_preview_is_voided_on_send(self, lifecycle, open_check, reference_data, enable_dom):
        enable_dom(DomSendMode.FIRE_ON_FLY)
        burger = lifecycle.add_item(open_check.id, menu_item_id=reference_data["burger"].id)
        preview_id = lifecycle.tickets.get_preview_ticket(open_check.id).id
        lifecycle.void_item(open_check.id, burger.id)

        result = lifecycle.send(open_check.id)

        assert result.round is None
        assert lifecycle.tickets.get_ticket(preview_id).status == TicketStatus.VOIDED

    def test_cancel_voids_preview(self, lifecycle, open_check, reference_data, enable_dom):
        enable_dom(DomSendMode.FIRE_ON_FLY)
        lifecycle.add_item(open_check.id, menu_item_id=reference_data["burger"].id)
        preview_id = lifecycle.tickets.get_preview_ticket(open_check.id).id

        lifecycle.cancel_check(open_check.id, reason="walked out")

        assert lifecycle.tickets.get_ticket(preview_id).status == TicketStatus.VOIDED
        assert lifecycle.get_check(open_check.id).status == CheckStatus.VOIDED

    def test_finalize_writes_audit(self, db_session, lifecycle, open_check, reference_data, enable_dom):
        enable_dom(DomSendMode.FIRE_ON_FLY)
        lifecycle.add_item(open_check.id, menu_item_id=reference_data["burger"].id)
        lifecycle.send(open_check.id)

        entry = db_session.query(AuditLogEntry).filter(AuditLogEntry.action == "send_to_kitchen").one()
        assert entry.details["roundNumber"] == 1

    def test_dom_off_is_a_no_op(self, lifecycle, open_check, reference_data):
        lifecycle.add_item(open_check.id, menu_item_id=reference_data["burger"].id)
        assert lifecycle.tickets.tickets_for_check(open_check.id) == []
        check = lifecycle.get_check(open_check.id)
        assert lifecycle.dom.finalize_preview_ticket(check, None) is None


class TestMergeWithPreview:
    def test_merged_items_land_on_one_live_ticket(self, db_session, lifecycle, open_check, reference_data, enable_dom):
        enable_dom(DomSendMode.FIRE_ON_FLY)
        other = lifecycle.create_check(reference_data["rvc"].id, reference_data["server"].id)
        burger = lifecycle.add_item(other.id, menu_item_id=reference_data["burger"].id)
        fries = lifecycle.add_item(open_check.id, menu_item_id=reference_data["fries"].id)
        source_preview_id = lifecycle.tickets.get_preview_ticket(other.id).id

        lifecycle.merge_checks(open_check.id, [other.id])

        assert lifecycle.tickets.get_ticket(source_preview_id).status == TicketStatus.VOIDED
        preview = lifecycle.tickets.get_preview_ticket(open_check.id)
        assert lifecycle.tickets.live_item_ids(preview.id) == [fries.id, burger.id]

        result = lifecycle.send(open_check.id)

        live = (
            db_session.query(KdsTicketItem)
            .join(KdsTicket)
            .filter(KdsTicketItem.check_item_id == burger.id, KdsTicket.status != TicketStatus.VOIDED)
            .all()
        )
        assert len(live) == 1
        assert live[0].ticket.check_id == open_check.id
        assert live[0].ticket.round_id == result.round.id
        assert live[0].ticket.is_preview is False
