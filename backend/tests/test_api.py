"""API endpoint tests for checks and kitchen tickets."""

from fastapi.testclient import TestClient

API = "/api/v1"


def _create_check(client: TestClient, reference_data) -> dict:
    response = client.post(f"{API}/checks", json={
        "rvc_id": reference_data["rvc"].id,
        "employee_id": reference_data["server"].id,
        "table_number": "4",
    })
    assert response.status_code == 201
    return response.json()


def _add(client: TestClient, check_id: int, menu_item_id: int, **extra) -> dict:
    response = client.post(f"{API}/checks/{check_id}/items", json={"menu_item_id": menu_item_id, **extra})
    assert response.status_code == 201, response.text
    return response.json()


class TestHealth:
    def test_health(self, client: TestClient):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}


class TestChecksApi:
    def test_create_and_get(self, client: TestClient, reference_data):
        check = _create_check(client, reference_data)
        assert check["status"] == "open"
        assert check["version"] == 1
        assert check["check_number"] == 1
        assert check["total"] == "0.00"

        response = client.get(f"{API}/checks/{check['id']}")
        assert response.status_code == 200
        assert response.json()["table_number"] == "4"

    def test_list_checks(self, client: TestClient, reference_data):
        _create_check(client, reference_data)
        _create_check(client, reference_data)
        response = client.get(f"{API}/checks", params={"rvc_id": reference_data["rvc"].id, "status": "open"})
        assert response.status_code == 200
        assert [c["check_number"] for c in response.json()] == [2, 1]

    def test_add_item_snapshots_tax(self, client: TestClient, reference_data):
        check = _create_check(client, reference_data)
        item = _add(client, check["id"], reference_data["burger"].id)

        assert item["unit_price"] == "10.00"
        assert item["taxable_amount"] == "10.00"
        assert item["tax_amount"] == "0.83"
        assert item["tax_rate_at_sale"] == "0.082500"
        totals = client.get(f"{API}/checks/{check['id']}").json()
        assert totals["subtotal"] == "10.00"
        assert totals["tax_total"] == "0.83"
        assert totals["total"] == "10.83"
        assert totals["version"] == 2

    def test_item_discount(self, client: TestClient, reference_data):
        check = _create_check(client, reference_data)
        item = _add(client, check["id"], reference_data["burger"].id)

        response = client.post(f"{API}/checks/{check['id']}/items/{item['id']}/discount", json={
            "discount_id": 1,
            "discount_name": "Comp",
            "amount": "2.00",
        })
        assert response.status_code == 200
        assert response.json()["discount_amount"] == "2.00"
        assert client.get(f"{API}/checks/{check['id']}").json()["total"] == "8.66"

    def test_open_item_requires_price(self, client: TestClient, reference_data):
        check = _create_check(client, reference_data)
        response = client.post(f"{API}/checks/{check['id']}/items", json={"menu_item_name": "Corkage"})
        assert response.status_code == 422

    def test_missing_check(self, client: TestClient, reference_data):
        response = client.get(f"{API}/checks/999")
        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    def test_stale_version_conflict(self, client: TestClient, reference_data):
        check = _create_check(client, reference_data)
        _add(client, check["id"], reference_data["burger"].id, expected_version=1)

        response = client.post(f"{API}/checks/{check['id']}/items", json={
            "menu_item_id": reference_data["fries"].id,
            "expected_version": 1,
        })
        assert response.status_code == 409
        body = response.json()
        assert body["error"] == "version_conflict"
        assert body["context"] == {"expected": 1, "current": 2}

    def test_send_and_void_sent_item(self, client: TestClient, reference_data):
        check = _create_check(client, reference_data)
        burger = _add(client, check["id"], reference_data["burger"].id)
        _add(client, check["id"], reference_data["fries"].id)

        response = client.post(f"{API}/checks/{check['id']}/send", json={})
        assert response.status_code == 200
        sent = response.json()
        assert sent["round"]["round_number"] == 1
        assert len(sent["ticket_ids"]) == 2
        assert all(item["sent"] for item in sent["updated_items"])

        response = client.post(f"{API}/checks/{check['id']}/items/{burger['id']}/void", json={"reason": "cold"})
        assert response.status_code == 403
        assert response.json()["error"] == "authorization_failed"

        response = client.post(
            f"{API}/checks/{check['id']}/items/{burger['id']}/void",
            json={"reason": "cold", "manager_pin": "1234"},
        )
        assert response.status_code == 200
        assert response.json()["voided"] is True

    def test_split_share(self, client: TestClient, reference_data):
        check = _create_check(client, reference_data)
        burger = _add(client, check["id"], reference_data["burger"].id, quantity=4)
        client.post(f"{API}/checks/{check['id']}/send", json={})

        response = client.post(f"{API}/checks/{check['id']}/split", json={
            "share_items": [{"item_id": burger["id"], "ratio": "0.25"}],
        })
        assert response.status_code == 201
        new_check = response.json()
        assert new_check["id"] != check["id"]
        assert new_check["items"][0]["quantity"] == 1
        assert new_check["subtotal"] == "10.00"

        source = client.get(f"{API}/checks/{check['id']}").json()
        assert source["items"][0]["quantity"] == 3
        assert source["subtotal"] == "30.00"

    def test_payment_closes_and_reopen(self, client: TestClient, reference_data):
        check = _create_check(client, reference_data)
        _add(client, check["id"], reference_data["wine"].id)

        response = client.post(f"{API}/checks/{check['id']}/payments", json={
            "amount": "20.03",
            "tender_type": "cash",
        })
        assert response.status_code == 201
        result = response.json()
        assert result["paid_amount"] == "20.00"
        assert result["change_due"] == "0.03"
        assert result["closed"] is True
        assert result["check"]["status"] == "closed"
        assert len(result["check"]["rounds"]) == 1

        response = client.post(f"{API}/checks/{check['id']}/reopen", json={"manager_pin": "1234"})
        assert response.status_code == 200
        reopened = response.json()
        assert reopened["status"] == "open"
        assert reopened["closed_at"] is None
        assert len(reopened["rounds"]) == 1
        assert len(reopened["payments"]) == 1

    def test_transfer(self, client: TestClient, reference_data):
        check = _create_check(client, reference_data)
        response = client.post(f"{API}/checks/{check['id']}/transfer", json={
            "to_employee_id": reference_data["manager"].id,
        })
        assert response.status_code == 200
        assert response.json()["employee_id"] == reference_data["manager"].id

    def test_cancel(self, client: TestClient, reference_data):
        check = _create_check(client, reference_data)
        _add(client, check["id"], reference_data["burger"].id)
        response = client.post(f"{API}/checks/{check['id']}/cancel", json={"reason": "test"})
        assert response.status_code == 200
        assert response.json()["status"] == "voided"


class TestKdsApi:
    def test_ticket_flow(self, client: TestClient, reference_data):
        check = _create_check(client, reference_data)
        _add(client, check["id"], reference_data["burger"].id)
        client.post(f"{API}/checks/{check['id']}/send", json={})

        response = client.get(f"{API}/kds-tickets", params={"rvc_id": reference_data["rvc"].id})
        assert response.status_code == 200
        tickets = response.json()
        assert len(tickets) == 1
        ticket = tickets[0]
        assert ticket["station_type"] == "hot"
        assert ticket["status"] == "active"
        assert len(ticket["items"]) == 1

        response = client.post(f"{API}/kds-tickets/{ticket['id']}/bump", json={"employee_id": reference_data["server"].id})
        assert response.status_code == 200
        assert response.json()["status"] == "bumped"

        response = client.post(f"{API}/kds-tickets/{ticket['id']}/recall", json={"scope": "all"})
        assert response.status_code == 200
        assert response.json()["status"] == "active"
        assert response.json()["is_recalled"] is True

        item_id = ticket["items"][0]["id"]
        response = client.post(f"{API}/kds-tickets/items/{item_id}/ready", json={"ready": True})
        assert response.status_code == 200
        assert response.json()["is_ready"] is True

    def test_bump_all_and_stations(self, client: TestClient, reference_data):
        check = _create_check(client, reference_data)
        _add(client, check["id"], reference_data["burger"].id)
        client.post(f"{API}/checks/{check['id']}/send", json={})

        response = client.post(f"{API}/kds-tickets/bump-all", json={"rvc_id": reference_data["rvc"].id})
        assert response.status_code == 200
        assert response.json() == {"bumped": 1}

        response = client.get(f"{API}/kds-tickets/stations")
        assert response.json() == ["hot"]

    def test_missing_ticket(self, client: TestClient, reference_data):
        assert client.get(f"{API}/kds-tickets/999").status_code == 404


class TestWebSocket:
    def test_subscribe_and_ping(self, client: TestClient, reference_data):
        with client.websocket_connect("/ws") as websocket:
            websocket.send_json({"type": "subscribe", "channel": "kds", "rvcId": reference_data["rvc"].id})
            assert websocket.receive_json() == {"type": "subscribed", "channel": str(reference_data["rvc"].id)}
            websocket.send_json({"type": "ping"})
            assert websocket.receive_json() == {"type": "pong"}


class TestCloseApi:
    def test_close_comped_check(self, client: TestClient, reference_data):
        check = _create_check(client, reference_data)
        item = _add(client, check["id"], reference_data["burger"].id)
        client.post(f"{API}/checks/{check['id']}/items/{item['id']}/discount", json={
            "discount_id": 1,
            "discount_name": "Comp",
            "amount": "10.00",
            "manager_pin": "1234",
        })
        client.post(f"{API}/checks/{check['id']}/send", json={})

        response = client.post(f"{API}/checks/{check['id']}/close", json={})
        assert response.status_code == 200
        assert response.json()["status"] == "closed"
        assert response.json()["total"] == "0.00"

    def test_close_with_balance_is_conflict(self, client: TestClient, reference_data):
        check = _create_check(client, reference_data)
        _add(client, check["id"], reference_data["burger"].id)
        response = client.post(f"{API}/checks/{check['id']}/close", json={})
        assert response.status_code == 409
        assert response.json()["context"]["balance_due"] == "10.83"
