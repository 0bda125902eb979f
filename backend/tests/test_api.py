"""API tests for the lifecycle, stock and finance endpoints."""

import pytest

from resortops.core.feature_flags import get_flags
from resortops.services.side_effect_dispatcher import SideEffectDispatcher

API = "/api/v1"


def create(client, headers, entity_type, entity_id, **attributes):
    response = client.post(
        f"{API}/entities",
        json={"entity_type": entity_type, "entity_id": entity_id, "attributes": attributes},
        headers=headers,
    )
    assert response.status_code == 201, response.text
    return response.json()


def transition(client, headers, entity_type, entity_id, to_state, expected_version, **extra):
    body = {
        "entity_type": entity_type,
        "entity_id": entity_id,
        "to_state": to_state,
        "expected_version": expected_version,
        **extra,
    }
    return client.post(f"{API}/transition", json=body, headers=headers)


class TestAuth:
    def test_requires_token(self, client):
        response = client.get(f"{API}/state/booking/B1")
        assert response.status_code == 401

    def test_rejects_garbage_token(self, client):
        response = client.get(f"{API}/state/booking/B1", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401


class TestTransitionEndpoint:
    def test_booking_confirmation(self, client, auth_headers):
        created = create(client, auth_headers, "booking", "BK-1", deposit=5000)
        assert (created["status"], created["version"]) == ("pending", 1)

        response = transition(client, auth_headers, "booking", "BK-1", "confirmed", 1)
        assert response.status_code == 200
        data = response.json()
        assert (data["status"], data["version"]) == ("confirmed", 2)
        assert data["derived_records"][0]["effect"] == "finance_income"
        assert data["derived_records"][0]["payload"]["amount"] == 5000

        state = client.get(f"{API}/state/booking/BK-1", headers=auth_headers)
        assert state.json() == {"status": "confirmed", "version": 2}

    def test_version_conflict(self, client, auth_headers):
        create(client, auth_headers, "booking", "BK-2")
        transition(client, auth_headers, "booking", "BK-2", "confirmed", 1)

        response = transition(client, auth_headers, "booking", "BK-2", "cancelled", 1)
        assert response.status_code == 409
        assert response.json()["code"] == "version_conflict"
        assert response.json()["current_version"] == 2

    def test_retry_flag_rereads(self, client, auth_headers):
        create(client, auth_headers, "booking", "BK-3")
        transition(client, auth_headers, "booking", "BK-3", "confirmed", 1)

        response = client.post(
            f"{API}/transition?retry=true",
            json={"entity_type": "booking", "entity_id": "BK-3", "to_state": "checked_in", "expected_version": 1},
            headers=auth_headers,
        )
        assert response.status_code == 200
        assert response.json()["version"] == 3

    def test_illegal_transition(self, client, auth_headers):
        create(client, auth_headers, "service_order", "SO-1")

        response = transition(client, auth_headers, "service_order", "SO-1", "delivered", 1)
        assert response.status_code == 422
        body = response.json()
        assert body["code"] == "illegal_transition"
        assert body["allowed"] == ["cancelled", "confirmed"]

    def test_unknown_entity(self, client, auth_headers):
        response = transition(client, auth_headers, "booking", "missing", "confirmed", 1)
        assert response.status_code == 404
        assert response.json()["code"] == "not_found"

    def test_unknown_entity_type(self, client, auth_headers):
        response = transition(client, auth_headers, "yacht", "Y1", "confirmed", 1)
        assert response.status_code == 422

    def test_dispatch_failure_is_503_and_rolled_back(self, client, auth_headers, monkeypatch):
        create(client, auth_headers, "pos_order", "P-1", total=1200)

        def broken(self, payload, idempotency_key, actor_id):
            raise RuntimeError("finance unavailable")

        monkeypatch.setattr(SideEffectDispatcher, "_record_income", broken)
        response = transition(
            client, auth_headers, "pos_order", "P-1", "checked_out", 1, context={"payment_method": "card"}
        )
        assert response.status_code == 503
        assert response.json()["code"] == "dispatch_failed"

        state = client.get(f"{API}/state/pos_order/P-1", headers=auth_headers)
        assert state.json() == {"status": "open", "version": 1}

    def test_actor_recorded_from_token(self, client, auth_headers):
        create(client, auth_headers, "housekeeping_task", "HK-1", room_id="R1", task_type="cleaning")
        transition(client, auth_headers, "housekeeping_task", "HK-1", "in_progress", 1)

        history = client.get(f"{API}/entities/housekeeping_task/HK-1/history", headers=auth_headers)
        assert history.status_code == 200
        data = history.json()
        assert [t["actor_id"] for t in data["transitions"]] == ["7", "7"]
        assert [r["payload"]["to_status"] for r in data["derived_records"]] == ["dirty", "in_progress"]


class TestEntityEndpoints:
    def test_duplicate_is_409(self, client, auth_headers):
        create(client, auth_headers, "booking", "BK-9")
        response = client.post(
            f"{API}/entities",
            json={"entity_type": "booking", "entity_id": "BK-9"},
            headers=auth_headers,
        )
        assert response.status_code == 409
        assert response.json()["code"] == "entity_exists"

    def test_task_without_room_is_422(self, client, auth_headers):
        response = client.post(
            f"{API}/entities",
            json={"entity_type": "housekeeping_task", "entity_id": "HK-9", "attributes": {}},
            headers=auth_headers,
        )
        assert response.status_code == 422
        assert response.json()["code"] == "invalid_entity"

    def test_patch_attributes(self, client, auth_headers):
        create(client, auth_headers, "conference_booking", "CB-1")
        response = client.patch(
            f"{API}/entities/conference_booking/CB-1",
            json={"expected_version": 1, "attributes": {"deposit": 15000}},
            headers=auth_headers,
        )
        assert response.status_code == 200
        assert response.json()["version"] == 2
        assert response.json()["attributes"]["deposit"] == 15000

    def test_allowed_transitions(self, client, auth_headers):
        create(client, auth_headers, "housekeeping_task", "HK-2", room_id="R2")
        response = client.get(f"{API}/entities/housekeeping_task/HK-2/transitions", headers=auth_headers)
        assert response.json() == {"status": "pending", "version": 1, "allowed": ["in_progress"]}

    def test_get_entity(self, client, auth_headers):
        create(client, auth_headers, "pos_order", "P-9", total=300)
        response = client.get(f"{API}/entities/pos_order/P-9", headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["attributes"] == {"total": 300}
        assert response.json()["created_by"] == "7"


class TestStockEndpoints:
    @pytest.fixture
    def item_id(self, client, auth_headers):
        response = client.post(
            f"{API}/stock/items",
            json={"name": "Bath Towel", "unit": "pcs", "min_level": 4, "opening_level": 10},
            headers=auth_headers,
        )
        assert response.status_code == 201, response.text
        assert response.json()["current_level"] == 10
        return response.json()["id"]

    def test_movement(self, client, auth_headers, item_id):
        response = client.post(
            f"{API}/stock-movement",
            json={"item_id": item_id, "kind": "out", "quantity": 3, "reason": "usage"},
            headers=auth_headers,
        )
        assert response.status_code == 200
        assert response.json() == {"item_id": item_id, "new_level": 7}

    def test_insufficient_stock_carries_level(self, client, auth_headers, item_id):
        response = client.post(
            f"{API}/stock-movement",
            json={"item_id": item_id, "kind": "out", "quantity": 15, "reason": "usage"},
            headers=auth_headers,
        )
        assert response.status_code == 409
        assert response.json()["code"] == "insufficient_stock"
        assert response.json()["current_level"] == 10

    def test_adjust(self, client, auth_headers, item_id):
        response = client.post(
            f"{API}/stock-movement",
            json={"item_id": item_id, "kind": "adjust", "quantity": 7, "reason": "count"},
            headers=auth_headers,
        )
        assert response.json()["new_level"] == 7

        ledger = client.get(f"{API}/stock/items/{item_id}/ledger", headers=auth_headers).json()
        assert ledger["total"] == 2
        assert ledger["items"][0]["delta"] == -3

    def test_bad_movement(self, client, auth_headers, item_id):
        response = client.post(
            f"{API}/stock-movement",
            json={"item_id": item_id, "kind": "in", "quantity": 0, "reason": "purchase"},
            headers=auth_headers,
        )
        assert response.status_code == 422
        assert response.json()["code"] == "invalid_movement"

    def test_missing_item(self, client, auth_headers):
        response = client.post(
            f"{API}/stock-movement",
            json={"item_id": 404, "kind": "in", "quantity": 1, "reason": "purchase"},
            headers=auth_headers,
        )
        assert response.status_code == 404

    def test_ledger_paging(self, client, auth_headers, item_id):
        for _ in range(3):
            client.post(
                f"{API}/stock-movement",
                json={"item_id": item_id, "kind": "out", "quantity": 1, "reason": "usage"},
                headers=auth_headers,
            )
        page = client.get(f"{API}/stock/items/{item_id}/ledger?skip=1&limit=2", headers=auth_headers).json()
        assert (page["total"], page["skip"], page["limit"], page["has_more"]) == (4, 1, 2, True)
        assert [e["delta"] for e in page["items"]] == [-1, -1]

        missing = client.get(f"{API}/stock/items/999/ledger", headers=auth_headers)
        assert missing.status_code == 404

    def test_list_and_low_stock(self, client, auth_headers, item_id):
        client.post(
            f"{API}/stock-movement",
            json={"item_id": item_id, "kind": "out", "quantity": 7, "reason": "usage"},
            headers=auth_headers,
        )
        items = client.get(f"{API}/stock/items", headers=auth_headers).json()
        assert items["total"] == 1
        assert items["items"][0]["is_low_stock"] is True

        low = client.get(f"{API}/stock/low-stock", headers=auth_headers).json()
        assert [entry["item_id"] for entry in low["items"]] == [item_id]

    def test_reconcile(self, client, auth_headers, item_id):
        response = client.get(f"{API}/stock/items/{item_id}/reconcile", headers=auth_headers)
        assert response.json()["in_sync"] is True
        assert response.json()["ledger_level"] == 10

    def test_deactivate_needs_manager(self, client, auth_headers, manager_headers, item_id):
        assert client.delete(f"{API}/stock/items/{item_id}", headers=auth_headers).status_code == 403

        response = client.delete(f"{API}/stock/items/{item_id}", headers=manager_headers)
        assert response.status_code == 200
        assert response.json()["is_active"] is False
        assert client.get(f"{API}/stock/items", headers=auth_headers).json()["total"] == 0


class TestFinanceEndpoints:
    def test_income_listed(self, client, auth_headers):
        create(client, auth_headers, "booking", "BK-20", deposit=4000)
        transition(client, auth_headers, "booking", "BK-20", "confirmed", 1)
        create(client, auth_headers, "pos_order", "P-20", total=900, payment_method="room_charge")
        transition(client, auth_headers, "pos_order", "P-20", "checked_out", 1)

        data = client.get(f"{API}/finance/transactions?type=income", headers=auth_headers).json()
        assert data["total"] == 1
        assert data["amount_total"] == 4000
        assert data["items"][0]["subcategory"] == "Booking Deposit"

    def test_manual_entry(self, client, auth_headers):
        response = client.post(
            f"{API}/finance/transactions",
            json={"type": "expense", "category": "Maintenance", "amount": 2500, "transaction_date": "2026-10-02"},
            headers=auth_headers,
        )
        assert response.status_code == 201, response.text
        body = response.json()
        assert (body["type"], body["category"], body["amount"]) == ("expense", "Maintenance", 2500)
        assert body["created_by"] == "7"
        assert body["payment_method"] == "cash"

        data = client.get(f"{API}/finance/transactions?type=expense", headers=auth_headers).json()
        assert data["amount_total"] == 2500

    @pytest.mark.parametrize("body", [
        {"type": "income", "category": "Supplies", "amount": 100},
        {"type": "expense", "category": "Utilities", "amount": 0},
        {"type": "expense", "category": "Utilities", "amount": -20},
    ])
    def test_manual_entry_rejected(self, client, auth_headers, body):
        response = client.post(f"{API}/finance/transactions", json=body, headers=auth_headers)
        assert response.status_code == 422
        assert response.json()["code"] == "invalid_transaction"
        assert client.get(f"{API}/finance/transactions", headers=auth_headers).json()["total"] == 0

    def test_summary(self, client, auth_headers):
        for body in (
            {"type": "income", "category": "Rooms", "amount": 700, "transaction_date": "2026-10-21"},
            {"type": "income", "category": "Bar", "amount": 40, "transaction_date": "2026-09-10"},
            {"type": "expense", "category": "Utilities", "amount": 90, "transaction_date": "2026-10-05"},
        ):
            assert client.post(f"{API}/finance/transactions", json=body, headers=auth_headers).status_code == 201

        summary = client.get(f"{API}/finance/summary?today=2026-10-21", headers=auth_headers).json()
        assert summary["today_income"] == 700
        assert summary["week_income"] == 700
        assert summary["month_expense"] == 90
        assert summary["last_month_income"] == 40
        assert summary["currency"]

    def test_categories(self, client, auth_headers):
        data = client.get(f"{API}/finance/categories", headers=auth_headers).json()
        assert "Rooms" in data["income"]
        assert "Supplies" in data["expense"]


class TestSupplierEndpoints:
    @pytest.fixture
    def supplier_id(self, client, auth_headers):
        response = client.post(
            f"{API}/stock/suppliers",
            json={"name": "Island Linen Co", "contact_person": "Mere", "category": "Housekeeping"},
            headers=auth_headers,
        )
        assert response.status_code == 201, response.text
        assert response.json()["is_active"] is True
        return response.json()["id"]

    def test_item_shows_supplier(self, client, auth_headers, supplier_id):
        response = client.post(
            f"{API}/stock/items",
            json={"name": "Pillow Case", "unit": "pcs", "supplier_id": supplier_id},
            headers=auth_headers,
        )
        assert response.status_code == 201, response.text
        assert response.json()["supplier_id"] == supplier_id
        assert response.json()["supplier_name"] == "Island Linen Co"

    def test_update(self, client, auth_headers, supplier_id):
        response = client.patch(
            f"{API}/stock/suppliers/{supplier_id}", json={"phone": "+678 22 111"}, headers=auth_headers
        )
        assert response.status_code == 200
        assert response.json()["phone"] == "+678 22 111"
        assert response.json()["contact_person"] == "Mere"

    def test_soft_delete(self, client, auth_headers, manager_headers, supplier_id):
        assert client.delete(f"{API}/stock/suppliers/{supplier_id}", headers=auth_headers).status_code == 403

        response = client.delete(f"{API}/stock/suppliers/{supplier_id}", headers=manager_headers)
        assert response.status_code == 200
        assert response.json()["is_active"] is False

        assert client.get(f"{API}/stock/suppliers", headers=auth_headers).json()["total"] == 0
        everyone = client.get(f"{API}/stock/suppliers?include_inactive=true", headers=auth_headers).json()
        assert [s["id"] for s in everyone["items"]] == [supplier_id]

        rejected = client.post(
            f"{API}/stock/items",
            json={"name": "Duvet", "unit": "pcs", "supplier_id": supplier_id},
            headers=auth_headers,
        )
        assert rejected.status_code == 422
        assert rejected.json()["code"] == "inactive_record"

    def test_unknown_supplier(self, client, auth_headers):
        response = client.post(
            f"{API}/stock/items",
            json={"name": "Duvet", "unit": "pcs", "supplier_id": 404},
            headers=auth_headers,
        )
        assert response.status_code == 404
        assert client.patch(f"{API}/stock/suppliers/404", json={}, headers=auth_headers).status_code == 404


class TestAppEndpoints:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.headers["X-Content-Type-Options"] == "nosniff"

    def test_metrics_flag(self, client, manager_headers):
        flags = get_flags()
        assert client.get("/metrics", headers=manager_headers).status_code == 404

        flags.override("PROMETHEUS_METRICS", True)
        try:
            response = client.get("/metrics", headers=manager_headers)
            assert response.status_code == 200
            assert "lifecycle_transitions_total" in response.text
        finally:
            flags.reset()

    def test_correlation_id_echoed(self, client, auth_headers):
        flags = get_flags()
        flags.override("CORRELATION_IDS_ENABLED", True)
        try:
            response = client.get(
                f"{API}/state/booking/none", headers={**auth_headers, "X-Correlation-ID": "abc-123"}
            )
            assert response.headers["X-Correlation-ID"] == "abc-123"
        finally:
            flags.reset()
