# Overview: Pytest coverage for the JSON API: auth, capability checks and response codes.

"""
API Route Tests

Route handlers are thin: they authenticate, check one capability, call a
service and map service errors onto HTTP status codes. These tests cover
that mapping end to end through the Flask test client.
"""

import pytest

from poscore.models import AuditLog, SalesInvoice
from poscore.services import session_service


@pytest.fixture
def sale_body(store, till, units, stocked_product):
    piece, _ = units
    return {
        "store_id": store.id,
        "till_id": till.id,
        "lines": [{"product_id": stocked_product.id, "unit_id": piece.id, "qty_in_unit": 3}],
        "payments": [{"method": "CASH", "amount_pence": 3000}],
    }


class TestSystemRoutes:

    def test_health(self, client, db_session):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.get_json()["checks"]["database"]["status"] == "healthy"

    def test_version(self, client):
        response = client.get("/api/version")
        assert response.status_code == 200
        assert "api_version" in response.get_json()


class TestAuthentication:

    def test_missing_token(self, client, db_session, sale_body):
        response = client.post("/api/sales", json=sale_body)
        assert response.status_code == 401

    def test_unknown_token(self, client, db_session, sale_body):
        response = client.post("/api/sales", json=sale_body, headers={"Authorization": "Bearer not-a-token"})
        assert response.status_code == 401

    def test_revoked_token(self, client, db_session, cashier, sale_body):
        _, token = session_service.create_session(cashier.id)
        assert session_service.revoke_session(token) is True
        response = client.post("/api/sales", json=sale_body, headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401
        assert session_service.revoke_session(token) is False


class TestCapabilities:

    def test_cashier_cannot_adjust_stock(self, client, db_session, cashier, headers_for, store, units, stocked_product):
        piece, _ = units
        response = client.post(
            "/api/inventory/adjustments",
            json={"store_id": store.id, "product_id": stocked_product.id, "unit_id": piece.id,
                  "qty_in_unit": -1, "reason": "Damaged"},
            headers=headers_for(cashier),
        )
        assert response.status_code == 403
        denial = db_session.query(AuditLog).filter_by(action="PERMISSION_DENIED").one()
        assert denial.success is False

    def test_cashier_cannot_approve_transfer(self, client, db_session, cashier, headers_for):
        response = client.post("/api/transfers/1/approve", json={"manager_pin": "2222"}, headers=headers_for(cashier))
        assert response.status_code == 403

    def test_manager_cannot_post_journal(self, client, db_session, manager, headers_for):
        response = client.post("/api/ledger/entries", json={}, headers=headers_for(manager))
        assert response.status_code == 403


class TestSalesRoutes:

    def test_create_and_replay(self, client, db_session, cashier, headers_for, sale_body):
        headers = headers_for(cashier)
        body = dict(sale_body, external_ref="till-1-0001")

        first = client.post("/api/sales", json=body, headers=headers)
        assert first.status_code == 201
        invoice = first.get_json()["invoice"]
        assert invoice["total_pence"] == 3000
        assert invoice["payment_status"] == "PAID"

        second = client.post("/api/sales", json=body, headers=headers)
        assert second.status_code == 200
        assert second.get_json()["replayed"] is True
        assert second.get_json()["invoice"]["id"] == invoice["id"]
        assert db_session.query(SalesInvoice).count() == 1

    def test_insufficient_stock_conflict(self, client, db_session, cashier, headers_for, sale_body):
        sale_body["lines"][0]["qty_in_unit"] = 50
        sale_body["payments"][0]["amount_pence"] = 50000
        response = client.post("/api/sales", json=sale_body, headers=headers_for(cashier))
        assert response.status_code == 409
        assert response.get_json()["code"] == "INSUFFICIENT_STOCK"

    def test_bad_body(self, client, db_session, cashier, headers_for):
        response = client.post("/api/sales", json={"lines": "nope"}, headers=headers_for(cashier))
        assert response.status_code == 400

    def test_get_invoice(self, client, db_session, cashier, headers_for, sale_body):
        created = client.post("/api/sales", json=sale_body, headers=headers_for(cashier)).get_json()["invoice"]
        assert client.get(f"/api/sales/{created['id']}", headers=headers_for(cashier)).status_code == 200
        assert client.get("/api/sales/9999", headers=headers_for(cashier)).status_code == 404


class TestOfflineRoutes:

    def test_sync_reports_per_payload(self, client, db_session, cashier, headers_for, sale_body):
        good = dict(sale_body, id="q-1")
        bad = dict(sale_body, id="q-2", lines=[])
        response = client.post("/api/offline/sync", json={"payloads": [good, bad]}, headers=headers_for(cashier))
        assert response.status_code == 200
        data = response.get_json()
        assert data["synced"] == ["q-1"]
        assert [item["id"] for item in data["failed"]] == ["q-2"]

    def test_empty_batch(self, client, db_session, cashier, headers_for):
        response = client.post("/api/offline/sync", json={"payloads": []}, headers=headers_for(cashier))
        assert response.status_code == 400


class TestShiftRoutes:

    def test_open_sell_close(self, client, db_session, cashier, manager, till, headers_for, sale_body):
        headers = headers_for(cashier)
        opened = client.post(f"/api/tills/{till.id}/shifts", json={"opening_cash_pence": 5000}, headers=headers)
        assert opened.status_code == 201
        shift_id = opened.get_json()["shift"]["id"]

        again = client.post(f"/api/tills/{till.id}/shifts", json={"opening_cash_pence": 5000}, headers=headers)
        assert again.status_code == 409

        client.post("/api/sales", json=sale_body, headers=headers)

        no_pin = client.post(f"/api/shifts/{shift_id}/close", json={"actual_cash_pence": 8000}, headers=headers)
        assert no_pin.status_code == 403

        bad_pin = client.post(
            f"/api/shifts/{shift_id}/close",
            json={"actual_cash_pence": 8000, "manager_pin": "0000"},
            headers=headers,
        )
        assert bad_pin.status_code == 403

        closed = client.post(
            f"/api/shifts/{shift_id}/close",
            json={"actual_cash_pence": 8000, "manager_pin": "2222"},
            headers=headers,
        )
        assert closed.status_code == 200
        data = closed.get_json()
        assert data["shift"]["status"] == "CLOSED"
        assert data["shift"]["expected_cash_pence"] == 8000
        assert data["shift"]["variance_pence"] == 0

    def test_unknown_shift(self, client, db_session, manager, headers_for):
        response = client.get("/api/shifts/999", headers=headers_for(manager))
        assert response.status_code == 404


class TestTransferRoutes:

    def test_request_and_approve(self, client, db_session, cashier, manager, store, second_store, stocked_product, headers_for):
        created = client.post(
            "/api/transfers",
            json={"from_store_id": store.id, "to_store_id": second_store.id,
                  "lines": [{"product_id": stocked_product.id, "qty_base": 4}]},
            headers=headers_for(cashier),
        )
        assert created.status_code == 201
        transfer_id = created.get_json()["transfer"]["id"]

        wrong = client.post(
            f"/api/transfers/{transfer_id}/approve", json={"manager_pin": "9999"}, headers=headers_for(manager),
        )
        assert wrong.status_code == 403

        approved = client.post(
            f"/api/transfers/{transfer_id}/approve", json={"manager_pin": "2222"}, headers=headers_for(manager),
        )
        assert approved.status_code == 200
        assert approved.get_json()["transfer"]["status"] == "COMPLETED"

        replay = client.post(
            f"/api/transfers/{transfer_id}/approve", json={"manager_pin": "2222"}, headers=headers_for(manager),
        )
        assert replay.status_code == 409


class TestAccountingRoutes:

    def test_manual_entry_and_trial_balance(self, client, db_session, owner, headers_for):
        headers = headers_for(owner)
        posted = client.post(
            "/api/ledger/entries",
            json={
                "description": "Opening float",
                "lines": [
                    {"account_code": "1000", "debit_pence": 10000},
                    {"account_code": "3000", "credit_pence": 10000},
                ],
            },
            headers=headers,
        )
        assert posted.status_code == 201

        unbalanced = client.post(
            "/api/ledger/entries",
            json={
                "description": "Oops",
                "lines": [
                    {"account_code": "1000", "debit_pence": 10000},
                    {"account_code": "3000", "credit_pence": 9000},
                ],
            },
            headers=headers,
        )
        assert unbalanced.status_code in (400, 409)

        response = client.get("/api/ledger/trial-balance", headers=headers)
        assert response.status_code == 200
        data = response.get_json()
        assert data["balanced"] is True
        assert data["total_debit_pence"] == 10000

    def test_expense_and_purchase(self, client, db_session, manager, store, units, product, headers_for):
        _, pack = units
        headers = headers_for(manager)
        expense = client.post(
            "/api/expenses",
            json={"account_code": "6200", "amount_pence": 4500, "payment_method": "BANK"},
            headers=headers,
        )
        assert expense.status_code == 201

        purchase = client.post(
            "/api/purchases",
            json={"store_id": store.id,
                  "lines": [{"product_id": product.id, "unit_id": pack.id, "qty_in_unit": 1, "unit_cost_pence": 4800}]},
            headers=headers,
        )
        assert purchase.status_code == 201
        purchase_id = purchase.get_json()["purchase"]["id"]
        fetched = client.get(f"/api/purchases/{purchase_id}", headers=headers)
        assert fetched.status_code == 200
        assert fetched.get_json()["purchase"]["total_pence"] == 4800
        assert client.get("/api/purchases/999", headers=headers).status_code == 404
