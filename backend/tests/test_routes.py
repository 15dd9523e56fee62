"""
HTTP tests for the CajaPOS API.

Verifies:
- Checkout returns 201 and the stored sale
- Domain failures map to their status codes (400/404/409/422)
- Cash session, customer payment, stats and inventory endpoints
"""

import pytest


# =============================================================================
# SALES
# =============================================================================


class TestSalesRoutes:
    def test_checkout_returns_created_sale(self, client, make_batched):
        product = make_batched(name="Product A", price=5.0, lots=[(5, 2.0), (10, 3.0)])

        resp = client.post("/api/sales", json={
            "items": [{"product_id": product.id, "quantity": 7}],
            "payment": {"method": "efectivo", "amount_tendered": 50},
        })

        assert resp.status_code == 201
        sale = resp.get_json()["sale"]
        assert sale["total"] == pytest.approx(35.0)
        assert sale["payment_method"] == "cash"
        assert sale["change_due"] == pytest.approx(15.0)
        assert sale["lines"][0]["unit_cost"] == pytest.approx(2.2857)
        assert len(sale["lines"][0]["batches_used"]) == 2

    def test_insufficient_stock_is_409_with_deficits(self, client, make_batched, make_recipe):
        beef = make_batched(name="beef", unit="kg", lots=[(0.6, 12.0)])
        burger = make_recipe(name="Burger", components=[(beef, 0.2)])
        bowl = make_recipe(name="Beef Bowl", components=[(beef, 0.3)])

        resp = client.post("/api/sales", json={
            "items": [
                {"product_id": burger.id, "quantity": 2},
                {"product_id": bowl.id, "quantity": 1},
            ],
            "payment": {"method": "cash"},
        })

        assert resp.status_code == 409
        body = resp.get_json()
        assert body["code"] == "INSUFFICIENT_STOCK"
        assert body["details"]["deficits"][0]["needed"] == pytest.approx(0.7)
        assert client.get("/api/sales").get_json()["sales"] == []

    def test_device_header_is_stored(self, client, make_product):
        soda = make_product(stock=5)
        resp = client.post(
            "/api/sales",
            json={"items": [{"product_id": soda.id, "quantity": 1}]},
            headers={"X-Device-Id": "tablet-2"},
        )
        assert resp.status_code == 201
        assert resp.get_json()["sale"]["device_id"] == "tablet-2"

    def test_get_and_void(self, client, make_product):
        soda = make_product(stock=5)
        sale_id = client.post(
            "/api/sales", json={"items": [{"product_id": soda.id, "quantity": 2}]}
        ).get_json()["sale"]["id"]

        assert client.get(f"/api/sales/{sale_id}").status_code == 200

        resp = client.post(f"/api/sales/{sale_id}/void", json={"reason": "Wrong order"})
        assert resp.status_code == 200
        assert resp.get_json()["sale"]["status"] == "VOIDED"

        again = client.post(f"/api/sales/{sale_id}/void")
        assert again.status_code == 422

        listed = client.get("/api/sales?include_voided=true").get_json()["sales"]
        assert [s["id"] for s in listed] == [sale_id]
        assert client.get("/api/sales").get_json()["sales"] == []

    def test_missing_sale_is_404(self, client, db_session):
        resp = client.get("/api/sales/999999")
        assert resp.status_code == 404
        assert resp.get_json()["code"] == "NOT_FOUND"

    @pytest.mark.parametrize("body", ["not json", "[1, 2]"])
    def test_non_object_body_is_400(self, client, db_session, body):
        resp = client.post("/api/sales", data=body, content_type="application/json")
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "VALIDATION_ERROR"

    def test_bad_date_filter_is_400(self, client, db_session):
        assert client.get("/api/sales?from=yesterday").status_code == 400

    def test_non_numeric_limit_is_400(self, client, db_session):
        resp = client.get("/api/sales?limit=ten")
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "VALIDATION_ERROR"
        assert client.get("/api/cash/sessions?limit=ten").status_code == 400

    def test_negative_limit_is_clamped_to_one(self, client, make_product):
        soda = make_product(stock=5)
        for _ in range(2):
            client.post("/api/sales", json={"items": [{"product_id": soda.id, "quantity": 1}]})

        resp = client.get("/api/sales?limit=-1")

        assert resp.status_code == 200
        assert len(resp.get_json()["sales"]) == 1


# =============================================================================
# CASH DRAWER
# =============================================================================


class TestCashRoutes:
    def test_reading_the_session_opens_it(self, client, db_session):
        resp = client.get("/api/cash/session")

        assert resp.status_code == 200
        body = resp.get_json()
        assert body["session"]["status"] == "OPEN"
        assert body["theoretical"] == pytest.approx(0.0)
        assert client.get("/api/cash/session").get_json()["session"]["id"] == body["session"]["id"]

    def test_movement_then_close_with_comment(self, client, db_session):
        client.get("/api/cash/session")

        movement = client.post("/api/cash/movements", json={"movement_type": "in", "amount": 100, "memo": "Float"})
        assert movement.status_code == 201

        blocked = client.post("/api/cash/session/close", json={"physical_count": 90})
        assert blocked.status_code == 422
        assert blocked.get_json()["details"]["variance"] == pytest.approx(-10.0)

        closed = client.post(
            "/api/cash/session/close",
            json={"physical_count": 90, "comment": "Paid the window cleaner"},
        )
        assert closed.status_code == 200
        body = closed.get_json()
        assert body["variance"] == pytest.approx(-10.0)
        assert body["theoretical"] == pytest.approx(100.0)
        assert body["session"]["status"] == "CLOSED"

        sessions = client.get("/api/cash/sessions").get_json()["sessions"]
        assert len(sessions) == 1

    def test_movement_without_session_is_422(self, client, db_session):
        resp = client.post("/api/cash/movements", json={"movement_type": "out", "amount": 5})
        assert resp.status_code == 422

    def test_adjust_float(self, client, db_session):
        client.get("/api/cash/session")
        resp = client.post("/api/cash/session/float", json={"opening_float": 75, "reason": "Recount"})
        assert resp.status_code == 200
        assert resp.get_json()["session"]["opening_float"] == pytest.approx(75.0)


# =============================================================================
# CUSTOMERS
# =============================================================================


class TestCustomerRoutes:
    def test_credit_sale_and_payment(self, client, make_product):
        tv = make_product(name="TV", price=200.0, stock=2)
        customer = client.post("/api/customers", json={"name": "Don Luis", "credit_limit": 500}).get_json()["customer"]
        client.get("/api/cash/session")

        sale = client.post("/api/sales", json={
            "items": [{"product_id": tv.id, "quantity": 1}],
            "payment": {"method": "fiado", "customer_id": customer["id"], "down_payment": 50},
        })
        assert sale.status_code == 201

        debtors = client.get("/api/customers/debtors").get_json()["customers"]
        assert [(c["id"], c["debt"]) for c in debtors] == [(customer["id"], pytest.approx(150.0))]

        resp = client.post(f"/api/customers/{customer['id']}/payments", json={"amount": 100})
        assert resp.status_code == 201
        assert resp.get_json()["payment"]["debt_after"] == pytest.approx(50.0)

        summary = client.get("/api/cash/session").get_json()
        assert summary["theoretical"] == pytest.approx(150.0)
        assert len(summary["customer_payments"]) == 1

    def test_customer_requires_name(self, client, db_session):
        assert client.post("/api/customers", json={"phone": "555"}).status_code == 400


# =============================================================================
# STATS / INVENTORY / SYSTEM
# =============================================================================


class TestStatsRoutes:
    def test_stats_track_sales_and_rebuild_agrees(self, client, make_product):
        soda = make_product(price=2.0, cost=1.0, stock=10)
        client.post("/api/sales", json={"items": [{"product_id": soda.id, "quantity": 3}]})

        stats = client.get("/api/stats").get_json()["stats"]
        assert stats["revenue"] == pytest.approx(6.0)
        assert stats["net_profit"] == pytest.approx(3.0)
        assert stats["orders"] == 1

        rebuilt = client.post("/api/stats/rebuild").get_json()["stats"]
        assert rebuilt["revenue"] == stats["revenue"]
        assert rebuilt["net_profit"] == stats["net_profit"]
        assert rebuilt["rebuilt_at"] is not None

        days = client.get("/api/stats/daily").get_json()["days"]
        assert len(days) == 1


class TestInventoryRoutes:
    def test_receive_and_list_batches(self, client, make_batched):
        product = make_batched(name="Rice", lots=[])

        created = client.post(
            f"/api/inventory/products/{product.id}/batches",
            json={"quantity": 12, "cost": 2.5},
        )
        assert created.status_code == 201

        batches = client.get(f"/api/inventory/products/{product.id}/batches").get_json()["batches"]
        assert [(b["quantity"], b["cost"]) for b in batches] == [(12.0, 2.5)]

        stats = client.get("/api/stats").get_json()["stats"]
        assert stats["inventory_valuation"] == pytest.approx(30.0)

    def test_negative_lot_is_rejected(self, client, make_batched):
        product = make_batched(name="Rice", lots=[])
        resp = client.post(f"/api/inventory/products/{product.id}/batches", json={"quantity": -1, "cost": 2.5})
        assert resp.status_code == 400

    def test_reconcile_reports_nothing_when_in_sync(self, client, make_batched):
        make_batched(lots=[(4, 1.0)])
        resp = client.post("/api/inventory/reconcile")
        assert resp.status_code == 200
        assert resp.get_json()["corrections"] == []


class TestSystemRoutes:
    def test_health(self, client, db_session):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["status"] == "ok"
        assert body["device_id"] == "test-device"

    def test_ledger_lists_sale_events(self, client, make_product):
        soda = make_product(stock=5)
        sale_id = client.post(
            "/api/sales", json={"items": [{"product_id": soda.id, "quantity": 1}]}
        ).get_json()["sale"]["id"]

        events = client.get(f"/api/ledger?sale_id={sale_id}").get_json()["events"]
        assert [e["event_type"] for e in events] == ["sale.committed"]
