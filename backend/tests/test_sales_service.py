# Overview: Pytest coverage for atomic checkout and void.

"""
Sale Coordinator Tests

Checkout must be all-or-nothing: every failure path below asserts that no
Sale row exists and no stock moved.
"""

import pytest
from sqlalchemy import update
from sqlalchemy.exc import OperationalError

from cajapos.errors import classify_persistence_error
from cajapos.models import Batch, Customer, LedgerEvent, Product, Sale
from cajapos.services import batch_service, sales_service, stats_service
from cajapos.services.sales_service import PaymentInfo


def _cash(tendered=None):
    return {"method": "cash", "amount_tendered": tendered}


class TestCheckout:
    def test_fifo_sale_consumes_oldest_lot_first(self, db_session, make_batched):
        product = make_batched(name="Product A", price=5.0, lots=[(5, 2.0), (10, 3.0)])
        first, second = batch_service.list_active_batches(product.id)

        result = sales_service.process_sale([{"product_id": product.id, "quantity": 7}], _cash(40))

        assert result.success, result.error
        sale = result.value
        line = sale.lines[0]
        assert line.unit_cost == pytest.approx(2.2857)
        assert sale.total == pytest.approx(35.0)
        assert sale.change_due == pytest.approx(5.0)

        assert db_session.get(Batch, first.id).is_active is False
        assert db_session.get(Batch, first.id).quantity == 0.0
        assert db_session.get(Batch, second.id).quantity == pytest.approx(8.0)
        assert db_session.get(Product, product.id).stock == pytest.approx(8.0)
        assert [(u.batch_id, u.quantity) for u in line.batch_uses] == [(first.id, 5.0), (second.id, 2.0)]

    def test_legacy_product_stock_is_decremented(self, db_session, make_product):
        soda = make_product(name="Soda", price=1.5, cost=0.8, stock=10)

        result = sales_service.process_sale([{"product_id": soda.id, "quantity": 3}], _cash())

        assert result.success
        assert db_session.get(Product, soda.id).stock == pytest.approx(7.0)
        use = result.value.lines[0].batch_uses[0]
        assert use.batch_id is None
        assert use.cost == pytest.approx(0.8)

    def test_conversion_factor_applies_to_stock(self, db_session, make_batched):
        eggs = make_batched(name="Eggs", price=0.3, lots=[(2, 3.0)], conversion_factor=30)

        result = sales_service.process_sale([{"product_id": eggs.id, "quantity": 15}], _cash())

        assert result.success
        assert db_session.get(Product, eggs.id).stock == pytest.approx(1.5)
        assert result.value.lines[0].stock_deducted == pytest.approx(0.5)

    def test_cash_tender_below_total_is_rejected(self, db_session, make_product):
        soda = make_product(price=10.0, stock=5)

        result = sales_service.process_sale([{"product_id": soda.id, "quantity": 1}], _cash(9.99))

        assert not result.success
        assert result.error_code == "VALIDATION_ERROR"
        assert db_session.query(Sale).count() == 0
        assert db_session.get(Product, soda.id).stock == pytest.approx(5.0)

    @pytest.mark.parametrize("items", [
        [],
        [{"product_id": 1, "quantity": 0}],
        [{"product_id": 1, "quantity": "abc"}],
        [{"product_id": "x", "quantity": 1}],
        [{"product_id": 1, "quantity": 1, "unit_price": -1}],
    ])
    def test_bad_input_is_a_validation_error(self, db_session, items):
        result = sales_service.process_sale(items, _cash())
        assert result.error_code == "VALIDATION_ERROR"

    def test_kds_marks_sales_pending(self, app, db_session, make_product):
        soda = make_product(stock=5)
        app.config["KDS_ENABLED"] = True
        try:
            result = sales_service.process_sale([{"product_id": soda.id, "quantity": 1}], _cash())
        finally:
            app.config["KDS_ENABLED"] = False
        assert result.value.fulfillment_status == "pending"

    def test_notifier_failure_does_not_fail_the_sale(self, db_session, make_product):
        soda = make_product(stock=5)
        calls = []

        def notifier(sale):
            calls.append(sale.id)
            raise RuntimeError("printer offline")

        result = sales_service.process_sale([{"product_id": soda.id, "quantity": 1}], _cash(), notifier=notifier)

        assert result.success
        assert calls == [result.value.id]

    def test_notifier_skipped_when_no_receipt_wanted(self, db_session, make_product):
        soda = make_product(stock=5)
        calls = []

        result = sales_service.process_sale(
            [{"product_id": soda.id, "quantity": 1}],
            {"method": "cash", "receipt": False},
            notifier=calls.append,
        )

        assert result.success
        assert calls == []

    def test_commit_writes_ledger_event(self, db_session, make_product):
        soda = make_product(stock=5)
        result = sales_service.process_sale([{"product_id": soda.id, "quantity": 1}], _cash())
        events = db_session.query(LedgerEvent).filter_by(event_type="sale.committed", sale_id=result.value.id).all()
        assert len(events) == 1


class TestInsufficientStock:
    def test_cart_wide_deficit_aborts_sale(self, db_session, make_batched, make_recipe):
        beef = make_batched(name="beef", unit="kg", lots=[(0.6, 12.0)])
        burger = make_recipe(name="Burger", price=8.0, components=[(beef, 0.2)])
        bowl = make_recipe(name="Beef Bowl", price=9.0, components=[(beef, 0.3)])

        result = sales_service.process_sale(
            [
                {"product_id": burger.id, "quantity": 2},
                {"product_id": bowl.id, "quantity": 1},
            ],
            _cash(),
        )

        assert result.error_code == "INSUFFICIENT_STOCK"
        deficits = result.error.details["deficits"]
        assert len(deficits) == 1
        assert deficits[0]["ingredient_name"] == "beef"
        assert deficits[0]["needed"] == pytest.approx(0.7)
        assert deficits[0]["available"] == pytest.approx(0.6)

        assert db_session.query(Sale).count() == 0
        assert db_session.get(Product, beef.id).stock == pytest.approx(0.6)

    def test_ignore_stock_sells_anyway(self, db_session, make_product):
        soda = make_product(stock=1, cost=0.8)

        result = sales_service.process_sale([{"product_id": soda.id, "quantity": 3}], _cash(), ignore_stock=True)

        assert result.success
        # Only what existed is consumed; stock never goes negative
        assert db_session.get(Product, soda.id).stock == 0.0
        assert result.value.lines[0].unit_cost == pytest.approx(0.8)


class TestConcurrencyConflict:
    def test_stock_taken_after_check_aborts_everything(self, db_session, make_batched, monkeypatch):
        product = make_batched(name="Product A", lots=[(5, 2.0)])
        batch = batch_service.list_active_batches(product.id)[0]
        original = sales_service.resolve_cart

        def racing_resolve(lines, **kwargs):
            resolution = original(lines, **kwargs)
            # Another tab sells 4 units between our check and our write
            db_session.execute(update(Batch).where(Batch.id == batch.id).values(quantity=1.0))
            return resolution

        monkeypatch.setattr(sales_service, "resolve_cart", racing_resolve)

        result = sales_service.process_sale([{"product_id": product.id, "quantity": 3}], _cash())

        assert result.error_code == "CONCURRENCY_CONFLICT"
        assert result.error.to_dict()["retry"] is True
        assert db_session.query(Sale).count() == 0
        assert db_session.get(Batch, batch.id).quantity == pytest.approx(5.0)
        assert stats_service.get_running_stats().orders == 0


class TestCreditSales:
    def test_down_payment_leaves_balance_on_customer(self, db_session, make_product, customer):
        tv = make_product(name="TV", price=200.0, cost=120.0, stock=3)

        result = sales_service.process_sale(
            [{"product_id": tv.id, "quantity": 1}],
            PaymentInfo(method="credit", customer_id=customer.id, down_payment=50.0),
        )

        assert result.success
        sale = result.value
        assert sale.balance_due == pytest.approx(150.0)
        assert sale.amount_paid == pytest.approx(50.0)
        assert db_session.get(Customer, customer.id).debt == pytest.approx(150.0)

    def test_credit_requires_customer(self, db_session, make_product):
        tv = make_product(price=200.0, stock=3)
        result = sales_service.process_sale([{"product_id": tv.id, "quantity": 1}], {"method": "fiado"})
        assert result.error_code == "VALIDATION_ERROR"

    def test_down_payment_above_total_is_rejected(self, db_session, make_product, customer):
        tv = make_product(price=200.0, stock=3)
        result = sales_service.process_sale(
            [{"product_id": tv.id, "quantity": 1}],
            {"method": "credit", "customer_id": customer.id, "down_payment": 250},
        )
        assert result.error_code == "VALIDATION_ERROR"
        assert db_session.get(Customer, customer.id).debt == 0.0

    def test_credit_limit_is_enforced(self, db_session, make_product, customer):
        customer.credit_limit = 100.0
        db_session.commit()
        tv = make_product(price=200.0, stock=3)

        result = sales_service.process_sale(
            [{"product_id": tv.id, "quantity": 1}],
            {"method": "credit", "customer_id": customer.id, "down_payment": 50},
        )

        assert result.error_code == "BUSINESS_RULE"
        assert db_session.get(Product, tv.id).stock == pytest.approx(3.0)


class TestVoid:
    def test_void_restores_exact_lots_and_stats(self, db_session, make_batched):
        product = make_batched(name="Product A", price=5.0, lots=[(5, 2.0), (10, 3.0)])
        first, second = batch_service.list_active_batches(product.id)
        sale = sales_service.process_sale([{"product_id": product.id, "quantity": 7}], _cash()).value

        result = sales_service.void_sale(sale.id, "customer changed their mind")

        assert result.success
        assert result.value.status == "VOIDED"
        assert db_session.get(Batch, first.id).quantity == pytest.approx(5.0)
        assert db_session.get(Batch, first.id).is_active is True
        assert db_session.get(Batch, second.id).quantity == pytest.approx(10.0)
        assert db_session.get(Product, product.id).stock == pytest.approx(15.0)

        stats = stats_service.get_running_stats()
        assert stats.orders == 0
        assert stats.revenue == pytest.approx(0.0)
        assert stats.inventory_valuation == pytest.approx(40.0)

    def test_void_twice_is_a_business_rule_error(self, db_session, make_product):
        soda = make_product(stock=5)
        sale = sales_service.process_sale([{"product_id": soda.id, "quantity": 1}], _cash()).value
        assert sales_service.void_sale(sale.id).success

        result = sales_service.void_sale(sale.id)
        assert result.error_code == "BUSINESS_RULE"
        assert db_session.get(Product, soda.id).stock == pytest.approx(5.0)

    def test_void_missing_sale(self, db_session):
        assert sales_service.void_sale(123456).error_code == "NOT_FOUND"

    def test_void_into_deleted_lot_creates_synthetic_batch(self, db_session, make_batched):
        product = make_batched(name="Product A", lots=[(2, 4.0)])
        batch = batch_service.list_active_batches(product.id)[0]
        sale = sales_service.process_sale([{"product_id": product.id, "quantity": 2}], _cash()).value

        db_session.delete(db_session.get(Batch, batch.id))
        db_session.commit()

        result = sales_service.void_sale(sale.id)

        assert result.success
        restored = batch_service.list_active_batches(product.id)
        assert len(restored) == 1
        assert restored[0].is_synthetic is True
        assert restored[0].quantity == pytest.approx(2.0)
        assert restored[0].cost == pytest.approx(4.0)
        assert db_session.get(Product, product.id).stock == pytest.approx(2.0)

    def test_void_credit_sale_releases_debt(self, db_session, make_product, customer):
        tv = make_product(price=200.0, stock=3)
        sale = sales_service.process_sale(
            [{"product_id": tv.id, "quantity": 1}],
            {"method": "credit", "customer_id": customer.id, "down_payment": 50},
        ).value

        assert sales_service.void_sale(sale.id).success
        assert db_session.get(Customer, customer.id).debt == 0.0


class TestPersistenceFailures:
    def test_locked_store_maps_to_retry_hint(self):
        exc = OperationalError("INSERT INTO sales", {}, Exception("database is locked"))

        error = classify_persistence_error(exc, "process_sale")

        assert error.http_status == 503
        assert error.details == {"reason": "STORAGE_BUSY", "operation": "process_sale"}
        assert "retry" in error.hint
