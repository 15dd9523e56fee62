# Overview: Pytest coverage for incremental stats and the rebuild path.

import pytest

from cajapos.models import DailyStat, SaleLine
from cajapos.services import batch_service, sales_service, stats_service


def _sell(items, **kwargs):
    payment = kwargs.pop("payment", {"method": "cash"})
    result = sales_service.process_sale(items, payment, **kwargs)
    assert result.success, result.error
    return result.value


def _assert_same_totals(left, right):
    assert left.revenue == pytest.approx(right.revenue)
    assert left.net_profit == pytest.approx(right.net_profit)
    assert left.orders == right.orders
    assert left.items_sold == pytest.approx(right.items_sold)
    assert left.inventory_valuation == pytest.approx(right.inventory_valuation)


class TestIncrementalDeltas:
    def test_sale_applies_revenue_profit_and_valuation(self, db_session, make_batched):
        product = make_batched(name="Product A", price=5.0, lots=[(5, 2.0), (10, 3.0)])

        _sell([{"product_id": product.id, "quantity": 7}])

        stats = stats_service.get_running_stats()
        assert stats.revenue == pytest.approx(35.0)
        # 35.00 - round(2.2857 * 7) = 35.00 - 16.00
        assert stats.net_profit == pytest.approx(19.0)
        assert stats.orders == 1
        assert stats.items_sold == pytest.approx(7.0)
        assert stats.inventory_valuation == pytest.approx(24.0)

    def test_daily_bucket_uses_sale_date(self, db_session, make_product):
        soda = make_product(price=2.0, cost=1.0, stock=10)

        _sell([{"product_id": soda.id, "quantity": 2}], occurred_at="2025-01-02T10:00:00Z")
        _sell([{"product_id": soda.id, "quantity": 1}], occurred_at="2025-01-03T23:30:00Z")

        days = stats_service.get_daily_stats("2025-01-01", "2025-01-02")
        assert [d.day for d in days] == ["2025-01-02"]
        assert days[0].revenue == pytest.approx(4.0)
        assert days[0].profit == pytest.approx(2.0)
        assert days[0].orders == 1

    def test_valuation_is_not_clamped(self, db_session):
        stats_service.adjust_inventory_valuation(-12.5)
        db_session.commit()
        assert stats_service.get_running_stats().inventory_valuation == pytest.approx(-12.5)

    def test_every_delta_bumps_version(self, db_session, make_product):
        soda = make_product(stock=10)
        before = stats_service.get_running_stats().version
        _sell([{"product_id": soda.id, "quantity": 1}])
        assert stats_service.get_running_stats().version == before + 1


class TestRebuild:
    def test_rebuild_converges_with_incremental_totals(
        self, db_session, make_batched, make_product, make_recipe, customer
    ):
        product_a = make_batched(name="Product A", price=5.0, lots=[(5, 2.0), (10, 3.0)])
        beef = make_batched(name="Beef", unit="kg", lots=[(2, 11.0), (3, 12.5)])
        soda = make_product(name="Soda", price=1.5, cost=0.8, stock=0)
        batch_service.receive_product_stock(soda.id, 24)
        burger = make_recipe(name="Burger", price=8.0, components=[(beef, 0.2)])

        _sell([{"product_id": product_a.id, "quantity": 7}], occurred_at="2025-03-01T09:00:00Z")
        _sell(
            [{"product_id": burger.id, "quantity": 3}, {"product_id": soda.id, "quantity": 3}],
            occurred_at="2025-03-01T13:00:00Z",
        )
        voided = _sell([{"product_id": product_a.id, "quantity": 4}], occurred_at="2025-03-02T10:00:00Z")
        _sell(
            [{"product_id": burger.id, "quantity": 12}],
            payment={"method": "credit", "customer_id": customer.id, "down_payment": 20},
            occurred_at="2025-03-02T19:00:00Z",
        )
        assert sales_service.void_sale(voided.id).success

        incremental = stats_service.get_running_stats()
        daily_before = {d.day: (d.revenue, d.profit, d.orders) for d in stats_service.get_daily_stats()}

        rebuilt = stats_service.rebuild()

        _assert_same_totals(incremental, rebuilt)
        assert rebuilt.version > incremental.version
        assert rebuilt.rebuilt_at is not None
        daily_after = {d.day: (d.revenue, d.profit, d.orders) for d in stats_service.get_daily_stats()}
        assert daily_after.keys() == daily_before.keys()
        for day, values in daily_before.items():
            assert daily_after[day] == pytest.approx(values)

    def test_legacy_restock_at_new_cost_matches_rescan(self, db_session, make_product):
        soda = make_product(name="Soda", price=5.0, cost=2.0, stock=0)
        batch_service.receive_product_stock(soda.id, 10, 2.0)
        batch_service.receive_product_stock(soda.id, 10, 3.0)

        # All 20 units now carry the product's cost of 3.00
        assert stats_service.get_running_stats().inventory_valuation == pytest.approx(60.0)
        assert stats_service.compute_inventory_valuation() == pytest.approx(60.0)

        sale = _sell([{"product_id": soda.id, "quantity": 5}])
        assert stats_service.get_running_stats().inventory_valuation == pytest.approx(45.0)

        batch_service.receive_product_stock(soda.id, 5, 4.0)
        assert sales_service.void_sale(sale.id).success

        incremental = stats_service.get_running_stats()
        assert incremental.inventory_valuation == pytest.approx(25 * 4.0)
        _assert_same_totals(incremental, stats_service.rebuild())

    def test_rebuild_excludes_voided_sales(self, db_session, make_product):
        soda = make_product(price=2.0, cost=1.0, stock=10)
        sale = _sell([{"product_id": soda.id, "quantity": 2}])
        assert sales_service.void_sale(sale.id).success

        rebuilt = stats_service.rebuild()

        assert rebuilt.orders == 0
        assert rebuilt.revenue == 0.0
        assert db_session.query(DailyStat).filter(DailyStat.orders > 0).count() == 0

    def test_missing_line_cost_falls_back_to_current_cost(self, db_session, make_product):
        soda = make_product(price=1.5, cost=0.8, stock=10)
        sale = _sell([{"product_id": soda.id, "quantity": 2}])
        line = db_session.get(SaleLine, sale.lines[0].id)
        line.unit_cost = 0.0
        db_session.commit()

        rebuilt = stats_service.rebuild()

        # 3.00 revenue - 1.60 cost at today's price, not 3.00 profit
        assert rebuilt.net_profit == pytest.approx(1.4)

    def test_missing_recipe_cost_ignores_ingredient_pack_factor(self, db_session, make_batched, make_recipe):
        # Buns are sold singly from a 12-pack but recipes draw whole stock units
        buns = make_batched(name="Buns", lots=[(10, 6.0)], conversion_factor=12)
        burger = make_recipe(name="Burger", price=8.0, components=[(buns, 1)])
        sale = _sell([{"product_id": burger.id, "quantity": 1}])
        assert sale.lines[0].unit_cost == pytest.approx(6.0)

        line = db_session.get(SaleLine, sale.lines[0].id)
        line.unit_cost = 0.0
        db_session.commit()

        rebuilt = stats_service.rebuild()

        assert rebuilt.net_profit == pytest.approx(2.0)

    def test_rebuild_values_lots_and_legacy_stock(self, db_session, make_batched, make_product):
        make_batched(lots=[(4, 2.5)])
        make_product(name="Legacy", cost=1.25, stock=8)
        make_product(name="Service", cost=9.0, stock=5, track_stock=False)

        rebuilt = stats_service.rebuild()

        assert rebuilt.inventory_valuation == pytest.approx(4 * 2.5 + 8 * 1.25)
