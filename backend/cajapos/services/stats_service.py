# Overview: Service-layer operations for running stats; incremental deltas plus full rebuild.

from __future__ import annotations

import logging
from dataclasses import dataclass, asdict
from datetime import datetime

from ..extensions import db
from ..models import Batch, DailyStat, Product, RecipeProduct, RunningStats, Sale, VariantProduct
from cajapos.time_utils import day_key, to_utc_z, utcnow
from ..validation import round_currency
from .ledger_service import append_ledger_event
"""
CajaPOS Stats Invariants (authoritative)

- RunningStats (row id=1) and DailyStat rows are caches over Sales/Batches.
- Every committed sale applies ONE delta inside the sale's own transaction:
    revenue   += sale.total
    profit    += sum(round(price * qty) - round(cost * qty)) per line
    orders    += 1
    items     += sum(qty)
    valuation -= sum(use.cost * use.quantity) over stock actually consumed
  A void applies the same delta with sign -1.
- Receiving a lot adds cost * quantity to valuation. Legacy stock is valued
  as a whole at the product cost, so a cost change revalues what is on hand.
- rebuild() is the ONLY path that overwrites totals wholesale. It must
  converge to the incrementally maintained values for any sequence of sales
  and voids (given unchanged product costs).
- Valuation is never clamped at zero; clamping would break convergence.
"""

logger = logging.getLogger(__name__)

RUNNING_STATS_ID = 1
MAX_RECIPE_DEPTH = 5


@dataclass(frozen=True)
class StatsDelta:
    revenue: float = 0.0
    profit: float = 0.0
    orders: int = 0
    items_sold: float = 0.0
    inventory_valuation: float = 0.0

    def scaled(self, sign: int) -> "StatsDelta":
        return StatsDelta(
            revenue=self.revenue * sign,
            profit=self.profit * sign,
            orders=self.orders * sign,
            items_sold=self.items_sold * sign,
            inventory_valuation=self.inventory_valuation * sign,
        )

    @property
    def touches_sales(self) -> bool:
        return bool(self.revenue or self.profit or self.orders or self.items_sold)


@dataclass(frozen=True)
class StatsSnapshot:
    revenue: float
    net_profit: float
    orders: int
    items_sold: float
    inventory_valuation: float
    version: int
    rebuilt_at: datetime | None = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["revenue"] = round_currency(self.revenue)
        data["net_profit"] = round_currency(self.net_profit)
        data["inventory_valuation"] = round_currency(self.inventory_valuation)
        data["items_sold"] = round(self.items_sold, 4)
        data["rebuilt_at"] = to_utc_z(self.rebuilt_at)
        return data


def line_profit(unit_price: float, unit_cost: float, quantity: float) -> float:
    return round_currency(unit_price * quantity) - round_currency(unit_cost * quantity)


def _running_row() -> RunningStats:
    row = db.session.get(RunningStats, RUNNING_STATS_ID)
    if row is None:
        row = RunningStats(
            id=RUNNING_STATS_ID,
            revenue=0.0,
            net_profit=0.0,
            orders=0,
            items_sold=0.0,
            inventory_valuation=0.0,
            version=0,
        )
        db.session.add(row)
        db.session.flush()
    return row


def _daily_row(day: str) -> DailyStat:
    row = db.session.get(DailyStat, day)
    if row is None:
        row = DailyStat(day=day, revenue=0.0, profit=0.0, orders=0, items_sold=0.0)
        db.session.add(row)
        db.session.flush()
    return row


def _snapshot(row: RunningStats) -> StatsSnapshot:
    return StatsSnapshot(
        revenue=row.revenue,
        net_profit=row.net_profit,
        orders=row.orders,
        items_sold=row.items_sold,
        inventory_valuation=row.inventory_valuation,
        version=row.version,
        rebuilt_at=row.rebuilt_at,
    )


def get_running_stats() -> StatsSnapshot:
    """Current running totals (zeros before the first delta)."""
    row = db.session.get(RunningStats, RUNNING_STATS_ID)
    if row is None:
        return StatsSnapshot(0.0, 0.0, 0, 0.0, 0.0, 0, None)
    return _snapshot(row)


def apply_delta(delta: StatsDelta, day: str | None = None) -> StatsSnapshot:
    """
    Apply an incremental delta to the running totals and the day bucket.

    Runs inside the caller's transaction; does not commit.
    """
    row = _running_row()
    row.revenue = round_currency(row.revenue + delta.revenue)
    row.net_profit = round_currency(row.net_profit + delta.profit)
    row.orders = row.orders + delta.orders
    row.items_sold = round(row.items_sold + delta.items_sold, 6)
    row.inventory_valuation = row.inventory_valuation + delta.inventory_valuation
    row.version = row.version + 1

    if day is not None and delta.touches_sales:
        bucket = _daily_row(day)
        bucket.revenue = round_currency(bucket.revenue + delta.revenue)
        bucket.profit = round_currency(bucket.profit + delta.profit)
        bucket.orders = bucket.orders + delta.orders
        bucket.items_sold = round(bucket.items_sold + delta.items_sold, 6)

    return _snapshot(row)


def adjust_inventory_valuation(amount: float) -> StatsSnapshot:
    return apply_delta(StatsDelta(inventory_valuation=amount))


def sale_delta(sale: Sale) -> StatsDelta:
    profit = 0.0
    items = 0.0
    consumed = 0.0
    for line in sale.lines:
        items += line.quantity
        profit += line_profit(line.unit_price, line.unit_cost or 0.0, line.quantity)
        for use in line.batch_uses:
            consumed += use.cost * use.quantity
    return StatsDelta(
        revenue=sale.total,
        profit=round_currency(profit),
        orders=1,
        items_sold=items,
        inventory_valuation=-consumed,
    )


def apply_sale(sale: Sale, sign: int = 1) -> StatsSnapshot:
    """Apply (sign=1) or revert (sign=-1) a committed sale's effect."""
    return apply_delta(sale_delta(sale).scaled(sign), day=day_key(sale.occurred_at))


# =============================================================================
# REBUILD
# =============================================================================

def _stock_product(product: Product) -> Product | None:
    if isinstance(product, VariantProduct) and product.parent_id:
        return db.session.get(Product, product.parent_id)
    return product


def _stock_unit_cost(product: Product | None, _depth: int = 0) -> float:
    """Cost of one stock unit; recipe components are already in stock units."""
    product = _stock_product(product) if product is not None else None
    if product is None or _depth > MAX_RECIPE_DEPTH:
        return 0.0
    if isinstance(product, RecipeProduct):
        return sum(
            component.quantity * _stock_unit_cost(component.ingredient, _depth + 1)
            for component in product.components
        )
    return product.cost or 0.0


def current_unit_cost(product: Product | None) -> float:
    """Today's nominal cost of one sold unit of `product`."""
    product = _stock_product(product) if product is not None else None
    if product is None:
        return 0.0
    return product.sold_units_to_stock_units(_stock_unit_cost(product))


def compute_inventory_valuation() -> float:
    """
    Full rescan: active lots at their own cost plus legacy (non lot-managed)
    tracked stock at the product's nominal cost.
    """
    total = 0.0
    batches = db.session.query(Batch.cost, Batch.quantity).filter(
        Batch.is_active.is_(True),
        Batch.quantity > 0,
    )
    for cost, quantity in batches:
        total += (cost or 0.0) * quantity

    legacy = db.session.query(Product.cost, Product.stock).filter(
        Product.kind == "standard",
        Product.track_stock.is_(True),
        Product.stock > 0,
    )
    for cost, stock in legacy:
        total += (cost or 0.0) * stock
    return total


def rebuild(*, commit: bool = True) -> StatsSnapshot:
    """
    Recompute every aggregate from Sales, Batches and Products.

    Missing or zero historical line costs fall back to the product's current
    cost, repairing negative-profit drift without a schema migration.
    """
    started = utcnow()
    daily: dict[str, dict] = {}
    repaired_lines = 0

    sales = db.session.query(Sale).filter(Sale.status == "POSTED").order_by(Sale.occurred_at, Sale.id)
    for sale in sales:
        key = day_key(sale.occurred_at)
        bucket = daily.setdefault(key, {"revenue": 0.0, "profit": 0.0, "orders": 0, "items_sold": 0.0})
        bucket["revenue"] = round_currency(bucket["revenue"] + sale.total)
        bucket["orders"] += 1

        profit = 0.0
        for line in sale.lines:
            bucket["items_sold"] += line.quantity
            unit_cost = line.unit_cost
            if not unit_cost:
                product = db.session.get(Product, line.stock_product_id or line.product_id)
                unit_cost = current_unit_cost(product)
                repaired_lines += 1
            profit += line_profit(line.unit_price, unit_cost, line.quantity)
        bucket["profit"] = round_currency(bucket["profit"] + round_currency(profit))

    for stale in db.session.query(DailyStat).all():
        db.session.delete(stale)
    db.session.flush()
    for key, values in sorted(daily.items()):
        db.session.add(DailyStat(
            day=key,
            revenue=values["revenue"],
            profit=values["profit"],
            orders=values["orders"],
            items_sold=round(values["items_sold"], 6),
        ))

    row = _running_row()
    row.revenue = round_currency(sum(v["revenue"] for v in daily.values()))
    row.net_profit = round_currency(sum(v["profit"] for v in daily.values()))
    row.orders = sum(v["orders"] for v in daily.values())
    row.items_sold = round(sum(v["items_sold"] for v in daily.values()), 6)
    row.inventory_valuation = compute_inventory_valuation()
    row.version = row.version + 1
    row.rebuilt_at = utcnow()

    append_ledger_event(
        event_type="stats.rebuilt",
        event_category="stats",
        entity_type="running_stats",
        entity_id=RUNNING_STATS_ID,
        occurred_at=row.rebuilt_at,
        note=f"Rebuilt from {row.orders} sales",
        payload={"days": len(daily), "repaired_lines": repaired_lines},
    )

    if commit:
        db.session.commit()

    logger.info(
        "Stats rebuilt: orders=%s revenue=%.2f profit=%.2f valuation=%.2f repaired_lines=%s in %.3fs",
        row.orders, row.revenue, row.net_profit, row.inventory_valuation, repaired_lines,
        (utcnow() - started).total_seconds(),
    )
    return _snapshot(row)


def get_daily_stats(start: str | None = None, end: str | None = None) -> list[DailyStat]:
    """Day buckets in [start, end] (inclusive, YYYY-MM-DD)."""
    q = db.session.query(DailyStat)
    if start:
        q = q.filter(DailyStat.day >= start)
    if end:
        q = q.filter(DailyStat.day <= end)
    return q.order_by(DailyStat.day).all()
