from __future__ import annotations

from ..extensions import db
from cajapos.time_utils import to_utc_z


class RunningStats(db.Model):
    """
    Running business totals (single row, id=1).

    Versioned aggregate: every incremental delta bumps `version`; only
    stats_service.rebuild() may overwrite the totals wholesale.
    """
    __tablename__ = "running_stats"

    id = db.Column(db.Integer, primary_key=True)

    revenue = db.Column(db.Float, nullable=False, default=0.0)
    net_profit = db.Column(db.Float, nullable=False, default=0.0)
    orders = db.Column(db.Integer, nullable=False, default=0)
    items_sold = db.Column(db.Float, nullable=False, default=0.0)
    inventory_valuation = db.Column(db.Float, nullable=False, default=0.0)

    version = db.Column(db.Integer, nullable=False, default=0)
    rebuilt_at = db.Column(db.DateTime(timezone=True), nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())


class DailyStat(db.Model):
    """One bucket per calendar day (UTC), accumulated from the same deltas."""
    __tablename__ = "daily_stats"

    day = db.Column(db.String(10), primary_key=True)  # YYYY-MM-DD

    revenue = db.Column(db.Float, nullable=False, default=0.0)
    profit = db.Column(db.Float, nullable=False, default=0.0)
    orders = db.Column(db.Integer, nullable=False, default=0)
    items_sold = db.Column(db.Float, nullable=False, default=0.0)

    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "day": self.day,
            "revenue": self.revenue,
            "profit": self.profit,
            "orders": self.orders,
            "items_sold": self.items_sold,
            "updated_at": to_utc_z(self.updated_at),
        }
