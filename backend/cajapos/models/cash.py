from __future__ import annotations

from ..extensions import db
from cajapos.time_utils import to_utc_z


class CashDrawerSession(db.Model):
    """
    Cash drawer session (shift / "caja").

    LIFECYCLE:
    - OPEN: created automatically when no open session exists on the device;
      opening_float inherits the previous session's closing_count
    - CLOSED: physical count audited, variance recorded

    INVARIANT: at most one OPEN session per device (partial unique index).
    IMMUTABLE: once closed, a session is never reopened or modified.
    """
    __tablename__ = "cash_drawer_sessions"
    __table_args__ = (
        db.Index(
            "uq_cash_drawer_sessions_device_open",
            "device_id",
            unique=True,
            sqlite_where=db.text("status = 'OPEN'"),
            postgresql_where=db.text("status = 'OPEN'"),
        ),
        db.Index("ix_cash_drawer_sessions_device_opened", "device_id", "opened_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    device_id = db.Column(db.String(64), nullable=False, default="default")

    status = db.Column(db.String(16), nullable=False, default="OPEN", index=True)  # OPEN, CLOSED

    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    opening_float = db.Column(db.Float, nullable=False, default=0.0)
    auto_opened = db.Column(db.Boolean, nullable=False, default=True)

    # Running manual movement totals (updated atomically with each movement)
    cash_in_total = db.Column(db.Float, nullable=False, default=0.0)
    cash_out_total = db.Column(db.Float, nullable=False, default=0.0)

    # Audit snapshot (set when closing)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    closing_count = db.Column(db.Float, nullable=True)
    cash_sales_total = db.Column(db.Float, nullable=True)
    credit_payments_total = db.Column(db.Float, nullable=True)
    expected_cash = db.Column(db.Float, nullable=True)
    variance = db.Column(db.Float, nullable=True)
    audit_comment = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    movements = db.relationship(
        "CashMovement",
        backref="session",
        order_by="CashMovement.occurred_at",
        lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_open(self) -> bool:
        return self.status == "OPEN"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "device_id": self.device_id,
            "status": self.status,
            "opened_at": to_utc_z(self.opened_at),
            "opening_float": self.opening_float,
            "auto_opened": self.auto_opened,
            "cash_in_total": self.cash_in_total,
            "cash_out_total": self.cash_out_total,
            "closed_at": to_utc_z(self.closed_at) if self.closed_at else None,
            "closing_count": self.closing_count,
            "cash_sales_total": self.cash_sales_total,
            "credit_payments_total": self.credit_payments_total,
            "expected_cash": self.expected_cash,
            "variance": self.variance,
            "audit_comment": self.audit_comment,
            "version_id": self.version_id,
        }


class CashMovement(db.Model):
    """
    Manual cash entry or withdrawal. Append-only.

    TYPES:
    - in: cash added to the drawer (change fund, customer payment)
    - out: cash removed (supplier payment, safe drop)
    """
    __tablename__ = "cash_movements"
    __table_args__ = (
        db.Index("ix_cash_movements_session_occurred", "session_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey("cash_drawer_sessions.id"), nullable=False, index=True)

    movement_type = db.Column(db.String(8), nullable=False)  # in, out
    amount = db.Column(db.Float, nullable=False)
    memo = db.Column(db.String(255), nullable=False, default="")

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "movement_type": self.movement_type,
            "amount": self.amount,
            "memo": self.memo,
            "occurred_at": to_utc_z(self.occurred_at),
        }
