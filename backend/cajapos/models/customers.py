from __future__ import annotations

from ..extensions import db
from cajapos.time_utils import to_utc_z


class Customer(db.Model):
    """
    Customer with a running credit balance.

    `debt` is a denormalized aggregate: outstanding balances of credit sales
    minus recorded payments. It moves on credit sale commit, on payment and
    on void of a credit sale.
    """
    __tablename__ = "customers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(32), nullable=True)

    debt = db.Column(db.Float, nullable=False, default=0.0)
    credit_limit = db.Column(db.Float, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "debt": self.debt,
            "credit_limit": self.credit_limit,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }


class CustomerPayment(db.Model):
    """
    Payment toward a customer's outstanding balance (abono).

    Always received in cash through the open drawer session, so it is paired
    with an `in` CashMovement written in the same transaction.
    """
    __tablename__ = "customer_payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    session_id = db.Column(db.Integer, db.ForeignKey("cash_drawer_sessions.id"), nullable=False, index=True)
    cash_movement_id = db.Column(db.Integer, db.ForeignKey("cash_movements.id"), nullable=False)

    amount = db.Column(db.Float, nullable=False)
    debt_before = db.Column(db.Float, nullable=False)
    debt_after = db.Column(db.Float, nullable=False)
    note = db.Column(db.String(255), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    customer = db.relationship("Customer", backref=db.backref("payments", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "session_id": self.session_id,
            "cash_movement_id": self.cash_movement_id,
            "amount": self.amount,
            "debt_before": self.debt_before,
            "debt_after": self.debt_after,
            "note": self.note,
            "occurred_at": to_utc_z(self.occurred_at),
        }
