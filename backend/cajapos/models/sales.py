from __future__ import annotations

from ..extensions import db
from cajapos.time_utils import to_utc_z


class Sale(db.Model):
    """
    Committed sale.

    IMMUTABLE: a sale is written once, together with every stock decrement it
    causes. It is never edited; the only later change is a full void, which
    restores the exact batch quantities recorded in its SaleBatchUse rows.

    PAYMENT METHODS:
    - cash: amount_paid == total, change_due = tendered - total
    - credit (fiado): amount_paid is the down payment (abono),
      balance_due = total - amount_paid is added to the customer's debt

    STABILITY: historical sales are replayed by stats rebuilds, so field
    meanings here must not change between versions.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_status_occurred", "status", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Business time of the sale (drawer scans and daily buckets key on it)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default="POSTED", index=True)  # POSTED, VOIDED
    fulfillment_status = db.Column(db.String(16), nullable=False, default="completed")  # completed, pending

    total = db.Column(db.Float, nullable=False)
    payment_method = db.Column(db.String(16), nullable=False, index=True)  # cash, credit
    amount_tendered = db.Column(db.Float, nullable=False, default=0.0)
    amount_paid = db.Column(db.Float, nullable=False, default=0.0)
    balance_due = db.Column(db.Float, nullable=False, default=0.0)
    change_due = db.Column(db.Float, nullable=False, default=0.0)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    device_id = db.Column(db.String(64), nullable=True)

    prescription_details = db.Column(db.JSON, nullable=True)

    # Void audit trail
    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    void_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    customer = db.relationship("Customer", backref=db.backref("sales", lazy=True))
    lines = db.relationship(
        "SaleLine",
        backref="sale",
        order_by="SaleLine.position",
        cascade="all, delete-orphan",
        lazy=True,
    )

    @property
    def items_count(self) -> float:
        return sum(line.quantity for line in self.lines)

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "occurred_at": to_utc_z(self.occurred_at),
            "status": self.status,
            "fulfillment_status": self.fulfillment_status,
            "total": self.total,
            "payment_method": self.payment_method,
            "amount_tendered": self.amount_tendered,
            "amount_paid": self.amount_paid,
            "balance_due": self.balance_due,
            "change_due": self.change_due,
            "customer_id": self.customer_id,
            "device_id": self.device_id,
            "prescription_details": self.prescription_details,
            "voided_at": to_utc_z(self.voided_at),
            "void_reason": self.void_reason,
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class SaleLine(db.Model):
    """
    Line item with its computed cost.

    unit_cost is the weighted average of the batches actually consumed
    (sum(batch_cost * qty) / quantity), captured at sale time.
    """
    __tablename__ = "sale_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)

    # Product as sold (may be a variant) and the product whose stock moved
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    stock_product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True)
    name = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Float, nullable=False)
    unit_price = db.Column(db.Float, nullable=False)
    unit_cost = db.Column(db.Float, nullable=True)
    line_total = db.Column(db.Float, nullable=False)

    # Stock units deducted for the product itself (after conversion factor)
    stock_deducted = db.Column(db.Float, nullable=False, default=0.0)

    batch_uses = db.relationship(
        "SaleBatchUse",
        backref="line",
        order_by="SaleBatchUse.id",
        cascade="all, delete-orphan",
        lazy=True,
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "stock_product_id": self.stock_product_id,
            "name": self.name,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "unit_cost": self.unit_cost,
            "line_total": self.line_total,
            "stock_deducted": self.stock_deducted,
            "batches_used": [use.to_dict() for use in self.batch_uses],
        }


class SaleBatchUse(db.Model):
    """
    Consumption record: `quantity` of `ingredient_id` taken from `batch_id`.

    batch_id is NULL when the ingredient is not lot-managed and the quantity
    came straight off the product's own stock. Not a foreign key: the record
    must survive a hard-deleted batch so a void can still restore it.
    """
    __tablename__ = "sale_batch_uses"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_line_id = db.Column(db.Integer, db.ForeignKey("sale_lines.id"), nullable=False, index=True)
    batch_id = db.Column(db.Integer, nullable=True, index=True)
    ingredient_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    quantity = db.Column(db.Float, nullable=False)
    cost = db.Column(db.Float, nullable=False, default=0.0)

    def to_dict(self) -> dict:
        return {
            "batch_id": self.batch_id,
            "ingredient_id": self.ingredient_id,
            "quantity": self.quantity,
            "cost": self.cost,
        }
