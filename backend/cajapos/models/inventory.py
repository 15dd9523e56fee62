from __future__ import annotations

from ..extensions import db
from cajapos.time_utils import to_utc_z


class Batch(db.Model):
    """
    Lot of a product acquired at one point in time.

    FIFO: batches are consumed oldest `created_at` first (id breaks ties).

    LIFECYCLE:
    - Created on stock receipt (or as a synthetic replacement when a sale
      void has to restore into a lot that no longer exists)
    - Quantity changes only through guarded deduction / restoration
    - is_active is true while quantity > 0; never deleted while quantity > 0
    """
    __tablename__ = "batches"
    __table_args__ = (
        db.Index("ix_batches_product_active_created", "product_id", "is_active", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Float, nullable=False, default=0.0)
    cost = db.Column(db.Float, nullable=False, default=0.0)
    price = db.Column(db.Float, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    is_synthetic = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    product = db.relationship("Product", backref=db.backref("batches", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def value(self) -> float:
        return self.cost * self.quantity if self.is_active else 0.0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "cost": self.cost,
            "price": self.price,
            "is_active": self.is_active,
            "is_synthetic": self.is_synthetic,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }
