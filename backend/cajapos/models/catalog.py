from __future__ import annotations

from ..extensions import db
from cajapos.time_utils import to_utc_z


class Product(db.Model):
    """
    Catalog product (shared base of the product-kind union).

    KINDS (single-table inheritance on `kind`):
    - standard: stock lives directly on this row (legacy, no lots)
    - batched: stock lives in Batch rows; `stock` here is a derived cache
    - prescription: batched product that requires a prescription
    - recipe: sold product that consumes ingredients (bill of materials)
    - variant: sellable variant; stock and recipe belong to the parent

    CACHE INVARIANT: for batch-managed kinds, `stock` must equal the sum of
    active batch quantities. It is refreshed on receive/sale/void and can be
    repaired with batch_service.reconcile().
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_kind_active", "kind", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    kind = db.Column(db.String(16), nullable=False, default="standard", index=True)

    name = db.Column(db.String(255), nullable=False)
    unit = db.Column(db.String(16), nullable=False, default="u")  # u, kg, l ...

    # Money in currency units (2 decimals); cost may carry 4 decimals
    price = db.Column(db.Float, nullable=False, default=0.0)
    cost = db.Column(db.Float, nullable=False, default=0.0)

    track_stock = db.Column(db.Boolean, nullable=False, default=True)
    stock = db.Column(db.Float, nullable=False, default=0.0)

    # Purchase-unit -> sale-unit ratio (e.g. 1 box = 12 pieces -> 12)
    conversion_factor = db.Column(db.Float, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {
        "polymorphic_on": kind,
        "polymorphic_identity": "standard",
        "version_id_col": version_id,
    }

    batch_management_enabled = False
    has_recipe = False

    @property
    def conversion_enabled(self) -> bool:
        return self.conversion_factor is not None and self.conversion_factor > 0

    def sold_units_to_stock_units(self, quantity: float) -> float:
        """Units of stock consumed when `quantity` units are sold."""
        if self.conversion_enabled:
            return quantity / self.conversion_factor
        return quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kind": self.kind,
            "name": self.name,
            "unit": self.unit,
            "price": self.price,
            "cost": self.cost,
            "track_stock": self.track_stock,
            "stock": self.stock,
            "conversion_factor": self.conversion_factor,
            "batch_management_enabled": self.batch_management_enabled,
            "has_recipe": self.has_recipe,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class BatchedProduct(Product):
    """Lot-managed product; consumed FIFO across its batches."""
    __mapper_args__ = {"polymorphic_identity": "batched"}

    batch_management_enabled = True


class PrescriptionProduct(BatchedProduct):
    """Pharmacy item: lot-managed and flagged for prescription capture."""
    __mapper_args__ = {"polymorphic_identity": "prescription"}

    requires_prescription = db.Column(db.Boolean, nullable=True, default=True)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["requires_prescription"] = bool(self.requires_prescription)
        return data


class RecipeProduct(Product):
    """
    Product sold through a bill of materials.

    Selling one unit consumes `component.quantity` of each ingredient.
    """
    __mapper_args__ = {"polymorphic_identity": "recipe"}

    has_recipe = True

    components = db.relationship(
        "RecipeComponent",
        foreign_keys="RecipeComponent.product_id",
        order_by="RecipeComponent.position",
        cascade="all, delete-orphan",
        lazy=True,
    )

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["recipe"] = [c.to_dict() for c in self.components]
        return data


class VariantProduct(Product):
    """Sellable variant (size, flavour...). Inventory belongs to the parent."""
    __mapper_args__ = {"polymorphic_identity": "variant"}

    parent_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True, index=True)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["parent_id"] = self.parent_id
        return data


class RecipeComponent(db.Model):
    """One ingredient line of a recipe, in recipe order."""
    __tablename__ = "recipe_components"
    __table_args__ = (
        db.UniqueConstraint("product_id", "ingredient_id", name="uq_recipe_components_product_ingredient"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    ingredient_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    # Ingredient units consumed per unit sold
    quantity = db.Column(db.Float, nullable=False)
    position = db.Column(db.Integer, nullable=False, default=0)

    ingredient = db.relationship("Product", foreign_keys=[ingredient_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "ingredient_id": self.ingredient_id,
            "quantity": self.quantity,
            "position": self.position,
        }
