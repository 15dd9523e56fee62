# Overview: Service-layer operations for recipes; expands cart lines into stock demand and plans FIFO allocation.

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from ..extensions import db
from ..errors import StockDeficit, ValidationError
from ..models import Product, RecipeProduct, VariantProduct
from ..validation import QTY_EPSILON, parse_amount, parse_quantity, round_cost, round_qty
from .batch_service import get_available_stock, list_active_batches
"""
CajaPOS Recipe Resolution Invariants (authoritative)

- A cart line resolves to the product whose stock actually moves:
  an explicit `variant_of` first, then a variant's parent, else itself.
- Sold quantity converts to stock units as qty / conversion_factor when the
  factor is > 0; the same conversion is used by the check and the allocation.
- A recipe line expands into one demand per ingredient:
  component.quantity * stock units sold. Nested recipes expand recursively.
- The sufficiency check simulates depletion across the WHOLE cart: two lines
  that are each coverable alone but not together produce a deficit.
- One deficit per ingredient. `needed` is the ingredient's total demand over
  the cart; `available` is the stock before the cart was applied.
- Allocation is FIFO over active batches; quantity a lot-managed ingredient
  cannot cover is costed at the ingredient's nominal cost (and logged).
- Everything here is read-only: nothing is written to the database.
"""

logger = logging.getLogger(__name__)

MAX_RECIPE_DEPTH = 5


@dataclass(frozen=True)
class CartLine:
    product_id: int
    quantity: float
    unit_price: float | None = None
    name: str | None = None
    variant_of: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any], position: int = 0) -> "CartLine":
        if not isinstance(data, dict):
            raise ValidationError(f"item {position + 1} must be an object")
        product_id = data.get("product_id", data.get("id"))
        if isinstance(product_id, bool) or not isinstance(product_id, int):
            raise ValidationError(f"item {position + 1}: product_id must be an integer")
        variant_of = data.get("variant_of")
        if variant_of is not None and (isinstance(variant_of, bool) or not isinstance(variant_of, int)):
            raise ValidationError(f"item {position + 1}: variant_of must be an integer")
        price = data.get("unit_price", data.get("price"))
        return cls(
            product_id=product_id,
            quantity=parse_quantity(f"item {position + 1} quantity", data.get("quantity")),
            unit_price=parse_amount(f"item {position + 1} unit_price", price) if price is not None else None,
            name=data.get("name"),
            variant_of=variant_of,
        )


@dataclass(frozen=True)
class IngredientDemand:
    ingredient: Product
    quantity: float
    tracked: bool

    @property
    def ingredient_id(self) -> int:
        return self.ingredient.id


@dataclass
class ResolvedLine:
    line: CartLine
    product: Product
    stock_product: Product
    stock_quantity: float
    demands: list[IngredientDemand]

    @property
    def unit_price(self) -> float:
        if self.line.unit_price is not None:
            return self.line.unit_price
        return self.product.price or 0.0

    @property
    def name(self) -> str:
        return self.line.name or self.product.name


@dataclass(frozen=True)
class BatchUse:
    batch_id: int | None
    ingredient_id: int
    quantity: float
    cost: float


@dataclass
class LineAllocation:
    resolved: ResolvedLine
    uses: list[BatchUse] = field(default_factory=list)
    total_cost: float = 0.0
    fallback_quantity: float = 0.0

    @property
    def unit_cost(self) -> float:
        qty = self.resolved.line.quantity
        if qty <= 0:
            return 0.0
        return round_cost(self.total_cost / qty)


@dataclass
class Resolution:
    lines: list[ResolvedLine]
    deficits: list[StockDeficit] = field(default_factory=list)
    allocations: list[LineAllocation] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.deficits


def _tracks_stock(product: Product) -> bool:
    return bool(product.batch_management_enabled or product.track_stock)


def resolve_stock_product(product: Product) -> Product:
    """The product whose inventory moves when `product` is sold."""
    if isinstance(product, VariantProduct) and product.parent_id:
        parent = db.session.get(Product, product.parent_id)
        if parent is None:
            raise ValidationError(
                f"variant {product.name} points at a missing parent product",
                details={"product_id": product.id, "parent_id": product.parent_id},
            )
        return parent
    return product


def expand(product: Product, stock_quantity: float, *, _path: tuple = ()) -> list[IngredientDemand]:
    """Flatten a product into leaf stock demands."""
    if product.id in _path:
        raise ValidationError("recipe refers to itself", details={"product_id": product.id})
    if len(_path) >= MAX_RECIPE_DEPTH:
        raise ValidationError("recipe nesting is too deep", details={"product_id": product.id})

    if not isinstance(product, RecipeProduct):
        return [IngredientDemand(product, stock_quantity, _tracks_stock(product))]

    demands: list[IngredientDemand] = []
    for component in product.components:
        ingredient = component.ingredient
        if ingredient is None:
            logger.warning("Recipe %s lists missing ingredient %s; skipped", product.id, component.ingredient_id)
            continue
        ingredient = resolve_stock_product(ingredient)
        demands.extend(expand(ingredient, component.quantity * stock_quantity, _path=_path + (product.id,)))
    return demands


def resolve_line(line: CartLine) -> ResolvedLine:
    product = db.session.get(Product, line.product_id)
    if product is None:
        raise ValidationError(f"product {line.product_id} not found", details={"product_id": line.product_id})
    if not product.is_active:
        raise ValidationError(f"product {product.name} is not active", details={"product_id": product.id})

    if line.variant_of is not None:
        # Explicit parent from the register wins over the catalog link
        stock_product = db.session.get(Product, line.variant_of)
        if stock_product is None:
            raise ValidationError(
                f"parent product {line.variant_of} not found",
                details={"product_id": product.id, "variant_of": line.variant_of},
            )
    else:
        stock_product = resolve_stock_product(product)
    stock_quantity = stock_product.sold_units_to_stock_units(line.quantity)
    return ResolvedLine(
        line=line,
        product=product,
        stock_product=stock_product,
        stock_quantity=stock_quantity,
        demands=expand(stock_product, stock_quantity),
    )


def check_sufficiency(lines: list[ResolvedLine]) -> list[StockDeficit]:
    """
    Simulated depleting check across the whole cart.

    Returns one StockDeficit per short ingredient, in the order shortages
    are first met. An empty list means every line can be fulfilled.
    """
    totals: dict[int, float] = {}
    ingredients: dict[int, Product] = {}
    for resolved in lines:
        for demand in resolved.demands:
            if not demand.tracked:
                continue
            totals[demand.ingredient_id] = totals.get(demand.ingredient_id, 0.0) + demand.quantity
            ingredients[demand.ingredient_id] = demand.ingredient

    initial: dict[int, float] = {}
    simulated: dict[int, float] = {}
    short: dict[int, StockDeficit] = {}

    for resolved in lines:
        for demand in resolved.demands:
            if not demand.tracked:
                continue
            iid = demand.ingredient_id
            if iid not in simulated:
                initial[iid] = get_available_stock(demand.ingredient)
                simulated[iid] = initial[iid]
            if iid in short:
                continue
            if simulated[iid] + QTY_EPSILON >= demand.quantity:
                simulated[iid] -= demand.quantity
            else:
                ingredient = ingredients[iid]
                short[iid] = StockDeficit(
                    ingredient_id=iid,
                    ingredient_name=ingredient.name,
                    needed=round_qty(totals[iid]),
                    available=round_qty(initial[iid]),
                    unit=ingredient.unit or "u",
                )
    return list(short.values())


def allocate(lines: list[ResolvedLine]) -> list[LineAllocation]:
    """
    Plan which stock each line consumes and at what cost.

    Pools are loaded once and depleted in memory so later lines see what
    earlier lines took.
    """
    pools: dict[int, list[dict]] = {}
    allocations: list[LineAllocation] = []

    for resolved in lines:
        allocation = LineAllocation(resolved=resolved)
        for demand in resolved.demands:
            ingredient = demand.ingredient
            if not demand.tracked:
                allocation.total_cost += (ingredient.cost or 0.0) * demand.quantity
                continue

            if ingredient.id not in pools:
                if ingredient.batch_management_enabled:
                    pools[ingredient.id] = [
                        {"batch_id": b.id, "quantity": b.quantity, "cost": b.cost}
                        for b in list_active_batches(ingredient.id)
                    ]
                else:
                    pools[ingredient.id] = [
                        {"batch_id": None, "quantity": ingredient.stock or 0.0, "cost": ingredient.cost or 0.0}
                    ]

            required = demand.quantity
            for pool in pools[ingredient.id]:
                if required <= QTY_EPSILON:
                    break
                if pool["quantity"] <= QTY_EPSILON:
                    continue
                take = min(required, pool["quantity"])
                pool["quantity"] -= take
                required -= take
                allocation.uses.append(BatchUse(
                    batch_id=pool["batch_id"],
                    ingredient_id=ingredient.id,
                    quantity=round_qty(take),
                    cost=pool["cost"],
                ))
                allocation.total_cost += pool["cost"] * take

            if required > QTY_EPSILON:
                logger.warning(
                    "No stock left for %.4f %s of %s (product %s); costing at nominal cost",
                    required, ingredient.unit, ingredient.name, ingredient.id,
                )
                allocation.fallback_quantity += required
                allocation.total_cost += (ingredient.cost or 0.0) * required

        allocations.append(allocation)
    return allocations


def resolve_cart(lines: list[CartLine], *, ignore_stock: bool = False) -> Resolution:
    """
    Resolve, check and allocate a cart.

    With `ignore_stock` the sufficiency check is skipped and whatever stock
    exists is still consumed FIFO.
    """
    if not lines:
        raise ValidationError("cart is empty")

    resolved = [resolve_line(line) for line in lines]
    if not ignore_stock:
        deficits = check_sufficiency(resolved)
        if deficits:
            return Resolution(lines=resolved, deficits=deficits)
    return Resolution(lines=resolved, allocations=allocate(resolved))
