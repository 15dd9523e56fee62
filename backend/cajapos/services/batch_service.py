# Overview: Service-layer operations for batches; FIFO lots, guarded deduction and restoration.

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import func, update

from ..extensions import db
from ..errors import ConcurrencyConflictError, NotFoundError, ValidationError
from ..models import Batch, Product
from cajapos.time_utils import normalize_datetime, utcnow
from ..validation import QTY_EPSILON, parse_cost, parse_amount, parse_quantity, round_qty
from .concurrency import expire_cached, guarded_decrement, increment
from .ledger_service import append_ledger_event
from . import stats_service
"""
CajaPOS Batch Ledger Invariants (authoritative)

- A lot-managed product's stock lives in Batch rows; Product.stock is a cache
  that must equal SUM(quantity) over its active batches.
- Batches are consumed FIFO: oldest created_at first, id breaks ties.
- Batch quantity never goes negative. Every decrement is a compare-and-set
  (WHERE quantity >= amount); a failed guard aborts the whole transaction.
- A batch whose quantity falls to <= 0.0001 is deactivated; restoring into it
  reactivates it.
- Restoring into a batch that no longer exists creates a synthetic batch with
  the recorded cost so the stock is not lost.
- Receiving stock adds cost * quantity to the inventory valuation.

Nothing here commits unless the function says so; callers own the
transaction so stock, sale and stats changes land together.
"""

logger = logging.getLogger(__name__)


def _get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError("product not found", details={"product_id": product_id})
    return product


def list_active_batches(product_id: int) -> list[Batch]:
    """Active lots of a product in FIFO order."""
    return (
        db.session.query(Batch)
        .filter(
            Batch.product_id == product_id,
            Batch.is_active.is_(True),
            Batch.quantity > 0,
        )
        .order_by(Batch.created_at.asc(), Batch.id.asc())
        .all()
    )


def list_batches(product_id: int, *, include_inactive: bool = False) -> list[Batch]:
    q = db.session.query(Batch).filter(Batch.product_id == product_id)
    if not include_inactive:
        q = q.filter(Batch.is_active.is_(True))
    return q.order_by(Batch.created_at.asc(), Batch.id.asc()).all()


def sum_active_quantity(product_id: int) -> float:
    total = (
        db.session.query(func.coalesce(func.sum(Batch.quantity), 0.0))
        .filter(Batch.product_id == product_id, Batch.is_active.is_(True))
        .scalar()
    )
    return round_qty(float(total or 0.0))


def get_available_stock(product: Product) -> float:
    """
    Stock the sale engine may consume.

    Lot-managed products read their batches (the source of truth), legacy
    products read their own stock column.
    """
    if product.batch_management_enabled:
        return sum_active_quantity(product.id)
    return round_qty(product.stock or 0.0)


def refresh_product_stock(product_id: int, *, sync_cost: bool = False) -> float:
    """
    Rewrite the Product.stock cache from active batches.

    With `sync_cost`, Product.cost follows the oldest active lot (the next one
    FIFO will sell from).
    """
    total = sum_active_quantity(product_id)
    values = {"stock": total, "version_id": Product.version_id + 1}
    if sync_cost:
        oldest = (
            db.session.query(Batch.cost)
            .filter(Batch.product_id == product_id, Batch.is_active.is_(True), Batch.quantity > 0)
            .order_by(Batch.created_at.asc(), Batch.id.asc())
            .first()
        )
        if oldest is not None:
            values["cost"] = oldest[0]

    db.session.flush()
    db.session.execute(
        update(Product)
        .where(Product.id == product_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    expire_cached(Product, product_id)
    return total


def adjust_inventory_valuation_delta(amount: float) -> None:
    """Shift the running inventory valuation; callers pass signed amounts."""
    if amount:
        stats_service.adjust_inventory_valuation(amount)


def create_batch(
    product_id: int,
    quantity,
    cost,
    *,
    price=None,
    created_at: datetime | str | None = None,
    synthetic: bool = False,
    note: str | None = None,
    commit: bool = True,
) -> Batch:
    """
    Receive a lot of a lot-managed product.

    Refreshes the product's stock cache and cost and adds cost * quantity to
    the inventory valuation, all in one transaction.
    """
    qty = parse_quantity("quantity", quantity)
    unit_cost = parse_cost("cost", cost)
    unit_price = parse_amount("price", price) if price is not None else None
    try:
        created = normalize_datetime(created_at)
    except ValueError:
        raise ValidationError("created_at must be an ISO-8601 datetime")

    product = _get_product(product_id)
    if not product.batch_management_enabled:
        raise ValidationError(
            "product is not lot-managed; receive stock on the product instead",
            details={"product_id": product_id, "kind": product.kind},
        )

    batch = Batch(
        product_id=product.id,
        quantity=qty,
        cost=unit_cost,
        price=unit_price,
        is_active=True,
        is_synthetic=synthetic,
        created_at=created,
        updated_at=created,
    )
    db.session.add(batch)
    db.session.flush()

    refresh_product_stock(product.id, sync_cost=True)
    adjust_inventory_valuation_delta(unit_cost * qty)

    append_ledger_event(
        event_type="batch.synthetic_restore" if synthetic else "batch.received",
        event_category="inventory",
        entity_type="batch",
        entity_id=batch.id,
        occurred_at=created,
        note=note or f"Received {qty:g} {product.unit} of {product.name}",
        payload={"product_id": product.id, "quantity": qty, "cost": unit_cost},
    )

    if commit:
        db.session.commit()
    return batch


def receive_product_stock(product_id: int, quantity, cost=None, *, commit: bool = True) -> Product:
    """
    Receive stock for a legacy (non lot-managed) product.

    Legacy stock is valued as a whole at the product's current cost, so a
    new cost revalues the units already on hand as well as the new ones.
    """
    qty = parse_quantity("quantity", quantity)
    product = _get_product(product_id)
    if product.batch_management_enabled:
        raise ValidationError("product is lot-managed; create a batch instead", details={"product_id": product_id})
    if product.kind != "standard" or not product.track_stock:
        raise ValidationError("product does not hold its own stock", details={"product_id": product_id})

    old_cost = product.cost or 0.0
    unit_cost = parse_cost("cost", cost) if cost is not None else old_cost
    increment(Product, product.id, qty, column="stock")
    product = _get_product(product_id)
    stock_after = product.stock or 0.0
    stock_before = max(stock_after - qty, 0.0)
    if cost is not None:
        product.cost = unit_cost
    adjust_inventory_valuation_delta(stock_after * unit_cost - stock_before * old_cost)

    append_ledger_event(
        event_type="stock.received",
        event_category="inventory",
        entity_type="product",
        entity_id=product.id,
        note=f"Received {qty:g} {product.unit} of {product.name}",
        payload={"quantity": qty, "cost": unit_cost, "previous_cost": old_cost},
    )
    if commit:
        db.session.commit()
    return _get_product(product_id)


def deduct(batch_id: int, quantity: float) -> None:
    """
    Take `quantity` out of a batch.

    The stored quantity at write time is the guard; if another writer got
    there first the whole operation is abandoned with a conflict.
    """
    if not guarded_decrement(Batch, batch_id, quantity, deactivate=True):
        logger.warning("Batch %s could not cover %.4f at commit time", batch_id, quantity)
        raise ConcurrencyConflictError(details={"batch_id": batch_id, "quantity": quantity})


def deduct_product_stock(product_id: int, quantity: float) -> None:
    """Guarded decrement of a legacy product's own stock column."""
    if not guarded_decrement(Product, product_id, quantity, column="stock"):
        logger.warning("Product %s could not cover %.4f at commit time", product_id, quantity)
        raise ConcurrencyConflictError(details={"product_id": product_id, "quantity": quantity})


def restore(batch_id: int | None, quantity: float, *, product_id: int, cost: float) -> int:
    """
    Put `quantity` back into the batch it was taken from and reactivate it.

    Returns the id of the batch that received the stock. When the original
    batch is gone a synthetic batch carrying the recorded cost takes its
    place. Valuation is not touched here; the caller reverts the sale delta.
    """
    if batch_id is not None and increment(Batch, batch_id, quantity, reactivate=True):
        return batch_id

    logger.warning(
        "Batch %s missing while restoring %.4f of product %s; creating synthetic batch",
        batch_id, quantity, product_id,
    )
    now = utcnow()
    batch = Batch(
        product_id=product_id,
        quantity=quantity,
        cost=cost,
        is_active=True,
        is_synthetic=True,
        created_at=now,
        updated_at=now,
    )
    db.session.add(batch)
    db.session.flush()
    append_ledger_event(
        event_type="batch.synthetic_restore",
        event_category="inventory",
        entity_type="batch",
        entity_id=batch.id,
        occurred_at=now,
        note=f"Replacement for missing batch {batch_id}",
        payload={"original_batch_id": batch_id, "product_id": product_id, "quantity": quantity, "cost": cost},
    )
    return batch.id


def restore_product_stock(product_id: int, quantity: float, *, cost: float | None = None) -> None:
    """
    Put legacy stock back.

    `cost` is what the units were taken out at. The running valuation gets
    them back at that cost, so any gap to today's product cost is settled
    here.
    """
    if not increment(Product, product_id, quantity, column="stock"):
        logger.error("Product %s vanished while restoring %.4f units; stock not restored", product_id, quantity)
        return
    if cost is None:
        return
    product = db.session.get(Product, product_id)
    drift = quantity * ((product.cost or 0.0) - cost)
    if abs(drift) > QTY_EPSILON:
        adjust_inventory_valuation_delta(drift)


def reconcile(product_id: int | None = None, *, commit: bool = True) -> list[dict]:
    """
    Repair Product.stock caches that drifted from their batches.

    Also deactivates empty batches still flagged active. Returns one entry
    per corrected product.
    """
    q = db.session.query(Product).filter(Product.kind.in_(("batched", "prescription")))
    if product_id is not None:
        q = q.filter(Product.id == product_id)

    corrections = []
    for product in q.order_by(Product.id).all():
        empties = (
            db.session.query(Batch)
            .filter(Batch.product_id == product.id, Batch.is_active.is_(True), Batch.quantity <= QTY_EPSILON)
            .all()
        )
        for batch in empties:
            batch.is_active = False
            batch.quantity = 0.0

        cached = round_qty(product.stock or 0.0)
        actual = sum_active_quantity(product.id)
        if abs(cached - actual) > QTY_EPSILON or empties:
            logger.warning(
                "Stock cache drift on product %s (%s): cached=%.4f batches=%.4f",
                product.id, product.name, cached, actual,
            )
            corrections.append({
                "product_id": product.id,
                "name": product.name,
                "cached_stock": cached,
                "batch_stock": actual,
                "deactivated_batches": [b.id for b in empties],
            })
            refresh_product_stock(product.id)

    if corrections:
        append_ledger_event(
            event_type="stock.reconciled",
            event_category="inventory",
            entity_type="product",
            entity_id=product_id or 0,
            note=f"Reconciled {len(corrections)} product(s)",
            payload={"corrections": corrections},
        )
        logger.info("Reconciled stock cache for %d product(s)", len(corrections))

    if commit:
        db.session.commit()
    return corrections
