# Overview: Service-layer operations for sales; atomic checkout with stock, stats and credit in one commit.

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Iterable

from flask import current_app, has_app_context
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..errors import (
    BusinessRuleError,
    InsufficientStockError,
    NotFoundError,
    PosError,
    Result,
    ValidationError,
    classify_persistence_error,
)
from ..models import Customer, PrescriptionProduct, Sale, SaleBatchUse, SaleLine
from cajapos.time_utils import normalize_datetime, utcnow
from ..validation import parse_amount, round_currency, round_qty
from . import batch_service, stats_service
from .concurrency import begin_write_window, lock_for_update, run_with_retry
from .ledger_service import append_ledger_event
from .recipe_service import CartLine, Resolution, resolve_cart
"""
CajaPOS Sale Invariants (authoritative)

Checkout is ONE transaction:
- Re-resolve the cart and re-check stock inside the write window.
- Write the Sale, its lines and their SaleBatchUse consumption records.
- Apply every stock decrement as a guarded compare-and-set; if any guard
  fails the transaction rolls back and the caller gets CONCURRENCY_CONFLICT.
- Apply the stats delta and the customer's credit balance.
- Commit. Nothing is visible unless everything is.

After commit (never inside the transaction):
- Optional notifier (receipt, kitchen display). Its failures are logged only.

Void:
- Restores exactly the recorded SaleBatchUse quantities (synthetic batch when
  the original lot is gone), reverts the stats delta, releases the customer's
  outstanding balance and marks the sale VOIDED. Sales are never deleted.
"""

logger = logging.getLogger(__name__)

PAYMENT_METHODS = {
    "cash": "cash",
    "efectivo": "cash",
    "credit": "credit",
    "fiado": "credit",
}

Notifier = Callable[[Sale], Any]


@dataclass(frozen=True)
class PaymentInfo:
    method: str = "cash"
    amount_tendered: float | None = None
    down_payment: float | None = None
    customer_id: int | None = None
    receipt: bool = True

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "PaymentInfo":
        data = data or {}
        raw_method = str(data.get("method", "cash")).strip().lower()
        method = PAYMENT_METHODS.get(raw_method)
        if method is None:
            raise ValidationError(f"unknown payment method: {raw_method}", details={"allowed": sorted(set(PAYMENT_METHODS.values()))})

        tendered = data.get("amount_tendered")
        down = data.get("down_payment", data.get("amount_paid"))
        customer_id = data.get("customer_id")
        if customer_id is not None and (isinstance(customer_id, bool) or not isinstance(customer_id, int)):
            raise ValidationError("customer_id must be an integer")
        return cls(
            method=method,
            amount_tendered=parse_amount("amount_tendered", tendered) if tendered is not None else None,
            down_payment=parse_amount("down_payment", down) if down is not None else None,
            customer_id=customer_id,
            receipt=bool(data.get("receipt", True)),
        )


@dataclass(frozen=True)
class Settlement:
    amount_tendered: float
    amount_paid: float
    balance_due: float
    change_due: float


def settle(total: float, payment: PaymentInfo) -> Settlement:
    """Work out what was paid now and what is owed, or reject the tender."""
    if payment.method == "cash":
        tendered = payment.amount_tendered if payment.amount_tendered is not None else total
        if tendered + 0.005 < total:
            raise ValidationError(
                "amount tendered is less than the total",
                details={"total": total, "amount_tendered": tendered},
            )
        return Settlement(
            amount_tendered=tendered,
            amount_paid=total,
            balance_due=0.0,
            change_due=round_currency(tendered - total),
        )

    if payment.customer_id is None:
        raise ValidationError("credit sales require a customer")
    down = payment.down_payment or 0.0
    if down > total:
        raise ValidationError(
            "down payment cannot exceed the total",
            details={"total": total, "down_payment": down},
        )
    return Settlement(
        amount_tendered=down,
        amount_paid=down,
        balance_due=round_currency(total - down),
        change_due=0.0,
    )


def _coerce_lines(items: Iterable) -> list[CartLine]:
    lines = []
    for position, item in enumerate(items or []):
        lines.append(item if isinstance(item, CartLine) else CartLine.from_dict(item, position))
    if not lines:
        raise ValidationError("cart is empty")
    return lines


def _fulfillment_status() -> str:
    if has_app_context() and current_app.config.get("KDS_ENABLED"):
        return "pending"
    return "completed"


def _device_id(device_id: str | None) -> str | None:
    if device_id:
        return device_id
    if has_app_context():
        return current_app.config.get("DEVICE_ID")
    return None


def _require_prescription(resolution: Resolution, prescription_details) -> None:
    needs = [
        r.product.name for r in resolution.lines
        if isinstance(r.stock_product, PrescriptionProduct) and r.stock_product.requires_prescription
    ]
    if needs and not prescription_details:
        raise ValidationError(
            "prescription details are required for this sale",
            details={"products": needs},
        )


def _build_sale(resolution: Resolution, settlement: Settlement, payment: PaymentInfo, *,
                total: float, occurred_at: datetime, device_id: str | None,
                prescription_details) -> Sale:
    sale = Sale(
        occurred_at=occurred_at,
        status="POSTED",
        fulfillment_status=_fulfillment_status(),
        total=total,
        payment_method=payment.method,
        amount_tendered=settlement.amount_tendered,
        amount_paid=settlement.amount_paid,
        balance_due=settlement.balance_due,
        change_due=settlement.change_due,
        customer_id=payment.customer_id if payment.method == "credit" else None,
        device_id=device_id,
        prescription_details=prescription_details,
    )
    for position, allocation in enumerate(resolution.allocations):
        resolved = allocation.resolved
        line = SaleLine(
            position=position,
            product_id=resolved.product.id,
            stock_product_id=resolved.stock_product.id,
            name=resolved.name,
            quantity=resolved.line.quantity,
            unit_price=resolved.unit_price,
            unit_cost=allocation.unit_cost,
            line_total=round_currency(resolved.unit_price * resolved.line.quantity),
            stock_deducted=round_qty(resolved.stock_quantity),
        )
        for use in allocation.uses:
            line.batch_uses.append(SaleBatchUse(
                batch_id=use.batch_id,
                ingredient_id=use.ingredient_id,
                quantity=use.quantity,
                cost=use.cost,
            ))
        sale.lines.append(line)
    return sale


def _apply_deductions(resolution: Resolution) -> set[int]:
    """Guarded decrements for every planned use; returns lot-managed product ids touched."""
    batch_totals: dict[int, float] = {}
    product_totals: dict[int, float] = {}
    batched_products: set[int] = set()
    for allocation in resolution.allocations:
        for use in allocation.uses:
            if use.batch_id is None:
                product_totals[use.ingredient_id] = product_totals.get(use.ingredient_id, 0.0) + use.quantity
            else:
                batch_totals[use.batch_id] = batch_totals.get(use.batch_id, 0.0) + use.quantity
                batched_products.add(use.ingredient_id)

    for batch_id, qty in batch_totals.items():
        batch_service.deduct(batch_id, qty)
    for product_id, qty in product_totals.items():
        batch_service.deduct_product_stock(product_id, qty)
    return batched_products


def _notify(notifier: Notifier | None, sale: Sale) -> None:
    if notifier is None:
        return
    try:
        notifier(sale)
    except Exception:
        logger.exception("Post-sale notifier failed for sale %s", sale.id)


def process_sale(
    items: Iterable,
    payment: PaymentInfo | dict | None = None,
    *,
    ignore_stock: bool = False,
    prescription_details: dict | None = None,
    device_id: str | None = None,
    occurred_at: datetime | str | None = None,
    notifier: Notifier | None = None,
) -> Result[Sale]:
    """
    Check out a cart atomically.

    Returns Result.ok(sale) on commit. On failure nothing is persisted and the
    Result carries one of VALIDATION_ERROR, INSUFFICIENT_STOCK (with per
    ingredient deficits), CONCURRENCY_CONFLICT (retryable) or
    PERSISTENCE_ERROR (with an operator hint).
    """
    try:
        lines = _coerce_lines(items)
        if not isinstance(payment, PaymentInfo):
            payment = PaymentInfo.from_dict(payment)
        try:
            when = normalize_datetime(occurred_at)
        except ValueError:
            raise ValidationError("occurred_at must be an ISO-8601 datetime")
    except PosError as exc:
        return Result.fail(exc)

    device = _device_id(device_id)

    def _op() -> Sale:
        begin_write_window()

        resolution = resolve_cart(lines, ignore_stock=ignore_stock)
        if not resolution.ok:
            raise InsufficientStockError(resolution.deficits)
        _require_prescription(resolution, prescription_details)

        total = round_currency(sum(
            round_currency(r.unit_price * r.line.quantity) for r in resolution.lines
        ))
        settlement = settle(total, payment)

        customer = None
        if payment.method == "credit":
            customer = lock_for_update(db.session.query(Customer).filter_by(id=payment.customer_id)).first()
            if customer is None or not customer.is_active:
                raise ValidationError("customer not found", details={"customer_id": payment.customer_id})
            if customer.credit_limit is not None and customer.debt + settlement.balance_due > customer.credit_limit + 0.005:
                raise BusinessRuleError(
                    "credit limit exceeded",
                    details={
                        "customer_id": customer.id,
                        "debt": customer.debt,
                        "credit_limit": customer.credit_limit,
                        "balance_due": settlement.balance_due,
                    },
                )

        sale = _build_sale(
            resolution, settlement, payment,
            total=total,
            occurred_at=when,
            device_id=device,
            prescription_details=prescription_details,
        )
        db.session.add(sale)
        db.session.flush()

        for product_id in _apply_deductions(resolution):
            batch_service.refresh_product_stock(product_id)

        stats_service.apply_sale(sale, sign=1)

        if customer is not None and settlement.balance_due > 0:
            customer.debt = round_currency(customer.debt + settlement.balance_due)

        fallback = sum(a.fallback_quantity for a in resolution.allocations)
        append_ledger_event(
            event_type="sale.committed",
            event_category="sales",
            entity_type="sale",
            entity_id=sale.id,
            device_id=device,
            sale_id=sale.id,
            occurred_at=when,
            note=f"{payment.method} sale, {len(sale.lines)} line(s)",
            payload={
                "total": total,
                "balance_due": settlement.balance_due,
                "ignore_stock": ignore_stock,
                "unallocated_quantity": round_qty(fallback),
            },
        )

        db.session.commit()
        return sale

    try:
        sale = run_with_retry(_op)
    except PosError as exc:
        db.session.rollback()
        logger.info("Sale rejected: %s %s", exc.code, exc.message)
        return Result.fail(exc)
    except SQLAlchemyError as exc:
        db.session.rollback()
        return Result.fail(classify_persistence_error(exc, "process_sale"))

    logger.info("Sale %s committed: total=%.2f method=%s", sale.id, sale.total, sale.payment_method)
    if payment.receipt:
        _notify(notifier, sale)
    return Result.ok(sale)


def get_sale(sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if sale is None:
        raise NotFoundError("sale not found", details={"sale_id": sale_id})
    return sale


def list_sales(*, start: datetime | None = None, end: datetime | None = None,
               include_voided: bool = False, limit: int = 100) -> list[Sale]:
    q = db.session.query(Sale)
    if not include_voided:
        q = q.filter(Sale.status == "POSTED")
    if start is not None:
        q = q.filter(Sale.occurred_at >= start)
    if end is not None:
        q = q.filter(Sale.occurred_at <= end)
    return q.order_by(Sale.occurred_at.desc(), Sale.id.desc()).limit(limit).all()


def void_sale(sale_id: int, reason: str | None = None, *, device_id: str | None = None) -> Result[Sale]:
    """
    Void a committed sale, restoring the exact stock it consumed.

    Stats are reverted by the same delta the sale applied, so a later rebuild
    converges with the incremental totals.
    """
    reason = (reason or "").strip()
    device = _device_id(device_id)

    def _op() -> Sale:
        begin_write_window()

        sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
        if sale is None:
            raise NotFoundError("sale not found", details={"sale_id": sale_id})
        if sale.status == "VOIDED":
            raise BusinessRuleError("sale is already voided", details={"sale_id": sale_id})

        batched_products: set[int] = set()
        restored = []
        for line in sale.lines:
            for use in line.batch_uses:
                if use.batch_id is None:
                    batch_service.restore_product_stock(use.ingredient_id, use.quantity, cost=use.cost)
                    restored.append({"product_id": use.ingredient_id, "quantity": use.quantity})
                else:
                    target = batch_service.restore(
                        use.batch_id, use.quantity, product_id=use.ingredient_id, cost=use.cost,
                    )
                    batched_products.add(use.ingredient_id)
                    restored.append({"batch_id": target, "quantity": use.quantity})

        for product_id in batched_products:
            batch_service.refresh_product_stock(product_id)

        stats_service.apply_sale(sale, sign=-1)

        if sale.payment_method == "credit" and sale.balance_due > 0 and sale.customer is not None:
            customer = sale.customer
            released = min(sale.balance_due, max(customer.debt, 0.0))
            if released < sale.balance_due:
                logger.warning(
                    "Customer %s owes %.2f; releasing only that much of the %.2f balance of sale %s",
                    customer.id, customer.debt, sale.balance_due, sale.id,
                )
            customer.debt = round_currency(customer.debt - released)

        sale.status = "VOIDED"
        sale.voided_at = utcnow()
        sale.void_reason = reason[:255] or None

        append_ledger_event(
            event_type="sale.voided",
            event_category="sales",
            entity_type="sale",
            entity_id=sale.id,
            device_id=device,
            sale_id=sale.id,
            occurred_at=sale.voided_at,
            note=reason or None,
            payload={"restored": restored, "total": sale.total},
        )

        db.session.commit()
        return sale

    try:
        sale = run_with_retry(_op)
    except PosError as exc:
        db.session.rollback()
        return Result.fail(exc)
    except SQLAlchemyError as exc:
        db.session.rollback()
        return Result.fail(classify_persistence_error(exc, "void_sale"))

    logger.info("Sale %s voided", sale.id)
    return Result.ok(sale)
