# Overview: Service-layer operations for customers; credit balances and payments through the drawer.

from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..errors import BusinessRuleError, NotFoundError, PosError, Result, ValidationError, classify_persistence_error
from ..models import Customer, CustomerPayment
from ..validation import parse_amount, round_currency
from .cash_service import resolve_device_id, append_movement, get_open_session
from .concurrency import begin_write_window, lock_for_update, run_with_retry
from .ledger_service import append_ledger_event

logger = logging.getLogger(__name__)


def create_customer(name: str, phone: str | None = None, credit_limit=None) -> Customer:
    name = (name or "").strip()
    if not name:
        raise ValidationError("name is required")
    customer = Customer(
        name=name[:255],
        phone=(phone or "").strip() or None,
        debt=0.0,
        credit_limit=parse_amount("credit_limit", credit_limit) if credit_limit is not None else None,
        is_active=True,
    )
    db.session.add(customer)
    db.session.commit()
    return customer


def get_customer(customer_id: int) -> Customer:
    customer = db.session.get(Customer, customer_id)
    if customer is None:
        raise NotFoundError("customer not found", details={"customer_id": customer_id})
    return customer


def list_debtors(limit: int = 100) -> list[Customer]:
    return (
        db.session.query(Customer)
        .filter(Customer.debt > 0)
        .order_by(Customer.debt.desc())
        .limit(limit)
        .all()
    )


def record_customer_payment(customer_id: int, amount, note: str | None = None, *,
                            device_id: str | None = None) -> Result[CustomerPayment]:
    """
    Take a cash payment toward a customer's balance.

    The payment is cash into the open drawer: the debt decrease, the `in`
    movement and the payment record commit together or not at all.
    """
    try:
        value = parse_amount("amount", amount, allow_zero=False)
    except PosError as exc:
        return Result.fail(exc)

    device = resolve_device_id(device_id)
    note = (note or "").strip()[:255] or None

    def _op() -> CustomerPayment:
        begin_write_window()
        customer = lock_for_update(db.session.query(Customer).filter_by(id=customer_id)).first()
        if customer is None:
            raise NotFoundError("customer not found", details={"customer_id": customer_id})
        if value > customer.debt + 0.005:
            raise BusinessRuleError(
                "payment exceeds the outstanding balance",
                details={"customer_id": customer.id, "debt": customer.debt, "amount": value},
            )

        session = get_open_session(device, lock=True)
        if session is None:
            raise BusinessRuleError("no open cash drawer session", details={"device_id": device})

        debt_before = customer.debt
        movement = append_movement(session, "in", value, f"Payment from {customer.name}"[:255])
        customer.debt = round_currency(max(customer.debt - value, 0.0))

        payment = CustomerPayment(
            customer_id=customer.id,
            session_id=session.id,
            cash_movement_id=movement.id,
            amount=value,
            debt_before=debt_before,
            debt_after=customer.debt,
            note=note,
            occurred_at=movement.occurred_at,
        )
        db.session.add(payment)
        db.session.flush()

        append_ledger_event(
            event_type="customer.payment",
            event_category="customers",
            entity_type="customer_payment",
            entity_id=payment.id,
            device_id=device,
            session_id=session.id,
            occurred_at=payment.occurred_at,
            note=note,
            payload={"customer_id": customer.id, "amount": value, "debt_after": customer.debt},
        )
        db.session.commit()
        return payment

    try:
        payment = run_with_retry(_op)
    except PosError as exc:
        db.session.rollback()
        return Result.fail(exc)
    except SQLAlchemyError as exc:
        db.session.rollback()
        return Result.fail(classify_persistence_error(exc, "record_customer_payment"))

    logger.info("Customer %s paid %.2f (balance %.2f)", payment.customer_id, payment.amount, payment.debt_after)
    return Result.ok(payment)
