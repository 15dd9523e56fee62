# Overview: Service-layer operations for the cash drawer; auto-open sessions, movements and audited close.

from __future__ import annotations

import logging
from dataclasses import dataclass

from flask import current_app, has_app_context
from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..extensions import db
from ..errors import BusinessRuleError, NotFoundError, PosError, Result, ValidationError, classify_persistence_error
from ..models import CashDrawerSession, CashMovement, CustomerPayment, Sale
from cajapos.time_utils import utcnow
from ..validation import parse_amount, round_currency
from .concurrency import begin_write_window, lock_for_update, run_with_retry
from .ledger_service import append_ledger_event
"""
CajaPOS Cash Drawer Invariants (authoritative)

Session lifecycle:
- At most one OPEN session per device (partial unique index + write window).
- There is no explicit "open" action: the first read that finds no open
  session creates one, inheriting the last closed session's physical count
  as opening float (0 when there is none).
- A CLOSED session is never reopened or modified.

Theoretical cash (what the drawer should hold):
    opening_float
  + cash sales total          (POSTED cash sales in the session window)
  + credit down payments      (amount paid now on POSTED credit sales)
  + manual cash in            (includes customer payments)
  - manual cash out
Voided sales never count.

Close:
- variance = physical count - theoretical, rounded to cents.
- |variance| above CASH_VARIANCE_TOLERANCE requires a comment of at least
  CASH_AUDIT_MIN_COMMENT_LENGTH characters.

Audit:
- Open, movement, float adjustment and close each append a ledger event in
  the same DB transaction.
"""

logger = logging.getLogger(__name__)

MOVEMENT_TYPES = {
    "in": "in",
    "entrada": "in",
    "out": "out",
    "salida": "out",
}


@dataclass(frozen=True)
class SessionTotals:
    cash_sales: float
    credit_payments: float
    cash_in: float
    cash_out: float

    def to_dict(self) -> dict:
        return {
            "cash_sales": self.cash_sales,
            "credit_payments": self.credit_payments,
            "cash_in": self.cash_in,
            "cash_out": self.cash_out,
        }


def _config(key: str, default):
    if has_app_context():
        return current_app.config.get(key, default)
    return default


def resolve_device_id(device_id: str | None) -> str:
    return device_id or _config("DEVICE_ID", "default") or "default"


def get_open_session(device_id: str | None = None, *, lock: bool = False) -> CashDrawerSession | None:
    q = db.session.query(CashDrawerSession).filter(
        CashDrawerSession.device_id == resolve_device_id(device_id),
        CashDrawerSession.status == "OPEN",
    )
    if lock:
        q = lock_for_update(q)
    return q.order_by(CashDrawerSession.opened_at.desc()).first()


def get_last_closed_session(device_id: str | None = None) -> CashDrawerSession | None:
    return (
        db.session.query(CashDrawerSession)
        .filter(
            CashDrawerSession.device_id == resolve_device_id(device_id),
            CashDrawerSession.status == "CLOSED",
        )
        .order_by(CashDrawerSession.closed_at.desc(), CashDrawerSession.id.desc())
        .first()
    )


def get_session(session_id: int) -> CashDrawerSession:
    session = db.session.get(CashDrawerSession, session_id)
    if session is None:
        raise NotFoundError("cash drawer session not found", details={"session_id": session_id})
    return session


def open_or_get_active_session(device_id: str | None = None) -> CashDrawerSession:
    """
    Return the device's open session, creating it when there is none.

    Safe under concurrent callers: the partial unique index lets only one
    OPEN row exist, and the loser of a race re-reads the winner's session.
    """
    device = resolve_device_id(device_id)
    existing = get_open_session(device)
    if existing is not None:
        return existing

    def _op() -> CashDrawerSession:
        begin_write_window()
        current = get_open_session(device, lock=True)
        if current is not None:
            return current

        previous = get_last_closed_session(device)
        opening_float = previous.closing_count if previous and previous.closing_count is not None else 0.0

        session = CashDrawerSession(
            device_id=device,
            status="OPEN",
            opened_at=utcnow(),
            opening_float=round_currency(opening_float),
            auto_opened=True,
            cash_in_total=0.0,
            cash_out_total=0.0,
        )
        db.session.add(session)
        db.session.flush()

        append_ledger_event(
            event_type="cash.session_opened",
            event_category="cash",
            entity_type="cash_drawer_session",
            entity_id=session.id,
            device_id=device,
            session_id=session.id,
            occurred_at=session.opened_at,
            note="Opened automatically",
            payload={
                "opening_float": session.opening_float,
                "previous_session_id": previous.id if previous else None,
            },
        )
        db.session.commit()
        logger.info("Opened cash drawer session %s on %s (float %.2f)", session.id, device, session.opening_float)
        return session

    try:
        return run_with_retry(_op)
    except IntegrityError:
        db.session.rollback()
        winner = get_open_session(device)
        if winner is not None:
            logger.info("Concurrent open on %s; using session %s", device, winner.id)
            return winner
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise classify_persistence_error(exc, "open_cash_session")


def _session_window(session: CashDrawerSession):
    filters = [
        Sale.status == "POSTED",
        Sale.occurred_at >= session.opened_at,
        or_(Sale.device_id == session.device_id, Sale.device_id.is_(None)),
    ]
    if session.closed_at is not None:
        filters.append(Sale.occurred_at <= session.closed_at)
    return filters


def compute_session_totals(session: CashDrawerSession) -> SessionTotals:
    """Scan the session window for cash takings (voided sales excluded)."""
    window = _session_window(session)
    cash_sales = (
        db.session.query(func.coalesce(func.sum(Sale.total), 0.0))
        .filter(*window, Sale.payment_method == "cash")
        .scalar()
    )
    credit_payments = (
        db.session.query(func.coalesce(func.sum(Sale.amount_paid), 0.0))
        .filter(*window, Sale.payment_method == "credit")
        .scalar()
    )
    return SessionTotals(
        cash_sales=round_currency(cash_sales or 0.0),
        credit_payments=round_currency(credit_payments or 0.0),
        cash_in=round_currency(session.cash_in_total or 0.0),
        cash_out=round_currency(session.cash_out_total or 0.0),
    )


def compute_theoretical_total(session: CashDrawerSession, totals: SessionTotals | None = None) -> float:
    totals = totals or compute_session_totals(session)
    return round_currency(
        session.opening_float
        + totals.cash_sales
        + totals.credit_payments
        + totals.cash_in
        - totals.cash_out
    )


def append_movement(session: CashDrawerSession, movement_type: str, amount: float, memo: str) -> CashMovement:
    """
    Add a movement and its running total to `session` without committing.

    Shared by manual movements and customer payments so both land in the
    same transaction as the change that caused them.
    """
    movement = CashMovement(
        session_id=session.id,
        movement_type=movement_type,
        amount=amount,
        memo=memo,
        occurred_at=utcnow(),
    )
    db.session.add(movement)
    if movement_type == "in":
        session.cash_in_total = round_currency((session.cash_in_total or 0.0) + amount)
    else:
        session.cash_out_total = round_currency((session.cash_out_total or 0.0) + amount)
    db.session.flush()
    return movement


def record_cash_movement(movement_type: str, amount, memo: str | None = None, *,
                         device_id: str | None = None) -> Result[CashMovement]:
    """
    Record a manual cash entry or withdrawal in the open session.

    The movement and the session's running total commit together.
    """
    try:
        kind = MOVEMENT_TYPES.get(str(movement_type or "").strip().lower())
        if kind is None:
            raise ValidationError("movement_type must be 'in' or 'out'", details={"movement_type": movement_type})
        value = parse_amount("amount", amount, allow_zero=False)
    except PosError as exc:
        return Result.fail(exc)

    device = resolve_device_id(device_id)
    memo = (memo or "").strip()[:255]

    def _op() -> CashMovement:
        begin_write_window()
        session = get_open_session(device, lock=True)
        if session is None:
            raise BusinessRuleError("no open cash drawer session", details={"device_id": device})

        movement = append_movement(session, kind, value, memo)
        append_ledger_event(
            event_type=f"cash.movement_{kind}",
            event_category="cash",
            entity_type="cash_movement",
            entity_id=movement.id,
            device_id=device,
            session_id=session.id,
            occurred_at=movement.occurred_at,
            note=memo or None,
            payload={"amount": value},
        )
        db.session.commit()
        return movement

    try:
        movement = run_with_retry(_op)
    except PosError as exc:
        db.session.rollback()
        return Result.fail(exc)
    except SQLAlchemyError as exc:
        db.session.rollback()
        return Result.fail(classify_persistence_error(exc, "record_cash_movement"))

    logger.info("Cash %s %.2f recorded in session %s", kind, value, movement.session_id)
    return Result.ok(movement)


def audit_and_close_session(physical_count, comment: str | None = None, *,
                            device_id: str | None = None) -> Result[float]:
    """
    Close the open session against a physical count.

    Returns Result.ok(variance, session=..., theoretical=...). A variance
    beyond tolerance without an adequate comment is rejected and the session
    stays open.
    """
    try:
        counted = parse_amount("physical_count", physical_count)
    except PosError as exc:
        return Result.fail(exc)

    device = resolve_device_id(device_id)
    comment = (comment or "").strip()
    tolerance = float(_config("CASH_VARIANCE_TOLERANCE", 0.5))
    min_comment = int(_config("CASH_AUDIT_MIN_COMMENT_LENGTH", 5))

    def _op():
        begin_write_window()
        session = get_open_session(device, lock=True)
        if session is None:
            raise BusinessRuleError("no open cash drawer session", details={"device_id": device})

        now = utcnow()
        session.closed_at = now
        totals = compute_session_totals(session)
        theoretical = compute_theoretical_total(session, totals)
        variance = round_currency(counted - theoretical)

        if abs(variance) > tolerance + 1e-9 and len(comment) < min_comment:
            raise BusinessRuleError(
                f"a comment of at least {min_comment} characters is required when the count differs by more than {tolerance:.2f}",
                details={
                    "variance": variance,
                    "theoretical": theoretical,
                    "physical_count": counted,
                    "tolerance": tolerance,
                    "min_comment_length": min_comment,
                },
            )

        session.status = "CLOSED"
        session.closing_count = counted
        session.cash_sales_total = totals.cash_sales
        session.credit_payments_total = totals.credit_payments
        session.expected_cash = theoretical
        session.variance = variance
        session.audit_comment = comment or None

        append_ledger_event(
            event_type="cash.session_closed",
            event_category="cash",
            entity_type="cash_drawer_session",
            entity_id=session.id,
            device_id=device,
            session_id=session.id,
            occurred_at=now,
            note=comment or None,
            payload={
                "physical_count": counted,
                "theoretical": theoretical,
                "variance": variance,
                **totals.to_dict(),
            },
        )
        db.session.commit()
        return session, theoretical, variance

    try:
        session, theoretical, variance = run_with_retry(_op)
    except PosError as exc:
        db.session.rollback()
        return Result.fail(exc)
    except SQLAlchemyError as exc:
        db.session.rollback()
        return Result.fail(classify_persistence_error(exc, "close_cash_session"))

    logger.info("Closed cash drawer session %s: expected %.2f counted %.2f variance %.2f",
                session.id, theoretical, counted, variance)
    return Result.ok(variance, session=session, theoretical=theoretical)


def adjust_opening_float(amount, reason: str | None = None, *,
                         device_id: str | None = None) -> Result[CashDrawerSession]:
    """Correct the open session's opening float; the old value is kept in the ledger."""
    try:
        value = parse_amount("opening_float", amount)
    except PosError as exc:
        return Result.fail(exc)

    device = resolve_device_id(device_id)

    def _op() -> CashDrawerSession:
        begin_write_window()
        session = get_open_session(device, lock=True)
        if session is None:
            raise BusinessRuleError("no open cash drawer session", details={"device_id": device})

        previous = session.opening_float
        session.opening_float = value
        append_ledger_event(
            event_type="cash.float_adjusted",
            event_category="cash",
            entity_type="cash_drawer_session",
            entity_id=session.id,
            device_id=device,
            session_id=session.id,
            note=(reason or "").strip() or None,
            payload={"previous": previous, "new": value},
        )
        db.session.commit()
        return session

    try:
        session = run_with_retry(_op)
    except PosError as exc:
        db.session.rollback()
        return Result.fail(exc)
    except SQLAlchemyError as exc:
        db.session.rollback()
        return Result.fail(classify_persistence_error(exc, "adjust_opening_float"))
    return Result.ok(session)


def get_session_summary(session: CashDrawerSession) -> dict:
    totals = compute_session_totals(session)
    payments = (
        db.session.query(CustomerPayment)
        .filter(CustomerPayment.session_id == session.id)
        .order_by(CustomerPayment.occurred_at)
        .all()
    )
    return {
        "session": session.to_dict(),
        "totals": totals.to_dict(),
        "theoretical": compute_theoretical_total(session, totals),
        "movements": [m.to_dict() for m in session.movements],
        "customer_payments": [p.to_dict() for p in payments],
    }


def list_sessions(device_id: str | None = None, *, limit: int = 20) -> list[CashDrawerSession]:
    return (
        db.session.query(CashDrawerSession)
        .filter(CashDrawerSession.device_id == resolve_device_id(device_id))
        .order_by(CashDrawerSession.opened_at.desc(), CashDrawerSession.id.desc())
        .limit(limit)
        .all()
    )
