# Overview: Service-layer operations for concurrency; write windows, retries and guarded stock updates.

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass

from flask import current_app, has_app_context
from sqlalchemy import case, text, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.orm.util import identity_key

from ..extensions import db
from ..validation import QTY_EPSILON

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded retry: at most `max_attempts` tries, exponential backoff from
    `base_delay` plus up to `jitter` seconds of random spread.
    """
    max_attempts: int = 3
    base_delay: float = 0.1
    jitter: float = 0.05

    def delay_for(self, attempt: int) -> float:
        spread = random.uniform(0, self.jitter) if self.jitter > 0 else 0.0
        return self.base_delay * (2 ** attempt) + spread

    @classmethod
    def from_config(cls) -> "RetryPolicy":
        if not has_app_context():
            return cls()
        cfg = current_app.config
        return cls(
            max_attempts=int(cfg.get("RETRY_MAX_ATTEMPTS", 3)),
            base_delay=float(cfg.get("RETRY_BASE_DELAY", 0.1)),
            jitter=float(cfg.get("RETRY_JITTER", 0.05)),
        )


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def begin_write_window() -> None:
    """
    Open the commit window as a writer.

    On SQLite this takes the RESERVED lock up front (BEGIN IMMEDIATE) so a
    second tab/process cannot interleave writes between our re-checks and
    our commit. No-op when a transaction is already open on the connection.
    """
    if db.engine.dialect.name != "sqlite":
        return
    raw = db.session.connection().connection.dbapi_connection
    if getattr(raw, "in_transaction", False):
        return
    db.session.execute(text("BEGIN IMMEDIATE"))


def run_with_retry(func, *, policy: RetryPolicy | None = None):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (locks) and StaleDataError (optimistic
    locking conflicts on versioned rows). Anything else propagates at once.
    """
    policy = policy or RetryPolicy.from_config()
    last_exc = None
    for attempt in range(policy.max_attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= policy.max_attempts - 1:
                raise
            delay = policy.delay_for(attempt)
            logger.warning("Retrying after %s (attempt %d, sleeping %.3fs)", type(exc).__name__, attempt + 1, delay)
            time.sleep(delay)
    if last_exc:
        raise last_exc


def expire_cached(model, row_id) -> None:
    obj = db.session.identity_map.get(identity_key(model, row_id))
    if obj is not None:
        db.session.expire(obj)


def guarded_decrement(model, row_id: int, amount: float, *, column: str = "quantity",
                      deactivate: bool = False) -> bool:
    """
    Compare-and-set decrement: UPDATE ... SET col = col - amount
    WHERE id = :id AND col >= :amount.

    The stored value at commit time is the guard. Returns False (and writes
    nothing) when the row is gone or holds less than `amount`. Results within
    QTY_EPSILON of zero snap to 0; with `deactivate`, is_active follows.
    """
    db.session.flush()
    col = getattr(model, column)
    remaining = col - amount
    values = {
        column: case((remaining <= QTY_EPSILON, 0.0), else_=remaining),
        "version_id": model.version_id + 1,
    }
    if deactivate:
        values["is_active"] = case((remaining <= QTY_EPSILON, False), else_=True)

    stmt = (
        update(model)
        .where(model.id == row_id, col >= amount - QTY_EPSILON)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    expire_cached(model, row_id)
    return result.rowcount == 1


def increment(model, row_id: int, amount: float, *, column: str = "quantity",
              reactivate: bool = False) -> bool:
    """Unconditional increment; returns False when the row does not exist."""
    db.session.flush()
    col = getattr(model, column)
    values = {
        column: col + amount,
        "version_id": model.version_id + 1,
    }
    if reactivate:
        values["is_active"] = True

    stmt = (
        update(model)
        .where(model.id == row_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    expire_cached(model, row_id)
    return result.rowcount == 1
