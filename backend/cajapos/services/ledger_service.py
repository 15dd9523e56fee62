# Overview: Service-layer operations for ledger; encapsulates business logic and database work.

from __future__ import annotations

import json
from typing import Any, Optional
from datetime import datetime

from ..extensions import db
from ..models import LedgerEvent
from cajapos.time_utils import utcnow
"""
CajaPOS Audit Ledger Invariants (authoritative)

- Append-only audit log for cross-cutting domain events.
- No domain/business logic in the ledger itself.
- Events are written inside the same DB transaction as the domain event they record.
- occurred_at is business time; created_at is system time (DB default).
"""


def append_ledger_event(
    *,
    event_type: str,
    event_category: str,
    entity_type: str,
    entity_id: int,
    device_id: str | None = None,
    sale_id: int | None = None,
    session_id: int | None = None,
    occurred_at: Optional[datetime] = None,
    note: Optional[str] = None,
    payload: Any = None,
) -> LedgerEvent:
    """
    Append-only ledger event.

    - No domain logic here.
    - No deletes/updates of existing events.
    - payload may be a dict; it is stored as JSON text.
    """
    if payload is not None and not isinstance(payload, str):
        payload = json.dumps(payload, sort_keys=True, default=str)

    ev = LedgerEvent(
        event_type=event_type,
        event_category=event_category,
        entity_type=entity_type,
        entity_id=entity_id,
        device_id=device_id,
        sale_id=sale_id,
        session_id=session_id,
        occurred_at=occurred_at or utcnow(),
        note=note[:255] if note else note,
        payload=payload,
    )
    db.session.add(ev)
    db.session.flush()  # ensures ev.id is assigned without committing
    return ev


def list_ledger_events(
    *,
    event_category: str | None = None,
    sale_id: int | None = None,
    session_id: int | None = None,
    limit: int = 200,
) -> list[LedgerEvent]:
    q = db.session.query(LedgerEvent)
    if event_category:
        q = q.filter(LedgerEvent.event_category == event_category)
    if sale_id is not None:
        q = q.filter(LedgerEvent.sale_id == sale_id)
    if session_id is not None:
        q = q.filter(LedgerEvent.session_id == session_id)
    return q.order_by(LedgerEvent.occurred_at.desc(), LedgerEvent.id.desc()).limit(limit).all()
