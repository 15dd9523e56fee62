from __future__ import annotations

from ..extensions import db
from cajapos.time_utils import to_utc_z


class LedgerEvent(db.Model):
    """
    Append-only audit event.

    Written inside the same DB transaction as the change it records, so an
    aborted sale leaves no event behind.
    """
    __tablename__ = "ledger_events"
    __table_args__ = (
        db.Index("ix_ledger_events_category_occurred", "event_category", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # What happened
    event_type = db.Column(db.String(64), nullable=False, index=True)  # e.g. sale.committed, cash.movement
    event_category = db.Column(db.String(32), nullable=False, index=True)  # sales, inventory, cash, stats, customers

    # What it refers to (generic pointer)
    entity_type = db.Column(db.String(64), nullable=False)
    entity_id = db.Column(db.Integer, nullable=False, index=True)

    # Cross-module references
    device_id = db.Column(db.String(64), nullable=True)
    sale_id = db.Column(db.Integer, nullable=True, index=True)
    session_id = db.Column(db.Integer, nullable=True, index=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    note = db.Column(db.String(255), nullable=True)
    payload = db.Column(db.Text, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "event_type": self.event_type,
            "event_category": self.event_category,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "device_id": self.device_id,
            "sale_id": self.sale_id,
            "session_id": self.session_id,
            "occurred_at": to_utc_z(self.occurred_at),
            "created_at": to_utc_z(self.created_at),
            "note": self.note,
            "payload": self.payload,
        }
