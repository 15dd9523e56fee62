# Overview: Error taxonomy and result type shared by the sale and cash drawer services.

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Generic, Optional, TypeVar


logger = logging.getLogger(__name__)

T = TypeVar("T")


class PosError(Exception):
    """
    Base class for structured POS failures.

    Every failure carries a stable machine code so callers can branch on kind
    instead of parsing messages. `hint` is an optional actionable suggestion
    for the operator (e.g. "retry", "back up and reload").
    """
    code = "POS_ERROR"
    http_status = 400

    def __init__(self, message: str, details: dict | None = None, hint: str | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.hint = hint

    def to_dict(self) -> dict:
        data = {
            "code": self.code,
            "error": self.message,
            "details": self.details,
        }
        if self.hint:
            data["hint"] = self.hint
        return data


class ValidationError(PosError):
    """Bad numeric input, empty cart, missing reference. Nothing persisted."""
    code = "VALIDATION_ERROR"
    http_status = 400


class NotFoundError(PosError):
    code = "NOT_FOUND"
    http_status = 404


@dataclass(frozen=True)
class StockDeficit:
    """One ingredient the cart cannot cover."""
    ingredient_id: int
    ingredient_name: str
    needed: float
    available: float
    unit: str = "u"

    def to_dict(self) -> dict:
        return {
            "ingredient_id": self.ingredient_id,
            "ingredient_name": self.ingredient_name,
            "needed": self.needed,
            "available": self.available,
            "unit": self.unit,
        }


class InsufficientStockError(PosError):
    code = "INSUFFICIENT_STOCK"
    http_status = 409

    def __init__(self, deficits: list[StockDeficit]):
        names = ", ".join(d.ingredient_name for d in deficits)
        super().__init__(
            f"Insufficient stock to cover the whole order: {names}",
            details={"deficits": [d.to_dict() for d in deficits]},
        )
        self.deficits = list(deficits)


class ConcurrencyConflictError(PosError):
    """Stock changed between validation and commit."""
    code = "CONCURRENCY_CONFLICT"
    http_status = 409

    def __init__(self, message: str = "Stock changed while checking out", details: dict | None = None):
        super().__init__(message, details=details, hint="Retry the operation")

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["retry"] = True
        return data


class PersistenceError(PosError):
    code = "PERSISTENCE_ERROR"
    http_status = 503


class BusinessRuleError(PosError):
    code = "BUSINESS_RULE"
    http_status = 422


_PERSISTENCE_HINTS = (
    (("disk is full", "database or disk is full", "quota"), "STORAGE_FULL",
     "Storage is full. Back up your data and free some space, then reload."),
    (("database is locked", "locked"), "STORAGE_BUSY",
     "Another window is writing to the store. Wait a moment and retry."),
    (("readonly", "read-only"), "STORAGE_READONLY",
     "The store is read-only. Check file permissions and reload."),
    (("unable to open", "no such table"), "STORAGE_UNAVAILABLE",
     "The local store is unavailable. Back up and reload the application."),
)


def classify_persistence_error(exc: Exception, operation: str) -> PersistenceError:
    """Map a storage exception to a PersistenceError with an actionable hint."""
    raw = str(getattr(exc, "orig", None) or exc)
    lowered = raw.lower()

    reason = "STORAGE_ERROR"
    hint = "Back up your data and reload the application."
    for needles, code, text in _PERSISTENCE_HINTS:
        if any(n in lowered for n in needles):
            reason = code
            hint = text
            break

    logger.error("[%s] operation=%s error=%s", reason, operation, raw)
    return PersistenceError(
        "The local store could not complete the operation",
        details={"reason": reason, "operation": operation},
        hint=hint,
    )


@dataclass
class Result(Generic[T]):
    """
    Outcome of a coordinator or session-manager operation.

    Exactly one of `value` / `error` is meaningful, selected by `success`.
    """
    success: bool
    value: Optional[T] = None
    error: Optional[PosError] = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, value: T = None, **extra) -> "Result[T]":
        return cls(success=True, value=value, extra=extra)

    @classmethod
    def fail(cls, error: PosError) -> "Result[T]":
        return cls(success=False, error=error)

    @property
    def error_code(self) -> str | None:
        return self.error.code if self.error else None
