# Overview: Typed, recoverable errors raised by the inventory and purchasing services.

"""
Error taxonomy.

Every service error is an InventoryError carrying a human-readable message
and a `details` dict (offending ids, requested vs. available quantities) so
callers can render a precise message. None of these are process-fatal.

TransactionConflict is the only kind retried internally (see
services/concurrency.py); everything else is surfaced immediately.
"""

from __future__ import annotations


class InventoryError(Exception):
    """Base class for all domain errors."""

    code = "inventory_error"
    http_status = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "code": self.code,
            "details": self.details,
        }


class InvalidQuantity(InventoryError):
    code = "invalid_quantity"


class InvalidExpiry(InventoryError):
    code = "invalid_expiry"


class UnknownBatch(InventoryError):
    code = "unknown_batch"


class InsufficientStock(InventoryError):
    """Raised when requested units exceed what the batch(es) hold."""

    code = "insufficient_stock"
    http_status = 409

    @property
    def shortfall(self) -> int:
        return int(self.details.get("shortfall", 0))


class OverReceipt(InventoryError):
    code = "over_receipt"
    http_status = 409


class InvalidTransition(InventoryError):
    code = "invalid_transition"
    http_status = 409


class InvalidItem(InventoryError):
    code = "invalid_item"


class InvalidOrder(InventoryError):
    code = "invalid_order"


class NotFound(InventoryError):
    code = "not_found"
    http_status = 404


class TransactionConflict(InventoryError):
    """Serialization failure that survived the bounded internal retries."""

    code = "transaction_conflict"
    http_status = 409
