"""Errors raised by the stock count workflow."""

from __future__ import annotations


class StockCountError(ValueError):
    """Base class for stock count failures surfaced to the operator."""

    status_code = 400

    def to_dict(self) -> dict[str, object]:
        return {"error": str(self), "kind": type(self).__name__}


class ScanError(StockCountError):
    """Raised when a barcode read cannot be turned into a scanned item."""


class SessionStateError(StockCountError):
    """Raised when a session is not in the state an operation requires."""

    status_code = 409


class ReconciliationError(StockCountError):
    """Raised when a discrepancy decision or plan adjustment is rejected.

    Carries the identifiers of the offending adjustment so the operator can
    re-resolve it without discarding the rest of the plan.
    """

    status_code = 409

    def __init__(
        self,
        message: str,
        *,
        scanned_item_id: int | None = None,
        inventory_item_id: int | None = None,
        adjustment: str | None = None,
    ) -> None:
        super().__init__(message)
        self.scanned_item_id = scanned_item_id
        self.inventory_item_id = inventory_item_id
        self.adjustment = adjustment

    def to_dict(self) -> dict[str, object]:
        payload = super().to_dict()
        payload.update(
            {
                "adjustment": self.adjustment,
                "scanned_item_id": self.scanned_item_id,
                "inventory_item_id": self.inventory_item_id,
            }
        )
        return payload


class InsufficientStockError(ReconciliationError):
    """A transfer source no longer holds the quantity being moved."""


class DuplicateSerialError(ReconciliationError):
    """An adjustment would leave two inventory records sharing a serial."""


class IdentityAmbiguityError(ReconciliationError):
    """A scan resolves to more than one inventory record."""


class StaleAdjustmentError(ReconciliationError):
    """An adjustment refers to a record that no longer exists."""


class InvalidDecisionError(ReconciliationError):
    """An operator decision does not fit the discrepancy it targets."""
