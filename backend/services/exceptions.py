"""Typed errors raised by the stock movement engine.

Every error carries a machine-readable ``code``, the HTTP status the API layer
answers with, and any structured context the caller needs for display
(``to_dict``). Callers catch by type, never by message.

    StockError
    +-- ProductNotFound          404
    +-- InvalidQuantity          400
    |   +-- InvalidMovementType  400
    +-- InsufficientStock        400  (available, requested)
    +-- InvalidStockState        400
    +-- IdempotencyConflict      409
    +-- ConcurrencyTimeout       503  (safe to retry)
    +-- PersistenceFailure       500  (safe to retry)
"""

from __future__ import annotations

from typing import Any


class StockError(Exception):
    """Base class for every engine failure. Nothing is ever partially applied."""

    code = "STOCK_ERROR"
    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def context(self) -> dict[str, Any]:
        return {}

    def to_dict(self) -> dict[str, Any]:
        return {"success": False, "error": self.message, "code": self.code, **self.context()}


class ProductNotFound(StockError):
    code = "PRODUCT_NOT_FOUND"
    status_code = 404

    def __init__(self, product_id: int) -> None:
        super().__init__("Product not found")
        self.product_id = product_id

    def context(self) -> dict[str, Any]:
        return {"product_id": self.product_id}


class InvalidQuantity(StockError):
    code = "INVALID_QUANTITY"

    def __init__(self, message: str, quantity: Any = None) -> None:
        super().__init__(message)
        self.quantity = quantity

    def context(self) -> dict[str, Any]:
        return {"quantity": self.quantity}


class InvalidMovementType(InvalidQuantity):
    code = "INVALID_MOVEMENT_TYPE"

    def __init__(self, movement_type: Any) -> None:
        super().__init__(f"Invalid movement type: {movement_type!r}")
        self.movement_type = movement_type

    def context(self) -> dict[str, Any]:
        return {"type": str(self.movement_type)}


class InsufficientStock(StockError):
    code = "INSUFFICIENT_STOCK"

    def __init__(self, product_id: int, available: int, requested: int) -> None:
        super().__init__("Insufficient stock")
        self.product_id = product_id
        self.available = available
        self.requested = requested

    def context(self) -> dict[str, Any]:
        return {"available": self.available, "requested": self.requested}


class InvalidStockState(StockError):
    code = "INVALID_STOCK_STATE"

    def __init__(self, product_id: int, new_quantity: int) -> None:
        super().__init__(f"Movement would leave product {product_id} at {new_quantity}")
        self.product_id = product_id
        self.new_quantity = new_quantity


class IdempotencyConflict(StockError):
    code = "IDEMPOTENCY_CONFLICT"
    status_code = 409

    def __init__(self, idempotency_key: str, movement_id: int) -> None:
        super().__init__("Idempotency key was already used for a different movement")
        self.idempotency_key = idempotency_key
        self.movement_id = movement_id

    def context(self) -> dict[str, Any]:
        return {"idempotency_key": self.idempotency_key, "movement_id": self.movement_id}


class ConcurrencyTimeout(StockError):
    code = "CONCURRENCY_TIMEOUT"
    status_code = 503

    def __init__(self, product_id: int, timeout: float) -> None:
        super().__init__(f"Product {product_id} is busy; gave up after {timeout:g}s")
        self.product_id = product_id
        self.timeout = timeout


class PersistenceFailure(StockError):
    code = "PERSISTENCE_FAILURE"
    status_code = 500

    def __init__(self, message: str = "Failed to record stock movement") -> None:
        super().__init__(message)
