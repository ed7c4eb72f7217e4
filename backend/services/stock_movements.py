"""Movement processor: applies IN / OUT / ADJUSTMENT movements to a product.

The sequence for one call is

    validate request -> hold product lock -> BEGIN
      -> SELECT product FOR UPDATE -> compute new quantity
      -> INSERT movement + UPDATE product.quantity -> COMMIT
    -> release lock

Either both writes commit or neither does. A rejected or failed call leaves no
movement row and no quantity change behind.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import settings
from models.product import Product
from models.stock import MAX_QUANTITY, MovementType, StockMovement
from services import ledger
from services.exceptions import (
    IdempotencyConflict,
    InsufficientStock,
    InvalidMovementType,
    InvalidQuantity,
    InvalidStockState,
    PersistenceFailure,
    StockError,
)
from services.product_locks import ProductLockRegistry, product_locks

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


@dataclass
class MovementMetadata:
    reason: Optional[str] = None
    reference: Optional[str] = None
    notes: Optional[str] = None
    unit_cost: Optional[Decimal] = None
    performed_by: Optional[str] = None
    idempotency_key: Optional[str] = None


@dataclass
class MovementResult:
    movement: StockMovement
    previous_quantity: int
    new_quantity: int
    replayed: bool = False


def _coerce_type(movement_type: Union[MovementType, str]) -> MovementType:
    try:
        return MovementType(movement_type.upper() if isinstance(movement_type, str) else movement_type)
    except ValueError:
        raise InvalidMovementType(movement_type) from None


def _validate_quantity(movement_type: MovementType, quantity) -> int:
    # bool is an int subclass; True must not book one unit
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise InvalidQuantity("Quantity must be an integer", quantity)
    if movement_type == MovementType.ADJUSTMENT:
        if quantity < 0:
            raise InvalidQuantity("Adjustment target quantity cannot be negative", quantity)
    elif quantity <= 0:
        raise InvalidQuantity("Quantity must be a positive integer", quantity)
    if quantity > MAX_QUANTITY:
        raise InvalidQuantity(f"Quantity cannot exceed {MAX_QUANTITY}", quantity)
    return quantity


def compute_new_quantity(product_id: int, movement_type: MovementType, previous: int, quantity: int) -> tuple[int, int]:
    """Return ``(new_quantity, stored_quantity)`` for a movement.

    ``stored_quantity`` is what the movement row records: the requested amount
    for IN/OUT and the magnitude of the change for ADJUSTMENT.
    """
    if movement_type == MovementType.IN:
        new_quantity, stored = previous + quantity, quantity
        if new_quantity > MAX_QUANTITY:
            raise InvalidQuantity(f"Stock cannot exceed {MAX_QUANTITY}; {previous} on hand", quantity)
    elif movement_type == MovementType.OUT:
        new_quantity, stored = previous - quantity, quantity
        if new_quantity < 0:
            raise InsufficientStock(product_id, available=previous, requested=quantity)
    else:
        new_quantity, stored = quantity, abs(quantity - previous)

    if new_quantity < 0:
        raise InvalidStockState(product_id, new_quantity)
    return new_quantity, stored


def _build_movement(
    movement_type: MovementType,
    stored_quantity: int,
    previous: int,
    new_quantity: int,
    metadata: MovementMetadata,
) -> StockMovement:
    unit_cost = total_cost = None
    if movement_type == MovementType.IN and metadata.unit_cost is not None:
        unit_cost = Decimal(str(metadata.unit_cost)).quantize(CENTS, rounding=ROUND_HALF_UP)
        total_cost = (unit_cost * stored_quantity).quantize(CENTS, rounding=ROUND_HALF_UP)

    return StockMovement(
        type=movement_type,
        quantity=stored_quantity,
        previous_quantity=previous,
        new_quantity=new_quantity,
        reason=metadata.reason,
        reference=metadata.reference,
        notes=metadata.notes,
        unit_cost=unit_cost,
        total_cost=total_cost,
        performed_by=metadata.performed_by or settings.DEFAULT_PERFORMED_BY,
        idempotency_key=metadata.idempotency_key,
    )


def _replay_or_conflict(
    existing: StockMovement,
    product: Product,
    movement_type: MovementType,
    quantity: int,
) -> MovementResult:
    requested = existing.new_quantity if existing.type == MovementType.ADJUSTMENT else existing.quantity
    if existing.product_id != product.id or existing.type != movement_type or requested != quantity:
        raise IdempotencyConflict(existing.idempotency_key, existing.id)
    logger.info("Replaying movement %s for idempotency key %r", existing.id, existing.idempotency_key)
    return MovementResult(
        movement=existing,
        previous_quantity=existing.previous_quantity,
        new_quantity=existing.new_quantity,
        replayed=True,
    )


def apply_movement(
    db: Session,
    product_id: int,
    movement_type: Union[MovementType, str],
    quantity: int,
    metadata: Optional[MovementMetadata] = None,
    *,
    locks: ProductLockRegistry = product_locks,
    lock_timeout: Optional[float] = None,
) -> MovementResult:
    """Apply a stock movement to ``product_id`` and return the committed row.

    For IN/OUT ``quantity`` is the positive amount moved; for ADJUSTMENT it is
    the absolute quantity the product should end up with.

    Raises ProductNotFound, InvalidQuantity, InsufficientStock,
    IdempotencyConflict, ConcurrencyTimeout or PersistenceFailure. All are
    raised before anything is committed.
    """
    metadata = metadata or MovementMetadata()
    movement_type = _coerce_type(movement_type)
    quantity = _validate_quantity(movement_type, quantity)

    with locks.hold(product_id, lock_timeout):
        try:
            ledger.apply_commit_timeout(db, settings.STOCK_COMMIT_TIMEOUT_SECONDS)
            product = ledger.lock_product(db, product_id)

            if metadata.idempotency_key:
                existing = ledger.find_by_idempotency_key(db, metadata.idempotency_key)
                if existing is not None:
                    result = _replay_or_conflict(existing, product, movement_type, quantity)
                    db.rollback()
                    return result

            previous = product.quantity
            new_quantity, stored = compute_new_quantity(product_id, movement_type, previous, quantity)
            movement = _build_movement(movement_type, stored, previous, new_quantity, metadata)
        except StockError as exc:
            db.rollback()
            logger.warning("Rejected %s %s for product %s: %s", movement_type.value, quantity, product_id, exc.code)
            raise
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("Could not read product %s for a %s movement", product_id, movement_type.value)
            raise PersistenceFailure() from exc

        ledger.write_quantity_and_append_movement(db, product, new_quantity, movement)

    logger.info(
        "Committed %s movement %s for product %s: %s -> %s",
        movement_type.value, movement.id, product_id, previous, new_quantity,
    )
    return MovementResult(movement=movement, previous_quantity=previous, new_quantity=new_quantity)
