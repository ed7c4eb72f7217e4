"""Data access for the product ledger and the stock movement log.

The only code path that writes ``Product.quantity`` is
:func:`write_quantity_and_append_movement`, which appends the movement row and
updates the quantity in a single transaction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import func, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from models.product import Product, LEDGER_WRITE_FLAG
from models.stock import MovementType, StockMovement
from services.exceptions import PersistenceFailure, ProductNotFound

logger = logging.getLogger(__name__)


def get_product(db: Session, product_id: int, for_update: bool = False) -> Product:
    """Load a product straight from the database, bypassing the identity map.

    With ``for_update`` the row is locked (``SELECT ... FOR UPDATE``) until the
    surrounding transaction ends; SQLite ignores the clause and relies on its
    database-level write lock instead.
    """
    stmt = select(Product).where(Product.id == product_id).execution_options(populate_existing=True)
    if for_update:
        stmt = stmt.with_for_update()
    product = db.execute(stmt).scalar_one_or_none()
    if product is None:
        raise ProductNotFound(product_id)
    return product


def read_quantity(db: Session, product_id: int, for_update: bool = False) -> int:
    return get_product(db, product_id, for_update=for_update).quantity


def lock_product(db: Session, product_id: int) -> Product:
    return get_product(db, product_id, for_update=True)


def apply_commit_timeout(db: Session, timeout: float) -> None:
    """Bound how long the current transaction may wait on row locks.

    PostgreSQL gets transaction-scoped ``lock_timeout``/``statement_timeout``.
    SQLite's equivalent is the busy timeout set on the engine (see database.py).
    """
    if db.get_bind().dialect.name != "postgresql":
        return
    ms = max(int(timeout * 1000), 1)
    db.execute(text(f"SET LOCAL lock_timeout = {ms}"))
    db.execute(text(f"SET LOCAL statement_timeout = {ms}"))


def find_by_idempotency_key(db: Session, idempotency_key: str) -> Optional[StockMovement]:
    stmt = select(StockMovement).where(StockMovement.idempotency_key == idempotency_key)
    return db.execute(stmt).scalar_one_or_none()


def write_quantity_and_append_movement(
    db: Session,
    product: Product,
    new_quantity: int,
    movement: StockMovement,
) -> StockMovement:
    """Append ``movement`` and set the product's quantity as one atomic commit.

    On any storage error the whole transaction is rolled back, so neither the
    ledger nor the log reflects a partial change.
    """
    db.info[LEDGER_WRITE_FLAG] = True
    try:
        movement.product_id = product.id
        db.add(movement)
        product.quantity = new_quantity
        db.flush()
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Commit of %s movement for product %s failed", movement.type, movement.product_id)
        raise PersistenceFailure() from exc
    except Exception:
        # driver-level errors (e.g. OverflowError) must not leave the flush half done
        db.rollback()
        raise
    finally:
        db.info.pop(LEDGER_WRITE_FLAG, None)
    return movement


def list_movements(
    db: Session,
    product_id: Optional[int] = None,
    movement_type: Optional[MovementType] = None,
    page: int = 1,
    page_size: int = 50,
    order: str = "desc",
) -> tuple[list[StockMovement], int]:
    query = db.query(StockMovement)
    if product_id is not None:
        query = query.filter(StockMovement.product_id == product_id)
    if movement_type is not None:
        query = query.filter(StockMovement.type == movement_type)

    total = query.count()

    # id breaks ties between movements committed within the same clock tick
    if order == "asc":
        query = query.order_by(StockMovement.created_at.asc(), StockMovement.id.asc())
    else:
        query = query.order_by(StockMovement.created_at.desc(), StockMovement.id.desc())

    items = (query
             .options(joinedload(StockMovement.product))
             .offset((page - 1) * page_size)
             .limit(page_size)
             .all())
    return items, total


def count_movements(db: Session, product_id: int) -> int:
    stmt = select(func.count(StockMovement.id)).where(StockMovement.product_id == product_id)
    return db.execute(stmt).scalar_one()


@dataclass
class ChainReport:
    product_id: int
    movement_count: int
    opening_quantity: int
    replayed_quantity: int
    ledger_quantity: int
    broken_movement_id: Optional[int] = None

    @property
    def consistent(self) -> bool:
        return self.broken_movement_id is None and self.replayed_quantity == self.ledger_quantity


def _replay(running: int, movement: StockMovement) -> Optional[int]:
    """Apply one movement to ``running``; None when the row contradicts itself."""
    if movement.previous_quantity != running:
        return None
    if movement.type == MovementType.IN:
        result = running + movement.quantity
    elif movement.type == MovementType.OUT:
        result = running - movement.quantity
    else:
        if abs(movement.new_quantity - running) != movement.quantity:
            return None
        result = movement.new_quantity
    if result != movement.new_quantity:
        return None
    return result


def verify_chain(db: Session, product_id: int) -> ChainReport:
    """Fold the product's movement log and compare it with the ledger."""
    product = get_product(db, product_id)
    movements = (db.query(StockMovement)
                 .filter(StockMovement.product_id == product_id)
                 .order_by(StockMovement.created_at.asc(), StockMovement.id.asc())
                 .all())
    total = len(movements)

    opening = movements[0].previous_quantity if movements else product.quantity
    running = opening
    broken = None
    for movement in movements:
        replayed = _replay(running, movement)
        if replayed is None:
            broken = movement.id
            logger.warning("Movement chain for product %s breaks at movement %s", product_id, movement.id)
            break
        running = replayed

    return ChainReport(
        product_id=product_id,
        movement_count=total,
        opening_quantity=opening,
        replayed_quantity=running,
        ledger_quantity=product.quantity,
        broken_movement_id=broken,
    )
