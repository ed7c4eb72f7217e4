# backend/models/stock.py
import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Column, Integer, String, Text, Numeric, ForeignKey, DateTime, Enum,
    CheckConstraint, Index, event,
)
from sqlalchemy.orm import relationship
from database import Base


# Allowed movement classifications
class MovementType(str, enum.Enum):
    IN = "IN"
    OUT = "OUT"
    ADJUSTMENT = "ADJUSTMENT"


# Upper bound of the INTEGER quantity columns (PostgreSQL int4)
MAX_QUANTITY = 2_147_483_647


class MovementImmutableError(RuntimeError):
    """Raised when a committed stock movement is updated or deleted."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Append-only record of a single change to a product's quantity.
# previous_quantity/new_quantity are captured at commit time, so the rows for one
# product ordered by (created_at, id) form an unbroken chain ending at Product.quantity.
class StockMovement(Base):
    __tablename__ = "stock_movements"
    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_stock_movements_quantity_non_negative"),
        CheckConstraint("previous_quantity >= 0", name="ck_stock_movements_previous_non_negative"),
        CheckConstraint("new_quantity >= 0", name="ck_stock_movements_new_non_negative"),
        Index("ix_stock_movements_product_created", "product_id", "created_at", "id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)

    type = Column(Enum(MovementType, name="movement_type"), nullable=False, index=True)

    # IN/OUT: requested amount; ADJUSTMENT: |new_quantity - previous_quantity|
    quantity = Column(Integer, nullable=False)
    previous_quantity = Column(Integer, nullable=False)
    new_quantity = Column(Integer, nullable=False)

    reason = Column(String(255), nullable=True)
    reference = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)

    # Cost tracking, IN movements only
    unit_cost = Column(Numeric(10, 2), nullable=True)
    total_cost = Column(Numeric(12, 2), nullable=True)

    performed_by = Column(String(255), nullable=False)

    # Caller supplied key used to de-duplicate retried submissions
    idempotency_key = Column(String(255), nullable=True, unique=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False, index=True)

    product = relationship("Product", back_populates="movements")


@event.listens_for(StockMovement, "before_update")
def _check_movement_update(mapper, connection, target):
    raise MovementImmutableError(f"Stock movement {target.id} is immutable and cannot be updated")


@event.listens_for(StockMovement, "before_delete")
def _check_movement_delete(mapper, connection, target):
    raise MovementImmutableError(
        f"Stock movement {target.id} cannot be deleted; it is removed only with its product"
    )
