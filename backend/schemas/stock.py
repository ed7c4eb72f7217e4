# backend/schemas/stock.py
from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, Field, ConfigDict
from typing import List, Optional

from models.stock import MovementType


# Request body for recording a stock movement.
# quantity is range-checked by the movement engine so that IN/OUT of 0, a
# negative ADJUSTMENT and values past the column range come back as
# INVALID_QUANTITY rather than a schema error.
class StockMovementCreate(BaseModel):
    product_id: int
    type: MovementType
    quantity: int
    reason: Optional[str] = Field(default=None, max_length=255)
    reference: Optional[str] = Field(default=None, max_length=100)
    notes: Optional[str] = None
    unit_cost: Optional[Decimal] = Field(default=None, ge=0, max_digits=10, decimal_places=2)
    performed_by: Optional[str] = Field(default=None, max_length=255)
    idempotency_key: Optional[str] = Field(default=None, min_length=1, max_length=255)


# Committed movement as returned by the API
class StockMovementOut(BaseModel):
    id: int
    product_id: int
    type: MovementType
    quantity: int
    previous_quantity: int
    new_quantity: int
    reason: Optional[str] = None
    reference: Optional[str] = None
    notes: Optional[str] = None
    unit_cost: Optional[Decimal] = None
    total_cost: Optional[Decimal] = None
    performed_by: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# History row enriched with the product it belongs to
class StockMovementListItem(StockMovementOut):
    product_name: Optional[str] = None
    product_sku: Optional[str] = None

    @classmethod
    def from_movement(cls, m) -> "StockMovementListItem":
        item = cls.model_validate(m)
        if m.product is not None:
            item.product_name = m.product.name
            item.product_sku = m.product.sku
        return item


# Result of applying a movement
class StockMovementResult(BaseModel):
    success: bool = True
    movement: StockMovementOut
    previous_quantity: int
    new_quantity: int
    replayed: bool = False


# Paginated response for stock movement history
class StockMovementPage(BaseModel):
    items: List[StockMovementListItem]
    total: int
    page: int
    page_size: int
    total_pages: int


# Outcome of replaying a product's movement log against its ledger quantity
class ChainReportOut(BaseModel):
    product_id: int
    consistent: bool
    movement_count: int
    opening_quantity: int
    replayed_quantity: int
    ledger_quantity: int
    broken_movement_id: Optional[int] = None
