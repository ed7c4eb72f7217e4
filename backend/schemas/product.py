# backend/schemas/product.py
from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, Field, ConfigDict, field_validator
from typing import Optional, List

from models.stock import MAX_QUANTITY
from schemas.stock import StockMovementOut


# Base configuration for ORM compatibility
class ORMBase(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# Shared catalog attributes; quantity is deliberately absent (stock movements own it)
class ProductBase(ORMBase):
    name: str = Field(..., min_length=1, max_length=255)
    sku: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    price: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2)
    category: str = Field(..., min_length=1, max_length=100)
    supplier: Optional[str] = Field(default=None, max_length=255)
    min_stock_level: Optional[int] = Field(default=None, ge=0)
    max_stock_level: Optional[int] = Field(default=None, ge=0)

    @field_validator("name", "sku", "category", "supplier", "description")
    @classmethod
    def _strip(cls, value):
        return value.strip() if isinstance(value, str) else value


# Schema for creating a new product; quantity becomes an initial IN movement
class ProductCreate(ProductBase):
    quantity: int = Field(default=0, ge=0, le=MAX_QUANTITY)


# Schema for full product updates (PUT); unknown fields such as quantity are rejected
class ProductUpdate(ProductBase):
    model_config = ConfigDict(from_attributes=True, extra="forbid")


# Full product representation including ID and derived low-stock flag
class ProductOut(ORMBase):
    id: int
    name: str
    sku: str
    description: Optional[str] = None
    price: Decimal
    category: str
    supplier: Optional[str] = None
    quantity: int
    min_stock_level: int
    max_stock_level: Optional[int] = None
    is_low_stock: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ProductDetail(ProductOut):
    recent_movements: List[StockMovementOut] = []


# Paginated response for product listings
class ProductListPage(ORMBase):
    items: List[ProductOut]
    total: int
    page: int
    page_size: int
    total_pages: int


class CategorySummary(BaseModel):
    name: str
    product_count: int
