# backend/routes/stats.py

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session, joinedload
from sqlalchemy import func
from pydantic import BaseModel
from typing import List

from database import get_db
from models.product import Product
from models.stock import StockMovement
from schemas.stock import StockMovementListItem

router = APIRouter(
    prefix="/api/dashboard",
    tags=["Dashboard"]
)

TOP_CATEGORIES = 5
RECENT_MOVEMENTS = 10

# === Pydantic Response Schemas ===

class CategoryStats(BaseModel):
    category: str
    count: int
    total_quantity: int
    avg_price: float

class DashboardStats(BaseModel):
    total_products: int
    total_value: float
    low_stock_count: int
    top_categories: List[CategoryStats]
    recent_movements: List[StockMovementListItem]


# === Endpoint: Dashboard Summary ===

@router.get("/stats", response_model=DashboardStats)
def get_dashboard_stats(db: Session = Depends(get_db)):
    total_products = db.query(Product).count()

    # Value of stock on hand
    total_value = db.query(func.sum(Product.price * Product.quantity)).scalar() or 0

    # Low stock: quantity at or below the product's own threshold
    low_stock_count = db.query(Product).filter(
        Product.quantity <= Product.min_stock_level
    ).count()

    # Largest categories by number of products
    category_rows = (
        db.query(
            Product.category.label("category"),
            func.count(Product.id).label("product_count"),
            func.sum(Product.quantity).label("total_quantity"),
            func.avg(Product.price).label("avg_price"),
        )
        .group_by(Product.category)
        .order_by(func.count(Product.id).desc(), Product.category.asc())
        .limit(TOP_CATEGORIES)
        .all()
    )

    recent = (
        db.query(StockMovement)
        .options(joinedload(StockMovement.product))
        .order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
        .limit(RECENT_MOVEMENTS)
        .all()
    )

    return DashboardStats(
        total_products=total_products,
        total_value=float(total_value),
        low_stock_count=low_stock_count,
        top_categories=[
            CategoryStats(
                category=row.category,
                count=int(row.product_count),
                total_quantity=int(row.total_quantity or 0),
                avg_price=float(row.avg_price or 0),
            )
            for row in category_rows
        ],
        recent_movements=[StockMovementListItem.from_movement(m) for m in recent],
    )
