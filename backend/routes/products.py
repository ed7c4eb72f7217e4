# backend/routes/products.py
from typing import Optional, List

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import settings
from database import get_db
from utils.audit import write_log
from models.product import Product
from models.stock import MovementType, StockMovement
from services.product_locks import product_locks
from services.stock_movements import MovementMetadata, apply_movement
import schemas.product as product_schemas

router = APIRouter(prefix="/api", tags=["Products"])

RECENT_MOVEMENTS = 10

# ---- HELPERS ----
def _norm_sku(sku: str) -> str:
    return sku.strip().upper()

def _client_ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None

def _get_product_or_404(db: Session, product_id: int) -> Product:
    product = db.query(Product).filter(Product.id == product_id).first()
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product

def _sku_taken(db: Session, sku: str, exclude_id: Optional[int] = None) -> bool:
    query = db.query(Product.id).filter(Product.sku == sku)
    if exclude_id is not None:
        query = query.filter(Product.id != exclude_id)
    return query.first() is not None


# =========================
# LISTA PRODUKTÓW
# =========================
@router.get("/products", response_model=product_schemas.ProductListPage)
def list_products(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    category: Optional[str] = Query(None),
    low_stock: Optional[bool] = Query(None),
    search: Optional[str] = Query(None),
    db: Session = Depends(get_db),
):
    query = db.query(Product)

    if category:
        query = query.filter(Product.category == category.strip())
    if low_stock:
        query = query.filter(Product.quantity <= Product.min_stock_level)
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(or_(
            Product.name.ilike(like),
            Product.sku.ilike(like),
            Product.description.ilike(like),
        ))

    total = query.count()
    items: List[Product] = (query
                            .order_by(Product.created_at.desc(), Product.id.desc())
                            .offset((page - 1) * page_size)
                            .limit(page_size)
                            .all())

    return {
        "items": [product_schemas.ProductOut.model_validate(p) for p in items],
        "total": total,
        "page": page,
        "page_size": page_size,
        "total_pages": (total + page_size - 1) // page_size,
    }


# =========================
# KATEGORIE
# =========================
@router.get("/categories", response_model=List[product_schemas.CategorySummary])
def list_categories(db: Session = Depends(get_db)):
    rows = (db.query(Product.category, func.count(Product.id).label("product_count"))
            .group_by(Product.category)
            .order_by(Product.category.asc())
            .all())
    return [product_schemas.CategorySummary(name=r.category, product_count=r.product_count) for r in rows]


# =========================
# POJEDYNCZY PRODUKT
# =========================
@router.get("/products/{product_id}", response_model=product_schemas.ProductDetail)
def get_product(product_id: int, db: Session = Depends(get_db)):
    product = _get_product_or_404(db, product_id)

    recent = (db.query(StockMovement)
              .filter(StockMovement.product_id == product.id)
              .order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
              .limit(RECENT_MOVEMENTS)
              .all())

    detail = product_schemas.ProductDetail.model_validate(product)
    detail.recent_movements = [product_schemas.StockMovementOut.model_validate(m) for m in recent]
    return detail


# =========================
# DODAWANIE PRODUKTU
# =========================
@router.post("/products", response_model=product_schemas.ProductOut, status_code=status.HTTP_201_CREATED)
def add_product(
    payload: product_schemas.ProductCreate,
    request: Request,
    db: Session = Depends(get_db),
):
    sku = _norm_sku(payload.sku)
    if _sku_taken(db, sku):
        raise HTTPException(status_code=400, detail="SKU already exists")

    data = payload.model_dump(exclude={"quantity"})
    data["sku"] = sku
    if data.get("min_stock_level") is None:
        data["min_stock_level"] = settings.DEFAULT_MIN_STOCK_LEVEL

    product = Product(quantity=0, **data)
    db.add(product)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=400, detail="SKU already exists")

    if payload.quantity > 0:
        # Opening stock goes through the engine so the movement log starts with it;
        # the engine's commit also persists the product row.
        apply_movement(
            db, product.id, MovementType.IN, payload.quantity,
            MovementMetadata(reason="Initial stock"),
        )
    else:
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            raise HTTPException(status_code=400, detail="SKU already exists")

    db.refresh(product)
    out = product_schemas.ProductOut.model_validate(product)

    write_log(
        db, action="PRODUCT_CREATE", resource="products", status="SUCCESS",
        ip=_client_ip(request), meta={"id": out.id, "sku": out.sku},
    )
    return out


# =========================
# AKTUALIZACJA PRODUKTU (PUT)
# =========================
@router.put("/products/{product_id}", response_model=product_schemas.ProductOut)
def update_product(
    product_id: int,
    payload: product_schemas.ProductUpdate,
    request: Request,
    db: Session = Depends(get_db),
):
    product = _get_product_or_404(db, product_id)

    sku = _norm_sku(payload.sku)
    if _sku_taken(db, sku, exclude_id=product.id):
        raise HTTPException(status_code=400, detail="SKU already exists")

    for key, value in payload.model_dump(exclude_unset=True).items():
        setattr(product, key, value)
    product.sku = sku
    if product.min_stock_level is None:
        product.min_stock_level = settings.DEFAULT_MIN_STOCK_LEVEL

    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=400, detail="SKU already exists")
    db.refresh(product)
    out = product_schemas.ProductOut.model_validate(product)

    write_log(
        db, action="PRODUCT_UPDATE", resource="products", status="SUCCESS",
        ip=_client_ip(request), meta={"id": out.id},
    )
    return out


# =========================
# USUWANIE
# =========================
@router.delete("/products/{product_id}")
def delete_product(product_id: int, request: Request, db: Session = Depends(get_db)):
    # Hold the product lock so no movement is mid-commit while the row disappears;
    # its movement history is removed by ON DELETE CASCADE.
    with product_locks.hold(product_id):
        product = _get_product_or_404(db, product_id)
        pid, pname = product.id, product.name
        db.delete(product)
        db.commit()

    write_log(
        db, action="PRODUCT_DELETE", resource="products", status="SUCCESS",
        ip=_client_ip(request), meta={"id": pid},
    )
    return {"success": True, "message": f"Product '{pname}' deleted"}
