# backend/routes/stock.py
from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy.orm import Session
from typing import Literal, Optional

from database import get_db
from models.stock import MovementType
from services import ledger
from services.stock_movements import MovementMetadata, apply_movement
from utils.audit import write_log
import schemas.stock as stock_schemas

router = APIRouter(prefix="/api/stock-movements", tags=["Stock"])


@router.post("", response_model=stock_schemas.StockMovementResult, status_code=status.HTTP_201_CREATED)
def record_movement(
    payload: stock_schemas.StockMovementCreate,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
):
    # Engine errors (not found, insufficient stock, timeouts...) are mapped to
    # JSON responses by the StockError handler registered in main.py
    result = apply_movement(
        db,
        payload.product_id,
        payload.type,
        payload.quantity,
        MovementMetadata(
            reason=payload.reason,
            reference=payload.reference,
            notes=payload.notes,
            unit_cost=payload.unit_cost,
            performed_by=payload.performed_by,
            idempotency_key=payload.idempotency_key,
        ),
    )
    movement_out = stock_schemas.StockMovementOut.model_validate(result.movement)

    if result.replayed:
        # Same request seen before: answer with the original movement, nothing new created
        response.status_code = status.HTTP_200_OK
    else:
        write_log(
            db, actor=movement_out.performed_by, action="STOCK_MOVEMENT", resource="stock",
            status="SUCCESS", ip=request.client.host if request.client else None,
            meta={"id": movement_out.id, "product_id": movement_out.product_id, "type": movement_out.type.value},
        )

    return stock_schemas.StockMovementResult(
        movement=movement_out,
        previous_quantity=result.previous_quantity,
        new_quantity=result.new_quantity,
        replayed=result.replayed,
    )


@router.get("", response_model=stock_schemas.StockMovementPage)
def list_movements(
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=100),
    product_id: Optional[int] = Query(None),
    type: Optional[MovementType] = Query(None),
    order: Literal["asc", "desc"] = "desc",
    db: Session = Depends(get_db),
):
    items, total = ledger.list_movements(
        db, product_id=product_id, movement_type=type, page=page, page_size=page_size, order=order,
    )
    return {
        "items": [stock_schemas.StockMovementListItem.from_movement(m) for m in items],
        "total": total,
        "page": page,
        "page_size": page_size,
        "total_pages": (total + page_size - 1) // page_size,
    }


@router.get("/products/{product_id}/verify", response_model=stock_schemas.ChainReportOut)
def verify_product_chain(product_id: int, db: Session = Depends(get_db)):
    report = ledger.verify_chain(db, product_id)
    return stock_schemas.ChainReportOut(
        product_id=report.product_id,
        consistent=report.consistent,
        movement_count=report.movement_count,
        opening_quantity=report.opening_quantity,
        replayed_quantity=report.replayed_quantity,
        ledger_quantity=report.ledger_quantity,
        broken_movement_id=report.broken_movement_id,
    )
