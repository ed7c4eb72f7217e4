# backend/models/product.py
from sqlalchemy import Column, Integer, String, Text, Numeric, DateTime, CheckConstraint, event, func, inspect
from sqlalchemy.orm import relationship, object_session
from database import Base

# Session.info flag set by the stock movement engine while it owns the unit of work.
# Any other flush touching Product.quantity is rejected.
LEDGER_WRITE_FLAG = "ledger_write"


class LedgerWriteError(RuntimeError):
    """Raised when code outside the stock movement engine tries to write quantity."""


# Model Product
# Pojedynczy produkt w katalogu: dane katalogowe, cena,
# aktualny stan magazynowy oraz progi stanów minimalnych/maksymalnych.
class Product(Base):
    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_products_quantity_non_negative"),
        CheckConstraint("min_stock_level >= 0", name="ck_products_min_stock_non_negative"),
        CheckConstraint("max_stock_level IS NULL OR max_stock_level >= 0", name="ck_products_max_stock_non_negative"),
        CheckConstraint("price >= 0", name="ck_products_price_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False, index=True)
    sku = Column(String(100), unique=True, nullable=False, index=True)

    description = Column(Text)
    category = Column(String(100), nullable=False, index=True)
    supplier = Column(String(255))

    price = Column(Numeric(10, 2), nullable=False)

    # Stan magazynowy - zmieniany wyłącznie przez silnik ruchów magazynowych.
    quantity = Column(Integer, nullable=False, default=0, index=True)
    min_stock_level = Column(Integer, nullable=False, default=10)
    max_stock_level = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    movements = relationship(
        "StockMovement",
        back_populates="product",
        passive_deletes="all",
        order_by="StockMovement.id",
    )

    @property
    def is_low_stock(self) -> bool:
        return (self.quantity or 0) <= (self.min_stock_level or 0)


def _ledger_write_allowed(target) -> bool:
    session = object_session(target)
    return bool(session is not None and session.info.get(LEDGER_WRITE_FLAG))


@event.listens_for(Product, "before_insert")
def _check_initial_quantity(mapper, connection, target):
    if (target.quantity or 0) != 0 and not _ledger_write_allowed(target):
        raise LedgerWriteError(
            "Products are created with quantity 0; book initial stock as an IN movement"
        )


@event.listens_for(Product, "before_update")
def _check_quantity_write(mapper, connection, target):
    history = inspect(target).attrs.quantity.history
    if history.has_changes() and not _ledger_write_allowed(target):
        raise LedgerWriteError(
            f"Product {target.id}: quantity can only change through a stock movement"
        )
