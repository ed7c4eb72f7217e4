"""Shared fixtures: a throw-away SQLite database per test.

SQLite file databases (not ``:memory:``) are used so that several threads can
open their own connections, which the concurrency tests rely on.
"""

import os
import tempfile

# Must happen before the application settings are first imported
_TMP_DIR = tempfile.mkdtemp(prefix="inventory-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{os.path.join(_TMP_DIR, 'app.db')}")
os.environ.setdefault("ENVIRONMENT", "test")

from decimal import Decimal
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from database import build_engine, get_db, init_db
from models.product import Product
from models.stock import MovementType
from services.product_locks import ProductLockRegistry
from services.stock_movements import MovementMetadata, apply_movement


@pytest.fixture()
def engine(tmp_path):
    eng = build_engine(f"sqlite:///{tmp_path / 'inventory.db'}", commit_timeout=10.0)
    init_db(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture()
def locks():
    return ProductLockRegistry(default_timeout=5.0)


@pytest.fixture()
def make_product(db, locks):
    """Create a product and book ``quantity`` as its opening IN movement. Returns the id."""

    def _make(quantity=0, **overrides):
        fields = {
            "name": "Widget",
            "sku": f"SKU-{uuid4().hex[:8].upper()}",
            "category": "General",
            "price": Decimal("10.00"),
            "min_stock_level": 5,
        }
        fields.update(overrides)
        product = Product(quantity=0, **fields)
        db.add(product)
        db.commit()
        if quantity:
            apply_movement(
                db, product.id, MovementType.IN, quantity,
                MovementMetadata(reason="Initial stock"), locks=locks,
            )
        return product.id

    return _make


@pytest.fixture()
def client(session_factory):
    from main import app

    def _override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
