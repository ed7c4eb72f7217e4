import random
from decimal import Decimal

from sqlalchemy.orm import Session

# Database models and setup
from database import SessionLocal, init_db
from models.product import Product
from models.stock import MovementType
from services.exceptions import InsufficientStock
from services.stock_movements import MovementMetadata, apply_movement

# Configuration
SEED = 42
SEED_ACTOR = "seed-script"

# name, sku, category, supplier, price, min_stock_level
DEMO_PRODUCTS = [
    ("Cordless Drill 18V", "TOOL-DRL-18V", "Tools", "Makita", "329.00", 5),
    ("Impact Driver", "TOOL-IMP-01", "Tools", "Makita", "279.00", 5),
    ("Wood Screws 4x40 (200 pcs)", "FST-WS-440", "Fasteners", "Spax", "24.90", 30),
    ("Wall Plugs 8mm (100 pcs)", "FST-WP-08", "Fasteners", "Fischer", "12.50", 40),
    ("Safety Glasses", "PPE-GLS-01", "Safety", "3M", "19.99", 20),
    ("Work Gloves L", "PPE-GLV-L", "Safety", "Ansell", "14.00", 25),
    ("Spirit Level 60cm", "MSR-LVL-60", "Measuring", "Stabila", "89.00", 3),
    ("Tape Measure 5m", "MSR-TPM-5", "Measuring", "Stanley", "39.00", 10),
]
# End Configuration


def populate(db: Session, products=DEMO_PRODUCTS, seed: int = SEED) -> int:
    """Create demo products and book their stock history through the movement engine.

    Products whose SKU already exists are skipped. Returns the number created.
    """
    rng = random.Random(seed)
    created = 0

    for name, sku, category, supplier, price, min_level in products:
        if db.query(Product.id).filter(Product.sku == sku).first():
            continue

        product = Product(
            name=name, sku=sku, category=category, supplier=supplier,
            price=Decimal(price), min_stock_level=min_level, quantity=0,
        )
        db.add(product)
        db.commit()

        unit_cost = (Decimal(price) * Decimal("0.65")).quantize(Decimal("0.01"))
        apply_movement(
            db, product.id, MovementType.IN, rng.randint(20, 200),
            MovementMetadata(reason="Opening delivery", reference=f"PZ-{product.id:05d}",
                             unit_cost=unit_cost, performed_by=SEED_ACTOR),
        )

        # A few sales; a demand larger than the stock on hand is simply skipped
        for _ in range(rng.randint(1, 4)):
            try:
                apply_movement(
                    db, product.id, MovementType.OUT, rng.randint(1, 60),
                    MovementMetadata(reason="Sale", performed_by=SEED_ACTOR),
                )
            except InsufficientStock as exc:
                print(f"Pominięto wydanie {exc.requested} szt. {sku} (dostępne: {exc.available})")

        if rng.random() < 0.3:
            counted = max(product.quantity - rng.randint(0, 3), 0)
            apply_movement(
                db, product.id, MovementType.ADJUSTMENT, counted,
                MovementMetadata(reason="Stock count", performed_by=SEED_ACTOR),
            )

        created += 1

    return created


if __name__ == "__main__":
    init_db()
    session = SessionLocal()
    try:
        count = populate(session)
        print(f"Pomyślnie wstawiono {count} produktów.")
    finally:
        session.close()
