# backend/database.py
from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker

from config import settings

# 1. Adres bazy z konfiguracji (Azure / .env) lub domyślny SQLite (lokalnie)
SQLALCHEMY_DATABASE_URL = settings.DATABASE_URL

# 2. Poprawka dla Azure (zamienia postgres:// na postgresql://, bo SQLAlchemy tego wymaga)
if SQLALCHEMY_DATABASE_URL and SQLALCHEMY_DATABASE_URL.startswith("postgres://"):
    SQLALCHEMY_DATABASE_URL = SQLALCHEMY_DATABASE_URL.replace("postgres://", "postgresql://", 1)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    # Without this SQLite ignores ON DELETE CASCADE on stock_movements
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(url: str, commit_timeout: float = settings.STOCK_COMMIT_TIMEOUT_SECONDS):
    # 3. Konfiguracja zależna od bazy
    if "sqlite" in url:
        # busy timeout bounds how long a commit waits for the SQLite write lock
        connect_args = {"check_same_thread": False, "timeout": commit_timeout}
    else:
        connect_args = {}  # Puste dla PostgreSQL

    new_engine = create_engine(url, connect_args=connect_args, pool_pre_ping=True)
    if "sqlite" in url:
        event.listen(new_engine, "connect", _enable_sqlite_foreign_keys)
    return new_engine


engine = build_engine(SQLALCHEMY_DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def init_db(bind=None):
    # Modele muszą być zaimportowane, żeby trafiły do Base.metadata
    import models.product  # noqa: F401
    import models.stock  # noqa: F401
    import models.log  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
