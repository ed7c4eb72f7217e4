# backend/config.py
from pydantic import Field
from pydantic_settings import BaseSettings
from typing import ClassVar
from pathlib import Path

# Resolve absolute path to the .env file for reliable loading
env_path = Path(__file__).parent.parent / ".env"

class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite:///./inventory.db"
    ENVIRONMENT: str = "development"
    FRONTEND_URL: str = "http://localhost:3000"
    LOG_LEVEL: str = "INFO"

    # Stock movement engine
    STOCK_LOCK_TIMEOUT_SECONDS: float = Field(10.0, gt=0)
    STOCK_COMMIT_TIMEOUT_SECONDS: float = Field(5.0, gt=0)
    DEFAULT_PERFORMED_BY: str = "system"

    # Applied when a product is created without its own threshold
    DEFAULT_MIN_STOCK_LEVEL: int = 10

    class Config:
        env_file: ClassVar[str] = str(env_path)
        extra: ClassVar[str] = "ignore"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() == "development"

settings = Settings()
