"""Configuration and environment settings"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application configuration"""

    # Storage
    STORE_BACKEND: str = "memory"  # memory|postgres
    DATABASE_URL: Optional[str] = None

    # Authentication
    JWT_SECRET_KEY: Optional[str] = None
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRY_HOURS: int = 1

    # API
    CORS_ORIGINS: str = "http://localhost:5173,http://localhost:3000"

    # Logging
    LOG_LEVEL: str = "INFO"

    # Field length limits
    NAME_MAX_LENGTH: int = 100
    DESCRIPTION_MAX_LENGTH: int = 500
    TEXT_FIELD_MAX_LENGTH: int = 10000
    SLUG_MAX_LENGTH: int = 50
    ALIAS_MAX_LENGTH: int = 100

    # Structural limits
    MAX_COLUMNS: int = 100
    MAX_SLUG_GENERATION_ATTEMPTS: int = 100

    # Import limits
    MAX_IMPORT_ROWS: int = 10000
    MAX_CSV_SIZE_BYTES: int = 10 * 1024 * 1024  # 10MB
    IMPORT_BATCH_SIZE: int = 50

    # Reads
    DEFAULT_PAGE_SIZE: int = 50
    MAX_PAGE_SIZE: int = 1000

    # Row writes retried on version conflicts
    ROW_UPDATE_MAX_RETRIES: int = 5

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"

    def get_store_backend(self) -> str:
        """Normalized store backend name"""
        return self.STORE_BACKEND.strip().lower()

    def get_cors_origins(self) -> list[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]


settings = Settings()
