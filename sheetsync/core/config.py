# sheetsync/core/config.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional, List
from pathlib import Path
import logging
from functools import lru_cache

# Configure logger
logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""
    # Application info
    PROJECT_NAME: str = "SheetSync"
    API_V1_STR: str = "/api/v1"
    VERSION: str = "1.0.0"
    DESCRIPTION: str = "Delta synchronization backend on a spreadsheet record store"

    # Set base directory for data files
    BASE_DIR: Path = Path(__file__).resolve().parent.parent.parent
    DATA_DIR: Path = BASE_DIR / "data"
    LOGS_DIR: Path = BASE_DIR / "logs"

    # Record store settings
    STORE_BACKEND: str = "workbook"  # "workbook", "sql" or "memory"
    WORKBOOK_FILE: str = "sheetsync.xlsx"
    WORKBOOK_PATH: Optional[Path] = None
    DATABASE_URL: Optional[str] = None
    DB_ECHO: bool = False  # Don't log SQL in production

    # Shared secret sent by clients in every request body
    APP_CODE: Optional[str] = None
    APP_CODE_HASH: Optional[str] = None  # passlib hash, takes precedence over APP_CODE

    # Pagination settings
    DEFAULT_PAGE_SIZE: int = 200

    # Write lock settings
    ENABLE_REDIS_LOCK: bool = False
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: Optional[str] = None
    REDIS_URL: Optional[str] = None
    SYNC_LOCK_NAME: str = "sheetsync:write-lock"
    SYNC_LOCK_TIMEOUT_SECONDS: float = 300.0  # Lock expiry in case a worker dies holding it
    SYNC_LOCK_WAIT_SECONDS: float = 30.0  # Bounded wait before the request is rejected

    # Server settings
    HOST: str = "0.0.0.0"
    PORT: int = 8001
    WORKERS: int = 1
    RELOAD: bool = False
    LOG_LEVEL: str = "info"

    # CORS settings
    CORS_ORIGINS: List[str] = ["*"]
    CORS_ALLOW_CREDENTIALS: bool = False

    # Debug options
    DEBUG: bool = False

    @property
    def get_data_dir(self) -> Path:
        """Ensure data directory exists and return it"""
        if not self.DATA_DIR.exists():
            self.DATA_DIR.mkdir(parents=True)
        return self.DATA_DIR

    @property
    def RESOLVED_WORKBOOK_PATH(self) -> Path:
        """Get the full path to the workbook file"""
        if self.WORKBOOK_PATH:
            return self.WORKBOOK_PATH
        return self.get_data_dir / self.WORKBOOK_FILE

    @property
    def SQLALCHEMY_DATABASE_URI(self) -> str:
        """Build SQLAlchemy database URI, defaulting to a SQLite file in the data directory"""
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return f"sqlite:///{self.get_data_dir / 'sheetsync.db'}"

    @property
    def REDIS_CONNECTION_STRING(self) -> str:
        """Build Redis connection string"""
        if self.REDIS_URL:
            return self.REDIS_URL

        auth_part = f":{self.REDIS_PASSWORD}@" if self.REDIS_PASSWORD else ""
        return f"redis://{auth_part}{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=True,
        extra="ignore"
    )


# Cache the settings instance
@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


# Create settings instance for import
settings = get_settings()
