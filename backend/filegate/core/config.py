from functools import lru_cache
from pathlib import Path
from typing import Optional, Union

from pydantic_settings import BaseSettings, SettingsConfigDict

# Values the original .env template ships with; treated as "not configured"
PLACEHOLDER_ACCESS_KEY = "your_access_key_here"


class Settings(BaseSettings):
    # Path-keyed local store: <STORAGE_DIR>/files and <STORAGE_DIR>/metadata
    STORAGE_DIR: str = "./storage"
    # Staged object store: <S3_STORAGE_DIR>/s3_files and <S3_STORAGE_DIR>/s3_temp
    # Both areas must live on one filesystem so the commit rename is atomic
    S3_STORAGE_DIR: str = "./storage"
    # Directory holding the SQLite metadata index (s3_metadata.db)
    S3_DB_DIR: str = "./storage"
    # Full SQLAlchemy URL; overrides S3_DB_DIR when set
    DATABASE_URL: Optional[str] = None

    # Force local mode even when AWS credentials are present
    USE_LOCAL_STORAGE: bool = False

    # AWS S3 settings - only used in cloud mode
    AWS_ACCESS_KEY_ID: Optional[str] = None
    AWS_SECRET_ACCESS_KEY: Optional[str] = None
    AWS_REGION: str = "us-east-1"
    AWS_S3_BUCKET_NAME: Optional[str] = None  # Created at startup if missing
    PRESIGNED_URL_EXPIRES: int = 3600  # Seconds a preview URL stays valid

    # Upload limits
    MAX_FILE_SIZE: int = 100 * 1024 * 1024  # 100MB per file
    MAX_FILES_PER_UPLOAD: int = 10

    # Browser client - "/" redirects here and CORS allows it
    CLIENT_URL: str = "http://localhost:3000"
    CORS_ORIGINS: Union[str, list[str]] = "http://localhost:3000"

    # Background maintenance jobs
    # Jobs only run in local mode; cloud mode has no temp area or index
    ENABLE_SCHEDULER: bool = True
    CLEANUP_INTERVAL_MINUTES: int = 60  # How often both jobs run
    TEMP_UPLOAD_MAX_AGE_SECONDS: int = 24 * 60 * 60  # Older temp uploads were abandoned

    LOG_LEVEL: str = "INFO"  # Level for the filegate.* loggers

    model_config = SettingsConfigDict(
        # Load settings from .env file if it exists
        # Environment variables override defaults
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,  # Environment variable names are case-sensitive
        extra="ignore",  # .env may carry settings for other services
    )

    @property
    def use_local_storage(self) -> bool:
        """
        Local mode is used when forced, or when AWS credentials are missing
        or still set to the template placeholder.
        """
        if self.USE_LOCAL_STORAGE:
            return True
        return not self.AWS_ACCESS_KEY_ID or self.AWS_ACCESS_KEY_ID == PLACEHOLDER_ACCESS_KEY

    def get_database_url(self) -> str:
        # An explicit URL wins; otherwise a SQLite file next to the blobs
        if self.DATABASE_URL:
            return self.DATABASE_URL
        db_path = Path(self.S3_DB_DIR) / "s3_metadata.db"
        return f"sqlite:///{db_path}"

    def get_cors_origins(self) -> list[str]:
        """Parse CORS_ORIGINS string into list"""
        # Handle both string and list formats for flexibility
        if isinstance(self.CORS_ORIGINS, str):
            return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]
        return self.CORS_ORIGINS if isinstance(self.CORS_ORIGINS, list) else []


# Cached so every caller shares one Settings instance
@lru_cache
def get_settings() -> Settings:
    return Settings()
