"""
Application settings.
"""
from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    # Database
    DATABASE_URL: str = "sqlite:///./data/receipts.db"

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 3050

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = False

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:3050"]

    # File storage
    DATA_DIR: str = "./data"

    # Owner-path allowlist (exact match after ::ffff: stripping)
    ALLOWED_IPS: List[str] = ["127.0.0.1", "::1", "::ffff:127.0.0.1", "localhost"]

    # Receipts API
    RECEIPT_LIST_LIMIT: int = 50

    # Realtime relay (seconds)
    RELAY_PING_INTERVAL: float = 30.0

    # Sync client (seconds)
    API_BASE_URL: str = "http://localhost:3050"
    AUTOSAVE_DELAY: float = 2.0
    RECONNECT_DELAY: float = 1.0

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
