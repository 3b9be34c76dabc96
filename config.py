from typing import Optional

from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    # Remote Document Store
    REMOTE_STORE_URL: str = "http://localhost:8080/v1"
    REMOTE_STORE_TIMEOUT: int = 10
    REMOTE_STORE_API_KEY: Optional[str] = None

    # Local Cache
    CACHE_DATABASE_URL: str = "sqlite:///./lumina_cache.db"

    # Application Info
    APP_NAME: str = "Lumina POS"
    APP_VERSION: str = "1.0.0"
    LOG_LEVEL: str = "INFO"

    # Administrative override key, disabled when unset
    ADMIN_MASTER_KEY: Optional[str] = None

    # License Plans
    KEY_PREFIX: str = "KSR"
    WEEKLY_PRICE: int = 50000
    MONTHLY_PRICE: int = 150000
    YEARLY_PRICE: int = 1500000

    class Config:
        env_file = ".env"

settings = Settings()
