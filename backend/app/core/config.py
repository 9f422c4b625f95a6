from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    # App
    APP_NAME: str = "Lead Marketplace"
    ENVIRONMENT: str = "development"
    DEBUG: bool = True

    # Database
    DATABASE_URL: str = "postgresql://marketplace_user:marketplace_pass@db:5432/marketplace_db"

    # Redis (Celery broker)
    REDIS_URL: str = "redis://redis:6379/0"

    # Security
    SECRET_KEY: str = "your-secret-key-change-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24  # 24 hours
    ADMIN_API_KEY: Optional[str] = None
    # Fernet key for buyer credentials at rest; derived from SECRET_KEY when unset
    ENCRYPTION_KEY: Optional[str] = None

    # Seeded on startup when set
    DEFAULT_ADMIN_EMAIL: Optional[str] = None
    DEFAULT_ADMIN_PASSWORD: Optional[str] = None
    SEED_SERVICE_TYPES: bool = True

    # App URL (frontend)
    FRONTEND_URL: str = "http://localhost:3000"

    # Auction defaults
    AUCTION_MAX_PARTICIPANTS: int = 10
    AUCTION_TIMEOUT_MS: int = 5000
    AUCTION_MINIMUM_BID: float = 10.0
    AUCTION_REQUIRE_MINIMUM_BID: bool = True
    AUCTION_TIEBREAK: str = "responseTime"  # responseTime, priority, random
    AUCTION_CASCADE_ON_REJECT: bool = False

    # Buyer HTTP timeouts when neither template nor buyer sets one
    DEFAULT_PING_TIMEOUT_MS: int = 3000
    DEFAULT_POST_TIMEOUT_MS: int = 8000

    # Inbound buyer webhooks
    # Replay window for the body timestamp; None skips the timestamp check
    WEBHOOK_MAX_AGE_SECONDS: Optional[int] = 300

    # Lead processing: background, celery, disabled
    LEAD_PROCESSING_MODE: str = "background"

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
