from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Optional

class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite:///./bookstore.db"
    SKIP_DB_INIT: bool = False

    JWT_SECRET: str = "change_this_secret"
    JWT_REFRESH_SECRET: str = "change_this_refresh_secret"
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_DAYS: int = 7
    REFRESH_TOKEN_EXPIRE_DAYS: int = 30
    ONE_TIME_TOKEN_EXPIRE_MINUTES: int = 60

    FRONTEND_URL: str = "http://localhost:3000"
    FRONTEND_ORIGINS: str = "*"

    # Email (Resend)
    RESEND_API_KEY: Optional[str] = None
    RESEND_FROM: Optional[str] = None

    # Supabase storage for cover images (optional)
    SUPABASE_URL: Optional[str] = None
    SUPABASE_SERVICE_ROLE_KEY: Optional[str] = None
    SUPABASE_BUCKET: Optional[str] = None
    MAX_FILE_SIZE: int = 5 * 1024 * 1024

    # Listing cache (optional)
    REDIS_URL: Optional[str] = None
    CACHE_TTL_SECONDS: int = 300

    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_DEFAULT: str = "100/15minutes"
    RATE_LIMIT_AUTH: str = "5/15minutes"
    RATE_LIMIT_UPLOAD: str = "10/hour"

    LOG_LEVEL: str = "INFO"

    @property
    def allow_origins(self) -> List[str]:
        return [origin.strip() for origin in self.FRONTEND_ORIGINS.split(",") if origin.strip()]

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

settings = Settings()
