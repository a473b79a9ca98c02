from __future__ import annotations

from functools import lru_cache
from urllib.parse import quote

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "Healthcare Market Research API"
    environment: str = "development"
    log_level: str = "INFO"
    port: int = 8081

    # A full URL wins over the discrete DB_* coordinates below.
    database_url: str | None = None
    db_host: str = "localhost"
    db_port: int = 5432
    db_user: str = "postgres"
    db_password: str = ""
    db_name: str = "healthcare_market_research"
    db_sslmode: str = "disable"
    # Bound idle/open connections and recycle hourly.
    db_pool_size: int = 10
    db_max_overflow: int = 90
    db_pool_recycle_s: int = 3600

    # Redis backs the cache, sessions, CSRF tokens and rate-limit counters.
    redis_url: str | None = None
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: str = ""
    redis_db: int = 0

    jwt_secret: str = "dev-jwt-secret-change-me"
    jwt_issuer: str = "healthcare-market-research-api"
    jwt_access_token_ttl_s: int = 900
    jwt_refresh_token_ttl_s: int = 7 * 24 * 3600
    # Cost 12 keeps a single verification in the 100-300ms range.
    bcrypt_rounds: int = 12

    # Toggle rate limiting for abuse protection.
    rate_limit_enabled: bool = True
    rate_limit_login_max_attempts: int = 5
    rate_limit_login_window_s: int = 900
    rate_limit_api_max_requests: int = 300
    rate_limit_api_window_s: int = 60

    csrf_enabled: bool = True
    csrf_token_ttl_s: int = 3600
    csrf_cookie_secure: bool = True

    # Bounded in-process audit queue drained by a single worker.
    audit_queue_capacity: int = 100
    audit_flush_timeout_s: float = 5.0

    # Run the scheduled-publish loop inside the API process.
    scheduler_enabled: bool = True
    scheduler_interval_s: int = 60

    cloudflare_account_id: str = ""
    cloudflare_images_api_token: str = ""
    cloudflare_delivery_url: str = ""
    cloudflare_api_base_url: str = "https://api.cloudflare.com/client/v4"
    cdn_timeout_s: float = 30.0
    image_max_bytes: int = 10 * 1024 * 1024

    # Comma-delimited list of allowed CORS origins.
    cors_allow_origins: str = "*"

    @property
    def sqlalchemy_database_url(self) -> str:
        if self.database_url:
            return self.database_url
        password = quote(self.db_password, safe="")
        return (
            f"postgresql+asyncpg://{self.db_user}:{password}@{self.db_host}:{self.db_port}/{self.db_name}"
        )

    @property
    def resolved_redis_url(self) -> str:
        if self.redis_url:
            return self.redis_url
        auth = f":{quote(self.redis_password, safe='')}@" if self.redis_password else ""
        return f"redis://{auth}{self.redis_host}:{self.redis_port}/{self.redis_db}"

    @property
    def cors_origins(self) -> list[str]:
        return [origin.strip() for origin in self.cors_allow_origins.split(",") if origin.strip()]

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


@lru_cache
def get_settings() -> Settings:
    return Settings()
