"""Application configuration from environment variables."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # App
    app_name: str = "Clubhouse"
    debug: bool = True
    secret_key: str = "dev-secret-change-in-production"
    api_prefix: str = "/api/v1"
    log_level: str = "INFO"

    # Database
    database_url: str = "postgresql+asyncpg://clubhouse:clubhouse@db:5432/clubhouse"
    database_echo: bool = False

    # Redis (Celery broker for the hygiene sweeps)
    redis_url: str = "redis://redis:6379/0"
    sweep_interval_minutes: int = 5

    # Auth (tokens are issued by the identity service, we only verify them)
    access_token_expire_minutes: int = 60
    jwt_algorithm: str = "HS256"

    # Occupancy
    hold_minutes: int = 60
    club_timezone: str = "Asia/Karachi"

    # Stripe (test mode)
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    currency: str = "pkr"

    model_config = {"env_prefix": "CH_", "env_file": ".env", "extra": "ignore"}


settings = Settings()
