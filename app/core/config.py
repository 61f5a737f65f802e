from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # PostgreSQL
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_user: str = "geo_user"
    postgres_password: str = "changeme"
    postgres_db: str = "visibility"

    # Full URL override (e.g. sqlite+aiosqlite:///./visibility.db for local runs)
    database_url: str = ""

    @property
    def postgres_url(self) -> str:
        if self.database_url:
            return self.database_url
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    # Redis (Celery broker + result backend)
    redis_url: str = "redis://localhost:6379/0"

    # OpenAI (reference provider)
    openai_api_key: str = ""
    openai_model: str = "gpt-5-mini"
    openai_api_url: str = "https://api.openai.com/v1/chat/completions"
    openai_timeout: float = 120.0

    # Pipeline pacing
    prompt_delay_seconds: float = 0.5  # courtesy delay after every prompt
    domain_delay_seconds: float = 1.0  # delay between domains in a sweep
    max_domain_workers: int = 1  # domains processed concurrently (each one stays sequential)
    provider_rpm: int = 0  # shared requests-per-minute cap, 0 = disabled
    batch_lock_ttl_seconds: float = 900.0  # domain lock expiry, pushed forward after every prompt

    # Citations
    enrich_citations: bool = False  # fetch og:description for cited URLs
    citation_fetch_timeout: float = 5.0

    # Scheduled sweep (Celery Beat, UTC)
    sweep_hour: int = 6
    sweep_minute: int = 0
    default_provider: str = "chatgpt"

    # Shared secret for the sweep trigger endpoint
    cron_secret: str = ""

    # App
    app_env: str = "development"
    app_debug: bool = True
    app_host: str = "0.0.0.0"
    app_port: int = 8000

    # CORS
    allowed_origins: str = "*"  # comma-separated

    # Logging
    log_level: str = "INFO"
    log_json: bool = False  # set True in production for structured JSON logs

    # Sentry
    sentry_dsn: str = ""  # leave empty to disable


settings = Settings()


def validate_settings_for_production() -> None:
    """Validate critical settings. Called on startup in non-test environments."""
    errors: list[str] = []

    if settings.prompt_delay_seconds < 0 or settings.domain_delay_seconds < 0:
        errors.append("PROMPT_DELAY_SECONDS and DOMAIN_DELAY_SECONDS must not be negative")

    if settings.max_domain_workers < 1:
        errors.append("MAX_DOMAIN_WORKERS must be at least 1")

    if settings.app_env == "production":
        if not settings.openai_api_key:
            errors.append("OPENAI_API_KEY must be set in production")
        if settings.allowed_origins == "*":
            errors.append("ALLOWED_ORIGINS must not be '*' in production")
        if settings.app_debug:
            errors.append("APP_DEBUG must be false in production")
        if not settings.cron_secret:
            errors.append("CRON_SECRET must be set in production")

    if errors:
        raise SystemExit("Configuration errors:\n  - " + "\n  - ".join(errors))
