from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # core
    ENV: str = "dev"
    API_PREFIX: str = "/api"

    # database & redis
    # Plain strings so both postgresql:// and sqlite:// URLs are accepted
    DATABASE_URL: str
    REDIS_URL: str = "redis://localhost:6379/0"

    # generation backend (OpenAI-compatible)
    OPENROUTER_API_KEY: str | None = None
    OPENAI_API_KEY: str | None = None
    OPENROUTER_SITE_URL: str | None = None
    LLM_MODEL: str = "openai/gpt-4o-mini"
    LLM_TEMPERATURE: float = 0.7
    LLM_MAX_TOKENS: int = 4000
    # Hard cap on concurrent LLM calls per process
    LLM_MAX_CONCURRENCY: int = 4
    # Upper bound on a single completion call; exceeded -> job fails, no retry
    GENERATION_TIMEOUT_SECONDS: float = 60.0

    # stock photos
    PEXELS_API_KEY: str | None = None
    PEXELS_BASE_URL: str = "https://api.pexels.com/v1"
    PEXELS_TIMEOUT_SECONDS: int = 10
    PHOTO_CACHE_TTL_SECONDS: int = 60 * 60 * 24

    # job execution
    JOB_DISPATCH_MODE: str = "celery"  # or "thread" for single-process dev
    PROGRESS_NOTIFIER: str = "redis"  # or "memory"
    RECENT_UPDATES_LIMIT: int = 10
    PROGRESS_POLL_INTERVAL_SECONDS: float = 2.0
    # Jobs still non-terminal after this long are failed by the reaper
    JOB_STALE_AFTER_SECONDS: int = 15 * 60

    # cors
    FRONTEND_ORIGIN: str | None = None
    # Explicit debug-only switch for wide-open CORS in non-prod envs
    CORS_ALLOW_ALL_ORIGINS: bool = False

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache
def get_settings() -> Settings:
    return Settings()
