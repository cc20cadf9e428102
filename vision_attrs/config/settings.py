"""Pipeline configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path


def _load_env_file(path: str = ".env") -> None:
    """Populate os.environ from the provided .env file if it exists."""

    env_path = Path(path)
    if not env_path.exists():
        return

    for line in env_path.read_text(encoding="utf-8").splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#") or "=" not in stripped:
            continue
        key, value = stripped.split("=", 1)
        os.environ.setdefault(key.strip(), value.strip())


@dataclass(frozen=True, slots=True)
class Settings:
    """Centralised extraction settings based on OS environment variables."""

    environment: str = "dev"
    log_level: str = "INFO"

    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    vision_model: str = "gpt-4o"
    vision_max_tokens: int = 1500
    vision_temperature: float = 0.1

    model_timeout: float = 30.0
    model_max_retries: int = 3
    model_retry_base_delay: float = 1.0

    redis_url: str = ""
    result_cache_ttl: int = 24 * 60 * 60
    memory_cache_max_size: int = 1000
    memory_cache_cleanup_threshold: int = 800

    prompt_cache_high_water: int = 100
    prompt_cache_low_water: int = 50
    prompt_max_fields: int = 15
    prompt_max_allowed_values: int = 8

    rate_limit_window: float = 60.0
    rate_limit_max_requests: int = 10
    rate_limit_block: float = 0.0
    rate_limit_max_keys: int = 10_000

    confidence_threshold: int = 70
    retry_max_attempts: int = 3
    retry_base_delay_ms: float = 1000.0
    retry_max_delay_ms: float = 30_000.0
    retry_backoff_multiplier: float = 2.0
    retry_jitter_factor: float = 0.1
    retry_context_max_age: float = 3600.0
    job_retention: float = 3600.0

    worker_concurrency: int = 3
    max_image_bytes: int = 20 * 1024 * 1024


def _build_settings() -> Settings:
    _load_env_file()

    return Settings(
        environment=os.getenv("ENVIRONMENT", "dev"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        openai_api_key=os.getenv("OPENAI_API_KEY", ""),
        openai_base_url=os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1"),
        vision_model=os.getenv("VISION_MODEL", "gpt-4o"),
        vision_max_tokens=int(os.getenv("VISION_MAX_TOKENS", "1500")),
        vision_temperature=float(os.getenv("VISION_TEMPERATURE", "0.1")),
        model_timeout=float(os.getenv("MODEL_TIMEOUT", "30")),
        model_max_retries=int(os.getenv("MODEL_MAX_RETRIES", "3")),
        model_retry_base_delay=float(os.getenv("MODEL_RETRY_BASE_DELAY", "1.0")),
        redis_url=os.getenv("REDIS_URL", ""),
        result_cache_ttl=int(os.getenv("RESULT_CACHE_TTL", str(24 * 60 * 60))),
        memory_cache_max_size=int(os.getenv("MEMORY_CACHE_MAX_SIZE", "1000")),
        memory_cache_cleanup_threshold=int(os.getenv("MEMORY_CACHE_CLEANUP_THRESHOLD", "800")),
        prompt_cache_high_water=int(os.getenv("PROMPT_CACHE_HIGH_WATER", "100")),
        prompt_cache_low_water=int(os.getenv("PROMPT_CACHE_LOW_WATER", "50")),
        prompt_max_fields=int(os.getenv("PROMPT_MAX_FIELDS", "15")),
        prompt_max_allowed_values=int(os.getenv("PROMPT_MAX_ALLOWED_VALUES", "8")),
        rate_limit_window=float(os.getenv("RATE_LIMIT_WINDOW", "60")),
        rate_limit_max_requests=int(os.getenv("RATE_LIMIT_MAX_REQUESTS", "10")),
        rate_limit_block=float(os.getenv("RATE_LIMIT_BLOCK", "0")),
        rate_limit_max_keys=int(os.getenv("RATE_LIMIT_MAX_KEYS", "10000")),
        confidence_threshold=int(os.getenv("CONFIDENCE_THRESHOLD", "70")),
        retry_max_attempts=int(os.getenv("RETRY_MAX_ATTEMPTS", "3")),
        retry_base_delay_ms=float(os.getenv("RETRY_BASE_DELAY_MS", "1000")),
        retry_max_delay_ms=float(os.getenv("RETRY_MAX_DELAY_MS", "30000")),
        retry_backoff_multiplier=float(os.getenv("RETRY_BACKOFF_MULTIPLIER", "2")),
        retry_jitter_factor=float(os.getenv("RETRY_JITTER_FACTOR", "0.1")),
        retry_context_max_age=float(os.getenv("RETRY_CONTEXT_MAX_AGE", "3600")),
        job_retention=float(os.getenv("JOB_RETENTION", "3600")),
        worker_concurrency=int(os.getenv("WORKER_CONCURRENCY", "3")),
        max_image_bytes=int(os.getenv("MAX_IMAGE_BYTES", str(20 * 1024 * 1024))),
    )


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance to avoid re-reading configuration."""

    return _build_settings()
