"""Application configuration via environment variables."""

from pydantic import Field
from pydantic_settings import BaseSettings
from typing import List, Optional


class Settings(BaseSettings):
    # Supabase
    supabase_url: str = ""
    supabase_service_role_key: str = ""
    supabase_anon_key: str = ""
    storage_bucket: str = "images"

    # Backends
    job_store_backend: str = "supabase"  # "supabase" or "memory"
    file_store_backend: str = "supabase"  # "supabase" or "local"
    local_files_dir: str = "/data/files"
    public_base_url: str = "http://localhost:8000"

    # Image generation
    default_provider: str = "openai"  # "openai" or "gemini"
    openai_api_key: Optional[str] = None
    openai_image_model: str = "gpt-4o"
    gemini_api_key: Optional[str] = None
    gemini_image_model: str = "gemini-2.5-flash-image"
    generation_timeout_seconds: float = 180.0

    # Job processing
    remix_max_concurrency: int = Field(default=1, ge=1, le=5)
    image_fetch_timeout_seconds: float = 15.0
    dispatcher_workers: int = 1

    # Observability
    sentry_dsn: Optional[str] = None
    sentry_traces_sample_rate: float = 1.0
    environment: str = "development"
    log_level: str = "INFO"
    log_dir: Optional[str] = None

    cors_origins: List[str] = ["http://localhost:3000"]

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
