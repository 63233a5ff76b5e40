from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="SOUNDTRACK_", env_file=".env", env_file_encoding="utf-8")

    app_name: str = "soundtrack-service"
    host: str = "0.0.0.0"
    port: int = 8100
    log_level: str = "INFO"

    kafka_enabled: bool = False
    kafka_bootstrap_servers: str = "localhost:9092"
    kafka_topic: str = "soundtrack_jobs"
    kafka_updates_topic: str = "soundtrack_updates"
    kafka_group_id: str = "soundtrack-service-consumer"

    # Object storage for uploaded videos
    s3_endpoint_url: str = ""
    s3_region: str | None = None
    s3_public_url: str = ""
    s3_bucket: str = "soundtrack-uploads"
    s3_access_key: str = ""
    s3_secret_key: str = ""
    s3_addressing_style: str | None = None
    storage_folder_prefix: str = "videos"
    upload_max_bytes: int = 500 * 1024 * 1024
    upload_allowed_types: list[str] = Field(default_factory=lambda: ["video/*"])
    storage_memory_limit_bytes: int = 1024 * 1024 * 1024

    # Multimodal analysis
    gemini_api_key: str = ""
    gemini_model: str = "models/gemini-2.5-flash"
    gemini_base_url: str = "https://generativelanguage.googleapis.com"
    gemini_http_timeout: float = 110.0
    analysis_timeout_seconds: float = 120.0
    analysis_mode: str = "proxy"
    gemini_auth_scheme: str = "bearer"
    default_media_type: str = "video/mp4"

    # Music generation
    suno_api_key: str = ""
    suno_base_url: str = "https://api.sunoapi.org"
    suno_model: str = "V3_5"
    suno_callback_url: str = "https://example.com/suno/callback"
    suno_http_timeout: float = 30.0
    default_title: str = "Generated Soundtrack"
    default_style: str = "Cinematic"
    default_instrumental: bool = True
    poll_interval_seconds: float = 5.0
    poll_max_attempts: int = 50
    poll_error_threshold: int = 5


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
