from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # App
    environment: str = "development"
    log_level: str = "INFO"

    # Anthropic (document transcription)
    anthropic_api_key: str = ""
    claude_model: str = "claude-sonnet-4-20250514"
    claude_max_tokens: int = 8192

    # Chunked structured extraction
    chunk_size_pages: int = 4
    max_concurrent_chunks: int = 3
    retry_max_attempts: int = 5
    retry_base_delay_seconds: float = 1.0
    retry_max_delay_seconds: float = 30.0
    retry_jitter_ratio: float = 0.5

    # Deterministic extraction
    tax_lookahead_tokens: int = 4

    # "auto", "deterministic" or "structured"
    default_strategy: str = "auto"

    # Compliance policy override (JSON file); empty uses the built-in policy
    compliance_policy_path: str = ""

    # File storage
    upload_dir: str = "/app/uploads"
    max_upload_size_mb: int = 50

    # Allowed file types for upload
    allowed_file_types: set[str] = {"pdf", "png", "jpg", "jpeg", "tiff", "tif", "txt"}

    # Sentry (optional)
    sentry_dsn: str = ""


settings = Settings()
