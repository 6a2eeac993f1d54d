from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(env_file=".env")

    app_name: str = "CardKeeper"
    debug: bool = False

    database_url: str = "postgresql+asyncpg://localhost:5432/cardkeeper"

    # Bulk re-sort tuning
    resort_batch_size: int = 200
    resort_max_attempts: int = 3
    resort_retry_delay_seconds: float = 0.5
    resort_batch_timeout_seconds: float = 30.0

    # Expression limits enforced at validation time
    max_expression_length: int = 1000
    max_expression_depth: int = 20


settings = Settings()


# =============================================================================
# RESORT BATCH LIMITS
# =============================================================================

# Configured batch sizes are clamped into this range
MIN_RESORT_BATCH_SIZE = 100
MAX_RESORT_BATCH_SIZE = 500
