"""
Application configuration using Pydantic Settings.
All environment-specific values are centralized here.
"""

from functools import lru_cache
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # ── App ──────────────────────────────────────────────
    app_name: str = "Requirements Hub"
    debug: bool = True
    mock_mode: bool = True  # When True, the in-memory repository is used

    # ── LLM ──────────────────────────────────────────────
    groq_api_key: str = ""
    llm_model: str = "llama-3.3-70b-versatile"
    llm_temperature: float = 0.1
    llm_max_tokens: int = 8192

    # ── MongoDB ──────────────────────────────────────────
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_database: str = "requirements_hub"

    # ── Grouping ─────────────────────────────────────────
    grouping_similarity_threshold: float = 0.8
    grouping_min_group_size: int = 2
    grouping_timeout_seconds: float = 150.0
    grouping_max_attempts: int = 3
    grouping_backoff_base_seconds: float = 1.0
    grouping_batch_size: int = 0  # 0 = send a whole category in one call
    grouping_concurrency: int = 1

    # ── Categories ───────────────────────────────────────
    uncategorized_label: str = "Uncategorized"
    category_match_confidence: int = 70
    category_timeout_seconds: float = 60.0

    # ── Assistant ────────────────────────────────────────
    assistant_timeout_seconds: float = 30.0

    # ── Comparison ───────────────────────────────────────
    comparison_min_similarity: int = 80
    comparison_min_token_overlap: float = 0.30

    # ── Import ───────────────────────────────────────────
    skip_first_sheet: bool = True
    auto_group_after_import: bool = True

    # ── Logging ──────────────────────────────────────────
    log_level: str = "INFO"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
    }


@lru_cache()
def get_settings() -> Settings:
    """Return cached application settings (singleton)."""
    return Settings()
