"""HealthChat configuration — settings, model tiers, context windows."""

from typing import Literal

from pydantic_settings import BaseSettings

ModelTier = Literal["sonnet", "haiku"]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API Keys
    anthropic_api_key: str = ""
    healthchat_api_key: str = ""  # Empty = auth disabled (dev mode)

    # Database
    database_url: str = "sqlite:///data/healthchat.db"

    # CORS (comma-separated origins)
    cors_origins: str = "http://localhost:3000"

    # LLM defaults
    default_max_tokens: int = 1024
    default_max_retries: int = 2
    default_temperature: float = 0.0
    model_sonnet: str = "claude-sonnet-4-6"
    model_haiku: str = "claude-haiku-4-5-20251001"
    detection_model_tier: ModelTier = "haiku"  # symptom detection + assessment extraction
    response_model_tier: ModelTier = "sonnet"  # user-facing replies
    llm_timeout_seconds: float = 30.0
    tool_max_iterations: int = 5  # model calls per symptom follow-up reply
    tool_loop_timeout_seconds: float = 60.0

    # Conversation context hydration
    active_episode_window_days: int = 14
    negative_finding_window_days: int = 7
    history_message_limit: int = 10  # prior messages fed to reply generation

    # Streaming
    stream_queue_size: int = 100

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()


def get_model_map() -> dict[str, str]:
    """Resolve model map from settings (env-overridable)."""
    return {
        "sonnet": settings.model_sonnet,
        "haiku": settings.model_haiku,
    }


MODEL_MAP: dict[str, str] = get_model_map()
