from pathlib import Path
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


RoleMode = Literal["enabled", "disabled", "mock"]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    log_level: str = "INFO"
    log_file: str = ""
    db_path: Path = Path("data/council_learning.sqlite3")
    timezone: str = "UTC"
    service_heartbeat_seconds: int = Field(default=15, ge=1, le=300)

    # Discussion / learning cycles
    discussion_interval_seconds: int = Field(default=300, ge=1, le=86_400)
    learning_interval_seconds: int = Field(default=900, ge=1, le=86_400)
    run_initial_discussion: bool = True
    max_chat_history: int = Field(default=100, ge=1, le=10_000)
    recent_history_window: int = Field(default=10, ge=0, le=100)
    context_item_limit: int = Field(default=3, ge=0, le=20)

    # Advisory roles
    mock_mode: bool = False
    sentiment_mode: RoleMode = "enabled"
    market_mode: RoleMode = "enabled"
    macro_mode: RoleMode = "enabled"
    sentiment_rate_limit_seconds: float = Field(default=60.0, ge=0, le=86_400)
    advisor_timeout_seconds: float = Field(default=45.0, ge=0.1, le=600)
    advisor_max_retries: int = Field(default=2, ge=1, le=10)
    advisor_max_tokens: int = Field(default=300, ge=32, le=4096)

    # Knowledge thresholds
    promotion_confidence_threshold: float = Field(default=0.7, ge=0, le=1)
    similarity_threshold: float = Field(default=0.8, ge=0, le=1)
    context_similarity_threshold: float = Field(default=0.6, ge=0, le=1)
    pattern_query_limit: int = Field(default=100, ge=1, le=5000)
    similar_pattern_limit: int = Field(default=50, ge=1, le=1000)
    active_rule_limit: int = Field(default=20, ge=1, le=500)
    lesson_query_limit: int = Field(default=10, ge=1, le=500)
    performance_history_limit: int = Field(default=10, ge=1, le=500)

    # Learning cycle
    learning_trade_window: int = Field(default=100, ge=1, le=10_000)
    analysis_starting_equity: float = Field(default=10_000, ge=1, le=1_000_000_000)
    learning_progress_step: float = Field(default=0.05, ge=0, le=1)

    # LLM providers
    ai_provider: Literal["auto", "ollama", "openai"] = "auto"
    ollama_base_url: str = "http://localhost:11434"
    ollama_model: str = ""
    ollama_timeout_seconds: int = Field(default=60, ge=1, le=600)
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    openai_model: str = "gpt-4o-mini"
    openai_timeout_seconds: int = Field(default=60, ge=1, le=600)

    # Market snapshot
    market_symbol: str = "BTC-PERP"
    market_feed_url: str = ""
    market_feed_timeout_seconds: int = Field(default=10, ge=1, le=120)
    default_btc_price: float = 95_000
    default_eth_price: float = 3_200
    default_rsi: float = 55
    default_volume: float = 1_000_000
    default_volatility: float = 25
    default_funding_rate: float = 0.01
    default_fear_greed: float = 50

    # Transcript relay
    alert_webhook_url: str = ""
    alert_webhook_timeout_seconds: int = Field(default=10, ge=2, le=60)

    @model_validator(mode="after")
    def validate_thresholds(self) -> "Settings":
        if self.context_similarity_threshold > self.similarity_threshold:
            raise ValueError(
                "CONTEXT_SIMILARITY_THRESHOLD must not exceed SIMILARITY_THRESHOLD."
            )
        return self

    def role_mode(self, role: str) -> RoleMode:
        return getattr(self, f"{role}_mode", "enabled")


settings = Settings()
