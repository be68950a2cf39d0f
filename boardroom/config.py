"""Boardroom configuration — resolved once from the environment.

Precedence, highest first: explicit keyword arguments, process environment,
``.env`` file, field defaults.  API keys also accept the legacy variable
names listed in their ``AliasChoices``, earlier names winning.
"""

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings

_PLACEHOLDERS = {"undefined", "null", "none"}


class Settings(BaseSettings):
    model_config = {
        "env_prefix": "BOARDROOM_",
        "env_file": ".env",
        "extra": "ignore",
        "populate_by_name": True,
    }

    # Upstream API keys
    gemini_api_key: str = Field(
        "",
        validation_alias=AliasChoices(
            "BOARDROOM_GEMINI_API_KEY", "GEMINI_API_KEY", "API_KEY"
        ),
    )
    anthropic_api_key: str = Field(
        "",
        validation_alias=AliasChoices(
            "BOARDROOM_ANTHROPIC_API_KEY", "ANTHROPIC_API_KEY"
        ),
    )
    perplexity_api_key: str = Field(
        "",
        validation_alias=AliasChoices(
            "BOARDROOM_PERPLEXITY_API_KEY", "PERPLEXITY_API_KEY"
        ),
    )

    # Generation
    generation_chain: list[str] = ["gemini-2.5-flash", "gemini-2.0-flash"]
    requests_per_minute: int = 5
    replay_chunk_size: int = 50

    # Research
    research_batch_size: int = 10
    research_timeout: float = 60.0
    research_max_results: int = 10
    research_recency: str = "month"
    verification_timeout: float = 30.0

    # Quality control
    qc_batch_size: int = 20
    qc_max_attempts: int = 3
    qc_retry_base_delay: float = 2.0
    qc_accuracy_threshold: int = 90
    qc_correction_threshold: int = 85
    qc_fallback_accuracy_threshold: int = 50
    qc_term_overlap_threshold: float = 0.3

    # Cache
    cache_path: str = "boardroom.db"
    report_cache_ttl: int = 30 * 24 * 60 * 60

    # Telemetry
    telemetry_webhook_url: str = ""
    telemetry_timeout: float = 5.0

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: list[str] = ["http://localhost:5173"]

    @field_validator("gemini_api_key", "anthropic_api_key", "perplexity_api_key")
    @classmethod
    def _drop_placeholder(cls, value: str) -> str:
        value = value.strip()
        lowered = value.lower()
        if lowered in _PLACEHOLDERS or (lowered.startswith("your_") and lowered.endswith("_here")):
            return ""
        return value

    @field_validator("generation_chain")
    @classmethod
    def _require_chain(cls, value: list[str]) -> list[str]:
        chain = [model.strip() for model in value if model.strip()]
        if not chain:
            raise ValueError("generation_chain must name at least one model")
        return chain


settings = Settings()
