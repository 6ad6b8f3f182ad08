"""Service configuration loaded from the environment."""

from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from deep_research.retry import RetryPolicy


class ServiceConfig(BaseSettings):
    """Operational knobs for the orchestrator.

    Per-run choices (tone, word count, batch size, ...) live in
    ``ResearchSettings``; this object holds the deployment-wide values.
    Every field can be overridden with a ``RESEARCH_``-prefixed variable.
    """

    # Generation service
    gemini_api_keys: str = ""  # comma-separated credential pool
    temperature: float = Field(default=0.3, ge=0.0, le=2.0)
    request_timeout_seconds: float = Field(default=120.0, gt=0)

    # Backoff for transient generation failures (429, 5xx, timeouts)
    query_max_attempts: int = Field(default=2, ge=1)
    retry_backoff_seconds: float = Field(default=2.0, ge=0)
    retry_backoff_multiplier: float = Field(default=2.0, ge=1.0)
    retry_max_backoff_seconds: float = Field(default=30.0, ge=0)

    # Pacing between batches and report parts
    batch_pause_seconds: float = Field(default=3.0, ge=0)
    part_pause_seconds: float = Field(default=2.0, ge=0)

    # Report synthesis
    words_per_part: int = Field(default=10_000, gt=0)
    max_part_attempts: int = Field(default=3, ge=1)
    part_timeout_seconds: float = Field(default=900.0, gt=0)
    decomposition_max_output_tokens: int = Field(default=8192, gt=0)
    part_max_output_tokens: int = Field(default=32_768, gt=0)
    corpus_char_budget: int = Field(default=600_000, gt=0)

    # SSE streaming
    stream_max_duration_seconds: float = Field(default=3600.0, gt=0)
    stream_heartbeat_seconds: float = Field(default=30.0, gt=0)

    model_config = SettingsConfigDict(
        env_prefix="RESEARCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @model_validator(mode="after")
    def _backoff_cap_covers_base(self) -> "ServiceConfig":
        if self.retry_max_backoff_seconds < self.retry_backoff_seconds:
            raise ValueError("retry_max_backoff_seconds must be >= retry_backoff_seconds")
        return self

    @property
    def api_key_pool(self) -> list[str]:
        return [key.strip() for key in self.gemini_api_keys.split(",") if key.strip()]

    def retry_policy(self) -> RetryPolicy:
        """Backoff policy for a single generation request."""
        return RetryPolicy(
            max_attempts=self.query_max_attempts,
            backoff_seconds=self.retry_backoff_seconds,
            backoff_multiplier=self.retry_backoff_multiplier,
            max_backoff_seconds=self.retry_max_backoff_seconds,
        )

    def part_retry_policy(self) -> RetryPolicy:
        """Completion-marker retries for one report part."""
        return RetryPolicy(
            max_attempts=self.max_part_attempts,
            backoff_seconds=self.retry_backoff_seconds,
            backoff_multiplier=self.retry_backoff_multiplier,
            max_backoff_seconds=self.retry_max_backoff_seconds,
        )


@lru_cache(maxsize=1)
def get_config() -> ServiceConfig:
    """Cached getter for production."""
    return ServiceConfig()
