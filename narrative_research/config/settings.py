"""Application settings using Pydantic BaseSettings for environment variable management."""

from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    """
    Global application settings loaded from environment variables.

    Attributes:
        perplexity_api_key: Perplexity API key used for research jobs
        google_ai_api_key: Google AI API key used for claim verification
        research_model_deep: Model for deep (asynchronous) research
        research_model_quick: Model for quick (inline) research
        verification_model: Model used to verify individual claims
        formulation_model: Model used to turn a topic into a research query
        poll_interval_seconds: Interval between job status polls
        stagger_seconds: Per-claim start offset for verification dispatch
        verification_max_retries: Additional attempts after a failed verification
        verification_base_delay_seconds: Base delay of the exponential backoff
        verification_timeout_seconds: Deadline for a single verification attempt
        research_timeout_seconds: Deadline for a single research call
        verification_cache_ttl_days: Lifetime of cached verification verdicts
        job_store_path: Optional JSON file backing the job store
        history_store_path: Optional JSON file backing the research history
        verification_cache_path: Optional JSON file backing the verification cache
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Log output format (json for production, console for dev)
    """

    perplexity_api_key: str = Field(
        default="",
        description="Perplexity API key for research jobs"
    )
    perplexity_base_url: str = Field(
        default="https://api.perplexity.ai",
        description="Perplexity API base URL"
    )
    google_ai_api_key: str = Field(
        default="",
        description="Google AI API key for claim verification"
    )
    research_model_deep: str = Field(
        default="sonar-deep-research",
        description="Model used for deep research jobs"
    )
    research_model_quick: str = Field(
        default="sonar-pro",
        description="Model used for quick research"
    )
    verification_model: str = Field(
        default="gemini-2.0-flash",
        description="Model used for claim verification"
    )
    formulation_model: str = Field(
        default="gemini-2.0-flash",
        description="Model used to formulate research queries"
    )
    poll_interval_seconds: float = Field(
        default=3.0,
        gt=0,
        description="Seconds between job status polls"
    )
    stagger_seconds: float = Field(
        default=1.5,
        ge=0,
        description="Start offset between consecutive claim verifications"
    )
    verification_max_retries: int = Field(
        default=2,
        ge=0,
        description="Retries after the first failed verification attempt"
    )
    verification_base_delay_seconds: float = Field(
        default=1.0,
        ge=0,
        description="Base delay for verification backoff (1s, 2s, 4s, ...)"
    )
    verification_timeout_seconds: float | None = Field(
        default=60.0,
        description="Deadline per verification attempt (None disables)"
    )
    research_timeout_seconds: float | None = Field(
        default=600.0,
        description="Deadline per research call (None disables)"
    )
    verification_cache_ttl_days: int = Field(
        default=7,
        ge=0,
        description="Days a cached verification verdict stays valid"
    )
    job_store_path: str | None = Field(
        default=None,
        description="JSON file for job persistence (memory-only if unset)"
    )
    history_store_path: str | None = Field(
        default=None,
        description="JSON file for research history persistence"
    )
    verification_cache_path: str | None = Field(
        default=None,
        description="JSON file for verification cache persistence"
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level"
    )
    log_format: str = Field(
        default="json",
        description="Log output format: json or console"
    )

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
    }


# Singleton instance - import this throughout the application
settings = Settings()
