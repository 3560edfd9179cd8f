"""
Verifier configuration.
Uses SV_VERIFIER_ prefix; adds fetch limits, rendering and match thresholds to the shared settings.
"""
from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class VerifierSettings(BaseSettings):
    """Verifier-specific settings; use get_settings() for DB/Redis/job limits."""

    model_config = SettingsConfigDict(
        env_prefix="SV_VERIFIER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Fetching
    fetch_timeout_s: float = Field(default=10.0, description="HTTP timeout per request")
    fetch_max_attempts: int = Field(default=2, ge=1, description="Attempts per fetch (5xx/timeout retried)")
    retry_base_delay_s: float = Field(default=0.5, description="Linear backoff step between attempts")
    user_agent: str = BROWSER_USER_AGENT

    # Rate limiting
    per_domain_rpm: int = Field(default=120, description="Max requests per minute per domain (token bucket)")
    per_domain_burst: int = Field(default=10, description="Burst size per domain")
    backoff_on_429_s: float = Field(default=30.0, description="Domain backoff after an HTTP 429")
    slot_wait_s: float = Field(default=5.0, description="Longest wait for a rate-limit slot")

    # Rendered scraping of certificate pages
    firecrawl_api_key: str = Field(default="", description="Enables JS-rendered scraping when set")
    firecrawl_url: str = "https://api.firecrawl.dev/v1/scrape"
    firecrawl_wait_ms: int = 3000

    # Match thresholds (inclusive)
    name_threshold: int = Field(default=80, description="Roster name vs certificate name")
    slug_threshold: int = Field(default=70, description="Any name vs post-URL name")
    content_threshold: int = Field(default=75, description="Certificate project inside post text")

    excerpt_max_chars: int = Field(default=200, description="Stored length of the post excerpt")


def get_verifier_settings() -> VerifierSettings:
    """Load verifier settings."""
    return VerifierSettings()
