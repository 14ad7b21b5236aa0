"""Application configuration using pydantic-settings.

Environment variables are prefixed with VULNWATCH_ (e.g. VULNWATCH_DATABASE_URL).
An empty database URL disables the cache entirely: every query is answered
straight from the upstream feeds.
"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Global application settings loaded from environment variables."""

    # Database (empty string = no cache, always fetch upstream)
    database_url: str = ""

    # Debug mode (enables SQL echo, verbose logging)
    debug: bool = True
    log_level: str = "INFO"

    # Upstream feeds
    nvd_api_key: str = ""
    nvd_api_url: str = "https://services.nvd.nist.gov/rest/json/cves/2.0"
    euvd_api_url: str = "https://euvdservices.enisa.europa.eu/api"
    user_agent: str = "vulnwatch/0.1.0"
    http_timeout_seconds: float = 15.0

    # Minimum seconds between requests, per source (published upstream limits)
    nvd_interval_seconds: float = 6.0
    nvd_interval_with_key_seconds: float = 0.6
    euvd_interval_seconds: float = 1.0

    # Freshness windows per query type
    date_range_fresh_minutes: int = 15
    search_fresh_minutes: int = 30
    id_lookup_fresh_minutes: int = 60
    serve_stale_on_error: bool = True

    # Store / paging
    upsert_chunk_size: int = 100
    page_size: int = 100
    default_days: int = 30
    search_default_days: int = 90
    max_search_limit: int = 100

    model_config = {"env_prefix": "VULNWATCH_"}

    @property
    def nvd_interval(self) -> float:
        """Effective NVD request interval, shorter when an API key is set."""
        if self.nvd_api_key:
            return self.nvd_interval_with_key_seconds
        return self.nvd_interval_seconds


settings = Settings()
