from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Configuration settings for mikanlib."""

    # Database
    db_path: str = Field(
        default="mikanlib.db", description="Path to SQLite database file"
    )

    # RSS
    rss_urls: list[str] = Field(
        default_factory=list,
        description="Mikan RSS feed URLs to ingest (JSON list in the environment)",
    )
    update_interval_seconds: int = Field(
        default=900, description="Interval between library updates in seconds"
    )
    expand_history: bool = Field(
        default=True,
        description="Also ingest each subject/subgroup feed found in the main feeds",
    )

    # Catalogs
    mikan_base_url: str = Field(
        default="https://mikanani.me", description="Mikan Project base URL"
    )
    bangumi_api_url: str = Field(
        default="https://api.bgm.tv", description="Bangumi API base URL"
    )
    bangumi_access_token: str = Field(
        default="", description="Bangumi access token for watch status reads"
    )
    tmdb_api_url: str = Field(
        default="https://api.themoviedb.org/3", description="TMDB API base URL"
    )
    tmdb_access_token: str = Field(
        default="", description="TMDB API read access token (Bearer)"
    )
    tmdb_include_adult: bool = Field(
        default=False, description="Include adult results in TMDB searches"
    )
    tmdb_languages: list[str] = Field(
        default_factory=lambda: ["ja", "zh-CN", "en-US"],
        description="Languages fetched for TMDB series details",
    )
    tmdb_primary_language: str = Field(
        default="zh-CN", description="Locale used for display names"
    )
    user_agent: str = Field(
        default="mikanlib/1.0 (https://github.com/mikanlib/mikanlib)",
        description="User-Agent sent to Mikan, Bangumi and TMDB",
    )

    # Retry
    retry_attempts: int = Field(
        default=10, description="Attempts per request before giving up"
    )
    retry_delay_seconds: float = Field(
        default=5.0, description="Fixed delay between request attempts"
    )

    # Watch status
    watch_status_enabled: bool = Field(
        default=False, description="Fetch Bangumi watch status after updates"
    )
    watch_status_jitter_seconds: float = Field(
        default=1.0, description="Upper bound of the random delay per subject request"
    )
    watch_status_workers: int = Field(
        default=8, description="Concurrent watch status requests"
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    class Config:
        env_prefix = "MIKANLIB_"
        case_sensitive = False


settings = Settings()
