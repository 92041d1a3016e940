"""Configuration settings for the subreddit crawler."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Reddit API
    reddit_client_id: str = ""
    reddit_client_secret: str = ""
    reddit_user_agent: str = "SubredditCrawler/1.0 (Market Research Tool)"
    reddit_base_url: str = "https://www.reddit.com"
    reddit_oauth_url: str = "https://oauth.reddit.com"

    # Request pacing
    request_timeout_seconds: float = 10.0
    min_request_interval_seconds: float = 1.5
    circuit_breaker_threshold: int = 2
    circuit_breaker_cooldown_seconds: float = 60.0
    max_retries: int = 3

    # Scraping settings
    posts_per_batch: int = 25
    comments_per_post: int = 2
    inter_source_delay_seconds: float = 3.0
    max_concurrent_sources: int = 1

    # Discovery
    discovery_search_limit: int = 10
    discovery_max_results: int = 15
    discovery_min_subscribers: int = 100

    # Sessions and polling
    session_timeout_seconds: float = 300.0
    poll_interval_seconds: float = 1.0
    poll_timeout_seconds: float = 120.0
    session_retention_hours: int = 24

    # Storage
    storage_backend: str = "memory"
    sqlite_db_path: str = "./data/crawl.db"

    # Logging
    log_level: str = "INFO"


settings = Settings()
