"""Reddit discovery and scraping."""

from .base import (
    Comment,
    Community,
    CrawlSession,
    InvalidTransitionError,
    Post,
    QualityTier,
    ScrapeProgress,
    ScrapeStatus,
)
from .discovery import CommunityDiscoverer, DiscoveryError, fallback_communities
from .keywords import KeywordMatcher
from .rate_limiter import CircuitOpenError, RateLimiter
from .reddit import RedditAPIError, RedditClient
from .subreddit import SubredditScraper

__all__ = [
    "Comment",
    "Community",
    "CrawlSession",
    "InvalidTransitionError",
    "Post",
    "QualityTier",
    "ScrapeProgress",
    "ScrapeStatus",
    "CommunityDiscoverer",
    "DiscoveryError",
    "fallback_communities",
    "KeywordMatcher",
    "CircuitOpenError",
    "RateLimiter",
    "RedditAPIError",
    "RedditClient",
    "SubredditScraper",
]
