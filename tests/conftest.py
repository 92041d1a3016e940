"""Shared test fixtures and configuration."""

import pytest
import httpx
from datetime import datetime, timezone
from types import SimpleNamespace

from scrapers.base import Community, Post, QualityTier
from scrapers.rate_limiter import RateLimiter
from scrapers.reddit import RedditClient
from storage import InMemoryProgressStore, SQLiteProgressStore


def post_child(post_id, title, selftext="", subreddit="foo", **extra):
    """Build a listing child the way Reddit returns it from /new.json."""
    data = {
        "id": post_id,
        "title": title,
        "selftext": selftext,
        "author": "test_user",
        "score": 10,
        "upvote_ratio": 0.9,
        "num_comments": 3,
        "created_utc": 1705312200.0,
        "over_18": False,
        "url": f"https://www.reddit.com/r/{subreddit}/comments/{post_id}/post/",
        "permalink": f"/r/{subreddit}/comments/{post_id}/post/",
        "link_flair_text": None,
        "stickied": False,
        "subreddit": subreddit,
    }
    data.update(extra)
    return {"kind": "t3", "data": data}


def listing(children):
    return {"kind": "Listing", "data": {"children": children, "after": None}}


def subreddit_result(name, subscribers, over18=False, **extra):
    """Build a /subreddits/search.json result."""
    data = {
        "id": f"id_{name.lower()}",
        "display_name": name,
        "display_name_prefixed": f"r/{name}",
        "public_description": f"About {name}",
        "subscribers": subscribers,
        "active_user_count": subscribers // 50,
        "over18": over18,
    }
    data.update(extra)
    return {"kind": "t5", "data": data}


def make_client(handler, rate_limiter=None):
    """RedditClient answering every request with ``handler``."""
    return RedditClient(
        rate_limiter=rate_limiter or RateLimiter(min_interval=0, failure_threshold=2, cooldown=60),
        client_id="",
        client_secret="",
        transport=httpx.MockTransport(handler),
    )


@pytest.fixture
def payloads():
    """Builders for Reddit JSON payloads."""
    return SimpleNamespace(post=post_child, listing=listing, subreddit=subreddit_result)


@pytest.fixture
def client_factory():
    """Build a RedditClient backed by an httpx.MockTransport handler."""
    return make_client


@pytest.fixture
def fast_limiter():
    """RateLimiter without spacing, default breaker."""
    return RateLimiter(min_interval=0, failure_threshold=2, cooldown=60)


@pytest.fixture
def memory_store():
    return InMemoryProgressStore()


@pytest.fixture
def sqlite_store(tmp_path):
    return SQLiteProgressStore(db_path=str(tmp_path / "crawl.db"))


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    """Run a test against both store backends."""
    if request.param == "memory":
        return InMemoryProgressStore()
    return SQLiteProgressStore(db_path=str(tmp_path / "crawl.db"))


@pytest.fixture
def sample_post():
    """Create a sample Post for testing."""
    return Post(
        id="abc123",
        title="Pricing page feedback wanted",
        content="We are testing three pricing tiers for our startup.",
        author="founder",
        score=42,
        upvote_ratio=0.95,
        num_comments=7,
        created_at=datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc),
        subreddit="startups",
        url="https://www.reddit.com/r/startups/comments/abc123/pricing/",
        permalink="https://www.reddit.com/r/startups/comments/abc123/pricing/",
    )


@pytest.fixture
def sample_community():
    return Community(
        id="2qh26",
        name="startups",
        display_name="r/startups",
        description="Startup community discussions",
        subscribers=500_000,
        active_users=5_000,
        posts_per_day=500,
        comments_per_day=1000,
        relevance_score=0.8,
        quality=QualityTier.HIGH,
        tags=("startup",),
    )
