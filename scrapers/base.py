"""Common data models for discovery and crawling."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    """Timezone-aware current time."""
    return datetime.now(timezone.utc)


class InvalidTransitionError(ValueError):
    """Raised when a progress record would move backwards."""


class QualityTier(str, Enum):
    """Community quality bucket derived from subscriber count."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @classmethod
    def from_subscribers(cls, subscribers: int) -> "QualityTier":
        if subscribers >= 10_000:
            return cls.HIGH
        if subscribers >= 1_000:
            return cls.MEDIUM
        return cls.LOW


class Community(BaseModel):
    """A subreddit returned by discovery."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Reddit fullname-less subreddit id")
    name: str = Field(description="Canonical subreddit name, without the r/ prefix")
    display_name: str = Field(description="Prefixed name, e.g. r/startups")
    description: str = ""
    subscribers: int = Field(default=0, ge=0)
    active_users: int = Field(default=0, ge=0)
    posts_per_day: int = Field(default=1, ge=0, description="Estimated posting cadence")
    comments_per_day: int = Field(default=1, ge=0, description="Estimated commenting cadence")
    relevance_score: float = Field(default=0.0, ge=0.0, le=1.0)
    quality: QualityTier = QualityTier.LOW
    tags: tuple[str, ...] = ()
    last_updated: datetime = Field(default_factory=utcnow)


class Comment(BaseModel):
    """A top-level comment attached to a post."""

    model_config = ConfigDict(frozen=True)

    id: str
    body: str
    author: str = "[deleted]"
    score: int = 0
    depth: int = 0
    created_at: datetime
    parent_id: str | None = None


class Post(BaseModel):
    """A single post scraped from a subreddit."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Unique identifier from Reddit")
    title: str
    content: str = Field(default="", description="Self text of the post")
    author: str = "[deleted]"
    score: int = 0
    upvote_ratio: float = 0.0
    num_comments: int = 0
    created_at: datetime
    subreddit: str
    url: str = ""
    permalink: str = Field(description="Absolute link to the post")
    flair: str | None = None
    is_nsfw: bool = False
    is_stickied: bool = False
    matched_keywords: tuple[str, ...] = ()
    comments: tuple[Comment, ...] = ()

    @property
    def full_text(self) -> str:
        """Combine title and body for keyword matching."""
        if self.content:
            return f"{self.title} {self.content}"
        return self.title


class ScrapeStatus(str, Enum):
    """Lifecycle of one subreddit within a crawl."""

    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (ScrapeStatus.COMPLETED, ScrapeStatus.ERROR)

    @property
    def rank(self) -> int:
        if self is ScrapeStatus.PENDING:
            return 0
        if self is ScrapeStatus.IN_PROGRESS:
            return 1
        return 2

    def can_advance_to(self, other: "ScrapeStatus") -> bool:
        """Whether a record in this state may be replaced by one in ``other``."""
        if self.is_terminal:
            return False
        return other.rank >= self.rank


class ScrapeProgress(BaseModel):
    """Per-subreddit run state.

    Status only moves forward (pending -> in-progress -> completed|error)
    and ``processed_posts`` never decreases. The ``mark_*`` helpers enforce
    both and raise ``InvalidTransitionError`` otherwise.
    """

    subreddit: str
    total_posts: int = 0
    processed_posts: int = 0
    status: ScrapeStatus = ScrapeStatus.PENDING
    errors: list[str] = Field(default_factory=list)
    start_time: datetime = Field(default_factory=utcnow)
    end_time: datetime | None = None

    def _advance(self, status: ScrapeStatus) -> None:
        if not self.status.can_advance_to(status):
            raise InvalidTransitionError(
                f"r/{self.subreddit}: cannot move from {self.status.value} to {status.value}"
            )
        self.status = status

    def mark_in_progress(self, total_posts: int | None = None, processed_posts: int | None = None) -> None:
        self._advance(ScrapeStatus.IN_PROGRESS)
        self.update_counts(total_posts, processed_posts)

    def update_counts(self, total_posts: int | None = None, processed_posts: int | None = None) -> None:
        if processed_posts is not None:
            if processed_posts < self.processed_posts:
                raise InvalidTransitionError(
                    f"r/{self.subreddit}: processed_posts cannot decrease "
                    f"({self.processed_posts} -> {processed_posts})"
                )
            self.processed_posts = processed_posts
        if total_posts is not None:
            self.total_posts = total_posts

    def mark_completed(self, total_posts: int | None = None, processed_posts: int | None = None) -> None:
        self._advance(ScrapeStatus.COMPLETED)
        self.update_counts(total_posts, processed_posts)
        self.end_time = utcnow()

    def mark_error(self, message: str) -> None:
        self._advance(ScrapeStatus.ERROR)
        self.errors.append(message)
        self.end_time = utcnow()

    def can_be_replaced_by(self, other: "ScrapeProgress") -> bool:
        """Whether ``other`` is a valid successor of this record."""
        return (
            self.status.can_advance_to(other.status)
            and other.processed_posts >= self.processed_posts
        )

    def snapshot(self) -> "ScrapeProgress":
        return self.model_copy(deep=True)


class CrawlSession(BaseModel):
    """One crawl request and everything it has produced so far."""

    session_id: str
    communities: list[str]
    keywords: list[str] = Field(default_factory=list)
    progress: dict[str, ScrapeProgress] = Field(default_factory=dict)
    items: list[Post] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def is_finished(self) -> bool:
        return all(
            name in self.progress and self.progress[name].status.is_terminal
            for name in self.communities
        )
