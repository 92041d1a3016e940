"""Scrape the newest posts of one subreddit and keep the keyword matches."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Optional
from urllib.parse import urlparse

from loguru import logger
from pydantic import ValidationError

from config import settings
from .base import Comment, Post, ScrapeProgress
from .keywords import KeywordMatcher
from .reddit import RedditClient

ProgressCallback = Callable[[ScrapeProgress], None]

REDDIT_WEB_URL = "https://www.reddit.com"
REMOVED_BODIES = {"[deleted]", "[removed]"}


def _timestamp(value) -> datetime:
    return datetime.fromtimestamp(float(value), tz=timezone.utc)


def parse_post(child: dict, subreddit: str) -> Post:
    """Convert a listing child into a ``Post``.

    Raises:
        KeyError, TypeError, ValueError, AttributeError, OverflowError:
            If the payload is malformed.
    """
    data = child["data"]
    permalink = data["permalink"]
    return Post(
        id=data["id"],
        title=data["title"],
        content=data.get("selftext") or "",
        author=data.get("author") or "[deleted]",
        score=int(data.get("score") or 0),
        upvote_ratio=float(data.get("upvote_ratio") or 0.0),
        num_comments=int(data.get("num_comments") or 0),
        created_at=_timestamp(data["created_utc"]),
        subreddit=data.get("subreddit") or subreddit,
        url=data.get("url") or "",
        permalink=permalink if permalink.startswith("http") else REDDIT_WEB_URL + permalink,
        flair=data.get("link_flair_text"),
        is_nsfw=bool(data.get("over_18")),
        is_stickied=bool(data.get("stickied")),
    )


def parse_comment(child: dict) -> Optional[Comment]:
    """Convert a comment child, or return None for non-comments and removed ones."""
    if not isinstance(child, dict) or child.get("kind") != "t1":
        return None
    data = child.get("data") or {}
    body = data.get("body")
    if not body or body in REMOVED_BODIES:
        return None
    return Comment(
        id=data["id"],
        body=body,
        author=data.get("author") or "[deleted]",
        score=int(data.get("score") or 0),
        depth=0,
        created_at=_timestamp(data.get("created_utc") or 0),
        parent_id=data.get("parent_id"),
    )


class SubredditScraper:
    """Fetch one batch of new posts per subreddit and filter by keyword."""

    def __init__(
        self,
        client: RedditClient,
        matcher: Optional[KeywordMatcher] = None,
        posts_per_batch: Optional[int] = None,
        comments_per_post: Optional[int] = None,
    ):
        self.client = client
        self.matcher = matcher or KeywordMatcher()
        self.posts_per_batch = posts_per_batch or settings.posts_per_batch
        self.comments_per_post = comments_per_post or settings.comments_per_post

    async def scrape(
        self,
        subreddit: str,
        keywords: list[str],
        on_progress: Optional[ProgressCallback] = None,
    ) -> list[Post]:
        """Scrape one subreddit.

        Progress is reported as snapshots: ``in-progress`` before the request,
        again after every post, then ``completed`` or ``error``. A failed
        request yields ``error`` and an empty list; it is not raised.

        Args:
            subreddit: Subreddit name without the ``r/`` prefix.
            keywords: Keywords to match; empty means everything.
            on_progress: Receives a copy of the progress record on each change.

        Returns:
            Matching posts in API order.
        """
        progress = ScrapeProgress(subreddit=subreddit)

        def emit() -> None:
            if on_progress is not None:
                on_progress(progress.snapshot())

        progress.mark_in_progress()
        emit()

        try:
            children = await self.client.fetch_new_posts(subreddit, limit=self.posts_per_batch)
        except Exception as e:
            message = str(e) or type(e).__name__
            logger.error(f"Error scraping r/{subreddit}: {message}")
            progress.mark_error(message)
            emit()
            return []

        if not children:
            logger.info(f"r/{subreddit} returned no posts")
            progress.mark_completed(total_posts=0, processed_posts=0)
            emit()
            return []

        progress.update_counts(total_posts=len(children))
        matched: list[Post] = []

        for index, child in enumerate(children, start=1):
            try:
                post = parse_post(child, subreddit)
            except (
                KeyError, TypeError, ValueError, AttributeError, OverflowError, OSError, ValidationError
            ) as e:
                logger.warning(f"Skipping malformed post #{index} in r/{subreddit}: {e!r}")
                post = None

            if post is not None:
                hits = self.matcher.match(post.full_text, keywords)
                if hits:
                    matched.append(post.model_copy(update={"matched_keywords": tuple(hits)}))

            progress.update_counts(processed_posts=index)
            emit()

        progress.mark_completed(total_posts=len(children), processed_posts=len(children))
        emit()
        logger.info(f"r/{subreddit}: {len(matched)}/{len(children)} posts matched")
        return matched

    async def attach_comments(self, post: Post) -> Post:
        """Return a copy of ``post`` with its top comments attached.

        Any failure returns the post unchanged.
        """
        try:
            path = urlparse(post.permalink).path
            children = await self.client.fetch_comments(path, limit=self.comments_per_post)
            comments = []
            for child in children:
                comment = parse_comment(child)
                if comment is not None:
                    comments.append(comment)
                if len(comments) >= self.comments_per_post:
                    break
        except Exception as e:
            logger.debug(f"Could not fetch comments for {post.id}: {e!r}")
            return post

        return post.model_copy(update={"comments": tuple(comments)})
