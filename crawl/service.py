"""Session-level API: discover, start a crawl, read progress and results."""

from __future__ import annotations

import asyncio
import re
from datetime import timedelta
from typing import Optional, Union

from loguru import logger

from config import settings
from scrapers.base import Community, CrawlSession, Post, ScrapeProgress
from scrapers.discovery import CommunityDiscoverer
from scrapers.keywords import normalize_keywords
from scrapers.rate_limiter import RateLimiter
from scrapers.reddit import RedditClient
from scrapers.subreddit import SubredditScraper
from storage import ProgressStore, SessionNotFoundError, get_storage
from .orchestrator import CrawlOrchestrator
from .poller import ProgressPoller

MAX_COMMUNITIES = 20
MAX_KEYWORDS = 10
MAX_KEYWORD_LENGTH = 100
MAX_SESSION_ID_LENGTH = 100
SUBREDDIT_NAME = re.compile(r"^[A-Za-z0-9_]{1,21}$")


class CrawlValidationError(ValueError):
    """Raised for invalid input, before any request is made."""


class SessionConflictError(RuntimeError):
    """Raised when a session is busy with a crawl."""


def validate_keywords(keywords: Optional[list[str]], required: bool = False) -> list[str]:
    cleaned = normalize_keywords(keywords)
    if required and not cleaned:
        raise CrawlValidationError("At least one keyword is required")
    if len(cleaned) > MAX_KEYWORDS:
        raise CrawlValidationError(f"At most {MAX_KEYWORDS} keywords are allowed")
    for kw in cleaned:
        if len(kw) > MAX_KEYWORD_LENGTH:
            raise CrawlValidationError(
                f"Keyword too long ({len(kw)} > {MAX_KEYWORD_LENGTH} characters): {kw[:20]}..."
            )
    return cleaned


def validate_communities(communities: list[Union[str, Community]]) -> list[str]:
    names: list[str] = []
    for entry in communities or []:
        name = entry.name if isinstance(entry, Community) else str(entry).strip()
        if name.lower().startswith("r/"):
            name = name[2:]
        if not SUBREDDIT_NAME.match(name):
            raise CrawlValidationError(f"Invalid subreddit name: {name!r}")
        if name not in names:
            names.append(name)

    if not names:
        raise CrawlValidationError("At least one community is required")
    if len(names) > MAX_COMMUNITIES:
        raise CrawlValidationError(f"At most {MAX_COMMUNITIES} communities per crawl")
    return names


def validate_session_id(session_id: str) -> str:
    session_id = (session_id or "").strip()
    if not session_id or len(session_id) > MAX_SESSION_ID_LENGTH:
        raise CrawlValidationError(
            f"Session id must be 1-{MAX_SESSION_ID_LENGTH} characters"
        )
    return session_id


class CrawlService:
    """Entry point for running crawls in the background.

    One ``RedditClient`` (and so one rate limiter) is shared by every
    session. The crawl writes to the progress store; callers only read it.
    """

    def __init__(
        self,
        client: Optional[RedditClient] = None,
        store: Optional[ProgressStore] = None,
        rate_limiter: Optional[RateLimiter] = None,
        session_timeout: Optional[float] = None,
        inter_source_delay: Optional[float] = None,
        max_concurrent_sources: Optional[int] = None,
        session_retention: Optional[timedelta] = None,
    ):
        self._owns_client = client is None
        self.client = client or RedditClient(rate_limiter=rate_limiter)
        self.store = store or get_storage(settings.storage_backend)
        self.session_timeout = (
            settings.session_timeout_seconds if session_timeout is None else session_timeout
        )
        self.session_retention = session_retention or timedelta(hours=settings.session_retention_hours)

        self.scraper = SubredditScraper(self.client)
        self.discoverer = CommunityDiscoverer(self.client)
        self.orchestrator = CrawlOrchestrator(
            self.scraper,
            inter_source_delay=inter_source_delay,
            max_concurrent_sources=max_concurrent_sources,
        )

        self._tasks: dict[str, asyncio.Task] = {}
        self._cancel_events: dict[str, asyncio.Event] = {}

    async def __aenter__(self) -> "CrawlService":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # -------------------------------------------------------------------------
    # Discovery
    # -------------------------------------------------------------------------

    async def discover(self, keywords: list[str]) -> list[Community]:
        """Find communities for ``keywords``; see ``CommunityDiscoverer.discover``."""
        cleaned = validate_keywords(keywords, required=True)
        return await self.discoverer.discover(cleaned)

    # -------------------------------------------------------------------------
    # Crawling
    # -------------------------------------------------------------------------

    def is_running(self, session_id: str) -> bool:
        task = self._tasks.get(session_id)
        return task is not None and not task.done()

    async def start_crawl(
        self,
        session_id: str,
        communities: list[Union[str, Community]],
        keywords: Optional[list[str]] = None,
    ) -> CrawlSession:
        """Schedule a crawl and return without waiting for it.

        Every community starts as ``pending``. Progress and posts are then
        only available through ``get_progress`` and ``get_items``.

        Args:
            session_id: Caller-chosen session identifier.
            communities: Subreddit names or discovered communities.
            keywords: Keywords to match; empty matches every post.

        Returns:
            The initial session state.

        Raises:
            CrawlValidationError: If any input is invalid.
            SessionConflictError: If this session is already crawling.
        """
        session_id = validate_session_id(session_id)
        names = validate_communities(communities)
        cleaned_keywords = validate_keywords(keywords)

        if self.is_running(session_id):
            raise SessionConflictError(f"Session {session_id} is already crawling")

        session = CrawlSession(
            session_id=session_id,
            communities=names,
            keywords=cleaned_keywords,
            progress={name: ScrapeProgress(subreddit=name) for name in names},
        )
        self.store.init_session(session)

        cancel_event = asyncio.Event()
        self._cancel_events[session_id] = cancel_event
        task = asyncio.create_task(
            self._run_session(session_id, names, cleaned_keywords, cancel_event),
            name=f"crawl-{session_id}",
        )
        self._tasks[session_id] = task
        task.add_done_callback(lambda t, sid=session_id: self._forget(sid, t))

        logger.info(
            f"Started crawl {session_id}: {len(names)} communities, keywords={cleaned_keywords or ['*']}"
        )
        return session

    def _forget(self, session_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(session_id) is task:
            del self._tasks[session_id]
            self._cancel_events.pop(session_id, None)

    async def _run_session(
        self,
        session_id: str,
        communities: list[str],
        keywords: list[str],
        cancel_event: asyncio.Event,
    ) -> None:
        def on_progress(progress: ScrapeProgress) -> None:
            self.store.upsert_progress(session_id, progress)

        def on_source_complete(name: str, posts: list[Post]) -> None:
            if posts:
                self.store.append_items(session_id, posts)

        try:
            await asyncio.wait_for(
                self.orchestrator.run(
                    communities,
                    keywords,
                    on_progress,
                    on_source_complete=on_source_complete,
                    cancel_event=cancel_event,
                ),
                timeout=self.session_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Crawl {session_id} exceeded {self.session_timeout:.0f}s")
            self._fail_unfinished(session_id, f"Session timed out after {self.session_timeout:.0f}s")
        except asyncio.CancelledError:
            self._fail_unfinished(session_id, "Crawl task was cancelled")
            raise
        except Exception as e:
            logger.exception(f"Crawl {session_id} failed")
            self._fail_unfinished(session_id, f"Crawl failed: {e}")
        else:
            logger.info(f"Crawl {session_id} finished")

    def _fail_unfinished(self, session_id: str, message: str) -> None:
        """Mark every non-terminal record of a session as an error."""
        try:
            for progress in self.store.get_progress(session_id):
                if progress.status.is_terminal:
                    continue
                progress.mark_error(message)
                self.store.upsert_progress(session_id, progress)
        except SessionNotFoundError:
            logger.warning(f"Session {session_id} vanished before it could be closed out")

    def cancel_crawl(self, session_id: str) -> bool:
        """Stop the crawl before its next community.

        Returns:
            True if a running crawl was signalled.
        """
        event = self._cancel_events.get(session_id)
        if event is None or not self.is_running(session_id):
            return False
        event.set()
        logger.info(f"Cancellation requested for crawl {session_id}")
        return True

    async def wait_for_crawl(self, session_id: str) -> None:
        """Wait until the session's background crawl has finished."""
        task = self._tasks.get(session_id)
        if task is not None:
            await asyncio.shield(task)

    # -------------------------------------------------------------------------
    # Reading
    # -------------------------------------------------------------------------

    def get_progress(self, session_id: str) -> list[ScrapeProgress]:
        return self.store.get_progress(session_id)

    def get_items(self, session_id: str) -> list[Post]:
        return self.store.get_items(session_id)

    def poller(self, session_id: str, **kwargs) -> ProgressPoller:
        """Build a poller for a stored session."""
        session = self.store.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return ProgressPoller(self.store, session_id, session.communities, **kwargs)

    # -------------------------------------------------------------------------
    # Comments
    # -------------------------------------------------------------------------

    async def attach_comments(self, post: Post) -> Post:
        return await self.scraper.attach_comments(post)

    async def enrich_comments(self, session_id: str) -> list[Post]:
        """Attach top comments to every collected post of a finished session.

        Raises:
            SessionConflictError: If the crawl is still running.
        """
        if self.is_running(session_id):
            raise SessionConflictError(
                f"Session {session_id} is still crawling, enrich comments afterwards"
            )

        posts = self.store.get_items(session_id)
        enriched = [await self.scraper.attach_comments(post) for post in posts]
        self.store.replace_items(session_id, enriched)
        with_comments = sum(1 for p in enriched if p.comments)
        logger.info(f"Attached comments to {with_comments}/{len(enriched)} posts in {session_id}")
        return enriched

    # -------------------------------------------------------------------------
    # Housekeeping
    # -------------------------------------------------------------------------

    def cleanup_expired_sessions(self) -> int:
        removed = self.store.cleanup_expired(self.session_retention)
        if removed:
            logger.info(f"Removed {removed} expired session(s)")
        return removed

    async def close(self) -> None:
        tasks = [t for t in self._tasks.values() if not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        if self._owns_client:
            await self.client.close()
