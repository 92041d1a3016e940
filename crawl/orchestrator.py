"""Run the subreddit scraper across a list of communities."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional

from loguru import logger

from config import settings
from scrapers.base import Post, ScrapeProgress, ScrapeStatus
from scrapers.subreddit import ProgressCallback, SubredditScraper

SourceCompleteCallback = Callable[[str, list[Post]], None]


class CrawlOrchestrator:
    """Crawl communities one at a time, isolating per-source failures.

    Sources run strictly in order unless ``max_concurrent_sources`` is raised
    above one. Even then every request still goes through the scraper's
    shared rate limiter and results keep source order.

    Args:
        scraper: Scraper used for every source.
        inter_source_delay: Pause between sources, in seconds.
        max_concurrent_sources: Sources allowed in flight at once.
        sleep: Coroutine used for the inter-source pause.
    """

    def __init__(
        self,
        scraper: SubredditScraper,
        inter_source_delay: Optional[float] = None,
        max_concurrent_sources: Optional[int] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.scraper = scraper
        self.inter_source_delay = (
            settings.inter_source_delay_seconds if inter_source_delay is None else inter_source_delay
        )
        self.max_concurrent_sources = max(
            1, max_concurrent_sources or settings.max_concurrent_sources
        )
        self._sleep = sleep

    async def run(
        self,
        communities: list[str],
        keywords: list[str],
        on_progress: ProgressCallback,
        on_source_complete: Optional[SourceCompleteCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> list[Post]:
        """Crawl every community and return all matched posts.

        Args:
            communities: Subreddit names, in processing order.
            keywords: Keywords passed to the scraper.
            on_progress: Receives every progress record.
            on_source_complete: Called after each source with its posts.
            cancel_event: When set, sources not yet started are skipped
                and reported as errors.

        Returns:
            Posts of all sources concatenated in source order.
        """
        if self.max_concurrent_sources > 1 and len(communities) > 1:
            return await self._run_concurrent(
                communities, keywords, on_progress, on_source_complete, cancel_event
            )

        results: list[Post] = []
        for index, name in enumerate(communities):
            if index > 0 and self.inter_source_delay > 0:
                await self._sleep(self.inter_source_delay)

            if cancel_event is not None and cancel_event.is_set():
                self._mark_cancelled(communities[index:], on_progress)
                break

            posts = await self._run_source(name, keywords, on_progress, on_source_complete)
            results.extend(posts)

        logger.info(f"Crawl finished: {len(results)} posts from {len(communities)} communities")
        return results

    async def _run_source(
        self,
        name: str,
        keywords: list[str],
        on_progress: ProgressCallback,
        on_source_complete: Optional[SourceCompleteCallback],
    ) -> list[Post]:
        latest = ScrapeProgress(subreddit=name, status=ScrapeStatus.PENDING)
        on_progress(latest.snapshot())

        # The terminal record is held back until on_source_complete has run,
        # so an observer that sees "completed" also sees the source's posts.
        def track(progress: ScrapeProgress) -> None:
            nonlocal latest
            latest = progress
            if not progress.status.is_terminal:
                on_progress(progress)

        try:
            posts = await self.scraper.scrape(name, keywords, track)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"Unexpected failure scraping r/{name}")
            if not latest.status.is_terminal:
                latest = latest.snapshot()
                latest.mark_error(str(e) or type(e).__name__)
            posts = []

        if on_source_complete is not None:
            try:
                on_source_complete(name, posts)
            except Exception:
                logger.exception(f"Source-complete callback failed for r/{name}")

        if latest.status.is_terminal:
            on_progress(latest)
        return posts

    def _mark_cancelled(self, names: list[str], on_progress: ProgressCallback) -> None:
        logger.info(f"Crawl cancelled, skipping {len(names)} remaining communities")
        for name in names:
            cancelled = ScrapeProgress(subreddit=name)
            cancelled.mark_error(f"Crawl cancelled before r/{name} started")
            on_progress(cancelled)

    async def _run_concurrent(
        self,
        communities: list[str],
        keywords: list[str],
        on_progress: ProgressCallback,
        on_source_complete: Optional[SourceCompleteCallback],
        cancel_event: Optional[asyncio.Event],
    ) -> list[Post]:
        semaphore = asyncio.Semaphore(self.max_concurrent_sources)
        logger.info(
            f"Crawling {len(communities)} communities, "
            f"up to {self.max_concurrent_sources} at a time"
        )

        async def worker(index: int, name: str) -> list[Post]:
            async with semaphore:
                # Pause only before reusing a slot.
                if index >= self.max_concurrent_sources and self.inter_source_delay > 0:
                    await self._sleep(self.inter_source_delay)
                if cancel_event is not None and cancel_event.is_set():
                    self._mark_cancelled([name], on_progress)
                    return []
                return await self._run_source(name, keywords, on_progress, on_source_complete)

        per_source = await asyncio.gather(
            *(worker(index, name) for index, name in enumerate(communities))
        )

        results: list[Post] = []
        for posts in per_source:
            results.extend(posts)
        return results
