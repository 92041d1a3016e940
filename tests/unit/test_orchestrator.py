"""Unit tests for the crawl orchestrator."""

import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock

from crawl.orchestrator import CrawlOrchestrator
from scrapers.base import ScrapeProgress, ScrapeStatus


class FakeScraper:
    """Scraper double returning canned posts or raising per subreddit."""

    def __init__(self, outcomes):
        self.outcomes = outcomes
        self.calls = []

    async def scrape(self, subreddit, keywords, on_progress):
        self.calls.append(subreddit)
        progress = ScrapeProgress(subreddit=subreddit)
        progress.mark_in_progress()
        on_progress(progress.snapshot())

        outcome = self.outcomes[subreddit]
        if isinstance(outcome, Exception):
            raise outcome

        progress.mark_completed(total_posts=len(outcome), processed_posts=len(outcome))
        on_progress(progress.snapshot())
        return outcome


def latest_by_source(records):
    latest = {}
    for record in records:
        latest[record.subreddit] = record
    return latest


@pytest.fixture
def no_sleep():
    return AsyncMock()


class TestSequentialRun:
    """Default one-source-at-a-time behaviour."""

    @pytest.mark.asyncio
    async def test_concatenates_in_source_order(self, no_sleep):
        scraper = FakeScraper({"a": ["a1", "a2"], "b": ["b1"], "c": []})
        records = []

        result = await CrawlOrchestrator(scraper, inter_source_delay=3, sleep=no_sleep).run(
            ["a", "b", "c"], ["kw"], records.append
        )

        assert result == ["a1", "a2", "b1"]
        assert scraper.calls == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_failure_is_isolated(self, no_sleep):
        scraper = FakeScraper({"a": ["a1"], "b": RuntimeError("boom"), "c": ["c1"]})
        records = []

        result = await CrawlOrchestrator(scraper, sleep=no_sleep).run(
            ["a", "b", "c"], ["kw"], records.append
        )

        assert result == ["a1", "c1"]
        latest = latest_by_source(records)
        assert latest["a"].status is ScrapeStatus.COMPLETED
        assert latest["b"].status is ScrapeStatus.ERROR
        assert latest["b"].errors == ["boom"]
        assert latest["c"].status is ScrapeStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_pending_emitted_before_each_source(self, no_sleep):
        scraper = FakeScraper({"a": [], "b": []})
        records = []

        await CrawlOrchestrator(scraper, sleep=no_sleep).run(["a", "b"], [], records.append)

        first_per_source = {}
        for record in records:
            first_per_source.setdefault(record.subreddit, record)
        assert all(r.status is ScrapeStatus.PENDING for r in first_per_source.values())

    @pytest.mark.asyncio
    async def test_delay_only_between_sources(self, no_sleep):
        scraper = FakeScraper({"a": [], "b": [], "c": []})

        await CrawlOrchestrator(scraper, inter_source_delay=3, sleep=no_sleep).run(
            ["a", "b", "c"], [], lambda p: None
        )

        assert no_sleep.await_count == 2
        no_sleep.assert_awaited_with(3)

    @pytest.mark.asyncio
    async def test_source_complete_callback(self, no_sleep):
        scraper = FakeScraper({"a": ["a1"], "b": ValueError("bad")})
        completed = []

        await CrawlOrchestrator(scraper, sleep=no_sleep).run(
            ["a", "b"], [], lambda p: None, on_source_complete=lambda name, posts: completed.append((name, posts))
        )

        assert completed == [("a", ["a1"]), ("b", [])]

    @pytest.mark.asyncio
    async def test_error_keeps_processed_count(self, no_sleep):
        scraper = MagicMock()

        async def scrape(subreddit, keywords, on_progress):
            progress = ScrapeProgress(subreddit=subreddit)
            progress.mark_in_progress(total_posts=5, processed_posts=3)
            on_progress(progress.snapshot())
            raise RuntimeError("parser exploded")

        scraper.scrape = scrape
        records = []

        await CrawlOrchestrator(scraper, sleep=no_sleep).run(["a"], [], records.append)

        assert records[-1].status is ScrapeStatus.ERROR
        assert records[-1].processed_posts == 3


class TestCancellation:
    """Cancel flag checked before each source."""

    @pytest.mark.asyncio
    async def test_cancel_skips_remaining_sources(self, no_sleep):
        cancel = asyncio.Event()
        scraper = FakeScraper({"a": ["a1"], "b": ["b1"], "c": ["c1"]})
        records = []

        def on_source_complete(name, posts):
            if name == "a":
                cancel.set()

        result = await CrawlOrchestrator(scraper, sleep=no_sleep).run(
            ["a", "b", "c"], [], records.append,
            on_source_complete=on_source_complete, cancel_event=cancel,
        )

        assert result == ["a1"]
        assert scraper.calls == ["a"]
        latest = latest_by_source(records)
        assert latest["b"].status is ScrapeStatus.ERROR
        assert "cancelled" in latest["c"].errors[0]

    @pytest.mark.asyncio
    async def test_cancel_during_pause_skips_next_source(self):
        cancel = asyncio.Event()
        scraper = FakeScraper({"a": ["a1"], "b": ["b1"], "c": ["c1"]})
        records = []

        async def sleep(seconds):
            cancel.set()

        result = await CrawlOrchestrator(scraper, inter_source_delay=3, sleep=sleep).run(
            ["a", "b", "c"], [], records.append, cancel_event=cancel,
        )

        assert result == ["a1"]
        assert scraper.calls == ["a"]
        latest = latest_by_source(records)
        assert latest["b"].status is ScrapeStatus.ERROR
        assert latest["c"].status is ScrapeStatus.ERROR


class TestConcurrentRun:
    """Opt-in parallelism."""

    @pytest.mark.asyncio
    async def test_keeps_source_order(self, no_sleep):
        class SlowFirst(FakeScraper):
            async def scrape(self, subreddit, keywords, on_progress):
                if subreddit == "a":
                    await asyncio.sleep(0.01)
                return await super().scrape(subreddit, keywords, on_progress)

        scraper = SlowFirst({"a": ["a1"], "b": ["b1"], "c": RuntimeError("x")})
        records = []

        result = await CrawlOrchestrator(
            scraper, max_concurrent_sources=3, sleep=no_sleep
        ).run(["a", "b", "c"], [], records.append)

        assert result == ["a1", "b1"]
        assert latest_by_source(records)["c"].status is ScrapeStatus.ERROR

    @pytest.mark.asyncio
    async def test_bounded_in_flight(self, no_sleep):
        in_flight = 0
        peak = 0

        class Tracking(FakeScraper):
            async def scrape(self, subreddit, keywords, on_progress):
                nonlocal in_flight, peak
                in_flight += 1
                peak = max(peak, in_flight)
                await asyncio.sleep(0.01)
                in_flight -= 1
                return await super().scrape(subreddit, keywords, on_progress)

        scraper = Tracking({name: [] for name in "abcdef"})

        await CrawlOrchestrator(scraper, max_concurrent_sources=2, sleep=no_sleep).run(
            list("abcdef"), [], lambda p: None
        )

        assert peak == 2

    @pytest.mark.asyncio
    async def test_no_pause_after_last_source(self, no_sleep):
        scraper = FakeScraper({name: [] for name in "abcde"})

        await CrawlOrchestrator(
            scraper, inter_source_delay=3, max_concurrent_sources=2, sleep=no_sleep
        ).run(list("abcde"), [], lambda p: None)

        assert no_sleep.await_count == 3
        no_sleep.assert_awaited_with(3)
