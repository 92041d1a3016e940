"""Integration tests for discovery -> crawl -> poll over a mocked Reddit."""

import pytest
import httpx

from crawl import CrawlService
from scrapers.base import ScrapeStatus
from scrapers.rate_limiter import RateLimiter


def reddit_handler(payloads):
    """Fake Reddit: foo has three posts, bar times out, search finds both."""

    def handler(request):
        path = request.url.path
        if path == "/subreddits/search.json":
            return httpx.Response(
                200,
                json=payloads.listing([payloads.subreddit("foo", 20_000), payloads.subreddit("bar", 3_000)]),
            )
        if path == "/r/foo/new.json":
            return httpx.Response(
                200,
                json=payloads.listing([
                    payloads.post("f1", "Thoughts on pricing?", subreddit="foo"),
                    payloads.post("f2", "Launch day", subreddit="foo"),
                    payloads.post("f3", "Hiring", "Looking for a designer", subreddit="foo"),
                ]),
            )
        if path == "/r/bar/new.json":
            raise httpx.ReadTimeout("Request timed out", request=request)
        return httpx.Response(404)

    return handler


@pytest.fixture
def service(client_factory, payloads, store):
    limiter = RateLimiter(min_interval=0, failure_threshold=5, cooldown=60)
    return CrawlService(
        client=client_factory(reddit_handler(payloads), limiter),
        store=store,
        inter_source_delay=0,
    )


class TestCrawlScenario:
    """Partial failure across two communities."""

    @pytest.mark.asyncio
    async def test_foo_succeeds_bar_fails(self, service):
        await service.start_crawl("session-1", ["foo", "bar"], ["pricing"])

        outcome = await service.poller("session-1", poll_interval=0.01, timeout=5).wait()

        assert outcome.done
        assert not outcome.timed_out
        assert [p.id for p in outcome.items] == ["f1"]
        assert outcome.items[0].subreddit == "foo"

        progress = {p.subreddit: p for p in service.get_progress("session-1")}
        assert progress["foo"].status is ScrapeStatus.COMPLETED
        assert progress["foo"].processed_posts == 3
        assert progress["bar"].status is ScrapeStatus.ERROR
        assert progress["bar"].errors and progress["bar"].errors[0]
        assert outcome.success_rate == 0.5

        await service.wait_for_crawl("session-1")
        await service.client.close()

    @pytest.mark.asyncio
    async def test_discover_then_crawl(self, service):
        communities = await service.discover(["startup"])
        assert [c.name for c in communities] == ["foo", "bar"]

        await service.start_crawl("session-2", communities, [])
        outcome = await service.poller("session-2", poll_interval=0.01, timeout=5).wait()

        assert outcome.done
        assert len(outcome.items) == 3
        await service.client.close()

    @pytest.mark.asyncio
    async def test_items_readable_mid_crawl(self, service):
        await service.start_crawl("session-3", ["foo", "bar"], [])
        assert service.get_items("session-3") == []

        await service.wait_for_crawl("session-3")

        assert len(service.get_items("session-3")) == 3
        await service.client.close()


class TestCircuitBreakerAcrossSources:
    """An open breaker fails later sources without requests."""

    @pytest.mark.asyncio
    async def test_breaker_fails_remaining_sources(self, client_factory, memory_store):
        calls = []

        def handler(request):
            calls.append(request.url.path)
            return httpx.Response(503)

        limiter = RateLimiter(min_interval=0, failure_threshold=2, cooldown=60)
        service = CrawlService(
            client=client_factory(handler, limiter), store=memory_store, inter_source_delay=0
        )

        await service.start_crawl("s", ["a", "b", "c"], [])
        await service.wait_for_crawl("s")

        progress = service.get_progress("s")
        assert all(p.status is ScrapeStatus.ERROR for p in progress)
        assert "Circuit breaker open" in progress[2].errors[0]
        assert calls == ["/r/a/new.json", "/r/b/new.json"]
        await service.client.close()
