"""Integration tests for CLI commands."""

import json
import pytest
import httpx
from loguru import logger
from unittest.mock import patch, MagicMock, AsyncMock
from typer.testing import CliRunner

from config import settings
from crawl import CrawlService
from main import app
from scrapers.base import CrawlSession, ScrapeProgress, ScrapeStatus
from scrapers.discovery import DiscoveryError, fallback_communities
from scrapers.rate_limiter import RateLimiter
from storage import SQLiteProgressStore


runner = CliRunner()


@pytest.fixture(autouse=True)
def drop_cli_log_sinks():
    """The CLI adds a sink bound to the runner's stderr; remove it afterwards."""
    yield
    logger.remove()


class TestInitCommand:
    """Tests for the init command."""

    def test_init_creates_env_file(self, tmp_path):
        """Test that init creates .env file."""
        env_path = tmp_path / ".env"

        with patch("main._env_path", return_value=str(env_path)):
            result = runner.invoke(app, ["init"])

        assert result.exit_code == 0
        assert "Created .env file" in result.stdout
        assert "MIN_REQUEST_INTERVAL_SECONDS" in env_path.read_text()

    def test_init_warns_if_exists(self, tmp_path):
        """Test that init warns if .env already exists."""
        env_path = tmp_path / ".env"
        env_path.write_text("KEEP=1\n")

        with patch("main._env_path", return_value=str(env_path)):
            result = runner.invoke(app, ["init"], input="n\n")

        assert ".env file already exists" in result.stdout
        assert env_path.read_text() == "KEEP=1\n"


class TestHealthCommand:
    """Tests for the health command."""

    def test_health_ok(self):
        with patch("main._check_reddit", new_callable=AsyncMock) as mock_reddit:
            mock_reddit.return_value = (True, "Connected (public JSON)")
            result = runner.invoke(app, ["health"])

        assert result.exit_code == 0
        assert "Reddit API" in result.stdout
        assert "OK" in result.stdout

    def test_health_failed(self):
        with patch("main._check_reddit", new_callable=AsyncMock) as mock_reddit:
            mock_reddit.return_value = (False, "Connection failed")
            result = runner.invoke(app, ["health"])

        assert result.exit_code == 0
        assert "Failed" in result.stdout


class TestDiscoverCommand:
    """Tests for the discover command."""

    def test_lists_communities(self):
        service = MagicMock()
        service.discover = AsyncMock(return_value=fallback_communities(["startup"]))
        service.close = AsyncMock()

        with patch("main.CrawlService", return_value=service):
            result = runner.invoke(app, ["discover", "startup"])

        assert result.exit_code == 0
        assert "entrepreneur" in result.stdout
        service.discover.assert_awaited_once_with(["startup"])
        service.close.assert_awaited_once()

    def test_transport_failure_exits_nonzero(self):
        service = MagicMock()
        service.discover = AsyncMock(side_effect=DiscoveryError("Could not reach Reddit"))
        service.close = AsyncMock()

        with patch("main.CrawlService", return_value=service):
            result = runner.invoke(app, ["discover", "startup"])

        assert result.exit_code == 1
        assert "Could not reach Reddit" in result.stdout


class TestCrawlCommand:
    """Tests for the crawl command against a mocked Reddit."""

    @pytest.fixture
    def fake_service(self, client_factory, payloads, tmp_path):
        def handler(request):
            if request.url.path == "/r/foo/new.json":
                return httpx.Response(200, json=payloads.listing([
                    payloads.post("f1", "pricing question", subreddit="foo"),
                    payloads.post("f2", "unrelated", subreddit="foo"),
                ]))
            return httpx.Response(500)

        def build(storage, db_path=None, **kwargs):
            kwargs.setdefault("inter_source_delay", 0.2)
            return CrawlService(
                client=client_factory(handler, RateLimiter(min_interval=0, failure_threshold=5, cooldown=60)),
                store=SQLiteProgressStore(db_path=str(tmp_path / "cli.db")),
                **kwargs,
            )

        with patch("main._build_service", side_effect=build), \
             patch.object(settings, "poll_interval_seconds", 0.01):
            yield tmp_path

    def test_crawl_writes_output(self, fake_service):
        output = fake_service / "posts.json"

        result = runner.invoke(
            app,
            ["crawl", "foo", "bar", "-k", "pricing", "--session-id", "cli-1", "--output", str(output)],
        )

        assert result.exit_code == 0, result.stdout
        assert "Collected 1 posts" in result.stdout
        posts = json.loads(output.read_text())
        assert [p["id"] for p in posts] == ["f1"]

    def test_concurrent_crawl_with_comments(self, fake_service):
        result = runner.invoke(
            app,
            ["crawl", "foo", "bar", "-k", "pricing", "--session-id", "cli-2",
             "--concurrency", "2", "--comments"],
        )

        assert result.exit_code == 0, result.stdout
        assert "still crawling" not in result.stdout
        assert "Collected 1 posts" in result.stdout

    def test_invalid_community_exits_nonzero(self, fake_service):
        result = runner.invoke(app, ["crawl", "not valid!"])

        assert result.exit_code == 1
        assert "Invalid subreddit name" in result.stdout


class TestStoredSessionCommands:
    """progress / items commands read the SQLite store."""

    @pytest.fixture
    def db_path(self, tmp_path, sample_post):
        path = str(tmp_path / "stored.db")
        store = SQLiteProgressStore(db_path=path)
        store.init_session(CrawlSession(
            session_id="done-1",
            communities=["startups"],
            progress={"startups": ScrapeProgress(subreddit="startups")},
        ))
        store.upsert_progress("done-1", ScrapeProgress(
            subreddit="startups", status=ScrapeStatus.COMPLETED, processed_posts=25, total_posts=25,
        ))
        store.append_items("done-1", [sample_post])
        return path

    def test_progress(self, db_path):
        result = runner.invoke(app, ["progress", "done-1", "--db-path", db_path])

        assert result.exit_code == 0
        assert "r/startups" in result.stdout
        assert "completed" in result.stdout
        assert "Posts collected: 1" in result.stdout

    def test_progress_unknown_session(self, db_path):
        result = runner.invoke(app, ["progress", "missing", "--db-path", db_path])
        assert result.exit_code == 1

    def test_items(self, db_path):
        result = runner.invoke(app, ["items", "done-1", "--db-path", db_path])

        assert result.exit_code == 0
        assert "Pricing" in result.stdout

    def test_cleanup(self, db_path):
        result = runner.invoke(app, ["cleanup", "--db-path", db_path])

        assert result.exit_code == 0
        assert "Removed 0 expired session(s)" in result.stdout
