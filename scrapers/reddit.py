"""Async client for Reddit's public JSON API."""

from __future__ import annotations

import time
from typing import Any, Optional

import httpx
from loguru import logger
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from config import settings
from .rate_limiter import RateLimiter


class RedditAPIError(RuntimeError):
    """Raised when Reddit answers with a non-success status."""

    def __init__(self, status_code: int, url: str, message: str = ""):
        self.status_code = status_code
        self.url = url
        super().__init__(message or f"Reddit API error: HTTP {status_code} for {url}")


class RedditClient:
    """Rate-limited access to the subreddit search, listing and comment endpoints.

    Every request goes through the shared ``RateLimiter``: transport errors
    and non-2xx responses count as failures, 2xx responses as successes.
    When app credentials are configured an app-only OAuth token is fetched
    and requests go to the OAuth host instead of the public one.
    """

    TOKEN_PATH = "/api/v1/access_token"
    # Refresh the token this many seconds before Reddit says it expires
    TOKEN_EXPIRY_MARGIN = 600

    def __init__(
        self,
        rate_limiter: Optional[RateLimiter] = None,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        user_agent: Optional[str] = None,
        base_url: Optional[str] = None,
        oauth_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.rate_limiter = rate_limiter or RateLimiter()
        self.client_id = settings.reddit_client_id if client_id is None else client_id
        self.client_secret = settings.reddit_client_secret if client_secret is None else client_secret
        self.base_url = (base_url or settings.reddit_base_url).rstrip("/")
        self.oauth_url = (oauth_url or settings.reddit_oauth_url).rstrip("/")

        self.client = httpx.AsyncClient(
            headers={
                "User-Agent": user_agent or settings.reddit_user_agent,
                "Accept": "application/json",
            },
            timeout=settings.request_timeout_seconds if timeout is None else timeout,
            follow_redirects=True,
            transport=transport,
        )

        self._access_token: Optional[str] = None
        self._token_expires_at = 0.0

    @property
    def has_credentials(self) -> bool:
        return bool(self.client_id and self.client_secret)

    async def __aenter__(self) -> "RedditClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        await self.client.aclose()

    # -------------------------------------------------------------------------
    # Authentication
    # -------------------------------------------------------------------------

    async def _get_access_token(self) -> Optional[str]:
        """Return a cached app-only token, fetching a new one when needed."""
        if not self.has_credentials:
            return None

        if self._access_token and time.monotonic() < self._token_expires_at:
            return self._access_token

        token_data = await self._request_token()
        access_token = token_data.get("access_token")
        if not access_token:
            raise RedditAPIError(200, self.base_url + self.TOKEN_PATH, "Reddit did not return an access token")

        expires_in = int(token_data.get("expires_in") or 3600)
        self._access_token = access_token
        self._token_expires_at = time.monotonic() + max(0, expires_in - self.TOKEN_EXPIRY_MARGIN)
        logger.info(f"Obtained Reddit access token, valid for {expires_in // 60} minutes")
        return access_token

    @retry(
        stop=stop_after_attempt(settings.max_retries),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _request_token(self) -> dict:
        url = self.base_url + self.TOKEN_PATH
        await self.rate_limiter.wait()

        try:
            response = await self.client.post(
                url,
                data={"grant_type": "client_credentials", "scope": "read"},
                auth=(self.client_id, self.client_secret),
            )
        except httpx.TransportError as e:
            self.rate_limiter.record_failure()
            logger.warning(f"Transport error requesting Reddit token: {e!r}")
            raise

        if not response.is_success:
            self.rate_limiter.record_failure()
            raise RedditAPIError(response.status_code, url, f"Reddit token request failed: HTTP {response.status_code}")
        self.rate_limiter.record_success()
        return response.json()

    # -------------------------------------------------------------------------
    # Requests
    # -------------------------------------------------------------------------

    async def get_json(self, path: str, params: Optional[dict] = None) -> Any:
        """GET a JSON document from Reddit.

        Args:
            path: Path relative to the API host, e.g. ``/r/python/new.json``.
            params: Query parameters.

        Returns:
            The decoded JSON body.

        Raises:
            CircuitOpenError: If the rate limiter's breaker is open.
            RedditAPIError: On a non-success status.
            httpx.TransportError: On DNS, connection or timeout failures.
        """
        token = await self._get_access_token()
        headers = {"Authorization": f"Bearer {token}"} if token else None
        url = (self.oauth_url if token else self.base_url) + path

        await self.rate_limiter.wait()

        logger.debug(f"GET {url} {params or ''}")
        try:
            response = await self.client.get(url, params=params, headers=headers)
        except httpx.TransportError as e:
            self.rate_limiter.record_failure()
            logger.warning(f"Transport error for {url}: {e!r}")
            raise

        if not response.is_success:
            self.rate_limiter.record_failure()
            logger.warning(f"Reddit returned HTTP {response.status_code} for {url}")
            raise RedditAPIError(response.status_code, url)

        self.rate_limiter.record_success()
        return response.json()

    @staticmethod
    def _children(listing: Any) -> list:
        """Extract ``data.children`` from a listing, tolerating odd shapes."""
        if not isinstance(listing, dict):
            return []
        children = (listing.get("data") or {}).get("children")
        return children if isinstance(children, list) else []

    async def search_subreddits(self, query: str, limit: Optional[int] = None) -> list[dict]:
        """Search communities matching ``query``.

        Returns:
            The ``data`` dict of each result, in relevance order.
        """
        listing = await self.get_json(
            "/subreddits/search.json",
            {
                "q": query,
                "type": "sr",
                "limit": limit or settings.discovery_search_limit,
                "sort": "relevance",
            },
        )
        return [
            child["data"]
            for child in self._children(listing)
            if isinstance(child, dict) and isinstance(child.get("data"), dict)
        ]

    async def fetch_new_posts(self, subreddit: str, limit: Optional[int] = None) -> list:
        """Fetch the newest posts of a subreddit.

        Returns:
            Raw listing children (``{"kind": "t3", "data": {...}}``), unvalidated.
        """
        listing = await self.get_json(
            f"/r/{subreddit}/new.json",
            {"limit": limit or settings.posts_per_batch},
        )
        return self._children(listing)

    async def fetch_comments(self, permalink_path: str, limit: Optional[int] = None) -> list:
        """Fetch top comments for a post.

        Args:
            permalink_path: Post path such as ``/r/python/comments/abc/title/``.

        Returns:
            Raw children of the comment listing.
        """
        payload = await self.get_json(
            permalink_path.rstrip("/") + ".json",
            {"limit": limit or settings.comments_per_post, "sort": "top"},
        )
        if not isinstance(payload, list) or len(payload) < 2:
            return []
        return self._children(payload[1])

    async def health_check(self) -> bool:
        """Check that Reddit answers a minimal listing request."""
        try:
            await self.get_json("/r/popular/new.json", {"limit": 1})
            return True
        except Exception as e:
            logger.warning(f"Reddit health check failed: {e}")
            return False
