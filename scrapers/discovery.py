"""Subreddit discovery via Reddit search, with a curated fallback."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

import httpx
from loguru import logger
from pydantic import ValidationError

from config import settings
from .base import Community, QualityTier
from .keywords import normalize_keywords
from .rate_limiter import CircuitOpenError
from .reddit import RedditClient


class DiscoveryError(RuntimeError):
    """Raised when every discovery search failed at the transport level."""


SEARCH_RELEVANCE = 0.8
FALLBACK_RELEVANCE = 0.6
FALLBACK_LIMIT = 10


@dataclass(frozen=True)
class FallbackCategory:
    """A curated group of subreddits selected by keyword tokens."""

    tag: str
    tokens: frozenset[str]
    communities: tuple[tuple[str, int, str], ...]  # (name, subscribers, description)


# Checked in order; the "general" bucket is always appended.
FALLBACK_CATEGORIES: tuple[FallbackCategory, ...] = (
    FallbackCategory(
        tag="business",
        tokens=frozenset({"business", "startup", "startups", "entrepreneur", "entrepreneurs"}),
        communities=(
            ("entrepreneur", 800_000, "A community for entrepreneurs to share ideas and experiences"),
            ("startups", 500_000, "Startup community discussions"),
            ("business", 600_000, "Business discussions and news"),
        ),
    ),
    FallbackCategory(
        tag="technology",
        tokens=frozenset({"tech", "technology", "ai", "programming", "software"}),
        communities=(
            ("technology", 12_000_000, "Technology news and discussions"),
            ("programming", 4_000_000, "Programming discussions"),
            ("artificial", 200_000, "Artificial intelligence discussions"),
        ),
    ),
)

GENERAL_CATEGORY = FallbackCategory(
    tag="general",
    tokens=frozenset(),
    communities=(
        ("AskReddit", 40_000_000, "Ask and answer thought-provoking questions"),
        ("todayilearned", 28_000_000, "Interesting facts you just learned"),
        ("explainlikeimfive", 20_000_000, "Explain like I'm five"),
    ),
)


def _tokens(keywords: list[str]) -> set[str]:
    tokens: set[str] = set()
    for kw in keywords:
        tokens.update(t for t in re.split(r"[^a-z0-9]+", kw.lower()) if t)
    return tokens


def fallback_communities(keywords: list[str]) -> list[Community]:
    """Curated subreddits for keywords that discovery could not serve."""
    tokens = _tokens(keywords)
    selected = [c for c in FALLBACK_CATEGORIES if c.tokens & tokens]
    selected.append(GENERAL_CATEGORY)

    seen: set[str] = set()
    results: list[Community] = []
    for category in selected:
        for name, subscribers, description in category.communities:
            if name.lower() in seen:
                continue
            seen.add(name.lower())
            results.append(
                Community(
                    id=f"fallback_{name.lower()}",
                    name=name,
                    display_name=f"r/{name}",
                    description=description,
                    subscribers=subscribers,
                    active_users=subscribers // 100,
                    posts_per_day=max(1, subscribers // 1000),
                    comments_per_day=max(1, subscribers // 500),
                    relevance_score=FALLBACK_RELEVANCE,
                    quality=QualityTier.from_subscribers(subscribers),
                    tags=tuple(keywords) or (category.tag,),
                )
            )
    return results[:FALLBACK_LIMIT]


class CommunityDiscoverer:
    """Find subreddits relevant to a set of keywords."""

    def __init__(
        self,
        client: RedditClient,
        search_limit: Optional[int] = None,
        max_results: Optional[int] = None,
        min_subscribers: Optional[int] = None,
    ):
        self.client = client
        self.search_limit = search_limit or settings.discovery_search_limit
        self.max_results = max_results or settings.discovery_max_results
        self.min_subscribers = (
            settings.discovery_min_subscribers if min_subscribers is None else min_subscribers
        )

    async def discover(self, keywords: list[str]) -> list[Community]:
        """Search each keyword and aggregate the results.

        Searches run one keyword at a time through the client's rate limiter.
        A failing keyword is logged and skipped. When nothing usable is found
        a curated fallback list is returned instead.

        Args:
            keywords: Search terms.

        Returns:
            Communities sorted by subscriber count, largest first.

        Raises:
            ValueError: If no non-blank keyword is given.
            DiscoveryError: If every search failed with a transport error.
        """
        keywords = normalize_keywords(keywords)
        if not keywords:
            raise ValueError("At least one keyword is required for discovery")

        seen: set[str] = set()
        found: list[Community] = []
        transport_failures = 0

        for keyword in keywords:
            try:
                results = await self.client.search_subreddits(keyword, limit=self.search_limit)
            except (httpx.TransportError, CircuitOpenError) as e:
                transport_failures += 1
                logger.warning(f"Discovery search for '{keyword}' failed: {e}")
                continue
            except Exception as e:
                logger.warning(f"Discovery search for '{keyword}' failed: {e}")
                continue

            for data in results:
                try:
                    community = self._to_community(data, keyword, seen)
                except (TypeError, ValueError, AttributeError, ValidationError) as e:
                    logger.warning(f"Skipping malformed search result for '{keyword}': {e!r}")
                    continue
                if community is not None:
                    found.append(community)

        if transport_failures == len(keywords):
            raise DiscoveryError(
                f"Could not reach Reddit for any of {len(keywords)} keyword(s)"
            )

        if not found:
            logger.warning(f"No communities found for {keywords}, using curated fallback")
            return fallback_communities(keywords)

        found.sort(key=lambda c: c.subscribers, reverse=True)
        logger.info(f"Discovered {len(found)} communities for {keywords}")
        return found[: self.max_results]

    def _to_community(self, data: dict, keyword: str, seen: set[str]) -> Optional[Community]:
        name = data.get("display_name")
        if not name or data.get("over18"):
            return None
        if name.lower() in seen:
            return None

        try:
            subscribers = int(data.get("subscribers") or 0)
        except (TypeError, ValueError):
            return None
        if subscribers < self.min_subscribers:
            return None

        community = Community(
            id=str(data.get("id") or name),
            name=name,
            display_name=data.get("display_name_prefixed") or f"r/{name}",
            description=(
                data.get("public_description")
                or data.get("description")
                or f"Discussion community for {keyword}"
            ),
            subscribers=subscribers,
            active_users=int(data.get("active_user_count") or 0),
            posts_per_day=max(1, subscribers // 1000),
            comments_per_day=max(1, subscribers // 500),
            relevance_score=SEARCH_RELEVANCE,
            quality=QualityTier.from_subscribers(subscribers),
            tags=(keyword,),
        )
        seen.add(name.lower())
        return community
