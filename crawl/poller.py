"""Observe a crawl through the progress store and detect completion."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from loguru import logger

from config import settings
from scrapers.base import Post, ScrapeProgress, ScrapeStatus
from storage.base import ProgressStore

TIMEOUT_MESSAGE = "Crawl timed out, partial results shown"


def is_crawl_complete(requested: list[str], records: list[ScrapeProgress]) -> bool:
    """True only when every requested community has a terminal record.

    Communities without a record yet count as pending.
    """
    statuses = {r.subreddit: r.status for r in records}
    return all(
        name in statuses and statuses[name].is_terminal for name in requested
    )


@dataclass
class PollSnapshot:
    """Read-only view of a session at one point in time."""

    statuses: dict[str, ScrapeStatus]
    records: list[ScrapeProgress]
    done: bool

    @property
    def total(self) -> int:
        return len(self.statuses)

    @property
    def completed(self) -> int:
        return sum(1 for s in self.statuses.values() if s is ScrapeStatus.COMPLETED)

    @property
    def errored(self) -> int:
        return sum(1 for s in self.statuses.values() if s is ScrapeStatus.ERROR)

    @property
    def success_rate(self) -> float:
        return self.completed / self.total if self.total else 0.0


@dataclass
class PollOutcome:
    """Result of waiting for a crawl."""

    done: bool
    timed_out: bool
    items: list[Post] = field(default_factory=list)
    snapshot: Optional[PollSnapshot] = None
    message: str = ""

    @property
    def success_rate(self) -> float:
        return self.snapshot.success_rate if self.snapshot else 0.0


class ProgressPoller:
    """Poll a session until every community is terminal or time runs out.

    Polling never writes to the store. Once the crawl is done, or the
    timeout elapses, the item collection is fetched exactly once.
    """

    def __init__(
        self,
        store: ProgressStore,
        session_id: str,
        communities: list[str],
        poll_interval: Optional[float] = None,
        timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.store = store
        self.session_id = session_id
        self.communities = list(communities)
        self.poll_interval = settings.poll_interval_seconds if poll_interval is None else poll_interval
        self.timeout = settings.poll_timeout_seconds if timeout is None else timeout
        self._clock = clock
        self._sleep = sleep

    def snapshot(self) -> PollSnapshot:
        records = self.store.get_progress(self.session_id)
        by_name = {r.subreddit: r.status for r in records}
        statuses = {name: by_name.get(name, ScrapeStatus.PENDING) for name in self.communities}
        return PollSnapshot(
            statuses=statuses,
            records=records,
            done=is_crawl_complete(self.communities, records),
        )

    async def wait(
        self, on_update: Optional[Callable[[PollSnapshot], None]] = None
    ) -> PollOutcome:
        started = self._clock()

        while True:
            snap = self.snapshot()
            if on_update is not None:
                on_update(snap)

            if snap.done:
                items = self.store.get_items(self.session_id)
                logger.info(
                    f"Session {self.session_id} done: {snap.completed}/{snap.total} completed, "
                    f"{len(items)} posts"
                )
                return PollOutcome(done=True, timed_out=False, items=items, snapshot=snap)

            if self._clock() - started >= self.timeout:
                logger.warning(f"Session {self.session_id} timed out after {self.timeout:.0f}s")
                try:
                    items = self.store.get_items(self.session_id)
                except Exception as e:
                    logger.error(f"Could not fetch partial results: {e}")
                    items = []
                return PollOutcome(
                    done=False,
                    timed_out=True,
                    items=items,
                    snapshot=snap,
                    message=TIMEOUT_MESSAGE,
                )

            await self._sleep(self.poll_interval)
