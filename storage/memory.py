"""In-process progress store."""

from __future__ import annotations

import threading
from datetime import timedelta

from loguru import logger

from scrapers.base import CrawlSession, Post, ScrapeProgress, utcnow
from storage.base import ProgressStore, SessionNotFoundError


class InMemoryProgressStore(ProgressStore):
    """Progress store backed by a dict.

    Records are copied on the way in and out so readers never see a
    record the crawl is still mutating.
    """

    def __init__(self):
        self._sessions: dict[str, CrawlSession] = {}
        self._lock = threading.Lock()

    def _require(self, session_id: str) -> CrawlSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def init_session(self, session: CrawlSession) -> None:
        with self._lock:
            self._sessions[session.session_id] = session.model_copy(deep=True)

    def get_session(self, session_id: str) -> CrawlSession | None:
        with self._lock:
            session = self._sessions.get(session_id)
            return session.model_copy(deep=True) if session else None

    def delete_session(self, session_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def cleanup_expired(self, max_age: timedelta) -> int:
        cutoff = utcnow() - max_age
        with self._lock:
            expired = [sid for sid, s in self._sessions.items() if s.created_at < cutoff]
            for sid in expired:
                del self._sessions[sid]
        return len(expired)

    def upsert_progress(self, session_id: str, progress: ScrapeProgress) -> bool:
        with self._lock:
            session = self._require(session_id)
            current = session.progress.get(progress.subreddit)
            if current is not None and not current.can_be_replaced_by(progress):
                logger.debug(
                    f"Ignoring stale progress for r/{progress.subreddit}: "
                    f"{current.status.value} -> {progress.status.value}"
                )
                return False
            session.progress[progress.subreddit] = progress.snapshot()
            return True

    def get_progress(self, session_id: str) -> list[ScrapeProgress]:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return []
            return [p.snapshot() for p in session.progress.values()]

    def append_items(self, session_id: str, items: list[Post]) -> None:
        with self._lock:
            self._require(session_id).items.extend(items)

    def replace_items(self, session_id: str, items: list[Post]) -> None:
        with self._lock:
            self._require(session_id).items = list(items)

    def get_items(self, session_id: str) -> list[Post]:
        with self._lock:
            session = self._sessions.get(session_id)
            return list(session.items) if session else []
