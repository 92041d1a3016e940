"""Abstract base class for crawl progress stores."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import timedelta

from scrapers.base import CrawlSession, Post, ScrapeProgress


class SessionNotFoundError(KeyError):
    """Raised when writing to a session that was never initialised."""


class ProgressStore(ABC):
    """Session-keyed progress records and item collections.

    The crawl writes, observers read. Progress is keyed by
    ``(session_id, subreddit)``; an upsert that would move a record
    backwards is ignored, so the last valid writer wins per key.
    """

    # -------------------------------------------------------------------------
    # Sessions
    # -------------------------------------------------------------------------

    @abstractmethod
    def init_session(self, session: CrawlSession) -> None:
        """Create or reset a session.

        Any previous progress and items for the same id are discarded and
        ``session.progress`` becomes the initial set of records.

        Args:
            session: The session to store.
        """
        pass

    @abstractmethod
    def get_session(self, session_id: str) -> CrawlSession | None:
        """Get a full session with progress and items.

        Args:
            session_id: The session identifier.

        Returns:
            The session, or None if unknown.
        """
        pass

    def has_session(self, session_id: str) -> bool:
        return self.get_session(session_id) is not None

    @abstractmethod
    def delete_session(self, session_id: str) -> bool:
        """Delete a session and everything belonging to it.

        Returns:
            True if something was deleted.
        """
        pass

    @abstractmethod
    def cleanup_expired(self, max_age: timedelta) -> int:
        """Delete sessions created more than ``max_age`` ago.

        Returns:
            Number of sessions deleted.
        """
        pass

    # -------------------------------------------------------------------------
    # Progress
    # -------------------------------------------------------------------------

    @abstractmethod
    def upsert_progress(self, session_id: str, progress: ScrapeProgress) -> bool:
        """Insert or replace the record for ``progress.subreddit``.

        Args:
            session_id: The session identifier.
            progress: The new record.

        Returns:
            True if stored, False if ignored as a regression.

        Raises:
            SessionNotFoundError: If the session does not exist.
        """
        pass

    @abstractmethod
    def get_progress(self, session_id: str) -> list[ScrapeProgress]:
        """Get all progress records of a session, in insertion order."""
        pass

    # -------------------------------------------------------------------------
    # Items
    # -------------------------------------------------------------------------

    @abstractmethod
    def append_items(self, session_id: str, items: list[Post]) -> None:
        """Append posts to the session's collection.

        Raises:
            SessionNotFoundError: If the session does not exist.
        """
        pass

    @abstractmethod
    def replace_items(self, session_id: str, items: list[Post]) -> None:
        """Replace the session's whole collection, e.g. after comment enrichment."""
        pass

    @abstractmethod
    def get_items(self, session_id: str) -> list[Post]:
        """Get the posts collected so far, in collection order."""
        pass
