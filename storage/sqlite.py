"""SQLite progress store for sharing a crawl across processes."""

import json
import sqlite3
from datetime import datetime, timedelta
from pathlib import Path

from loguru import logger

from config import settings
from scrapers.base import CrawlSession, Post, ScrapeProgress, utcnow
from storage.base import ProgressStore, SessionNotFoundError


class SQLiteProgressStore(ProgressStore):
    """Progress store using SQLite."""

    def __init__(self, db_path: str | None = None):
        """Initialize SQLite storage.

        Args:
            db_path: Path to SQLite database file. Defaults to settings.sqlite_db_path
        """
        if db_path is None:
            db_path = settings.sqlite_db_path or "./data/crawl.db"

        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection."""
        conn = sqlite3.connect(str(self.db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        """Initialize database schema."""
        conn = self._get_connection()
        try:
            conn.executescript("""
                -- One row per crawl request
                CREATE TABLE IF NOT EXISTS crawl_sessions (
                    session_id TEXT PRIMARY KEY,
                    communities TEXT NOT NULL,
                    keywords TEXT NOT NULL,
                    created_at TIMESTAMP NOT NULL
                );

                -- Latest progress record per (session, subreddit)
                CREATE TABLE IF NOT EXISTS scrape_progress (
                    session_id TEXT NOT NULL,
                    subreddit TEXT NOT NULL,
                    position INTEGER NOT NULL,
                    status TEXT NOT NULL,
                    processed_posts INTEGER NOT NULL,
                    payload TEXT NOT NULL,
                    updated_at TIMESTAMP NOT NULL,
                    PRIMARY KEY (session_id, subreddit)
                );

                -- Collected posts, in collection order
                CREATE TABLE IF NOT EXISTS crawl_items (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    session_id TEXT NOT NULL,
                    post_id TEXT NOT NULL,
                    payload TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_crawl_items_session ON crawl_items(session_id);
                CREATE INDEX IF NOT EXISTS idx_crawl_sessions_created ON crawl_sessions(created_at);
            """)
            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _session_exists(conn: sqlite3.Connection, session_id: str) -> bool:
        row = conn.execute(
            "SELECT 1 FROM crawl_sessions WHERE session_id = ?", (session_id,)
        ).fetchone()
        return row is not None

    @staticmethod
    def _delete_rows(conn: sqlite3.Connection, session_id: str) -> int:
        conn.execute("DELETE FROM scrape_progress WHERE session_id = ?", (session_id,))
        conn.execute("DELETE FROM crawl_items WHERE session_id = ?", (session_id,))
        cursor = conn.execute("DELETE FROM crawl_sessions WHERE session_id = ?", (session_id,))
        return cursor.rowcount

    # -------------------------------------------------------------------------
    # Sessions
    # -------------------------------------------------------------------------

    def init_session(self, session: CrawlSession) -> None:
        conn = self._get_connection()
        try:
            conn.execute("BEGIN IMMEDIATE")
            self._delete_rows(conn, session.session_id)
            conn.execute(
                """
                INSERT INTO crawl_sessions (session_id, communities, keywords, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (
                    session.session_id,
                    json.dumps(session.communities),
                    json.dumps(session.keywords),
                    session.created_at.isoformat(),
                ),
            )
            for position, progress in enumerate(session.progress.values()):
                self._write_progress(conn, session.session_id, progress, position)
            for post in session.items:
                self._write_item(conn, session.session_id, post)
            conn.commit()
        finally:
            conn.close()

    def get_session(self, session_id: str) -> CrawlSession | None:
        conn = self._get_connection()
        try:
            row = conn.execute(
                "SELECT * FROM crawl_sessions WHERE session_id = ?", (session_id,)
            ).fetchone()
        finally:
            conn.close()

        if row is None:
            return None

        return CrawlSession(
            session_id=row["session_id"],
            communities=json.loads(row["communities"]),
            keywords=json.loads(row["keywords"]),
            progress={p.subreddit: p for p in self.get_progress(session_id)},
            items=self.get_items(session_id),
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    def has_session(self, session_id: str) -> bool:
        conn = self._get_connection()
        try:
            return self._session_exists(conn, session_id)
        finally:
            conn.close()

    def delete_session(self, session_id: str) -> bool:
        conn = self._get_connection()
        try:
            deleted = self._delete_rows(conn, session_id)
            conn.commit()
            return deleted > 0
        finally:
            conn.close()

    def cleanup_expired(self, max_age: timedelta) -> int:
        cutoff = utcnow() - max_age
        conn = self._get_connection()
        try:
            rows = conn.execute("SELECT session_id, created_at FROM crawl_sessions").fetchall()
            expired = [
                row["session_id"]
                for row in rows
                if datetime.fromisoformat(row["created_at"]) < cutoff
            ]
            for session_id in expired:
                self._delete_rows(conn, session_id)
            conn.commit()
            return len(expired)
        finally:
            conn.close()

    # -------------------------------------------------------------------------
    # Progress
    # -------------------------------------------------------------------------

    @staticmethod
    def _write_progress(
        conn: sqlite3.Connection, session_id: str, progress: ScrapeProgress, position: int
    ) -> None:
        conn.execute(
            """
            INSERT OR REPLACE INTO scrape_progress
            (session_id, subreddit, position, status, processed_posts, payload, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                session_id,
                progress.subreddit,
                position,
                progress.status.value,
                progress.processed_posts,
                progress.model_dump_json(),
                utcnow().isoformat(),
            ),
        )

    def upsert_progress(self, session_id: str, progress: ScrapeProgress) -> bool:
        conn = self._get_connection()
        try:
            conn.execute("BEGIN IMMEDIATE")
            if not self._session_exists(conn, session_id):
                raise SessionNotFoundError(session_id)

            row = conn.execute(
                "SELECT position, payload FROM scrape_progress WHERE session_id = ? AND subreddit = ?",
                (session_id, progress.subreddit),
            ).fetchone()

            if row is not None:
                current = ScrapeProgress.model_validate_json(row["payload"])
                if not current.can_be_replaced_by(progress):
                    logger.debug(
                        f"Ignoring stale progress for r/{progress.subreddit}: "
                        f"{current.status.value} -> {progress.status.value}"
                    )
                    conn.rollback()
                    return False
                position = row["position"]
            else:
                position = conn.execute(
                    "SELECT COUNT(*) FROM scrape_progress WHERE session_id = ?", (session_id,)
                ).fetchone()[0]

            self._write_progress(conn, session_id, progress, position)
            conn.commit()
            return True
        finally:
            conn.close()

    def get_progress(self, session_id: str) -> list[ScrapeProgress]:
        conn = self._get_connection()
        try:
            rows = conn.execute(
                "SELECT payload FROM scrape_progress WHERE session_id = ? ORDER BY position",
                (session_id,),
            ).fetchall()
            return [ScrapeProgress.model_validate_json(row["payload"]) for row in rows]
        finally:
            conn.close()

    # -------------------------------------------------------------------------
    # Items
    # -------------------------------------------------------------------------

    @staticmethod
    def _write_item(conn: sqlite3.Connection, session_id: str, post: Post) -> None:
        conn.execute(
            "INSERT INTO crawl_items (session_id, post_id, payload) VALUES (?, ?, ?)",
            (session_id, post.id, post.model_dump_json()),
        )

    def append_items(self, session_id: str, items: list[Post]) -> None:
        conn = self._get_connection()
        try:
            if not self._session_exists(conn, session_id):
                raise SessionNotFoundError(session_id)
            for post in items:
                self._write_item(conn, session_id, post)
            conn.commit()
        finally:
            conn.close()

    def replace_items(self, session_id: str, items: list[Post]) -> None:
        conn = self._get_connection()
        try:
            conn.execute("BEGIN IMMEDIATE")
            if not self._session_exists(conn, session_id):
                raise SessionNotFoundError(session_id)
            conn.execute("DELETE FROM crawl_items WHERE session_id = ?", (session_id,))
            for post in items:
                self._write_item(conn, session_id, post)
            conn.commit()
        finally:
            conn.close()

    def get_items(self, session_id: str) -> list[Post]:
        conn = self._get_connection()
        try:
            rows = conn.execute(
                "SELECT payload FROM crawl_items WHERE session_id = ? ORDER BY id",
                (session_id,),
            ).fetchall()
            return [Post.model_validate_json(row["payload"]) for row in rows]
        finally:
            conn.close()
