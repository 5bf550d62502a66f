"""SQLite storage for synced build data.

Persists the builds fetched on every batch update and the latest result of
each bug query, so the dashboard can read them without calling Azure DevOps.

Uses aiosqlite for async SQLite access.

Example:
    storage = SyncStorage(database_path("Data Source=/var/lib/sync/dashboard.db"))
    await storage.initialize()
    await storage.upsert_builds(builds)
    await storage.close()
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from pathlib import Path

import aiosqlite

from pipelinesync.logging import get_logger
from pipelinesync.models import BugQuery, BugQueryResult, BugState, BuildRecord

logger = get_logger(__name__)

_PATH_KEYS = ("data source", "datasource", "filename", "database")


def database_path(connection_string: str) -> str:
    """Extract the SQLite file path from a connection string.

    Accepts either a bare path or "Key=Value;" pairs, reading the first of
    Data Source, Filename, or Database.

    Raises:
        ValueError: If key/value pairs are given but none names a file.
    """
    value = connection_string.strip()
    if "=" not in value:
        return value

    pairs: dict[str, str] = {}
    for part in value.split(";"):
        key, sep, item = part.partition("=")
        if sep:
            pairs[key.strip().lower()] = item.strip()

    for key in _PATH_KEYS:
        if pairs.get(key):
            return pairs[key]

    raise ValueError("Connection string does not name a database file")


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_datetime(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class SyncStorage:
    """SQLite storage for builds and bug query results.

    Tables:
        builds: one row per build id, replaced on every sync.
        bug_query_results: one row per query id, latest evaluation only.
    """

    def __init__(self, db_path: str) -> None:
        """Initialize storage with database path.

        Args:
            db_path: Path to SQLite database file, or ":memory:".
        """
        self._db_path = db_path
        self._conn: aiosqlite.Connection | None = None

    def _require_conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("Storage not initialized. Call initialize() first.")
        return self._conn

    async def initialize(self) -> None:
        """Create database and tables if needed."""
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(self._db_path)

        await self._conn.execute("""
            CREATE TABLE IF NOT EXISTS builds (
                build_id INTEGER PRIMARY KEY,
                build_number TEXT NOT NULL,
                definition_id INTEGER NOT NULL,
                definition_name TEXT NOT NULL,
                source_branch TEXT NOT NULL,
                status TEXT NOT NULL,
                result TEXT,
                queue_time TEXT,
                start_time TEXT,
                finish_time TEXT,
                web_url TEXT NOT NULL
            )
        """)
        await self._conn.execute("""
            CREATE TABLE IF NOT EXISTS bug_query_results (
                query_id TEXT PRIMARY KEY,
                area_path TEXT NOT NULL,
                priority INTEGER NOT NULL,
                state TEXT NOT NULL,
                bug_count INTEGER NOT NULL,
                evaluated_at TEXT NOT NULL
            )
        """)
        await self._conn.commit()

        logger.info("Storage initialized", extra={"db_path": self._db_path})

    async def upsert_builds(self, builds: Iterable[BuildRecord]) -> int:
        """Insert or replace build records.

        Returns:
            Number of records written.
        """
        conn = self._require_conn()
        rows = [
            (
                b.build_id,
                b.build_number,
                b.definition_id,
                b.definition_name,
                b.source_branch,
                b.status,
                b.result,
                _isoformat(b.queue_time),
                _isoformat(b.start_time),
                _isoformat(b.finish_time),
                b.web_url,
            )
            for b in builds
        ]
        if not rows:
            return 0

        await conn.executemany(
            """
            INSERT OR REPLACE INTO builds
            (build_id, build_number, definition_id, definition_name, source_branch,
             status, result, queue_time, start_time, finish_time, web_url)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            rows,
        )
        await conn.commit()
        return len(rows)

    async def get_builds(self, branch: str | None = None) -> list[BuildRecord]:
        """Get stored builds, newest build id first.

        Args:
            branch: Only builds of this branch (name or full ref).
        """
        conn = self._require_conn()
        query = """
            SELECT build_id, build_number, definition_id, definition_name, source_branch,
                   status, result, queue_time, start_time, finish_time, web_url
            FROM builds
        """
        params: tuple[str, ...] = ()
        if branch is not None:
            ref = branch if branch.startswith("refs/") else f"refs/heads/{branch}"
            query += " WHERE source_branch = ?"
            params = (ref,)
        query += " ORDER BY build_id DESC"

        cursor = await conn.execute(query, params)
        rows = await cursor.fetchall()

        return [
            BuildRecord(
                build_id=row[0],
                build_number=row[1],
                definition_id=row[2],
                definition_name=row[3],
                source_branch=row[4],
                status=row[5],
                result=row[6],
                queue_time=_parse_datetime(row[7]),
                start_time=_parse_datetime(row[8]),
                finish_time=_parse_datetime(row[9]),
                web_url=row[10],
            )
            for row in rows
        ]

    async def store_bug_query_results(self, results: Iterable[BugQueryResult]) -> int:
        """Replace the stored result of each query.

        Returns:
            Number of results written.
        """
        conn = self._require_conn()
        rows = [
            (
                r.query.query_id,
                r.query.area_path,
                r.query.priority,
                r.query.state.value,
                r.bug_count,
                r.evaluated_at.isoformat(),
            )
            for r in results
        ]
        if not rows:
            return 0

        await conn.executemany(
            """
            INSERT OR REPLACE INTO bug_query_results
            (query_id, area_path, priority, state, bug_count, evaluated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            rows,
        )
        await conn.commit()
        return len(rows)

    async def get_bug_query_results(self) -> list[BugQueryResult]:
        """Get the latest result of every evaluated query, ordered by query id."""
        conn = self._require_conn()
        cursor = await conn.execute(
            """
            SELECT area_path, priority, state, bug_count, evaluated_at
            FROM bug_query_results
            ORDER BY query_id
            """
        )
        rows = await cursor.fetchall()

        return [
            BugQueryResult(
                query=BugQuery(area_path=row[0], priority=row[1], state=BugState(row[2])),
                bug_count=row[3],
                evaluated_at=datetime.fromisoformat(row[4]),
            )
            for row in rows
        ]

    async def close(self) -> None:
        """Close database connection."""
        if self._conn is not None:
            await self._conn.close()
            self._conn = None
            logger.debug("Storage connection closed")
