"""SQLiteStore: ownership storage backend using stdlib sqlite3."""

from __future__ import annotations

import logging
import sqlite3
import threading
from dataclasses import dataclass
from pathlib import Path

from ..core.store import ContentStore
from ..types import Content, StoreError, UserHashPair
from .helpers import chunked, dt_to_str, str_to_dt, utcnow

logger = logging.getLogger(__name__)

VERSIONS_SQL = """\
CREATE TABLE IF NOT EXISTS versions (
    version INTEGER PRIMARY KEY,
    description TEXT NOT NULL,
    applied_at TEXT NOT NULL
);
"""

# Keep well below SQLITE_MAX_VARIABLE_NUMBER on old builds (999).
_MAX_IN_PARAMS = 500


@dataclass(frozen=True)
class MigrationStep:
    version: int
    description: str
    sql: str


MIGRATIONS: list[MigrationStep] = [
    MigrationStep(
        version=0,
        description="Initial setup.",
        sql="""\
CREATE TABLE IF NOT EXISTS content (
    username TEXT NOT NULL,
    hash TEXT NOT NULL,
    name TEXT NOT NULL,
    size INTEGER NOT NULL,
    created TEXT NOT NULL,
    removed TEXT,
    PRIMARY KEY (username, hash)
);
""",
    ),
    MigrationStep(
        version=1,
        description="Index content by hash for cross-user ownership lookups.",
        sql="CREATE INDEX IF NOT EXISTS idx_content_hash ON content(hash);",
    ),
]


def _row_to_content(row: sqlite3.Row) -> Content:
    return Content(
        user=row["username"],
        hash=row["hash"],
        name=row["name"],
        size=row["size"],
        created=str_to_dt(row["created"]),
        removed=str_to_dt(row["removed"]) if row["removed"] else None,
    )


class SQLiteStore(ContentStore):
    """SQLite-based ownership store with soft deletes.

    A single connection is shared across threads; ``_lock`` serializes its
    use so each call runs as one transaction.
    """

    def __init__(self, db_path: str | Path, *, migrate: bool = True) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()
        if migrate:
            self.migrate_to_latest()

    def _get_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
        return self._conn

    # ------------------------------------------------------------------
    # Migrations
    # ------------------------------------------------------------------

    def schema_version(self) -> int:
        """Highest applied migration version, or -1 on a fresh database."""
        with self._lock:
            try:
                conn = self._get_conn()
                conn.executescript(VERSIONS_SQL)
                row = conn.execute("SELECT MAX(version) AS v FROM versions").fetchone()
            except sqlite3.Error as e:
                raise StoreError(f"db: {e}") from e
        return -1 if row["v"] is None else row["v"]

    def migrate_to_latest(self) -> int:
        current = self.schema_version()
        with self._lock:
            conn = self._get_conn()
            for step in MIGRATIONS:
                if step.version <= current:
                    continue
                try:
                    with conn:
                        for statement in step.sql.split(";"):
                            if statement.strip():
                                conn.execute(statement)
                        conn.execute(
                            "INSERT INTO versions (version, description, applied_at) VALUES (?, ?, ?)",
                            (step.version, step.description, dt_to_str(utcnow())),
                        )
                except sqlite3.Error as e:
                    raise StoreError(f"db: migration {step.version} failed: {e}") from e
                logger.info("Applied migration %d: %s", step.version, step.description)
                current = step.version
        return current

    # ------------------------------------------------------------------
    # Ownership records
    # ------------------------------------------------------------------

    def add(self, content: Content) -> None:
        with self._lock:
            conn = self._get_conn()
            try:
                with conn:
                    cur = conn.execute(
                        """INSERT INTO content (username, hash, name, size, created)
                        VALUES (?, ?, ?, ?, ?)
                        ON CONFLICT (username, hash)
                        DO UPDATE SET removed = NULL, name = excluded.name, size = excluded.size""",
                        (content.user, content.hash, content.name, content.size, dt_to_str(utcnow())),
                    )
            except sqlite3.Error as e:
                raise StoreError(f"db: {e}") from e
        logger.debug("add user=%s hash=%s affected=%d", content.user, content.hash, cur.rowcount)

    def list_active_content_by_user(self, user: str) -> list[str]:
        with self._lock:
            try:
                rows = self._get_conn().execute(
                    "SELECT hash FROM content WHERE username = ? AND removed IS NULL ORDER BY created, hash",
                    (user,),
                ).fetchall()
            except sqlite3.Error as e:
                raise StoreError(f"db: {e}") from e
        return [r["hash"] for r in rows]

    def list_active_content_by_hash(self, hashes: list[str]) -> list[UserHashPair]:
        if not hashes:
            return []
        result: list[UserHashPair] = []
        with self._lock:
            conn = self._get_conn()
            try:
                for part in chunked(list(dict.fromkeys(hashes)), _MAX_IN_PARAMS):
                    placeholders = ",".join("?" * len(part))
                    rows = conn.execute(
                        f"SELECT username, hash FROM content "
                        f"WHERE hash IN ({placeholders}) AND removed IS NULL",
                        part,
                    ).fetchall()
                    result.extend(UserHashPair(user=r["username"], hash=r["hash"]) for r in rows)
            except sqlite3.Error as e:
                raise StoreError(f"db: {e}") from e
        return result

    def remove_content_by_hash_for_user(self, user: str, hashes: list[str]) -> int:
        if not hashes:
            return 0
        removed_at = dt_to_str(utcnow())
        affected = 0
        with self._lock:
            conn = self._get_conn()
            try:
                with conn:
                    for part in chunked(list(dict.fromkeys(hashes)), _MAX_IN_PARAMS):
                        placeholders = ",".join("?" * len(part))
                        cur = conn.execute(
                            f"UPDATE content SET removed = ? "
                            f"WHERE username = ? AND hash IN ({placeholders}) AND removed IS NULL",
                            [removed_at, user, *part],
                        )
                        affected += cur.rowcount
            except sqlite3.Error as e:
                raise StoreError(f"db: {e}") from e
        logger.debug("remove user=%s hashes=%d affected=%d", user, len(hashes), affected)
        return affected

    def list_all(self) -> list[Content]:
        with self._lock:
            try:
                rows = self._get_conn().execute(
                    "SELECT username, hash, name, size, created, removed "
                    "FROM content ORDER BY created, rowid"
                ).fetchall()
            except sqlite3.Error as e:
                raise StoreError(f"db: {e}") from e
        return [_row_to_content(r) for r in rows]

    def close(self) -> None:
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None
