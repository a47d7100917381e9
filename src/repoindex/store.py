"""SQLite persistence for repository records.

The indexing core only reads a repository's identity and writes its sync
timestamp and language summary. Languages are stored as JSON text.
"""

import json
import logging
import sqlite3
import threading
from typing import Optional, Protocol

from .errors import RepositoryNotFoundError, RepoIndexError
from .models import Repository

log = logging.getLogger("repoindex.store")

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS repositories (
    id             INTEGER PRIMARY KEY,
    full_name      TEXT NOT NULL UNIQUE,
    owner_login    TEXT NOT NULL,
    name           TEXT NOT NULL,
    last_synced_at TEXT,
    languages      TEXT NOT NULL DEFAULT '{}',
    created_at     TEXT NOT NULL DEFAULT (datetime('now'))
);
"""


class RepositoryStore(Protocol):
    def get(self, repository_id: int) -> Repository: ...

    def mark_synced(self, repository_id: int, synced_at: str, languages: Optional[dict[str, int]]) -> None: ...


class SQLiteRepositoryStore:
    """Repository table backed by a per-thread sqlite3 connection."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._local = threading.local()
        conn = self._get_conn()
        conn.execute(_SCHEMA)
        conn.commit()
        log.info("Repository store initialised at %s", db_path)

    def _get_conn(self) -> sqlite3.Connection:
        """Return a per-thread reusable connection."""
        conn = getattr(self._local, "conn", None)
        if conn is None:
            conn = sqlite3.connect(self.db_path)
            conn.execute("PRAGMA journal_mode=WAL")
            self._local.conn = conn
        return conn

    @staticmethod
    def _row_to_repo(row: tuple) -> Repository:
        return Repository(
            id=row[0],
            full_name=row[1],
            owner_login=row[2],
            name=row[3],
            last_synced_at=row[4],
            languages=json.loads(row[5] or "{}"),
        )

    def get(self, repository_id: int) -> Repository:
        try:
            row = self._get_conn().execute(
                "SELECT id, full_name, owner_login, name, last_synced_at, languages "
                "FROM repositories WHERE id = ?",
                (repository_id,),
            ).fetchone()
        except sqlite3.Error as e:
            raise RepoIndexError(f"Repository lookup failed: {e}") from e
        if row is None:
            raise RepositoryNotFoundError(f"Repository {repository_id} not found")
        return self._row_to_repo(row)

    def upsert(self, repository: Repository) -> None:
        """Insert or update a repository's identity fields."""
        conn = self._get_conn()
        conn.execute(
            "INSERT INTO repositories (id, full_name, owner_login, name) VALUES (?, ?, ?, ?) "
            "ON CONFLICT(id) DO UPDATE SET full_name = excluded.full_name, "
            "owner_login = excluded.owner_login, name = excluded.name",
            (repository.id, repository.full_name, repository.owner_login, repository.name),
        )
        conn.commit()

    def mark_synced(self, repository_id: int, synced_at: str, languages: Optional[dict[str, int]]) -> None:
        conn = self._get_conn()
        try:
            if languages is None:
                cur = conn.execute(
                    "UPDATE repositories SET last_synced_at = ? WHERE id = ?",
                    (synced_at, repository_id),
                )
            else:
                cur = conn.execute(
                    "UPDATE repositories SET last_synced_at = ?, languages = ? WHERE id = ?",
                    (synced_at, json.dumps(languages, sort_keys=True), repository_id),
                )
            conn.commit()
        except sqlite3.Error as e:
            raise RepoIndexError(f"Failed to record sync for repository {repository_id}: {e}") from e
        if cur.rowcount == 0:
            raise RepositoryNotFoundError(f"Repository {repository_id} not found")
        log.debug("Marked repository %d synced at %s", repository_id, synced_at)

    def list(self) -> list[Repository]:
        rows = self._get_conn().execute(
            "SELECT id, full_name, owner_login, name, last_synced_at, languages "
            "FROM repositories ORDER BY id"
        ).fetchall()
        return [self._row_to_repo(r) for r in rows]

    def close(self) -> None:
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            conn.close()
            self._local.conn = None
