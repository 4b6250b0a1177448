"""
cache/token_store.py -- SQLite-backed store for federated ID tokens.

Holds the raw OIDC ID token per user so that logout can pass it to the
provider as id_token_hint. Entries expire when the ID token itself
expires; nothing renews them.

TTL is emulated: each row stores an absolute expires_at (epoch seconds).
get() treats an expired row as absent and deletes it on the spot;
purge_expired() sweeps the rest and is called by the API's background loop.

Each operation opens its own short-lived connection (WAL mode, 5 s busy
timeout), so callers working on different users never contend for a lock
held in this process. Same-key writes are last-write-wins.

Usage:
    store = IDTokenStore("data/id_tokens.db")
    store.put(42, raw_id_token, expires_at)
    store.get(42)          # raw_id_token, or TokenNotFound
    store.delete(42)       # idempotent
"""

import sqlite3
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

from auth.errors import InvalidExpiry, TokenNotFound

_DEFAULT_DB = Path(__file__).resolve().parent.parent / "data" / "id_tokens.db"

_DDL = """
CREATE TABLE IF NOT EXISTS id_tokens (
    key         TEXT PRIMARY KEY,
    token       TEXT NOT NULL,
    expires_at  REAL NOT NULL
);
"""


def _key(user_id: int) -> str:
    return f"id_token:{user_id}"


class IDTokenStore:
    def __init__(self, db_path: Path | str = _DEFAULT_DB, clock: Callable[[], float] = time.time) -> None:
        self.db_path = Path(db_path)
        self._clock = clock
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute(_DDL)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.db_path, timeout=5.0)
        try:
            with conn:  # commit on success, rollback on error
                yield conn
        finally:
            conn.close()

    def put(self, user_id: int, token: str, expires_at: datetime) -> None:
        """Store token for user_id until expires_at, replacing any existing entry.

        The TTL is expires_at minus now, rounded to the nearest second.
        Raises InvalidExpiry if that is zero or negative.
        """
        now = self._clock()
        ttl = round(expires_at.timestamp() - now)
        if ttl <= 0:
            raise InvalidExpiry(f"ID token expiry must be in the future (ttl={ttl}s).")
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO id_tokens (key, token, expires_at) VALUES (?, ?, ?)",
                (_key(user_id), token, now + ttl),
            )

    def get(self, user_id: int) -> str:
        """Return the stored token for user_id. Raises TokenNotFound if absent or expired."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT token, expires_at FROM id_tokens WHERE key = ?",
                (_key(user_id),),
            ).fetchone()
            expired = row is not None and row[1] <= self._clock()
            if expired:
                # Lazy eviction. Guarded on expires_at so a concurrent put() survives.
                conn.execute(
                    "DELETE FROM id_tokens WHERE key = ? AND expires_at = ?",
                    (_key(user_id), row[1]),
                )
        if row is None or expired:
            raise TokenNotFound(f"No live ID token stored for user {user_id}.")
        return row[0]

    def delete(self, user_id: int) -> None:
        """Remove the entry for user_id. Absence is not an error."""
        with self._connect() as conn:
            conn.execute("DELETE FROM id_tokens WHERE key = ?", (_key(user_id),))

    def purge_expired(self) -> int:
        """Delete all expired entries. Returns number of rows removed."""
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM id_tokens WHERE expires_at <= ?", (self._clock(),))
            return cursor.rowcount
