"""Short-lived, single-use store bridging the describe and conclude phases."""

from __future__ import annotations

import asyncio
import logging
import threading
import time
import uuid
from typing import Callable, Protocol

from storage.database import SQLiteTriageDB

from .models import AnalysisSession

LOGGER = logging.getLogger(__name__)

SESSION_TTL_SECONDS = 15 * 60

Clock = Callable[[], float]


class SessionBackend(Protocol):
    def put(self, session: AnalysisSession) -> None: ...

    def take(self, session_id: str, now: float) -> AnalysisSession | None:
        """Remove and return the session if it is still live."""
        ...

    def delete(self, session_id: str) -> bool: ...

    def delete_expired(self, now: float) -> int: ...

    def count(self) -> int: ...


class InMemorySessionBackend:
    def __init__(self) -> None:
        self._sessions: dict[str, AnalysisSession] = {}
        self._lock = threading.Lock()

    def put(self, session: AnalysisSession) -> None:
        with self._lock:
            self._sessions[session.id] = session

    def take(self, session_id: str, now: float) -> AnalysisSession | None:
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None or session.expires_at <= now:
            return None
        return session

    def delete(self, session_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def delete_expired(self, now: float) -> int:
        with self._lock:
            expired = [key for key, session in self._sessions.items() if session.expires_at <= now]
            for key in expired:
                del self._sessions[key]
        return len(expired)

    def count(self) -> int:
        with self._lock:
            return len(self._sessions)


class SQLiteSessionBackend:
    """Sessions in the shared SQLite file; the DELETE row count picks the single winner."""

    def __init__(self, db: SQLiteTriageDB) -> None:
        self._db = db

    def put(self, session: AnalysisSession) -> None:
        with self._db.connection() as conn:
            conn.execute(
                """
                INSERT INTO analysis_sessions (id, description, created_at, expires_at)
                VALUES (?, ?, ?, ?)
                """,
                (session.id, session.description, time.time(), session.expires_at),
            )

    def take(self, session_id: str, now: float) -> AnalysisSession | None:
        with self._db.connection() as conn:
            row = conn.execute(
                "SELECT id, description, expires_at FROM analysis_sessions WHERE id = ?",
                (session_id,),
            ).fetchone()
            if row is None:
                return None
            deleted = conn.execute("DELETE FROM analysis_sessions WHERE id = ?", (session_id,)).rowcount
        if deleted != 1 or row["expires_at"] <= now:
            return None
        return AnalysisSession(id=row["id"], description=row["description"], expires_at=row["expires_at"])

    def delete(self, session_id: str) -> bool:
        with self._db.connection() as conn:
            return conn.execute("DELETE FROM analysis_sessions WHERE id = ?", (session_id,)).rowcount > 0

    def delete_expired(self, now: float) -> int:
        with self._db.connection() as conn:
            return conn.execute("DELETE FROM analysis_sessions WHERE expires_at <= ?", (now,)).rowcount

    def count(self) -> int:
        with self._db.connection() as conn:
            row = conn.execute("SELECT COUNT(*) AS count FROM analysis_sessions").fetchone()
        return int(row["count"]) if row else 0


class AnalysisSessionCache:
    """create/consume/evict over a pluggable backend.

    Each entry lives for ``ttl_seconds`` from creation. Expiry is checked on
    every consume, so the bound holds even between sweeps.
    """

    def __init__(
        self,
        backend: SessionBackend | None = None,
        *,
        ttl_seconds: float = SESSION_TTL_SECONDS,
        clock: Clock = time.time,
    ) -> None:
        self.backend = backend or InMemorySessionBackend()
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    def create(self, description: str) -> str:
        session_id = uuid.uuid4().hex
        self.backend.put(
            AnalysisSession(id=session_id, description=description, expires_at=self._clock() + self.ttl_seconds)
        )
        return session_id

    def take(self, session_id: str) -> AnalysisSession | None:
        if not session_id:
            return None
        return self.backend.take(session_id, self._clock())

    def consume(self, session_id: str) -> str | None:
        session = self.take(session_id)
        return session.description if session else None

    def restore(self, session: AnalysisSession) -> bool:
        """Put back a taken session with its original expiry, unless it has lapsed."""
        if session.expires_at <= self._clock():
            return False
        self.backend.put(session)
        return True

    def evict(self, session_id: str) -> bool:
        return self.backend.delete(session_id)

    def sweep_expired(self) -> int:
        removed = self.backend.delete_expired(self._clock())
        if removed:
            LOGGER.info("Cleaned up %d expired analysis sessions", removed)
        return removed

    def __len__(self) -> int:
        return self.backend.count()

    async def run_sweeper(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                self.sweep_expired()
            except Exception:
                LOGGER.exception("Analysis session sweep failed")
