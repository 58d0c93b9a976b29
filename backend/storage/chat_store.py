from __future__ import annotations

import json
from typing import Any

from .database import SQLiteTriageDB
from .time_utils import to_iso, utc_now


def _json_dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


class ChatSessionStore:
    """Per-user chat history rows. History is stored raw and sanitised on read."""

    def __init__(self, db: SQLiteTriageDB) -> None:
        self._db = db

    def get(self, user_id: str) -> dict[str, Any] | None:
        with self._db.connection() as conn:
            row = conn.execute(
                """
                SELECT user_id, language, history_json, updated_at
                FROM chat_sessions
                WHERE user_id = ?
                LIMIT 1
                """,
                (user_id,),
            ).fetchone()
        if row is None:
            return None
        return {
            "user_id": row["user_id"],
            "language": row["language"],
            "history": json.loads(row["history_json"]),
            "updated_at": row["updated_at"],
        }

    def reset(self, user_id: str, language: str) -> dict[str, Any]:
        now = to_iso(utc_now())
        with self._db.connection() as conn:
            conn.execute(
                """
                INSERT INTO chat_sessions (user_id, language, history_json, created_at, updated_at)
                VALUES (?, ?, '[]', ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                  language = excluded.language,
                  history_json = '[]',
                  updated_at = excluded.updated_at
                """,
                (user_id, language, now, now),
            )
        return {"user_id": user_id, "language": language, "history": [], "updated_at": now}

    def load_for_language(self, user_id: str, language: str) -> dict[str, Any]:
        session = self.get(user_id)
        if session is None or session["language"] != language:
            return self.reset(user_id, language)
        return session

    def save_history(self, user_id: str, history: list[dict[str, Any]]) -> None:
        with self._db.connection() as conn:
            updated = conn.execute(
                """
                UPDATE chat_sessions
                SET history_json = ?, updated_at = ?
                WHERE user_id = ?
                """,
                (_json_dumps(history), to_iso(utc_now()), user_id),
            ).rowcount
        if updated == 0:
            raise KeyError(f"Chat session not found for user {user_id}")

    def append_turn(self, user_id: str, role: str, text: str) -> int:
        """Append one turn and return the new history length."""
        session = self.get(user_id)
        if session is None:
            raise KeyError(f"Chat session not found for user {user_id}")
        history = session["history"]
        history.append({"role": role, "parts": [{"text": text}]})
        self.save_history(user_id, history)
        return len(history)

    def pop_last_turn(self, user_id: str, *, role: str) -> bool:
        session = self.get(user_id)
        if session is None or not session["history"]:
            return False
        history = session["history"]
        if history[-1].get("role") != role:
            return False
        history.pop()
        self.save_history(user_id, history)
        return True
