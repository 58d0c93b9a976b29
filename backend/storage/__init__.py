from .chat_store import ChatSessionStore
from .database import SQLiteTriageDB

__all__ = [
    "ChatSessionStore",
    "SQLiteTriageDB",
]
