"""DuckDB persistence for entities and chat sessions."""

from .chat_messages import ChatMessage, SessionStore
from .connection import get_connection, get_db_path, init_db
from .entities import DuckDBEntityStore, EntityStore
from .migrations import run_migrations

__all__ = [
    "ChatMessage",
    "DuckDBEntityStore",
    "EntityStore",
    "SessionStore",
    "get_connection",
    "get_db_path",
    "init_db",
    "run_migrations",
]
