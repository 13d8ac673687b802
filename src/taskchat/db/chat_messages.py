"""Chat messages persistence module.

The durable session log: an append-only record of user and assistant
messages per chat session, independent of any in-memory transcript.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal

import duckdb

from taskchat.db.entities import utcnow

logger = logging.getLogger(__name__)

Sender = Literal["user", "assistant"]


@dataclass
class ChatMessage:
    """One visible transcript entry."""

    id: str
    text: str
    sender: Sender
    timestamp: datetime

    @classmethod
    def create(cls, text: str, sender: Sender) -> "ChatMessage":
        """Build a message with a fresh id and the current timestamp."""
        return cls(id=str(uuid.uuid4()), text=text, sender=sender, timestamp=utcnow())

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API responses."""
        return {
            "id": self.id,
            "text": self.text,
            "sender": self.sender,
            "timestamp": self.timestamp.isoformat(),
        }


def store_message(
    conn: duckdb.DuckDBPyConnection, owner_id: str, session_id: str, message: ChatMessage
) -> ChatMessage:
    """Append a message to a session's durable log.

    Args:
        conn: Database connection.
        owner_id: Owning user.
        session_id: Chat session identifier.
        message: Message to store.

    Returns:
        The stored message.
    """
    conn.execute(
        """
        INSERT INTO chat_messages (id, session_id, owner_id, role, content, created_at)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        [message.id, session_id, owner_id, message.sender, message.text, message.timestamp],
    )
    return message


def get_session_messages(
    conn: duckdb.DuckDBPyConnection, owner_id: str, session_id: str, limit: int = 200
) -> list[dict[str, Any]]:
    """Return the raw rows of a session's log, oldest first.

    Rows are returned as dictionaries with ``id``, ``role``, ``content`` and
    ``created_at`` keys; use ``normalize_messages`` to turn them into
    ChatMessage records.
    """
    rows = conn.execute(
        """
        SELECT id, role, content, created_at
        FROM (
            SELECT id, role, content, created_at
            FROM chat_messages
            WHERE owner_id = ? AND session_id = ?
            ORDER BY created_at DESC
            LIMIT ?
        )
        ORDER BY created_at ASC
        """,
        [owner_id, session_id, limit],
    ).fetchall()
    return [{"id": row[0], "role": row[1], "content": row[2], "created_at": row[3]} for row in rows]


def normalize_messages(rows: list[dict[str, Any]]) -> list[ChatMessage]:
    """Convert durable log rows to transcript messages.

    Rows with roles other than user/assistant (e.g. system prompts) and rows
    without content are dropped.
    """
    messages = []
    for row in rows:
        role = (row.get("role") or "").lower()
        content = row.get("content")
        if role not in ("user", "assistant") or not content:
            continue
        messages.append(
            ChatMessage(id=str(row["id"]), text=content, sender=role, timestamp=row["created_at"])
        )
    return messages


class SessionStore:
    """Durable session log for one chat session."""

    def __init__(self, conn: duckdb.DuckDBPyConnection, owner_id: str, session_id: str) -> None:
        self.conn = conn
        self.owner_id = owner_id
        self.session_id = session_id
        self._snapshot: list[ChatMessage] = []

    @property
    def messages(self) -> list[ChatMessage]:
        """The snapshot loaded by the last refresh."""
        return list(self._snapshot)

    async def append(self, message: ChatMessage) -> ChatMessage:
        return store_message(self.conn, self.owner_id, self.session_id, message)

    async def refresh_active_session(self) -> list[ChatMessage]:
        """Reload the durable snapshot for this session."""
        rows = get_session_messages(self.conn, self.owner_id, self.session_id)
        self._snapshot = normalize_messages(rows)
        return self.messages
