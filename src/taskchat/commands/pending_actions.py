"""Pending confirmation management for suggested-fallback resolutions.

At most one confirmation is pending per chat session; a new one replaces the
previous. The stored command has already been retargeted at the suggested
entity, so confirming it executes without another resolution round.

Sessions are keyed by the caller. Session ids are only unique per owner, so
chat sessions pass an owner-qualified key such as ``"alice:session-1"``.
"""

import json
import logging
import secrets
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import redis

from .parsed import ParsedCommand, command_from_dict

logger = logging.getLogger(__name__)


@dataclass
class PendingConfirmation:
    """A retargeted command awaiting a yes/no reply."""

    token: str
    session_id: str
    command: dict[str, Any]
    summary: str
    expires_at: datetime

    def is_expired(self) -> bool:
        """Check if this confirmation has expired."""
        return datetime.now(UTC) >= self.expires_at

    def parsed_command(self) -> ParsedCommand:
        """Rebuild the typed command."""
        return command_from_dict(self.command)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API responses."""
        return {
            "token": self.token,
            "expires_at": self.expires_at.isoformat(),
            "summary": self.summary,
            "intent": self.command.get("name"),
        }


class PendingActionManager:
    """Manage pending confirmations in memory, one per session."""

    def __init__(self, default_expiry_seconds: int = 120) -> None:
        """Initialize the manager.

        Args:
            default_expiry_seconds: Time until confirmations expire (default: 120s)
        """
        self.default_expiry_seconds = default_expiry_seconds
        # session_id -> PendingConfirmation
        self._pending: dict[str, PendingConfirmation] = {}

    def _build(
        self, session_id: str, command: ParsedCommand, summary: str, expiry_seconds: int | None
    ) -> tuple[PendingConfirmation, int]:
        expiry = expiry_seconds or self.default_expiry_seconds
        pending = PendingConfirmation(
            token=secrets.token_urlsafe(16),
            session_id=session_id,
            command=command.to_dict(),
            summary=summary,
            expires_at=datetime.now(UTC) + timedelta(seconds=expiry),
        )
        return pending, expiry

    def create(
        self,
        session_id: str,
        command: ParsedCommand,
        summary: str,
        expiry_seconds: int | None = None,
    ) -> PendingConfirmation:
        """Store a confirmation for a session, replacing any earlier one.

        Args:
            session_id: Chat session awaiting the reply
            command: Command to execute on confirmation
            summary: The question shown to the user
            expiry_seconds: Custom expiry time, or use default

        Returns:
            The stored PendingConfirmation
        """
        pending, _ = self._build(session_id, command, summary, expiry_seconds)
        self._pending[session_id] = pending
        return pending

    def get(self, session_id: str) -> PendingConfirmation | None:
        """Return the session's confirmation if present and not expired."""
        pending = self._pending.get(session_id)
        if pending is None:
            return None

        if pending.is_expired():
            del self._pending[session_id]
            return None

        return pending

    def confirm(self, session_id: str) -> PendingConfirmation | None:
        """Consume the session's confirmation.

        Returns:
            The confirmation if found, None if missing or expired
        """
        pending = self.get(session_id)
        if pending is None:
            return None

        del self._pending[session_id]
        return pending

    def cancel(self, session_id: str) -> bool:
        """Discard the session's confirmation.

        Returns:
            True if one was discarded, False if none was pending
        """
        pending = self.get(session_id)
        if pending is None:
            return False

        del self._pending[session_id]
        return True

    def cleanup_expired(self) -> int:
        """Remove all expired confirmations.

        Returns:
            Number of confirmations removed
        """
        now = datetime.now(UTC)
        expired = [sid for sid, pending in self._pending.items() if pending.expires_at <= now]
        for session_id in expired:
            del self._pending[session_id]
        return len(expired)


class RedisPendingActionManager(PendingActionManager):
    """Redis-backed confirmations with TTL expiry and atomic consumption.

    Falls back to the in-memory behavior when no client is given.
    """

    def __init__(
        self,
        redis_client: redis.Redis | None = None,
        default_expiry_seconds: int = 120,
        key_prefix: str = "taskchat:pending:",
    ) -> None:
        """Initialize the Redis-backed manager.

        Args:
            redis_client: Redis client instance (None to use in-memory fallback)
            default_expiry_seconds: Time until confirmations expire (default: 120s)
            key_prefix: Prefix for Redis keys
        """
        super().__init__(default_expiry_seconds)
        self.redis = redis_client
        self.key_prefix = key_prefix

        if self.redis is None:
            logger.warning("Redis not available, using in-memory fallback for pending confirmations")
        else:
            logger.info("Using Redis-backed pending confirmation storage")

    def _make_redis_key(self, session_id: str) -> str:
        return f"{self.key_prefix}{session_id}"

    def _serialize(self, pending: PendingConfirmation) -> str:
        return json.dumps(
            {
                "token": pending.token,
                "session_id": pending.session_id,
                "command": pending.command,
                "summary": pending.summary,
                "expires_at": pending.expires_at.isoformat(),
            }
        )

    def _deserialize(self, data: str | bytes) -> PendingConfirmation:
        if isinstance(data, bytes):
            data = data.decode()
        obj = json.loads(data)
        return PendingConfirmation(
            token=obj["token"],
            session_id=obj["session_id"],
            command=obj["command"],
            summary=obj["summary"],
            expires_at=datetime.fromisoformat(obj["expires_at"]),
        )

    def create(
        self,
        session_id: str,
        command: ParsedCommand,
        summary: str,
        expiry_seconds: int | None = None,
    ) -> PendingConfirmation:
        if self.redis is None:
            return super().create(session_id, command, summary, expiry_seconds)

        pending, expiry = self._build(session_id, command, summary, expiry_seconds)
        try:
            self.redis.setex(self._make_redis_key(session_id), expiry, self._serialize(pending))
            logger.debug("Stored pending confirmation for session %s with TTL %ds", session_id, expiry)
        except redis.RedisError as e:
            logger.error("Redis error storing pending confirmation: %s", e)
            # Keep the flow usable in this process
            self._pending[session_id] = pending
        return pending

    def get(self, session_id: str) -> PendingConfirmation | None:
        if self.redis is None:
            return super().get(session_id)

        try:
            data = self.redis.get(self._make_redis_key(session_id))
            if data is None:
                return super().get(session_id)

            pending = self._deserialize(data)
            if pending.is_expired():
                self.redis.delete(self._make_redis_key(session_id))
                return None
            return pending

        except redis.RedisError as e:
            logger.error("Redis error retrieving pending confirmation: %s", e)
            return super().get(session_id)
        except (json.JSONDecodeError, KeyError) as e:
            logger.error("Error deserializing pending confirmation: %s", e)
            return None

    def confirm(self, session_id: str) -> PendingConfirmation | None:
        """Consume the session's confirmation with WATCH/MULTI for exactly-once use."""
        if self.redis is None:
            return super().confirm(session_id)

        redis_key = self._make_redis_key(session_id)
        try:
            pipe = self.redis.pipeline()
            pipe.watch(redis_key)

            data = pipe.get(redis_key)
            if data is None:
                pipe.unwatch()
                return super().confirm(session_id)

            pending = self._deserialize(data)

            pipe.multi()
            pipe.delete(redis_key)
            pipe.execute()

            if pending.is_expired():
                return None
            logger.debug("Confirmed pending action for session %s", session_id)
            return pending

        except redis.WatchError:
            # Another worker consumed it first
            logger.debug("Concurrent confirmation detected for session %s", session_id)
            return None
        except redis.RedisError as e:
            logger.error("Redis error confirming pending action: %s", e)
            return None
        except (json.JSONDecodeError, KeyError) as e:
            logger.error("Error deserializing pending confirmation: %s", e)
            return None

    def cancel(self, session_id: str) -> bool:
        if self.redis is None:
            return super().cancel(session_id)

        try:
            removed = self.redis.delete(self._make_redis_key(session_id))
        except redis.RedisError as e:
            logger.error("Redis error cancelling pending confirmation: %s", e)
            return super().cancel(session_id)
        return removed > 0 or super().cancel(session_id)
