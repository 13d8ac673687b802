"""Chat command router: the per-session submission pipeline.

One submission moves through:

    Idle -> Submitting -> Classified
        -> Resolving -> Executing -> Suggesting -> Done      (pattern matched)
        -> Delegating -> Done                                (no match)
        -> ErrorReported -> Done                             (any failure)

Done clears the loading guard and triggers reconciliation with the durable
session log. A submission arriving while another is in flight is dropped.
"""

import logging
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date
from typing import Any

import duckdb

from taskchat.broadcast import (
    DOCUMENT_GENERATED,
    ENTITIES_CREATED,
    MILESTONES_CREATED,
    PRIORITY_STREAM_CREATED,
    EventBus,
    get_event_bus,
)
from taskchat.config import EngineConfig, get_engine_config
from taskchat.db.chat_messages import ChatMessage, SessionStore
from taskchat.db.entities import EntityStore
from taskchat.delegate import RemoteDelegate
from taskchat.errors import categorize_delegate_error, render_delegate_error
from taskchat.logging_utils import get_request_id, log_error, log_info, log_warning, set_request_id
from taskchat.metrics import MetricsCollector
from taskchat.models import ChatStatus, DelegateReply
from taskchat.session_sync import SessionSynchronizer, SyncOutcome

from .executor import STATUS_NEEDS_CONFIRMATION, ActionExecutor, ExecutionResult
from .intent_parser import IntentParser, is_cancellation, is_confirmation
from .parsed import ParsedCommand
from .pending_actions import PendingActionManager
from .suggestions import build_snapshot, generate_suggestions

logger = logging.getLogger(__name__)

GENERIC_FAILURE_MESSAGE = "Sorry, something went wrong handling that message. Please try again."


@dataclass
class SubmissionResult:
    """What one submission produced."""

    status: ChatStatus
    accepted: bool = True
    intent: dict[str, Any] | None = None
    messages: list[ChatMessage] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)
    pending_confirmation: dict[str, Any] | None = None
    # Original text, returned when the user may want to resend it
    retry_text: str | None = None


class ChatSession:
    """One chat surface: the optimistic transcript and its submission pipeline."""

    def __init__(
        self,
        session_id: str,
        *,
        store: EntityStore,
        session_store: SessionStore,
        delegate: RemoteDelegate,
        pending_actions: PendingActionManager,
        parser: IntentParser | None = None,
        config: EngineConfig | None = None,
        event_bus: EventBus | None = None,
        metrics: MetricsCollector | None = None,
        today_provider: Callable[[], date] = date.today,
        owner_id: str | None = None,
    ) -> None:
        """Initialize the session.

        Args:
            session_id: Chat session identifier
            store: Entity store handle passed to the executor
            session_store: Durable session log
            delegate: Conversational fallback for unmatched text
            pending_actions: Confirmation storage shared across sessions
            parser: Pattern classifier (default: a new IntentParser)
            config: Engine configuration (default: the cached config)
            event_bus: Broadcast bus (default: the global bus)
            metrics: Optional metrics collector
            today_provider: Reference date for relative dates and deadlines
            owner_id: Owner of the session; scopes pending confirmations
        """
        self.session_id = session_id
        self.owner_id = owner_id
        self.store = store
        self.session_store = session_store
        self.delegate = delegate
        self.pending_actions = pending_actions
        self.config = config or get_engine_config()
        self.parser = parser or IntentParser(today_provider=today_provider)
        self.event_bus = event_bus or get_event_bus()
        self.metrics = metrics
        self.today_provider = today_provider
        self.executor = ActionExecutor(
            store,
            confirm_fuzzy_matches=self.config.confirm_fuzzy_matches,
            today_provider=today_provider,
            metrics=metrics,
        )
        self.synchronizer = SessionSynchronizer()

        self.messages: list[ChatMessage] = []
        self.is_sending = False
        self.closed = False

    @property
    def confirmation_key(self) -> str:
        """Key for this session's pending confirmation; session ids are only unique per owner."""
        if self.owner_id:
            return f"{self.owner_id}:{self.session_id}"
        return self.session_id

    def close(self) -> None:
        """Tear down the session; late completions no longer touch its state."""
        self.closed = True

    async def submit(self, text: str) -> SubmissionResult:
        """Handle one user message.

        Args:
            text: Raw message text

        Returns:
            SubmissionResult; ``accepted`` is False when the message was dropped
            because another submission is in flight or the text is empty
        """
        text = (text or "").strip()
        if not text or self.closed:
            return SubmissionResult(status=ChatStatus.IGNORED, accepted=False)
        if self.is_sending:
            log_info(logger, "Submission dropped, send in flight", session_id=self.session_id)
            return SubmissionResult(status=ChatStatus.IGNORED, accepted=False)

        # Set before the first suspension point so the guard is atomic
        self.is_sending = True
        if get_request_id() is None:
            set_request_id()
        started = time.monotonic()

        user_message = ChatMessage.create(text, "user")
        self.messages.append(user_message)

        try:
            await self._store_message(user_message)
            result = await self._dispatch(text)
        except Exception:
            logger.exception("Unhandled error processing message for session %s", self.session_id)
            result = SubmissionResult(status=ChatStatus.ERROR, retry_text=text)
            self._reply(result, GENERIC_FAILURE_MESSAGE)
        finally:
            self.is_sending = False

        if not self.closed:
            for message in result.messages:
                await self._store_message(message)
        await self.synchronize()

        if self.metrics is not None:
            intent_name = result.intent["name"] if result.intent else "delegate"
            self.metrics.record_command(intent_name, result.status.value, (time.monotonic() - started) * 1000)
        return result

    async def synchronize(self) -> SyncOutcome | None:
        """Reconcile the local transcript with the durable session log."""
        if self.closed:
            return None
        try:
            durable = await self.session_store.refresh_active_session()
        except duckdb.Error as e:
            log_error(logger, "Could not refresh session log", session_id=self.session_id, error=str(e))
            return None

        sync = self.synchronizer.reconcile(self.messages, durable, is_sending=self.is_sending)
        if sync.replaced and not self.closed:
            self.messages = sync.messages
        return sync.outcome

    async def _store_message(self, message: ChatMessage) -> None:
        try:
            await self.session_store.append(message)
        except duckdb.Error as e:
            # The message stays visible locally; reconciliation keeps it
            log_error(logger, "Could not store chat message", session_id=self.session_id, error=str(e))

    def _reply(self, result: SubmissionResult, text: str) -> None:
        if self.closed:
            return
        message = ChatMessage.create(text, "assistant")
        self.messages.append(message)
        result.messages.append(message)

    async def _dispatch(self, text: str) -> SubmissionResult:
        pending = self.pending_actions.get(self.confirmation_key)
        if pending is not None:
            if is_confirmation(text):
                confirmed = self.pending_actions.confirm(self.confirmation_key)
                if confirmed is None:
                    self._record_confirmation("expired")
                    result = SubmissionResult(status=ChatStatus.INFO)
                    self._reply(result, "That suggestion has expired. Please send the command again.")
                    return result
                self._record_confirmation("confirmed")
                log_info(logger, "Suggestion confirmed", session_id=self.session_id, intent=confirmed.command["name"])
                return await self._run_command(confirmed.parsed_command())

            if is_cancellation(text):
                self.pending_actions.cancel(self.confirmation_key)
                self._record_confirmation("cancelled")
                result = SubmissionResult(status=ChatStatus.INFO)
                self._reply(result, "Okay, I won't make that change.")
                return result

            # Any other message abandons the suggestion
            self.pending_actions.cancel(self.confirmation_key)
            self._record_confirmation("abandoned")

        command = self.parser.parse(text)
        if command is None:
            return await self._delegate(text)
        log_info(logger, "Classified message", session_id=self.session_id, intent=command.intent)
        return await self._run_command(command)

    async def _run_command(self, command: ParsedCommand) -> SubmissionResult:
        execution = await self.executor.execute(command)
        log_info(
            logger,
            "Command executed",
            session_id=self.session_id,
            intent=command.intent,
            status=execution.status,
        )

        result = SubmissionResult(status=ChatStatus(execution.status), intent=command.to_dict())
        text = execution.reply

        if execution.status == STATUS_NEEDS_CONFIRMATION and execution.pending_command is not None:
            pending = self.pending_actions.create(
                self.confirmation_key,
                execution.pending_command,
                execution.message,
                expiry_seconds=self.config.confirmation_expiry_seconds,
            )
            result.pending_confirmation = pending.to_dict()
            text += " Reply \"yes\" to go ahead or \"no\" to cancel."
        elif execution.mutated:
            result.suggestions = self._suggest(execution)
        else:
            result.suggestions = list(execution.suggestions)

        if result.suggestions and execution.mutated:
            text += "\n\nNext steps:\n" + "\n".join(f"- {s}" for s in result.suggestions)
        self._reply(result, text)
        return result

    def _suggest(self, execution: ExecutionResult) -> list[str]:
        # The mutation has been awaited; read a fresh snapshot
        snapshot = build_snapshot(
            self.store.get_projects(),
            self.store.get_profile(),
            self.today_provider(),
            project_id=execution.project_id,
            goal_id=execution.goal_id,
            milestone_id=execution.milestone_id,
            **self.config.suggestion_thresholds(),
        )
        return generate_suggestions(
            execution.entity_type, execution.action, snapshot, limit=self.config.max_suggestions
        )

    async def _delegate(self, text: str) -> SubmissionResult:
        try:
            reply = await self.delegate.send_message(text)
        except Exception as e:
            kind = categorize_delegate_error(e)
            log_warning(logger, "Delegate failed", session_id=self.session_id, kind=kind.value, error=str(e))
            if self.metrics is not None:
                self.metrics.record_delegate_error(kind.value)
            result = SubmissionResult(status=ChatStatus.ERROR, retry_text=text)
            self._reply(result, render_delegate_error(kind))
            return result

        if self.closed:
            log_info(logger, "Session closed before delegate replied", session_id=self.session_id)
            return SubmissionResult(status=ChatStatus.DELEGATED)

        self._broadcast(reply)
        result = SubmissionResult(status=ChatStatus.DELEGATED)
        self._reply(result, reply.response)
        return result

    def _broadcast(self, reply: DelegateReply) -> None:
        base = {"session_id": self.session_id}
        if reply.entities_created:
            self.event_bus.publish(
                ENTITIES_CREATED,
                {**base, "entities": [entity.model_dump() for entity in reply.entities_created]},
            )
        if reply.document_generated:
            self.event_bus.publish(DOCUMENT_GENERATED, base)
        if reply.priority_stream_created:
            self.event_bus.publish(PRIORITY_STREAM_CREATED, base)
        if reply.milestones_created:
            self.event_bus.publish(MILESTONES_CREATED, base)

    def _record_confirmation(self, outcome: str) -> None:
        if self.metrics is not None:
            self.metrics.record_confirmation(outcome)


class CommandRouter:
    """Create and hold chat sessions over shared collaborators.

    Sessions are kept in memory only while in use. A session idle for
    ``session_idle_seconds`` is closed and dropped, and the least recently
    used sessions are dropped once more than ``max_sessions`` are live.
    The next message for a dropped id builds a fresh session, which
    restores its transcript from the durable session log.
    """

    def __init__(
        self,
        store_factory: Callable[[], EntityStore],
        session_store_factory: Callable[[str], SessionStore],
        delegate: RemoteDelegate,
        pending_actions: PendingActionManager,
        config: EngineConfig | None = None,
        event_bus: EventBus | None = None,
        metrics: MetricsCollector | None = None,
        owner_id: str | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the router.

        Args:
            store_factory: Builds the entity store handle for a new session
            session_store_factory: Builds the durable log for a session id
            delegate: Conversational fallback
            pending_actions: Confirmation storage
            config: Engine configuration
            event_bus: Broadcast bus
            metrics: Optional metrics collector
            owner_id: Owner of every session this router holds
            clock: Monotonic time source for idle eviction
        """
        self.store_factory = store_factory
        self.session_store_factory = session_store_factory
        self.delegate = delegate
        self.pending_actions = pending_actions
        self.config = config or get_engine_config()
        self.event_bus = event_bus or get_event_bus()
        self.metrics = metrics
        self.owner_id = owner_id
        self.clock = clock
        # Least recently used first
        self._sessions: OrderedDict[str, ChatSession] = OrderedDict()
        self._last_used: dict[str, float] = {}

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    def get_session(self, session_id: str) -> ChatSession:
        """Return the live session for an id, creating it on first use."""
        self.evict_idle()
        session = self._sessions.get(session_id)
        if session is None or session.closed:
            session = ChatSession(
                session_id,
                store=self.store_factory(),
                session_store=self.session_store_factory(session_id),
                delegate=self.delegate,
                pending_actions=self.pending_actions,
                config=self.config,
                event_bus=self.event_bus,
                metrics=self.metrics,
                owner_id=self.owner_id,
            )
            self._sessions[session_id] = session
        self._sessions.move_to_end(session_id)
        self._last_used[session_id] = self.clock()
        self._enforce_limit(keep=session_id)
        return session

    def close_session(self, session_id: str) -> bool:
        self._last_used.pop(session_id, None)
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        session.close()
        return True

    def evict_idle(self) -> int:
        """Close sessions idle for longer than the configured limit.

        Sessions with a submission in flight are kept.

        Returns:
            Number of sessions closed
        """
        idle_seconds = self.config.session_idle_seconds
        if idle_seconds <= 0:
            return 0
        now = self.clock()
        expired = [
            session_id
            for session_id, session in self._sessions.items()
            if not session.is_sending and now - self._last_used.get(session_id, now) >= idle_seconds
        ]
        for session_id in expired:
            self.close_session(session_id)
        if expired:
            log_info(logger, "Evicted idle sessions", owner_id=self.owner_id, count=len(expired))
        return len(expired)

    def _enforce_limit(self, keep: str) -> None:
        limit = self.config.max_sessions
        if limit <= 0 or len(self._sessions) <= limit:
            return
        candidates = [
            session_id
            for session_id, session in self._sessions.items()
            if session_id != keep and not session.is_sending
        ]
        for session_id in candidates[: len(self._sessions) - limit]:
            self.close_session(session_id)
