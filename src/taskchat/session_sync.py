"""Reconciliation of the optimistic transcript with the durable session log.

Two guards protect the local transcript:

- while a send is in flight the durable snapshot may predate the optimistic
  user message, so reconciliation is skipped;
- an empty durable log next to a non-empty transcript means messages are
  visible but were never stored (e.g. after a failed remote call), so they
  are kept.

Otherwise the transcript is replaced by the durable log, but only when the two
differ by message id or text.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum

from taskchat.db.chat_messages import ChatMessage

logger = logging.getLogger(__name__)


class SyncOutcome(str, Enum):
    """What reconciliation did."""

    SKIPPED_SENDING = "skipped_sending"
    SKIPPED_EMPTY_LOG = "skipped_empty_log"
    UNCHANGED = "unchanged"
    REPLACED = "replaced"


@dataclass
class SyncResult:
    outcome: SyncOutcome
    messages: list[ChatMessage] = field(default_factory=list)

    @property
    def replaced(self) -> bool:
        return self.outcome == SyncOutcome.REPLACED


def same_transcript(left: list[ChatMessage], right: list[ChatMessage]) -> bool:
    """Compare transcripts by message id and text only."""
    if len(left) != len(right):
        return False
    return all(a.id == b.id and a.text == b.text for a, b in zip(left, right))


class SessionSynchronizer:
    """Decide whether the local transcript should adopt the durable log."""

    def reconcile(
        self,
        local: list[ChatMessage],
        durable: list[ChatMessage],
        *,
        is_sending: bool,
    ) -> SyncResult:
        """Reconcile a local transcript against a durable snapshot.

        Args:
            local: Messages currently shown
            durable: Normalized durable session log
            is_sending: Whether a submission is in flight

        Returns:
            SyncResult; ``messages`` is the transcript to show afterwards
        """
        if is_sending:
            logger.debug("Skipping reconciliation: send in flight")
            return SyncResult(SyncOutcome.SKIPPED_SENDING, list(local))

        if not durable and local:
            logger.debug("Skipping reconciliation: durable log empty, keeping %d local messages", len(local))
            return SyncResult(SyncOutcome.SKIPPED_EMPTY_LOG, list(local))

        if same_transcript(local, durable):
            return SyncResult(SyncOutcome.UNCHANGED, list(local))

        logger.debug("Replacing %d local messages with %d durable messages", len(local), len(durable))
        return SyncResult(SyncOutcome.REPLACED, list(durable))
