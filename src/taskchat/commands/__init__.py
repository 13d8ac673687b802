"""Chat command system.

This module implements:
- Pattern classification of chat text into typed commands
- Entity resolution with graded confidence tiers
- Idempotent command execution and follow-up suggestions
- Pending confirmation flow for suggested matches
- The per-session submission pipeline
"""

from .executor import ActionExecutor, ExecutionResult
from .intent_parser import IntentParser
from .parsed import ParsedCommand
from .pending_actions import PendingActionManager, PendingConfirmation, RedisPendingActionManager
from .resolver import ResolutionResult, ResolutionTier, resolve
from .router import ChatSession, CommandRouter, SubmissionResult
from .suggestions import generate_suggestions

__all__ = [
    "ActionExecutor",
    "ChatSession",
    "CommandRouter",
    "ExecutionResult",
    "IntentParser",
    "ParsedCommand",
    "PendingActionManager",
    "PendingConfirmation",
    "RedisPendingActionManager",
    "ResolutionResult",
    "ResolutionTier",
    "SubmissionResult",
    "generate_suggestions",
    "resolve",
]
