"""Error taxonomy for the chat command layer.

Hierarchy:
    TaskChatError
    ├── ValidationError
    ├── NotFoundError
    ├── AmbiguousMatchError
    ├── RemoteDelegateError
    └── PersistenceError

NotFoundError and AmbiguousMatchError are recovered by the router and rendered
as assistant messages. RemoteDelegateError and PersistenceError are caught at
the executor/delegate boundary; the session stays usable after any of them.
"""

import re
from enum import Enum


class DelegateErrorKind(str, Enum):
    """Categories of remote delegate failures."""

    AUTH = "auth"
    NETWORK = "network"
    SERVICE_UNAVAILABLE = "service_unavailable"
    UPSTREAM_BUSY = "upstream_busy"
    GENERIC = "generic"


class TaskChatError(Exception):
    """Base class for all chat command errors."""


class ValidationError(TaskChatError):
    """A parsed command carried values that cannot be applied."""


class NotFoundError(TaskChatError):
    """A named entity does not exist among the active candidates."""

    def __init__(self, message: str, suggestions: list[str] | None = None) -> None:
        super().__init__(message)
        self.suggestions = suggestions or []


class AmbiguousMatchError(TaskChatError):
    """Several entities share a name; the most recently updated one was used."""

    def __init__(self, message: str, match_count: int) -> None:
        super().__init__(message)
        self.match_count = match_count


class RemoteDelegateError(TaskChatError):
    """The remote conversational service failed."""

    def __init__(self, message: str, kind: DelegateErrorKind = DelegateErrorKind.GENERIC) -> None:
        super().__init__(message)
        self.kind = kind


class PersistenceError(TaskChatError):
    """A store mutation raised."""


# Checked in order; first match wins.
_DELEGATE_ERROR_PATTERNS: list[tuple[re.Pattern[str], DelegateErrorKind]] = [
    (
        re.compile(
            r"\b(401|403|unauthori[sz]ed|forbidden|jwt|session expired|not logged in|"
            r"must be logged in|invalid token|authentication)\b",
            re.IGNORECASE,
        ),
        DelegateErrorKind.AUTH,
    ),
    (
        re.compile(
            r"\b(529|429|overloaded\w*|rate[ _]limit(ed)?|too many requests|busy)\b",
            re.IGNORECASE,
        ),
        DelegateErrorKind.UPSTREAM_BUSY,
    ),
    (
        re.compile(
            r"\b(502|503|504|service unavailable|unavailable|disabled|maintenance)\b",
            re.IGNORECASE,
        ),
        DelegateErrorKind.SERVICE_UNAVAILABLE,
    ),
    (
        re.compile(
            r"\b(network|failed to fetch|connection|connect|timed? ?out|timeout|"
            r"unreachable|dns)\b",
            re.IGNORECASE,
        ),
        DelegateErrorKind.NETWORK,
    ),
]

_DELEGATE_ERROR_MESSAGES = {
    DelegateErrorKind.AUTH: (
        "Your session has expired. Please sign in again and resend your message."
    ),
    DelegateErrorKind.NETWORK: (
        "I couldn't reach the assistant service. Check your connection and try again."
    ),
    DelegateErrorKind.SERVICE_UNAVAILABLE: (
        "The assistant service is unavailable right now. Please try again in a few minutes."
    ),
    DelegateErrorKind.UPSTREAM_BUSY: (
        "The assistant is handling a lot of requests right now. "
        "Give it a moment and send your message again."
    ),
    DelegateErrorKind.GENERIC: (
        "Something went wrong while talking to the assistant. Please try again."
    ),
}


def categorize_delegate_error(error: BaseException | str) -> DelegateErrorKind:
    """Map an exception (or its message) to a delegate error category.

    Args:
        error: The raised exception, or its message text

    Returns:
        The matching DelegateErrorKind, GENERIC when nothing matches
    """
    if isinstance(error, RemoteDelegateError) and error.kind != DelegateErrorKind.GENERIC:
        return error.kind

    text = str(error)
    for pattern, kind in _DELEGATE_ERROR_PATTERNS:
        if pattern.search(text):
            return kind
    return DelegateErrorKind.GENERIC


def render_delegate_error(kind: DelegateErrorKind) -> str:
    """Return the assistant message shown for a delegate error category."""
    return _DELEGATE_ERROR_MESSAGES[kind]
