"""Remote conversational delegate.

Text that matches no command family is forwarded verbatim to a general
conversational service. Failures are raised as RemoteDelegateError with a
categorized kind; the caller renders them.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx
from pydantic import ValidationError as PydanticValidationError

from taskchat.config import EngineConfig, get_engine_config
from taskchat.errors import DelegateErrorKind, RemoteDelegateError, categorize_delegate_error
from taskchat.logging_utils import log_warning, redact_secrets
from taskchat.models import DelegateReply

logger = logging.getLogger(__name__)

_STATUS_KINDS = {
    401: DelegateErrorKind.AUTH,
    403: DelegateErrorKind.AUTH,
    429: DelegateErrorKind.UPSTREAM_BUSY,
    529: DelegateErrorKind.UPSTREAM_BUSY,
    502: DelegateErrorKind.SERVICE_UNAVAILABLE,
    503: DelegateErrorKind.SERVICE_UNAVAILABLE,
    504: DelegateErrorKind.SERVICE_UNAVAILABLE,
}


class RemoteDelegate(ABC):
    """Abstract base class for conversational delegates."""

    @abstractmethod
    async def send_message(self, text: str) -> DelegateReply:
        """Forward text and return the structured reply.

        Raises:
            RemoteDelegateError: On any failure
        """


class StubDelegate(RemoteDelegate):
    """Canned replies for development and tests."""

    def __init__(self, reply: str | None = None) -> None:
        self.reply = reply
        self.sent: list[str] = []

    async def send_message(self, text: str) -> DelegateReply:
        self.sent.append(text)
        return DelegateReply(
            response=self.reply
            or "I can help with that. Try commands like \"create project 'Launch'\" to manage your plans."
        )


class HttpDelegate(RemoteDelegate):
    """Delegate that posts to an HTTP endpoint with a bearer token."""

    def __init__(
        self,
        url: str,
        token: str | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the delegate.

        Args:
            url: Endpoint receiving ``{"message": text}``
            token: Optional bearer token
            timeout: Request timeout in seconds
            transport: Optional httpx transport (tests)
        """
        self.url = url
        self.token = token
        self.timeout = timeout
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def send_message(self, text: str) -> DelegateReply:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.url, json={"message": text}, headers=self._headers())
                response.raise_for_status()
                payload: Any = response.json()
        except httpx.TimeoutException as e:
            raise RemoteDelegateError(
                f"Delegate request timed out after {self.timeout} seconds", DelegateErrorKind.NETWORK
            ) from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            detail = redact_secrets(e.response.text[:200])
            kind = _STATUS_KINDS.get(status) or categorize_delegate_error(detail)
            log_warning(logger, "Delegate returned error status", status=status, kind=kind.value)
            raise RemoteDelegateError(f"Delegate returned HTTP {status}: {detail}", kind) from e
        except httpx.RequestError as e:
            raise RemoteDelegateError(f"Network error reaching delegate: {e}", DelegateErrorKind.NETWORK) from e
        except ValueError as e:
            raise RemoteDelegateError(f"Delegate returned invalid JSON: {e}") from e

        if not isinstance(payload, dict):
            raise RemoteDelegateError("Delegate reply must be a JSON object")
        if payload.get("error"):
            message = str(payload["error"])
            raise RemoteDelegateError(message, categorize_delegate_error(message))

        try:
            return DelegateReply.model_validate(payload)
        except PydanticValidationError as e:
            raise RemoteDelegateError(f"Delegate reply has unexpected shape: {e}") from e


def get_delegate(config: EngineConfig | None = None) -> RemoteDelegate:
    """Build the delegate selected by configuration.

    Raises:
        ValueError: If the HTTP provider is selected without a URL
    """
    config = config or get_engine_config()
    if config.delegate_provider == "http":
        if not config.delegate_url:
            raise ValueError("delegate_url is required for the http delegate provider")
        return HttpDelegate(
            config.delegate_url,
            token=config.delegate_token,
            timeout=config.delegate_timeout_seconds,
        )
    return StubDelegate()
