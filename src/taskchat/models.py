"""Pydantic models for the HTTP surface and the remote delegate reply."""

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class ChatStatus(str, Enum):
    """Outcome of one chat submission."""

    OK = "ok"
    INFO = "info"
    NEEDS_CONFIRMATION = "needs_confirmation"
    NOT_FOUND = "not_found"
    ERROR = "error"
    DELEGATED = "delegated"
    IGNORED = "ignored"


class ChatRequest(BaseModel):
    """Chat submission."""

    session_id: str = Field(..., min_length=1, max_length=128)
    text: str = Field(..., max_length=4000)


class ChatMessageModel(BaseModel):
    """One transcript entry."""

    id: str
    text: str
    sender: Literal["user", "assistant"]
    timestamp: datetime


class PendingConfirmationModel(BaseModel):
    """A suggestion waiting for a yes/no reply."""

    token: str
    expires_at: datetime
    summary: str
    intent: str | None = None


class ChatResponse(BaseModel):
    """Reply to a chat submission."""

    status: ChatStatus
    intent: dict[str, Any] | None = None
    messages: list[ChatMessageModel] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list, max_length=3)
    pending_confirmation: PendingConfirmationModel | None = None
    # Echo of the submitted text when resending it makes sense
    retry_text: str | None = None


class SessionMessagesResponse(BaseModel):
    """Durable log of a session."""

    session_id: str
    messages: list[ChatMessageModel] = Field(default_factory=list)


class CreatedEntity(BaseModel):
    """An entity the remote assistant created on the user's behalf."""

    type: str
    name: str
    mode: str | None = None


class DelegateReply(BaseModel):
    """Structured reply of the remote conversational service."""

    model_config = ConfigDict(populate_by_name=True)

    response: str
    entities_created: list[CreatedEntity] = Field(default_factory=list, alias="entitiesCreated")
    document_generated: bool = Field(default=False, alias="documentGenerated")
    priority_stream_created: bool = Field(default=False, alias="priorityStreamCreated")
    milestones_created: bool = Field(default=False, alias="milestonesCreated")


class Error(BaseModel):
    """Error payload."""

    error: str
    message: str
    details: dict[str, Any] | None = None
