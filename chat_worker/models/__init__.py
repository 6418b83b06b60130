"""Pydantic models for transcripts, API responses and protocol events."""

from .conversation import (
    Message,
    MessageRole,
    Conversation,
    ConversationSummary,
    HealthResponse,
    DeleteResponse,
)
from .events import (
    ClientEvent,
    ServerEvent,
    StartConversation,
    SendMessage,
    CancelRequest,
    ConversationStarted,
    MessageReceived,
    ResponseStart,
    ResponseChunk,
    ResponseComplete,
    ResponseError,
    RequestCancelled,
    ErrorEvent,
    parse_client_event,
)

__all__ = [
    "Message",
    "MessageRole",
    "Conversation",
    "ConversationSummary",
    "HealthResponse",
    "DeleteResponse",
    "ClientEvent",
    "ServerEvent",
    "StartConversation",
    "SendMessage",
    "CancelRequest",
    "ConversationStarted",
    "MessageReceived",
    "ResponseStart",
    "ResponseChunk",
    "ResponseComplete",
    "ResponseError",
    "RequestCancelled",
    "ErrorEvent",
    "parse_client_event",
]
