"""Session protocol events.

Every frame on the session WebSocket is a JSON object tagged by ``type``.
Client frames are parsed into one of the ``ClientEvent`` variants; the server
only ever sends ``ServerEvent`` instances.
"""

from typing import Annotated, Any, Dict, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class ProtocolEvent(BaseModel):
    """Base class for protocol frames (camelCase on the wire)."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


# === Client -> server ===

class StartConversation(ProtocolEvent):
    type: Literal["start-conversation"] = "start-conversation"
    conversation_id: str = Field(alias="conversationId", min_length=1)
    working_directory: Optional[str] = Field(None, alias="workingDirectory")


class SendMessage(ProtocolEvent):
    type: Literal["send-message"] = "send-message"
    message: str
    conversation_id: Optional[str] = Field(None, alias="conversationId")
    working_directory: Optional[str] = Field(None, alias="workingDirectory")


class CancelRequest(ProtocolEvent):
    type: Literal["cancel-request"] = "cancel-request"


ClientEvent = Annotated[
    Union[StartConversation, SendMessage, CancelRequest],
    Field(discriminator="type")
]

client_event_adapter: TypeAdapter = TypeAdapter(ClientEvent)


def parse_client_event(data: Any) -> Union[StartConversation, SendMessage, CancelRequest]:
    """
    Parse a decoded client frame.

    Raises:
        pydantic.ValidationError: unknown ``type`` or missing/invalid fields
    """
    return client_event_adapter.validate_python(data)


# === Server -> client ===

class ConversationStarted(ProtocolEvent):
    type: Literal["conversation-started"] = "conversation-started"
    conversation_id: str = Field(alias="conversationId")


class MessageReceived(ProtocolEvent):
    type: Literal["message-received"] = "message-received"
    role: str
    content: str


class ResponseStart(ProtocolEvent):
    type: Literal["response-start"] = "response-start"
    conversation_id: str = Field(alias="conversationId")


class ResponseChunk(ProtocolEvent):
    type: Literal["response-chunk"] = "response-chunk"
    chunk: str
    conversation_id: str = Field(alias="conversationId")


class ResponseComplete(ProtocolEvent):
    type: Literal["response-complete"] = "response-complete"
    conversation_id: str = Field(alias="conversationId")
    exit_code: int = Field(alias="exitCode")
    response: str


class ResponseError(ProtocolEvent):
    type: Literal["response-error"] = "response-error"
    error: str
    conversation_id: Optional[str] = Field(None, alias="conversationId")
    code: str = "error"


class RequestCancelled(ProtocolEvent):
    type: Literal["request-cancelled"] = "request-cancelled"


class ErrorEvent(ProtocolEvent):
    """Connection-level error not tied to a turn (bad frame, failed start)."""

    type: Literal["error"] = "error"
    message: str


ServerEvent = Union[
    ConversationStarted,
    MessageReceived,
    ResponseStart,
    ResponseChunk,
    ResponseComplete,
    ResponseError,
    RequestCancelled,
    ErrorEvent,
]
