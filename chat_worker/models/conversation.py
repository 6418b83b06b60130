"""Conversation transcript models."""

from datetime import datetime
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field


class MessageRole(str, Enum):
    """Author of a transcript message."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class Message(BaseModel):
    """A single transcript entry."""

    model_config = ConfigDict(populate_by_name=True, use_enum_values=True)

    id: str = Field(description="Message ID, assigned at append time")
    role: MessageRole = Field(description="Message role (user/assistant/system)")
    content: str = Field(description="Message content")
    timestamp: datetime = Field(description="Creation timestamp")


class Conversation(BaseModel):
    """A stored conversation with its full message sequence."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(description="Conversation ID, also the storage key")
    title: str = Field(description="Conversation title")
    working_directory: str = Field(alias="workingDirectory", description="Directory the assistant operates in")
    created_at: datetime = Field(alias="createdAt", description="Creation timestamp")
    updated_at: datetime = Field(alias="updatedAt", description="Last mutation timestamp")
    messages: List[Message] = Field(default_factory=list, description="Messages in conversation order")

    def to_summary(self) -> "ConversationSummary":
        return ConversationSummary(
            id=self.id,
            title=self.title,
            created_at=self.created_at,
            updated_at=self.updated_at,
            message_count=len(self.messages)
        )


class ConversationSummary(BaseModel):
    """Listing entry for a conversation."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(description="Conversation ID")
    title: str = Field(description="Conversation title")
    created_at: datetime = Field(alias="createdAt", description="Creation timestamp")
    updated_at: datetime = Field(alias="updatedAt", description="Last mutation timestamp")
    message_count: int = Field(alias="messageCount", description="Number of messages")


class HealthResponse(BaseModel):
    """Response model for the health check."""

    status: str = Field(description="Service status")
    timestamp: datetime = Field(description="Server time")


class DeleteResponse(BaseModel):
    """Response model for delete operations."""

    success: bool = Field(description="Whether the operation succeeded")
    deleted: Optional[int] = Field(None, description="Number of removed conversations")
