"""Conversation administration REST API routes."""

from datetime import datetime, timezone
from typing import List

from fastapi import APIRouter, Depends, HTTPException

from ..errors import ChatWorkerError
from ..models.conversation import Conversation, ConversationSummary, DeleteResponse, HealthResponse
from ..services.transcript_store import TranscriptStore
from ..utils.logger import get_app_logger

router = APIRouter(prefix="/api", tags=["Conversations"])

# Transcript store (set by main.py)
store: TranscriptStore = None

logger = get_app_logger()


def get_store() -> TranscriptStore:
    """Dependency to get the transcript store."""
    if store is None:
        raise HTTPException(status_code=500, detail="Transcript store not initialized")
    return store


def health_payload() -> HealthResponse:
    return HealthResponse(status="ok", timestamp=datetime.now(timezone.utc))


@router.get("/health", response_model=HealthResponse)
async def health():
    """Health check."""
    return health_payload()


@router.get("/conversations", response_model=List[ConversationSummary])
async def list_conversations(repo: TranscriptStore = Depends(get_store)):
    """List conversations, most recently updated first."""
    try:
        return await repo.list()
    except (OSError, ChatWorkerError) as e:
        logger.error(f"Failed to list conversations: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/conversations/{conversation_id}", response_model=Conversation)
async def get_conversation(conversation_id: str, repo: TranscriptStore = Depends(get_store)):
    """Get a conversation with all its messages."""
    try:
        conversation = await repo.get(conversation_id)
    except (OSError, ChatWorkerError) as e:
        logger.error(f"Failed to read conversation {conversation_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    if conversation is None:
        raise HTTPException(status_code=404, detail=f"Conversation not found: {conversation_id}")

    return conversation


@router.delete("/conversations/{conversation_id}", response_model=DeleteResponse, response_model_exclude_none=True)
async def delete_conversation(conversation_id: str, repo: TranscriptStore = Depends(get_store)):
    """Delete a conversation."""
    try:
        deleted = await repo.delete(conversation_id)
    except OSError as e:
        logger.error(f"Failed to delete conversation {conversation_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    if not deleted:
        raise HTTPException(status_code=404, detail=f"Conversation not found: {conversation_id}")

    return DeleteResponse(success=True)


@router.delete("/conversations", response_model=DeleteResponse)
async def clear_conversations(repo: TranscriptStore = Depends(get_store)):
    """Delete every conversation."""
    try:
        deleted = await repo.clear_all()
    except OSError as e:
        logger.error(f"Failed to clear conversations: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    return DeleteResponse(success=True, deleted=deleted)
