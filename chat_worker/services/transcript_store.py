"""Conversation transcript storage.

Stores each conversation as one JSON file:
  {history_dir}/{conversation_id}.json
"""

import asyncio
import json
import os
import re
import uuid
import weakref
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

import aiofiles
import aiofiles.os
from pydantic import ValidationError

from ..errors import NotFound, TranscriptCorrupted
from ..models.conversation import Conversation, ConversationSummary, Message, MessageRole
from ..utils.logger import get_app_logger


# Conversation ids name files, so path separators and leading dots are rejected
CONVERSATION_ID_PATTERN = re.compile(r'^[A-Za-z0-9_-][A-Za-z0-9._-]{0,127}$')

RECORD_SUFFIX = ".json"


def is_valid_conversation_id(conversation_id: str) -> bool:
    return bool(conversation_id) and CONVERSATION_ID_PATTERN.match(conversation_id) is not None


def derive_title(content: str, max_length: int = 50) -> str:
    """Build a short title from the first user message."""
    cleaned = content.replace("\n", " ").strip()

    if len(cleaned) <= max_length:
        return cleaned

    return cleaned[:max_length].strip() + "..."


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TranscriptStore:
    """File-backed repository of conversations, one record per id."""

    def __init__(
        self,
        history_dir: str = "./.chat-history",
        default_title: str = "New Conversation",
        title_max_length: int = 50,
        default_working_directory: Optional[str] = None
    ):
        """
        Initialize the store.

        Args:
            history_dir: Directory holding one JSON file per conversation
            default_title: Title a conversation carries until its first user message
            title_max_length: Maximum length of a derived title (before the ellipsis)
            default_working_directory: Working directory recorded when none is given
        """
        self.history_dir = Path(history_dir)
        self.default_title = default_title
        self.title_max_length = title_max_length
        self.default_working_directory = default_working_directory
        self.logger = get_app_logger()
        # Entries vanish once no coroutine holds or waits on the lock
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _get_conversation_path(self, conversation_id: str) -> Path:
        return self.history_dir / f"{conversation_id}{RECORD_SUFFIX}"

    def _lock_for(self, conversation_id: str) -> asyncio.Lock:
        lock = self._locks.get(conversation_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[conversation_id] = lock
        return lock

    def _has_derived_title(self, conversation: Conversation) -> bool:
        return any(
            message.role == MessageRole.USER and derive_title(message.content, self.title_max_length)
            for message in conversation.messages
        )

    async def _ensure_dir(self) -> None:
        await aiofiles.os.makedirs(self.history_dir, exist_ok=True)

    async def _read(self, conversation_id: str) -> Optional[Conversation]:
        """Load a record; None if the file does not exist."""
        path = self._get_conversation_path(conversation_id)
        try:
            async with aiofiles.open(path, mode="r", encoding="utf-8") as f:
                raw = await f.read()
        except FileNotFoundError:
            return None

        try:
            return Conversation.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError) as e:
            raise TranscriptCorrupted(conversation_id, str(e)) from e

    async def _write(self, conversation: Conversation) -> None:
        """Persist a record atomically (temp file + replace)."""
        await self._ensure_dir()
        path = self._get_conversation_path(conversation.id)
        tmp_path = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
        payload = conversation.model_dump_json(by_alias=True, indent=2)

        replaced = False
        try:
            async with aiofiles.open(tmp_path, mode="w", encoding="utf-8") as f:
                await f.write(payload)
                await f.flush()
            await aiofiles.os.replace(tmp_path, path)
            replaced = True
        finally:
            # Also runs when the writing task is cancelled
            if not replaced:
                try:
                    await aiofiles.os.remove(tmp_path)
                except FileNotFoundError:
                    pass

    async def create(self, conversation_id: str, working_directory: Optional[str] = None) -> Conversation:
        """
        Create a conversation, or return the existing one unchanged.

        Args:
            conversation_id: Caller-supplied conversation ID
            working_directory: Directory the assistant should operate in

        Returns:
            The stored conversation

        Raises:
            ValueError: If the id cannot be used as a storage key
        """
        if not is_valid_conversation_id(conversation_id):
            raise ValueError(f"Invalid conversation id: {conversation_id!r}")

        async with self._lock_for(conversation_id):
            existing = await self._read(conversation_id)
            if existing is not None:
                return existing

            now = _utcnow()
            conversation = Conversation(
                id=conversation_id,
                title=self.default_title,
                working_directory=working_directory or self.default_working_directory or os.getcwd(),
                created_at=now,
                updated_at=now,
                messages=[]
            )
            await self._write(conversation)

        self.logger.info(f"[TranscriptStore] created conversation {conversation_id}")
        return conversation

    async def get(self, conversation_id: str) -> Optional[Conversation]:
        """Get a conversation, or None if it does not exist."""
        if not is_valid_conversation_id(conversation_id):
            return None
        return await self._read(conversation_id)

    async def append(self, conversation_id: str, role: MessageRole, content: str) -> Conversation:
        """
        Append a message to a conversation.

        The first user message replaces the default title.

        Args:
            conversation_id: Conversation ID
            role: Message role
            content: Message content

        Returns:
            The updated conversation

        Raises:
            NotFound: If the conversation does not exist
        """
        if not is_valid_conversation_id(conversation_id):
            raise NotFound(conversation_id)

        role = MessageRole(role)

        async with self._lock_for(conversation_id):
            conversation = await self._read(conversation_id)
            if conversation is None:
                raise NotFound(conversation_id)

            titled = self._has_derived_title(conversation)

            now = _utcnow()
            conversation.messages.append(Message(
                id=str(uuid.uuid4()),
                role=role,
                content=content,
                timestamp=now
            ))

            # Only the first user message with usable text names the conversation
            if role == MessageRole.USER and not titled:
                title = derive_title(content, self.title_max_length)
                if title:
                    conversation.title = title

            conversation.updated_at = max(now, conversation.created_at)
            await self._write(conversation)

        return conversation

    async def list(self) -> List[ConversationSummary]:
        """List conversation summaries, most recently updated first."""
        await self._ensure_dir()

        summaries: List[ConversationSummary] = []
        for name in await aiofiles.os.listdir(self.history_dir):
            if not name.endswith(RECORD_SUFFIX) or name.startswith("."):
                continue

            conversation_id = name[:-len(RECORD_SUFFIX)]
            try:
                conversation = await self._read(conversation_id)
            except TranscriptCorrupted as e:
                self.logger.warning(f"[TranscriptStore] skipping record: {e}")
                continue

            # Deleted between listdir and read
            if conversation is None:
                continue
            summaries.append(conversation.to_summary())

        summaries.sort(key=lambda s: s.updated_at, reverse=True)
        return summaries

    async def delete(self, conversation_id: str) -> bool:
        """
        Delete a conversation.

        Returns:
            True if deleted, False if not found
        """
        if not is_valid_conversation_id(conversation_id):
            return False

        async with self._lock_for(conversation_id):
            try:
                await aiofiles.os.remove(self._get_conversation_path(conversation_id))
            except FileNotFoundError:
                return False

        self.logger.info(f"[TranscriptStore] deleted conversation {conversation_id}")
        return True

    async def clear_all(self) -> int:
        """
        Delete every conversation.

        Returns:
            Number of conversations removed
        """
        await self._ensure_dir()

        removed = 0
        for name in await aiofiles.os.listdir(self.history_dir):
            if name.endswith(RECORD_SUFFIX) and not name.startswith("."):
                if await self.delete(name[:-len(RECORD_SUFFIX)]):
                    removed += 1

        self.logger.info(f"[TranscriptStore] cleared {removed} conversations")
        return removed
