"""Per-connection session state and turn handling."""

import asyncio
import os
import uuid
from typing import Awaitable, Callable, Optional

from ..errors import ChatWorkerError, DirectoryNotFound
from ..models.conversation import MessageRole
from ..models.events import (
    CancelRequest,
    ConversationStarted,
    ErrorEvent,
    MessageReceived,
    ProtocolEvent,
    RequestCancelled,
    ResponseChunk,
    ResponseComplete,
    ResponseError,
    ResponseStart,
    SendMessage,
    StartConversation,
)
from ..utils.logger import get_session_logger
from .process_runner import (
    Cancelled,
    Completed,
    CompletedEmpty,
    Failed,
    InvocationOutcome,
    ProcessRunner,
    TimedOut,
)
from .transcript_store import TranscriptStore


EventSender = Callable[[ProtocolEvent], Awaitable[None]]

DEFAULT_RESPONSE_TIMEOUT = 900.0


def build_contextual_message(message: str, working_directory: Optional[str]) -> str:
    """Prefix the message with a note about the directory the assistant works in."""
    if not working_directory:
        return message
    return (
        f'[Context: you are working in the directory "{working_directory}". '
        "Use the Read, Glob, Grep and Edit tools to analyze and modify files in this project.]"
        f"\n\n{message}"
    )


class SessionController:
    """
    Turn-taking state machine for one client connection.

    Each turn goes Idle -> AwaitingReply -> Completed/Failed/TimedOut/Cancelled
    -> Idle. Turns never overlap: a new message terminates the previous
    invocation before its own starts.
    """

    def __init__(
        self,
        connection_id: str,
        store: TranscriptStore,
        runner: ProcessRunner,
        send: EventSender,
        response_timeout: float = DEFAULT_RESPONSE_TIMEOUT,
        default_working_directory: Optional[str] = None
    ):
        """
        Initialize the session.

        Args:
            connection_id: Identifier of the owning connection
            store: Shared transcript store
            runner: Runner owned by this session
            send: Coroutine delivering a server event to the client
            response_timeout: Hard timeout per invocation in seconds
            default_working_directory: cwd used when the turn has no working directory
        """
        self.connection_id = connection_id
        self.store = store
        self.runner = runner
        self.send = send
        self.response_timeout = response_timeout
        self.default_working_directory = default_working_directory
        self.conversation_id: Optional[str] = None
        self.working_directory: Optional[str] = None
        self.logger = get_session_logger(connection_id)

        self._intake_lock = asyncio.Lock()
        self._turn_lock = asyncio.Lock()
        self._turn_seq = 0
        self._closed = False

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def is_busy(self) -> bool:
        """True while a turn is being recorded, waiting for, or running an invocation."""
        return self._intake_lock.locked() or self._turn_lock.locked() or self.runner.is_active

    def _ensure_open(self) -> None:
        if self._closed:
            raise RuntimeError(f"Session {self.connection_id} is closed")

    async def _emit(self, event: ProtocolEvent) -> None:
        if self._closed:
            return
        try:
            await self.send(event)
        except Exception as e:
            self.logger.warning(f"failed to deliver {event.type}: {e}")

    async def handle(self, event) -> None:
        """Dispatch a parsed client event."""
        if isinstance(event, StartConversation):
            try:
                await self.start_conversation(event.conversation_id, event.working_directory)
            except (ValueError, ChatWorkerError, OSError) as e:
                self.logger.error(f"error starting conversation: {e}")
                await self._emit(ErrorEvent(message=str(e)))
        elif isinstance(event, SendMessage):
            await self.send_message(event.message, event.conversation_id, event.working_directory)
        elif isinstance(event, CancelRequest):
            await self.cancel()
        else:
            raise TypeError(f"Unhandled client event: {event!r}")

    async def start_conversation(self, conversation_id: str, working_directory: Optional[str] = None) -> None:
        """Bind this session to a conversation, creating it if needed."""
        self._ensure_open()
        await self.store.create(conversation_id, working_directory)
        self.conversation_id = conversation_id
        self.working_directory = working_directory

        self.logger.info(f"conversation started: {conversation_id}")
        await self._emit(ConversationStarted(conversation_id=conversation_id))

    async def send_message(
        self,
        message: str,
        conversation_id: Optional[str] = None,
        working_directory: Optional[str] = None
    ) -> None:
        """
        Run one turn: record the user message, invoke the assistant, record the reply.

        Always ends with exactly one terminal event for the turn
        (response-complete, response-error or request-cancelled).
        """
        self._ensure_open()
        self._turn_seq += 1
        seq = self._turn_seq
        conversation_id = conversation_id or self.conversation_id
        working_directory = working_directory or self.working_directory

        try:
            async with self._intake_lock:
                conversation_id = await self._record_user_message(conversation_id, working_directory, message)
        except (ValueError, ChatWorkerError, OSError) as e:
            self.logger.error(f"failed to record message: {e}")
            await self._emit_error(e, conversation_id)
            return

        # A turn from an earlier message may still be running
        await self.runner.cancel()

        async with self._turn_lock:
            if seq != self._turn_seq or self._closed:
                self.logger.info(f"turn {seq} superseded before start")
                await self._emit(RequestCancelled())
                return

            try:
                await self._run_turn(seq, conversation_id, message, working_directory)
            except (ChatWorkerError, OSError) as e:
                self.logger.error(f"turn failed: {e}")
                await self._emit_error(e, conversation_id)

    async def _record_user_message(
        self,
        conversation_id: Optional[str],
        working_directory: Optional[str],
        message: str
    ) -> str:
        if not conversation_id:
            conversation_id = str(uuid.uuid4())
            self.logger.info(f"creating conversation on the fly: {conversation_id}")

        if await self.store.get(conversation_id) is None:
            await self.store.create(conversation_id, working_directory)
        self.conversation_id = conversation_id

        await self.store.append(conversation_id, MessageRole.USER, message)
        await self._emit(MessageReceived(role=MessageRole.USER.value, content=message))
        return conversation_id

    async def _run_turn(self, seq: int, conversation_id: str, message: str, working_directory: Optional[str]) -> None:
        if working_directory and not os.path.isdir(working_directory):
            raise DirectoryNotFound(working_directory)

        cwd = working_directory or self.default_working_directory or os.getcwd()
        self.logger.info(f"invoking assistant in {cwd}: {message[:100]}")
        await self._emit(ResponseStart(conversation_id=conversation_id))

        async def relay(chunk: str) -> None:
            await self._emit(ResponseChunk(chunk=chunk, conversation_id=conversation_id))

        # cancel() may have landed while response-start was being delivered
        if seq != self._turn_seq:
            await self._emit(RequestCancelled())
            return

        outcome: InvocationOutcome = await self.runner.run(
            build_contextual_message(message, working_directory),
            cwd=cwd,
            timeout=self.response_timeout,
            on_output=relay
        )

        if isinstance(outcome, Completed):
            await self._complete(conversation_id, outcome)
        elif isinstance(outcome, Cancelled):
            self.logger.info(str(outcome.to_error()))
            await self._emit(RequestCancelled())
        elif isinstance(outcome, (CompletedEmpty, Failed, TimedOut)):
            await self._emit_error(outcome.to_error(), conversation_id)
        else:
            raise TypeError(f"Unhandled invocation outcome: {outcome!r}")

    async def _complete(self, conversation_id: str, outcome: Completed) -> None:
        response = outcome.stdout.strip()
        try:
            await self.store.append(conversation_id, MessageRole.ASSISTANT, response)
        except (ChatWorkerError, OSError) as e:
            # The reply was already streamed to the client; report it anyway
            self.logger.error(f"failed to record reply: {e}")

        await self._emit(ResponseComplete(
            conversation_id=conversation_id,
            exit_code=outcome.exit_code,
            response=response
        ))

    async def _emit_error(self, error: Exception, conversation_id: Optional[str]) -> None:
        if isinstance(error, ChatWorkerError):
            code = error.code
        elif isinstance(error, ValueError):
            code = "invalid_request"
        else:
            code = "io_error"
        await self._emit(ResponseError(error=str(error), conversation_id=conversation_id, code=code))

    async def cancel(self) -> bool:
        """
        Cancel the in-flight turn, if any.

        The cancelled turn itself reports request-cancelled.

        Returns:
            True if a turn was pending or running
        """
        if not self.is_busy:
            return False

        self._turn_seq += 1
        await self.runner.cancel()
        return True

    async def teardown(self) -> None:
        """Terminate any running invocation and close the session."""
        if self._closed:
            return

        self._closed = True
        self._turn_seq += 1
        if await self.runner.cancel():
            self.logger.info("terminated running invocation on teardown")
