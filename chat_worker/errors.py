"""Error taxonomy shared by the store, the process runner and the session layer.

Storage failures from the operating system are not wrapped: they surface as the
builtin ``OSError`` (``IOError``).
"""

from typing import Optional


class ChatWorkerError(Exception):
    """Base class for errors reported to clients."""

    code = "error"


class NotFound(ChatWorkerError):
    """A conversation id has no stored record."""

    code = "not_found"

    def __init__(self, conversation_id: str):
        super().__init__(f"Conversation {conversation_id} not found")
        self.conversation_id = conversation_id


class TranscriptCorrupted(ChatWorkerError):
    """A stored record exists but cannot be parsed."""

    code = "corrupt_transcript"

    def __init__(self, conversation_id: str, reason: str):
        super().__init__(f"Conversation {conversation_id} is unreadable: {reason}")
        self.conversation_id = conversation_id


class DirectoryNotFound(ChatWorkerError):
    """The requested working directory does not exist."""

    code = "directory_not_found"

    def __init__(self, path: str):
        super().__init__(
            f'Directory not found: "{path}"\n\n'
            "Check that the path is correct and try again."
        )
        self.path = path


class ProcessFailure(ChatWorkerError):
    """The assistant process could not produce a reply."""

    code = "process_failure"

    def __init__(self, message: str, exit_code: Optional[int] = None, stderr: str = ""):
        super().__init__(message)
        self.exit_code = exit_code
        self.stderr = stderr


class ProcessTimeout(ChatWorkerError):
    """The assistant process exceeded the hard timeout."""

    code = "timeout"

    def __init__(self, timeout: float):
        minutes = max(1, round(timeout / 60))
        unit = "minute" if minutes == 1 else "minutes"
        super().__init__(
            f"Operation exceeded the time limit ({minutes} {unit}). "
            "Try splitting the task into smaller parts."
        )
        self.timeout = timeout


class ProcessCancelled(ChatWorkerError):
    """The assistant process was terminated on request."""

    code = "cancelled"

    def __init__(self):
        super().__init__("Request was cancelled")
