"""Services package."""

from .transcript_store import TranscriptStore
from .process_runner import ProcessRunner, Invocation
from .session_controller import SessionController
from .connection_registry import ConnectionRegistry

__all__ = [
    "TranscriptStore",
    "ProcessRunner",
    "Invocation",
    "SessionController",
    "ConnectionRegistry",
]
