"""Shared fixtures: transcript store and fake assistant commands."""

import sys
import textwrap
from typing import List

import pytest

from chat_worker.services.transcript_store import TranscriptStore


def assistant_command(script: str) -> List[str]:
    """Command line running a small Python program as the assistant."""
    return [sys.executable, "-c", textwrap.dedent(script)]


# Echoes stdin back; sleeps when the message asks for it, fails on request
ECHO_ASSISTANT = assistant_command("""
    import sys, time
    data = sys.stdin.buffer.read().decode("utf-8")
    if "[slow]" in data:
        time.sleep(30)
    if "[fail]" in data:
        sys.stderr.write("assistant crashed")
        sys.exit(2)
    if "[silent]" in data:
        sys.exit(0)
    sys.stdout.buffer.write(("echo:" + data.splitlines()[-1] + "\\n").encode("utf-8"))
""")


class EventRecorder:
    """Collects server events sent to a session."""

    def __init__(self):
        self.events = []

    async def __call__(self, event):
        self.events.append(event)

    @property
    def types(self) -> List[str]:
        return [event.type for event in self.events]

    def of_type(self, event_type: str):
        return [event for event in self.events if event.type == event_type]


@pytest.fixture
def store(tmp_path):
    """Provide a TranscriptStore under tmp_path."""
    return TranscriptStore(str(tmp_path / "history"))


@pytest.fixture
def recorder():
    return EventRecorder()


@pytest.fixture
def echo_command():
    """Assistant command for the echoing fake assistant."""
    return ECHO_ASSISTANT


@pytest.fixture
def make_command():
    """Build an assistant command from an inline Python script."""
    return assistant_command
