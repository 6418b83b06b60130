"""Tests for SessionController turn handling."""

import asyncio

import pytest

from chat_worker.models.events import CancelRequest, SendMessage, StartConversation
from chat_worker.services.process_runner import ProcessRunner
from chat_worker.services.session_controller import SessionController, build_contextual_message


async def wait_until(predicate, timeout: float = 5.0):
    """Poll until predicate() is true."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def make_session(store, recorder, echo_command):
    """Build a SessionController around the echo assistant."""

    def _make(command=None, response_timeout: float = 10):
        runner = ProcessRunner(command or echo_command, grace_period=1)
        return SessionController(
            connection_id="conn-1",
            store=store,
            runner=runner,
            send=recorder,
            response_timeout=response_timeout
        )

    return _make


class TestContextualMessage:
    """SUT: build_contextual_message"""

    def test_without_directory(self):
        assert build_contextual_message("hi", None) == "hi"

    def test_with_directory(self):
        message = build_contextual_message("hi", "/work/project")
        assert '"/work/project"' in message
        assert message.endswith("\n\nhi")


class TestStartConversation:
    """SUT: SessionController.start_conversation"""

    async def test_creates_and_acknowledges(self, make_session, store, recorder):
        session = make_session()
        await session.start_conversation("c1", "/tmp")

        assert session.conversation_id == "c1"
        assert recorder.types == ["conversation-started"]
        assert recorder.events[0].conversation_id == "c1"
        assert (await store.get("c1")).working_directory == "/tmp"

    async def test_idempotent(self, make_session, store, recorder):
        session = make_session()
        await session.start_conversation("c1")
        await store.append("c1", "user", "kept")
        await session.start_conversation("c1")

        assert recorder.types == ["conversation-started", "conversation-started"]
        assert len((await store.get("c1")).messages) == 1

    async def test_invalid_id_reports_error(self, make_session, recorder):
        session = make_session()
        await session.handle(StartConversation(conversation_id="../bad"))
        assert recorder.types == ["error"]


class TestSendMessage:
    """SUT: SessionController.send_message"""

    async def test_successful_turn(self, make_session, store, recorder):
        session = make_session()
        await session.start_conversation("c1")
        await session.send_message("Fix the bug")

        assert recorder.types[:3] == ["conversation-started", "message-received", "response-start"]
        assert recorder.types[-1] == "response-complete"
        assert "".join(e.chunk for e in recorder.of_type("response-chunk")).strip() == "echo:Fix the bug"

        complete = recorder.events[-1]
        assert complete.response == "echo:Fix the bug"
        assert complete.exit_code == 0
        assert complete.conversation_id == "c1"

        conversation = await store.get("c1")
        assert conversation.title == "Fix the bug"
        assert [(m.role, m.content) for m in conversation.messages] == [
            ("user", "Fix the bug"),
            ("assistant", "echo:Fix the bug"),
        ]

    async def test_lazy_start_with_payload_id(self, make_session, store, recorder):
        session = make_session()
        await session.send_message("hello", conversation_id="fresh")

        assert session.conversation_id == "fresh"
        assert recorder.types[0] == "message-received"
        assert len((await store.get("fresh")).messages) == 2

    async def test_lazy_start_without_any_id(self, make_session, store, recorder):
        session = make_session()
        await session.send_message("hello")

        assert session.conversation_id is not None
        assert recorder.types[-1] == "response-complete"
        assert len((await store.get(session.conversation_id)).messages) == 2

    async def test_user_message_recorded_before_reply(self, make_session, store, recorder):
        session = make_session()
        await session.start_conversation("c1")
        task = asyncio.create_task(session.send_message("[slow] question"))
        await wait_until(lambda: "response-start" in recorder.types)

        conversation = await store.get("c1")
        assert [m.content for m in conversation.messages] == ["[slow] question"]

        await session.cancel()
        await task

    async def test_missing_directory(self, make_session, store, recorder, tmp_path):
        session = make_session()
        missing = str(tmp_path / "does-not-exist")
        await session.send_message("hello", conversation_id="c1", working_directory=missing)

        assert recorder.types == ["message-received", "response-error"]
        error = recorder.events[-1]
        assert error.code == "directory_not_found"
        assert missing in error.error
        assert session.runner.is_active is False
        assert [m.role for m in (await store.get("c1")).messages] == ["user"]

    async def test_working_directory_passed_as_context(self, make_session, store, recorder, make_command, tmp_path):
        script = """
            import os, sys
            data = sys.stdin.read()
            print(os.getcwd())
            print(data.splitlines()[0])
        """
        session = make_session(command=make_command(script))
        await session.start_conversation("c1", str(tmp_path))
        await session.send_message("hello")

        response = recorder.events[-1].response
        assert response.splitlines()[0] == str(tmp_path.resolve())
        assert str(tmp_path) in response.splitlines()[1]

    async def test_failed_turn_appends_nothing(self, make_session, store, recorder):
        session = make_session()
        await session.send_message("[fail] please", conversation_id="c1")

        assert recorder.types[-1] == "response-error"
        assert recorder.events[-1].code == "process_failure"
        assert recorder.events[-1].error == "assistant crashed"
        assert [m.role for m in (await store.get("c1")).messages] == ["user"]

    async def test_empty_output_is_error(self, make_session, store, recorder):
        session = make_session()
        await session.send_message("[silent] please", conversation_id="c1")

        assert recorder.types[-1] == "response-error"
        assert [m.role for m in (await store.get("c1")).messages] == ["user"]

    async def test_timeout(self, make_session, store, recorder):
        session = make_session(response_timeout=0.5)
        await session.send_message("[slow] question", conversation_id="c1")

        assert recorder.types[-1] == "response-error"
        assert recorder.events[-1].code == "timeout"
        assert "time limit" in recorder.events[-1].error
        assert [m.role for m in (await store.get("c1")).messages] == ["user"]
        assert session.runner.is_active is False

    async def test_spawn_failure(self, store, recorder):
        session = SessionController(
            "conn-1", store, ProcessRunner(["definitely-not-an-assistant-binary"]), recorder
        )
        await session.send_message("hello", conversation_id="c1")

        assert recorder.types[-1] == "response-error"
        assert recorder.events[-1].code == "process_failure"


class TestCancel:
    """SUT: SessionController.cancel"""

    async def test_cancel_idle_is_noop(self, make_session, recorder):
        session = make_session()
        assert await session.cancel() is False
        assert recorder.events == []

    async def test_cancel_mid_flight(self, make_session, store, recorder):
        session = make_session()
        await session.start_conversation("c1")
        task = asyncio.create_task(session.send_message("[slow] question"))
        await wait_until(lambda: session.runner._invocation is not None)

        await session.handle(CancelRequest())
        await task

        assert recorder.types[-1] == "request-cancelled"
        assert recorder.types.count("request-cancelled") == 1
        assert "response-complete" not in recorder.types
        conversation = await store.get("c1")
        assert [(m.role, m.content) for m in conversation.messages] == [("user", "[slow] question")]

    async def test_cancel_while_message_is_recorded(self, make_session, store, recorder):
        session = make_session()
        await session.start_conversation("c1")
        task = asyncio.create_task(session.send_message("question"))
        await asyncio.sleep(0)
        assert session._intake_lock.locked()

        assert await session.cancel() is True
        await task

        assert recorder.types[-1] == "request-cancelled"
        assert "response-start" not in recorder.types
        assert [m.role for m in (await store.get("c1")).messages] == ["user"]

    async def test_new_message_supersedes_running_turn(self, make_session, store, recorder):
        session = make_session()
        await session.start_conversation("c1")
        first = asyncio.create_task(session.send_message("[slow] one"))
        await wait_until(lambda: session.runner._invocation is not None)

        await session.handle(SendMessage(message="two"))
        await first

        assert recorder.types.count("request-cancelled") == 1
        assert recorder.types[-1] == "response-complete"
        assert recorder.events[-1].response == "echo:two"
        conversation = await store.get("c1")
        assert [(m.role, m.content) for m in conversation.messages] == [
            ("user", "[slow] one"),
            ("user", "two"),
            ("assistant", "echo:two"),
        ]


class TestTeardown:
    """SUT: SessionController.teardown"""

    async def test_teardown_kills_invocation(self, make_session, store, recorder):
        session = make_session()
        task = asyncio.create_task(session.send_message("[slow] question", conversation_id="c1"))
        await wait_until(lambda: session.runner._invocation is not None)
        invocation = session.runner._invocation

        await session.teardown()
        await task

        assert invocation.returncode is not None
        assert session.is_closed
        assert "request-cancelled" not in recorder.types
        assert [m.role for m in (await store.get("c1")).messages] == ["user"]

    async def test_closed_session_rejects_calls(self, make_session):
        session = make_session()
        await session.teardown()
        await session.teardown()

        with pytest.raises(RuntimeError):
            await session.start_conversation("c1")
        with pytest.raises(RuntimeError):
            await session.send_message("hello")
