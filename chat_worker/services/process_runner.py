"""Process runner for single assistant CLI invocations."""

import asyncio
import codecs
import os
import signal
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Union

from ..errors import ChatWorkerError, ProcessCancelled, ProcessFailure, ProcessTimeout
from ..utils.logger import get_app_logger


OutputCallback = Callable[[str], Awaitable[None]]

# Keeps ANSI color codes out of captured output
NO_COLOR_ENV = {"FORCE_COLOR": "0", "NO_COLOR": "1"}


# === Invocation outcomes ===

@dataclass(frozen=True)
class Completed:
    """The assistant produced a reply."""

    stdout: str
    exit_code: int = 0


@dataclass(frozen=True)
class CompletedEmpty:
    """Exit status 0 but nothing usable on stdout."""

    stdout: str
    stderr: str
    exit_code: int = 0

    def to_error(self) -> ChatWorkerError:
        return ProcessFailure(
            self.stderr.strip() or "Assistant produced no output",
            exit_code=self.exit_code,
            stderr=self.stderr
        )


@dataclass(frozen=True)
class Failed:
    """Non-zero exit with no usable stdout."""

    exit_code: int
    stderr: str
    signal: Optional[int] = None

    def to_error(self) -> ChatWorkerError:
        if self.stderr.strip():
            message = self.stderr.strip()
        elif self.signal is not None:
            message = "Process was terminated"
        else:
            message = f"Assistant exited with code {self.exit_code}"
        return ProcessFailure(message, exit_code=self.exit_code, stderr=self.stderr)


@dataclass(frozen=True)
class TimedOut:
    """Exceeded the hard timeout and was killed."""

    timeout: float

    def to_error(self) -> ChatWorkerError:
        return ProcessTimeout(self.timeout)


@dataclass(frozen=True)
class Cancelled:
    """Terminated on request before completion."""

    def to_error(self) -> ChatWorkerError:
        return ProcessCancelled()


InvocationOutcome = Union[Completed, CompletedEmpty, Failed, TimedOut, Cancelled]


class Invocation:
    """
    Owned handle to one running assistant subprocess.

    Use as an async context manager: the process is always terminated on exit,
    whatever path leaves the block.
    """

    def __init__(self, process: asyncio.subprocess.Process, grace_period: float = 5.0):
        self.process = process
        self.grace_period = grace_period
        self.logger = get_app_logger()

    @classmethod
    async def start(
        cls,
        command: List[str],
        cwd: str,
        env: Dict[str, str],
        grace_period: float = 5.0
    ) -> "Invocation":
        """
        Spawn the subprocess with piped stdio.

        Raises:
            ProcessFailure: If the process cannot be spawned
        """
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                env=env
            )
        except OSError as e:
            raise ProcessFailure(f"Failed to start {command[0]}: {e}") from e

        return cls(process, grace_period)

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def returncode(self) -> Optional[int]:
        return self.process.returncode

    async def terminate(self) -> None:
        """SIGTERM, then SIGKILL after the grace period. Safe to call repeatedly."""
        if self.process.returncode is not None:
            return

        try:
            self.process.terminate()
        except ProcessLookupError:
            return
        except OSError as e:
            self.logger.warning(f"[ProcessRunner] terminate failed for PID {self.pid}: {e}")

        try:
            await asyncio.wait_for(self.process.wait(), timeout=self.grace_period)
            return
        except asyncio.TimeoutError:
            self.logger.warning(f"[ProcessRunner] PID {self.pid} ignored SIGTERM, killing")

        try:
            self.process.kill()
        except ProcessLookupError:
            return
        except OSError as e:
            self.logger.warning(f"[ProcessRunner] kill failed for PID {self.pid}: {e}")
            return
        await self.process.wait()

    async def __aenter__(self) -> "Invocation":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.terminate()


class ProcessRunner:
    """Runs one assistant invocation at a time and classifies its outcome."""

    def __init__(
        self,
        command: List[str],
        grace_period: float = 5.0,
        chunk_size: int = 4096,
        honor_partial_output: bool = True,
        env_vars: Optional[Dict[str, str]] = None
    ):
        """
        Initialize the runner.

        Args:
            command: Assistant command line; the message is delivered on stdin
            grace_period: Seconds between SIGTERM and SIGKILL
            chunk_size: Read size for stdout
            honor_partial_output: Treat non-empty stdout of a non-zero exit as a reply
            env_vars: Extra environment variables for the subprocess
        """
        self.command = list(command)
        self.grace_period = grace_period
        self.chunk_size = chunk_size
        self.honor_partial_output = honor_partial_output
        self.env_vars = env_vars or {}
        self.logger = get_app_logger()
        self._invocation: Optional[Invocation] = None
        self._running = False
        self._cancel_requested = False

    @property
    def is_active(self) -> bool:
        return self._running

    def _build_env(self) -> Dict[str, str]:
        return {**os.environ, **self.env_vars, **NO_COLOR_ENV}

    async def run(
        self,
        message: str,
        cwd: str,
        timeout: float,
        on_output: Optional[OutputCallback] = None
    ) -> InvocationOutcome:
        """
        Run the assistant with ``message`` on stdin and wait for it to finish.

        Args:
            message: Text written to the process's stdin
            cwd: Working directory for the process
            timeout: Hard timeout in seconds
            on_output: Called with each decoded stdout chunk as it arrives

        Returns:
            The classified outcome

        Raises:
            RuntimeError: If an invocation is already active
            ProcessFailure: If the process cannot be spawned
        """
        if self._running:
            raise RuntimeError("An invocation is already active on this runner")

        self._running = True
        self._cancel_requested = False
        stdout_parts: List[str] = []
        stderr_parts: List[str] = []
        timed_out = False

        try:
            self.logger.info(f"[ProcessRunner] running {' '.join(self.command)} in {cwd}")
            invocation = await Invocation.start(self.command, cwd, self._build_env(), self.grace_period)
            self._invocation = invocation

            async with invocation:
                # cancel() may have arrived while the process was spawning
                if not self._cancel_requested:
                    timed_out = await self._supervise(
                        invocation, message, timeout, on_output, stdout_parts, stderr_parts
                    )
        finally:
            self._invocation = None
            self._running = False

        returncode = invocation.returncode
        self.logger.info(
            f"[ProcessRunner] PID {invocation.pid} finished: exit_code={returncode}, "
            f"stdout={sum(len(p) for p in stdout_parts)} chars, stderr={sum(len(p) for p in stderr_parts)} chars"
        )

        if self._cancel_requested:
            return Cancelled()
        if timed_out:
            return TimedOut(timeout=timeout)
        return self._classify(returncode, "".join(stdout_parts), "".join(stderr_parts))

    def _classify(self, returncode: Optional[int], stdout: str, stderr: str) -> InvocationOutcome:
        usable = bool(stdout.strip())
        exit_code = returncode if returncode is not None else -1

        if exit_code == 0:
            if usable:
                return Completed(stdout=stdout, exit_code=0)
            return CompletedEmpty(stdout=stdout, stderr=stderr, exit_code=0)

        if usable and self.honor_partial_output:
            self.logger.warning(f"[ProcessRunner] exit code {exit_code} but output present, treating as reply")
            return Completed(stdout=stdout, exit_code=exit_code)

        signal_number = -exit_code if exit_code < 0 else None
        if signal_number is not None:
            try:
                self.logger.warning(f"[ProcessRunner] killed by {signal.Signals(signal_number).name}")
            except ValueError:
                self.logger.warning(f"[ProcessRunner] killed by signal {signal_number}")
        return Failed(exit_code=exit_code, stderr=stderr, signal=signal_number)

    async def _supervise(
        self,
        invocation: Invocation,
        message: str,
        timeout: float,
        on_output: Optional[OutputCallback],
        stdout_parts: List[str],
        stderr_parts: List[str]
    ) -> bool:
        """Feed stdin and collect output until exit. Returns True on timeout."""
        process = invocation.process
        readers = [
            asyncio.create_task(self._drain(process.stdout, stdout_parts, on_output)),
            asyncio.create_task(self._drain(process.stderr, stderr_parts)),
        ]
        timed_out = False
        try:
            try:
                await asyncio.wait_for(self._communicate(process, message), timeout=timeout)
            except asyncio.TimeoutError:
                timed_out = True
                self.logger.warning(f"[ProcessRunner] PID {invocation.pid} timed out after {timeout}s")
                await invocation.terminate()

            # Pipes may stay open if the process left children behind
            done, _ = await asyncio.wait(readers, timeout=self.grace_period)
            for task in done:
                task.result()
        finally:
            for task in readers:
                if not task.done():
                    task.cancel()
        return timed_out

    async def _communicate(self, process: asyncio.subprocess.Process, message: str) -> int:
        try:
            process.stdin.write(message.encode("utf-8"))
            await process.stdin.drain()
            process.stdin.close()
        except (BrokenPipeError, ConnectionResetError):
            self.logger.debug("[ProcessRunner] stdin closed before the message was fully written")
        return await process.wait()

    async def _drain(
        self,
        stream: asyncio.StreamReader,
        sink: List[str],
        on_output: Optional[OutputCallback] = None
    ) -> None:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            data = await stream.read(self.chunk_size)
            text = decoder.decode(data, final=not data)
            if text:
                sink.append(text)
                if on_output is not None:
                    await on_output(text)
            if not data:
                break

    async def cancel(self) -> bool:
        """
        Terminate the active invocation.

        Returns:
            True if an invocation was active, False otherwise
        """
        if not self._running:
            return False

        self._cancel_requested = True
        invocation = self._invocation
        if invocation is not None:
            self.logger.info(f"[ProcessRunner] cancelling PID {invocation.pid}")
            await invocation.terminate()
        return True
