"""Process launcher and handle with subprocess isolation and reliable termination.

closure-bridge runtime module v0.1.0

This module provides:
- Launching a child with three independent pipes (stdin, stdout, stderr)
- Cross-platform subprocess isolation (new session/process group)
- Single, idempotent close of the input sink
- Reliable termination with graceful shutdown (SIGTERM -> timeout -> SIGKILL)
- Cancel-safe teardown using asyncio.shield

Key design points:
- POSIX: start_new_session=True to create new process group
- Windows: CREATE_NEW_PROCESS_GROUP for signal isolation
- Termination targets the process group, not just the main process
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import subprocess
import sys
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..errors import LaunchError, PipeClosedError

__all__ = [
    "IS_WINDOWS",
    "ProcessHandle",
    "ProcessSpec",
    "launch",
]

logger = logging.getLogger(__name__)

# Platform detection
IS_WINDOWS = sys.platform == "win32"

# Default timeouts
DEFAULT_TERM_TIMEOUT = 2.0  # seconds to wait after SIGTERM
DEFAULT_KILL_TIMEOUT = 1.0  # seconds to wait after SIGKILL

# Errors asyncio raises when the read end of a pipe has gone away
_PIPE_GONE = (BrokenPipeError, ConnectionResetError)


@dataclass(frozen=True)
class ProcessSpec:
    """Command specification for a child process.

    Attributes:
        argv: Command line arguments (first element is the executable)
        cwd: Working directory for the process (None = inherit)
        env: Environment variables (None = inherit parent)
    """

    argv: tuple[str, ...]
    cwd: Path | None = None
    env: Mapping[str, str] | None = None

    def __post_init__(self) -> None:
        if isinstance(self.argv, (str, bytes)):
            raise TypeError("argv must be a sequence of tokens, not a string")
        # Freeze whatever sequence the caller passed in
        object.__setattr__(self, "argv", tuple(str(a) for a in self.argv))
        if not self.argv:
            raise ValueError("argv must contain at least the executable")
        if self.cwd is not None and not isinstance(self.cwd, Path):
            object.__setattr__(self, "cwd", Path(self.cwd))

    @property
    def executable(self) -> str:
        return self.argv[0]


@dataclass
class ProcessHandle:
    """Handle on a running child and its three stream endpoints.

    A handle is single-use: one launch, one payload, one teardown.

    Example:
        handle = await launch(ProcessSpec(argv=("cat",)))
        try:
            await handle.write(b"hello")
            await handle.close_input()
            data = await handle.stdout.read()
        finally:
            await handle.aclose()
    """

    process: asyncio.subprocess.Process
    spec: ProcessSpec
    term_timeout: float = DEFAULT_TERM_TIMEOUT
    kill_timeout: float = DEFAULT_KILL_TIMEOUT
    _input_closed: bool = field(default=False, init=False)
    _terminated_by_us: bool = field(default=False, init=False)

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def returncode(self) -> int | None:
        return self.process.returncode

    @property
    def stdout(self) -> asyncio.StreamReader:
        assert self.process.stdout is not None
        return self.process.stdout

    @property
    def stderr(self) -> asyncio.StreamReader:
        assert self.process.stderr is not None
        return self.process.stderr

    @property
    def input_closed(self) -> bool:
        return self._input_closed

    @property
    def terminated_by_us(self) -> bool:
        """Whether teardown had to signal the child."""
        return self._terminated_by_us

    async def write(self, chunk: bytes) -> None:
        """Write one chunk to the input sink and wait for it to drain.

        Raises:
            PipeClosedError: Sink already closed, or the child went away
        """
        if self._input_closed:
            raise PipeClosedError("Input sink already closed")
        if self.process.returncode is not None:
            raise PipeClosedError(
                f"Child pid={self.pid} already exited "
                f"(returncode={self.process.returncode})"
            )
        assert self.process.stdin is not None
        try:
            self.process.stdin.write(chunk)
            await self.process.stdin.drain()
        except _PIPE_GONE as e:
            raise PipeClosedError(f"Child pid={self.pid} stopped reading input: {e}") from e

    async def close_input(self, *, abort: bool = False) -> bool:
        """Close the input sink, signalling end-of-input to the child.

        Safe to call any number of times; only the first call closes.

        Args:
            abort: Drop any buffered, unwritten input instead of flushing it.
                Never blocks, even if the child stopped reading.

        Returns:
            True if this call closed the sink
        """
        if self._input_closed:
            return False
        self._input_closed = True

        stdin = self.process.stdin
        if stdin is None:
            return True
        if abort:
            stdin.transport.abort()
            logger.debug(f"Aborted input sink pid={self.pid}")
            return True

        stdin.close()
        try:
            await stdin.wait_closed()
        except _PIPE_GONE as e:
            # Child exited before consuming everything; the close itself happened
            logger.debug(f"Input close on pid={self.pid} saw closed pipe: {e}")
        except asyncio.CancelledError:
            # A flush the child never drains must not outlive the caller
            stdin.transport.abort()
            raise
        logger.debug(f"Closed input sink pid={self.pid}")
        return True

    async def wait(self) -> int:
        return await self.process.wait()

    def send_terminate(self) -> None:
        """Send the graceful termination signal without waiting.

        Non-blocking; pair with :meth:`terminate` or :meth:`aclose` to reap.
        """
        if self.process.returncode is not None:
            return
        self._terminated_by_us = True
        try:
            if IS_WINDOWS:
                self._windows_terminate()
            else:
                self._posix_signal(signal.SIGTERM)
        except ProcessLookupError:
            pass

    async def terminate(self) -> None:
        """Terminate subprocess gracefully, then forcefully if needed.

        Termination strategy:
        1. Send SIGTERM (or CTRL_BREAK_EVENT on Windows)
        2. Wait up to term_timeout for graceful exit
        3. If still running, send SIGKILL (or kill() on Windows)
        4. Wait up to kill_timeout for forced exit
        """
        if self.process.returncode is not None:
            return

        pid = self.pid
        logger.debug(f"Terminating subprocess pid={pid}")

        try:
            # Step 1: Graceful termination
            self.send_terminate()

            # Step 2: Wait for graceful exit
            try:
                await asyncio.wait_for(self.process.wait(), timeout=self.term_timeout)
                logger.debug(
                    f"Subprocess terminated gracefully pid={pid} "
                    f"returncode={self.process.returncode}"
                )
                return
            except asyncio.TimeoutError:
                pass

            # Step 3: Force kill
            logger.debug(f"Force killing subprocess pid={pid}")
            if IS_WINDOWS:
                self.process.kill()
            else:
                self._posix_signal(signal.SIGKILL)

            # Step 4: Wait for forced exit
            try:
                await asyncio.wait_for(self.process.wait(), timeout=self.kill_timeout)
                logger.debug(
                    f"Subprocess killed pid={pid} "
                    f"returncode={self.process.returncode}"
                )
            except asyncio.TimeoutError:
                logger.warning(f"Subprocess did not exit after kill pid={pid}")

        except ProcessLookupError:
            # Process already exited
            logger.debug(f"Subprocess already exited pid={pid}")
        except OSError as e:
            logger.warning(f"Error terminating subprocess pid={pid}: {e}")

    async def aclose(self) -> None:
        """Tear the handle down, shielded from cancellation.

        Closes the input sink, terminates the child if it is still running
        and reaps it. Runs to completion even if the caller is cancelled.
        """
        try:
            await asyncio.shield(self._do_close())
        except asyncio.CancelledError:
            # If shield itself is cancelled, still try cleanup
            await self._do_close()
            raise

    async def _do_close(self) -> None:
        await self.close_input()
        if self.process.returncode is None:
            await self.terminate()
        logger.debug(
            f"Handle closed pid={self.pid} returncode={self.process.returncode}"
        )

    async def __aenter__(self) -> "ProcessHandle":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    def _posix_signal(self, sig: signal.Signals) -> None:
        """Signal the child's process group, falling back to the child alone."""
        try:
            # Get process group ID (same as pid due to start_new_session)
            pgid = os.getpgid(self.pid)
            os.killpg(pgid, sig)
            logger.debug(f"Sent {sig.name} to process group pgid={pgid}")
        except ProcessLookupError:
            raise
        except OSError as e:
            logger.debug(f"killpg failed, falling back to send_signal: {e}")
            self.process.send_signal(sig)

    def _windows_terminate(self) -> None:
        """Send CTRL_BREAK_EVENT on Windows."""
        try:
            # Works because the child got CREATE_NEW_PROCESS_GROUP
            os.kill(self.pid, signal.CTRL_BREAK_EVENT)
            logger.debug(f"Sent CTRL_BREAK_EVENT to pid={self.pid}")
        except OSError as e:
            logger.debug(f"CTRL_BREAK_EVENT failed, falling back: {e}")
            self.process.terminate()


def _build_subprocess_kwargs(spec: ProcessSpec) -> dict[str, Any]:
    """Build platform-specific kwargs for asyncio.create_subprocess_exec."""
    kwargs: dict[str, Any] = {}

    if spec.cwd is not None:
        kwargs["cwd"] = spec.cwd

    if spec.env is not None:
        kwargs["env"] = dict(spec.env)

    if IS_WINDOWS:
        kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
    else:
        # POSIX: start_new_session (equivalent to setsid)
        kwargs["start_new_session"] = True

    return kwargs


async def launch(
    spec: ProcessSpec,
    *,
    term_timeout: float = DEFAULT_TERM_TIMEOUT,
    kill_timeout: float = DEFAULT_KILL_TIMEOUT,
) -> ProcessHandle:
    """Start the child described by ``spec`` with all three streams piped.

    Returns:
        A fresh handle; no output has been consumed yet

    Raises:
        LaunchError: Executable missing, not executable, or bad cwd
    """
    try:
        process = await asyncio.create_subprocess_exec(
            *spec.argv,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            **_build_subprocess_kwargs(spec),
        )
    except OSError as e:
        raise LaunchError(
            f"Cannot start {spec.executable!r}: {e.strerror or e}",
            argv=spec.argv,
        ) from e

    logger.debug(
        f"Started subprocess pid={process.pid} "
        f"argv={spec.executable} cwd={spec.cwd}"
    )
    return ProcessHandle(
        process=process,
        spec=spec,
        term_timeout=term_timeout,
        kill_timeout=kill_timeout,
    )
