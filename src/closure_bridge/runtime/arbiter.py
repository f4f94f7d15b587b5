"""Readiness arbiter: decides an invocation's result from its two output streams.

closure-bridge runtime module v0.1.0

Both streams are drained by their own task from the moment the arbiter is
started, so the child can never block on a full stdout/stderr pipe while the
feeder is still writing. The arbiter itself only waits on readiness events:

- output is ready once it has data or reached EOF
- diagnostic is ready once it holds content beyond the banner, or reached EOF

Decision rule: significant diagnostic content always wins. If the output
stream becomes ready first, it is drained to EOF and the diagnostic stream
is checked again at its own EOF before a Success is reported.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass

from ..errors import CompileTimeoutError, ReadError
from ..types import BannerPolicy, Failure, Result, Success
from .feeder import DEFAULT_CHUNK_SIZE
from .process_runner import ProcessHandle

__all__ = [
    "BannerFilter",
    "DIAGNOSTIC",
    "OUTPUT",
    "ReadinessArbiter",
    "StreamDrain",
    "await_result",
]

logger = logging.getLogger(__name__)

OUTPUT = "output"
DIAGNOSTIC = "diagnostic"


@dataclass(frozen=True)
class BannerFilter:
    """Separates a known startup banner from real diagnostic content.

    Attributes:
        policy: How the banner is recognised
        banner: Banner bytes for the FIXED policy
    """

    policy: BannerPolicy = BannerPolicy.NONE
    banner: bytes = b""

    @classmethod
    def fixed(cls, banner: bytes | str) -> "BannerFilter":
        if isinstance(banner, str):
            banner = banner.encode("utf-8")
        return cls(policy=BannerPolicy.FIXED, banner=banner)

    @classmethod
    def first_line(cls) -> "BannerFilter":
        return cls(policy=BannerPolicy.FIRST_LINE)

    def is_significant(self, data: bytes) -> bool:
        """Whether ``data`` holds anything beyond the banner."""
        return bool(self.strip(data))

    def strip(self, data: bytes) -> bytes:
        """Return ``data`` with the banner removed.

        A partial banner (the stream ended, or has not yet gone, past a
        prefix of it) strips to nothing. Content that diverges from the
        banner is returned untouched.
        """
        if self.policy is BannerPolicy.FIXED and self.banner:
            if data.startswith(self.banner):
                return data[len(self.banner):]
            if self.banner.startswith(data):
                return b""
            return data
        if self.policy is BannerPolicy.FIRST_LINE:
            newline = data.find(b"\n")
            if newline < 0:
                return b""
            return data[newline + 1:]
        return data


class StreamDrain:
    """Reads one stream to EOF in the background.

    ``ready`` is set as soon as ``is_ready(buffered)`` holds, or at EOF.
    ``done`` is set at EOF or on a read error (kept in ``error``).
    """

    def __init__(
        self,
        name: str,
        reader: asyncio.StreamReader,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        is_ready: Callable[[bytes], bool] = bool,
    ) -> None:
        self.name = name
        self._reader = reader
        self._chunk_size = chunk_size
        self._is_ready = is_ready
        self._buffer = bytearray()
        self.ready = asyncio.Event()
        self.done = asyncio.Event()
        self.error: BaseException | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def data(self) -> bytes:
        return bytes(self._buffer)

    @property
    def eof(self) -> bool:
        return self.done.is_set()

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name=f"drain-{self.name}")

    async def _run(self) -> None:
        try:
            while True:
                chunk = await self._reader.read(self._chunk_size)
                if not chunk:
                    break
                self._buffer.extend(chunk)
                if not self.ready.is_set() and self._is_ready(bytes(self._buffer)):
                    self.ready.set()
        except Exception as e:
            logger.debug(f"Read error on {self.name} stream: {e!r}")
            self.error = e
        finally:
            self.done.set()
            self.ready.set()

    def check(self) -> None:
        """Raise ReadError if the drain failed."""
        if self.error is not None:
            raise ReadError(
                f"Failed reading {self.name} stream: {self.error}",
                stream=self.name,
            ) from self.error

    async def aclose(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass


class ReadinessArbiter:
    """Waits on a handle's output and diagnostic streams and picks the result.

    Example:
        arbiter = ReadinessArbiter(handle, BannerFilter.fixed(b"ready\\n"))
        arbiter.start()
        try:
            result = await arbiter.result(timeout=30)
        finally:
            await arbiter.aclose()
    """

    def __init__(
        self,
        handle: ProcessHandle,
        banner: BannerFilter | None = None,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        self.handle = handle
        self.banner = banner or BannerFilter()
        self.output = StreamDrain(OUTPUT, handle.stdout, chunk_size=chunk_size)
        self.diagnostic = StreamDrain(
            DIAGNOSTIC,
            handle.stderr,
            chunk_size=chunk_size,
            is_ready=self.banner.is_significant,
        )

    @property
    def diagnostic_significant(self) -> bool:
        return self.banner.is_significant(self.diagnostic.data)

    def start(self) -> None:
        """Start draining both streams; call right after launch."""
        self.output.start()
        self.diagnostic.start()

    async def result(self, timeout: float | None = None) -> Result:
        """Block until the invocation's result is decided.

        Args:
            timeout: Bound in seconds for the whole decision (None = no bound)

        Raises:
            CompileTimeoutError: No decision within ``timeout``
            ReadError: A stream failed, or the child was killed unexpectedly
        """
        self.start()
        try:
            return await asyncio.wait_for(self._decide(), timeout)
        except asyncio.TimeoutError as e:
            logger.debug(f"Timed out after {timeout}s waiting on pid={self.handle.pid}")
            raise CompileTimeoutError(timeout or 0.0) from e

    async def wait_ready(self) -> set[str]:
        """Readiness wait: return the names of the sources that are ready.

        Diagnostic only counts as ready with significant content; a
        diagnostic stream that ended with nothing but the banner is dropped
        from the wait.
        """
        while True:
            ready: set[str] = set()
            if self.diagnostic_significant:
                ready.add(DIAGNOSTIC)
            if self.output.ready.is_set():
                ready.add(OUTPUT)
            if ready:
                return ready

            waiters = [asyncio.create_task(self.output.ready.wait())]
            if not self.diagnostic.eof:
                waiters.append(asyncio.create_task(self.diagnostic.ready.wait()))
            try:
                await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
            finally:
                for waiter in waiters:
                    waiter.cancel()
                await asyncio.gather(*waiters, return_exceptions=True)

    async def _decide(self) -> Result:
        ready = await self.wait_ready()
        logger.debug(f"Ready set for pid={self.handle.pid}: {sorted(ready)}")

        if DIAGNOSTIC in ready:
            return await self._failure()

        await self.output.done.wait()
        self.output.check()
        await self.diagnostic.done.wait()
        self.diagnostic.check()

        if self.diagnostic_significant:
            logger.debug(
                f"Diagnostic output arrived after output EOF pid={self.handle.pid}"
            )
            return await self._failure()

        returncode = await self._reap()
        logger.debug(
            f"Success pid={self.handle.pid} output={len(self.output.data)} bytes"
        )
        return Success(self.output.data, returncode)

    async def _failure(self) -> Failure:
        await self.diagnostic.done.wait()
        self.diagnostic.check()
        diagnostic = self.banner.strip(self.diagnostic.data)
        returncode = self.handle.returncode
        if self.output.eof:
            # A signal death still reports the diagnostic it left behind
            returncode = await self.handle.wait()
        logger.debug(
            f"Failure pid={self.handle.pid} diagnostic={len(diagnostic)} bytes"
        )
        return Failure(diagnostic, returncode)

    async def _reap(self) -> int:
        """Wait for exit; a signal death we did not cause is a read error."""
        returncode = await self.handle.wait()
        if returncode < 0 and not self.handle.terminated_by_us:
            raise ReadError(
                f"Child pid={self.handle.pid} terminated by signal {-returncode}",
                stream=OUTPUT,
            )
        return returncode

    async def aclose(self) -> None:
        await self.output.aclose()
        await self.diagnostic.aclose()


async def await_result(
    handle: ProcessHandle,
    timeout: float | None = None,
    *,
    banner: BannerFilter | None = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> Result:
    """Arbitrate a handle whose input is being (or has been) fed elsewhere.

    Prefer :class:`closure_bridge.bridge.PipelineBridge`, which starts the
    drains before feeding. Use this only when the payload is small or is
    fed from a concurrent task.
    """
    arbiter = ReadinessArbiter(handle, banner, chunk_size=chunk_size)
    arbiter.start()
    try:
        return await arbiter.result(timeout)
    finally:
        await arbiter.aclose()
