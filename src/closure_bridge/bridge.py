"""Subprocess pipeline bridge.

closure-bridge bridge v0.1.0

Runs one external process per invocation:

    launch -> start draining stdout/stderr -> feed stdin (own task)
           -> arbiter decides -> scoped teardown

Feeding and arbitration overlap, so a child that writes a lot of output
while still consuming input can never deadlock against us.
"""

from __future__ import annotations

import asyncio
import contextlib
import functools
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

import anyio

from .errors import CompileTimeoutError, LaunchError, PipeClosedError
from .runtime.arbiter import BannerFilter, ReadinessArbiter
from .runtime.feeder import DEFAULT_CHUNK_SIZE, Payload, feed
from .runtime.process_runner import (
    DEFAULT_KILL_TIMEOUT,
    DEFAULT_TERM_TIMEOUT,
    ProcessHandle,
    ProcessSpec,
    launch,
)
from .types import Invocation, InvocationState, Result

__all__ = ["PipelineBridge"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineBridge:
    """Drives an external program through its standard streams.

    The bridge holds only immutable configuration; every :meth:`run` gets
    its own process handle, so sequential reuse is fine. Overlapping runs on
    one instance are not supported.

    Attributes:
        spec: Command specification (argv, cwd, env)
        banner: Startup banner filter for the diagnostic stream
        timeout: Default bound for each run, in seconds (None = unbounded)
        chunk_size: Upper bound for lazy payload writes and stream reads
        encoding: Encoding for str payloads
        term_timeout: Grace period after SIGTERM during teardown
        kill_timeout: Grace period after SIGKILL during teardown

    Example:
        bridge = PipelineBridge.from_argv(["java", "-jar", "compiler.jar"])
        result = await bridge.run("var x = 1;", timeout=30)
        if result.ok:
            print(result.text)
    """

    spec: ProcessSpec
    banner: BannerFilter = field(default_factory=BannerFilter)
    timeout: float | None = None
    chunk_size: int = DEFAULT_CHUNK_SIZE
    encoding: str = "utf-8"
    term_timeout: float = DEFAULT_TERM_TIMEOUT
    kill_timeout: float = DEFAULT_KILL_TIMEOUT

    @classmethod
    def from_argv(
        cls,
        argv: Sequence[str],
        *,
        cwd: Path | str | None = None,
        env: Mapping[str, str] | None = None,
        **kwargs,
    ) -> "PipelineBridge":
        spec = ProcessSpec(
            argv=tuple(argv),
            cwd=Path(cwd) if cwd is not None else None,
            env=env,
        )
        return cls(spec=spec, **kwargs)

    async def run(
        self,
        payload: Payload = None,
        *,
        timeout: float | None = None,
        invocation: Invocation | None = None,
    ) -> Result:
        """Run one invocation and return its result.

        Args:
            payload: Input for the child (see runtime.feeder)
            timeout: Overrides the bridge's default bound for this run
            invocation: Optional state tracker, advanced as the run progresses

        Returns:
            Success or Failure

        Raises:
            LaunchError: The executable could not be started
            PipeClosedError: The child stopped reading input without a diagnostic
            CompileTimeoutError: No result within the bound
            ReadError: Output could not be read, or the child was killed
        """
        if invocation is None:
            invocation = Invocation()
        bound = self.timeout if timeout is None else timeout

        try:
            handle = await launch(
                self.spec,
                term_timeout=self.term_timeout,
                kill_timeout=self.kill_timeout,
            )
        except LaunchError:
            invocation.advance(InvocationState.ERRORED)
            raise
        invocation.pid = handle.pid
        invocation.advance(InvocationState.LAUNCHED)

        # Drains first, so nothing the child writes can back up
        arbiter = ReadinessArbiter(handle, self.banner, chunk_size=self.chunk_size)
        arbiter.start()

        feeder = asyncio.create_task(
            feed(handle, payload, chunk_size=self.chunk_size, encoding=self.encoding),
            name=f"feed-{handle.pid}",
        )
        invocation.advance(InvocationState.FEEDING)
        decision = asyncio.create_task(
            arbiter.result(bound),
            name=f"arbiter-{handle.pid}",
        )
        invocation.advance(InvocationState.AWAITING_RESULT)

        try:
            result = await self._settle(feeder, decision)
        except CompileTimeoutError:
            logger.warning(f"Subprocess pid={handle.pid} timed out after {bound}s")
            invocation.advance(InvocationState.TIMED_OUT)
            raise
        except BaseException as e:
            logger.debug(f"Invocation pid={handle.pid} errored: {type(e).__name__}: {e}")
            invocation.advance(InvocationState.ERRORED)
            raise
        finally:
            await self._teardown(handle, arbiter, feeder, decision)

        invocation.advance(
            InvocationState.SUCCEEDED if result.ok else InvocationState.FAILED
        )
        return result

    def run_sync(self, payload: Payload = None, *, timeout: float | None = None) -> Result:
        """Blocking variant of :meth:`run` for callers without an event loop."""
        return anyio.run(functools.partial(self.run, payload, timeout=timeout))

    async def _settle(
        self,
        feeder: asyncio.Task[int],
        decision: asyncio.Task[Result],
    ) -> Result:
        """Combine the feeder's outcome with the arbiter's decision."""
        done, _ = await asyncio.wait(
            {feeder, decision}, return_when=asyncio.FIRST_COMPLETED
        )

        if feeder in done:
            exc = feeder.exception()
            if exc is None:
                return await decision
            if isinstance(exc, PipeClosedError):
                # The child stopped reading; its diagnostic says why, if anything
                result = await decision
                if not result.ok:
                    return result
            raise exc

        result = decision.result()
        if result.ok:
            # A success is only trusted once the whole payload went in
            await feeder
        return result

    async def _teardown(
        self,
        handle: ProcessHandle,
        arbiter: ReadinessArbiter,
        feeder: asyncio.Task[int],
        decision: asyncio.Task[Result],
    ) -> None:
        """Release everything the invocation owns, shielded from cancellation."""
        try:
            await asyncio.shield(self._do_teardown(handle, arbiter, feeder, decision))
        except asyncio.CancelledError:
            # If shield itself is cancelled, still try cleanup
            await self._do_teardown(handle, arbiter, feeder, decision)
            raise

    async def _do_teardown(
        self,
        handle: ProcessHandle,
        arbiter: ReadinessArbiter,
        feeder: asyncio.Task[int],
        decision: asyncio.Task[Result],
    ) -> None:
        # Signal first so a child that stopped reading cannot hold up the tasks
        handle.send_terminate()
        for task in (feeder, decision):
            if not task.done():
                task.cancel()
            # Outcome already reported by _settle
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await task
        await handle.aclose()
        await arbiter.aclose()
        logger.debug(
            f"Invocation teardown complete pid={handle.pid} "
            f"returncode={handle.returncode}"
        )
