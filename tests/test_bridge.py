"""PipelineBridge integration tests.

Runs the bridge against tests/fixtures/fake_compiler.py.

Test coverage:
- Success and Failure classification
- Banner handling (fixed and first-line)
- Late diagnostics after output EOF
- Large payloads without deadlock
- Timeout, crash, early exit and launch failure
- Invocation state tracking
"""

from __future__ import annotations

import asyncio
import io
import os
import sys
import time

import pytest

from closure_bridge.bridge import PipelineBridge
from closure_bridge.errors import (
    CompilationFailure,
    CompileTimeoutError,
    LaunchError,
    PipeClosedError,
    ReadError,
)
from closure_bridge.runtime.arbiter import BannerFilter
from closure_bridge.types import Failure, Invocation, InvocationState, Success

IS_WINDOWS = sys.platform == "win32"

BANNER = "Closure Compiler (fake) v20240317\n"


@pytest.fixture
def make_bridge(fake_argv):
    """Build a bridge around the fake compiler with short teardown timeouts."""

    def build(*args: str, **kwargs) -> PipelineBridge:
        kwargs.setdefault("term_timeout", 0.5)
        kwargs.setdefault("kill_timeout", 0.3)
        return PipelineBridge.from_argv(fake_argv(*args), **kwargs)

    return build


# =============================================================================
# Classification Tests
# =============================================================================


class TestClassification:
    """Test Success/Failure decisions."""

    @pytest.mark.asyncio
    async def test_success_is_byte_exact(self, make_bridge):
        result = await make_bridge().run("var x=1;", timeout=10)

        assert isinstance(result, Success)
        assert result.output == b"var x=1;"
        assert result.returncode == 0

    @pytest.mark.asyncio
    async def test_binary_output_untouched(self, make_bridge):
        """Output bytes are not decoded or re-encoded."""
        data = b"\xff\xfe\x00var\r\nx;\x00"
        result = await make_bridge("--mode", "echo").run(data, timeout=10)

        assert result.ok
        assert result.output == data

    @pytest.mark.asyncio
    async def test_syntax_error_is_failure(self, make_bridge):
        result = await make_bridge().run("var x = (;", timeout=10)

        assert isinstance(result, Failure)
        assert "JSC_PARSE_ERROR" in result.text

    @pytest.mark.asyncio
    async def test_diagnostic_wins_over_partial_output(self, make_bridge):
        """Output written before the error does not make a Success."""
        bridge = make_bridge(
            "--mode", "error",
            "--partial-output", "var x",
            "--stderr-text", "stdin:1: ERROR - half done\n",
        )
        result = await bridge.run("var x = 1;", timeout=10)

        assert not result.ok
        assert result.diagnostic == b"stdin:1: ERROR - half done\n"

    @pytest.mark.asyncio
    async def test_failure_ignores_exit_code(self, make_bridge):
        """A diagnostic with exit status 0 is still a Failure."""
        bridge = make_bridge("--mode", "error", "--exit-code", "0")
        result = await bridge.run("var x;", timeout=10)

        assert not result.ok
        assert result.text == "stdin:1: ERROR - failure\n"

    @pytest.mark.asyncio
    async def test_late_diagnostic_after_output_eof(self, make_bridge):
        """Diagnostic written after stdout closed is still reported."""
        bridge = make_bridge(
            "--mode", "late-error",
            "--stderr-text", "stdin:9: ERROR - late\n",
        )
        result = await bridge.run("var y = 2;", timeout=10)

        assert isinstance(result, Failure)
        assert result.text == "stdin:9: ERROR - late\n"

    @pytest.mark.asyncio
    async def test_no_payload(self, make_bridge):
        """Without a payload the child sees immediate end-of-input."""
        result = await make_bridge().run(timeout=10)

        assert result.ok
        assert result.output == b""

    @pytest.mark.asyncio
    async def test_unwrap_failure_raises(self, make_bridge):
        result = await make_bridge().run("function f( {", timeout=10)

        with pytest.raises(CompilationFailure) as exc_info:
            result.unwrap()

        assert "JSC_PARSE_ERROR" in str(exc_info.value)


# =============================================================================
# Banner Tests
# =============================================================================


class TestBanner:
    """Test startup banner handling."""

    @pytest.mark.asyncio
    async def test_banner_alone_is_success(self, make_bridge):
        bridge = make_bridge("--banner", BANNER, banner=BannerFilter.fixed(BANNER))
        result = await bridge.run("var x=1;", timeout=10)

        assert result.ok
        assert result.output == b"var x=1;"

    @pytest.mark.asyncio
    async def test_banner_without_filter_is_failure(self, make_bridge):
        """With no banner policy any diagnostic byte is a failure."""
        result = await make_bridge("--banner", BANNER).run("var x=1;", timeout=10)

        assert not result.ok
        assert result.text == BANNER

    @pytest.mark.asyncio
    async def test_banner_then_error_is_stripped(self, make_bridge):
        bridge = make_bridge(
            "--banner", BANNER,
            banner=BannerFilter.fixed(BANNER),
        )
        result = await bridge.run("if (x {", timeout=10)

        assert not result.ok
        assert not result.text.startswith("Closure Compiler")
        assert result.text.startswith("stdin:1: ERROR")

    @pytest.mark.asyncio
    async def test_different_banner_is_failure(self, make_bridge):
        """Content that diverges from the expected banner counts."""
        bridge = make_bridge(
            "--banner", "Unexpected startup text\n",
            banner=BannerFilter.fixed(BANNER),
        )
        result = await bridge.run("var x=1;", timeout=10)

        assert not result.ok
        assert result.text == "Unexpected startup text\n"

    @pytest.mark.asyncio
    async def test_first_line_policy(self, make_bridge):
        bridge = make_bridge(
            "--banner", "Any version string 1.2.3\n",
            banner=BannerFilter.first_line(),
        )
        ok = await bridge.run("var x=1;", timeout=10)
        failed = await bridge.run("var x=(;", timeout=10)

        assert ok.ok
        assert not failed.ok
        assert "JSC_PARSE_ERROR" in failed.text
        assert "Any version" not in failed.text


# =============================================================================
# Throughput Tests
# =============================================================================


class TestLargePayloads:
    """Test that large payloads never deadlock."""

    @pytest.mark.asyncio
    @pytest.mark.timeout(60)
    async def test_multi_megabyte_echo(self, make_bridge):
        """The child writes output while we are still feeding input."""
        data = os.urandom(8 * 1024 * 1024)
        result = await make_bridge("--mode", "echo").run(data, timeout=30)

        assert result.ok
        assert len(result.output) == len(data)
        assert result.output == data

    @pytest.mark.asyncio
    @pytest.mark.timeout(60)
    async def test_lazy_payload_source(self, make_bridge):
        """A file-like payload is streamed in bounded chunks."""
        data = b"var a = [1, 2, 3];\n" * 200_000
        result = await make_bridge("--mode", "echo", chunk_size=8192).run(
            io.BytesIO(data), timeout=30
        )

        assert result.ok
        assert result.output == data

    @pytest.mark.asyncio
    @pytest.mark.timeout(60)
    async def test_generator_payload(self, make_bridge):
        def source():
            for i in range(1000):
                yield f"var v{i} = {i};\n"

        result = await make_bridge().run(source(), timeout=30)

        assert result.ok
        assert result.output.count(b"\n") == 1000


# =============================================================================
# Error Path Tests
# =============================================================================


class TestErrorPaths:
    """Test timeout, crash, early exit and launch errors."""

    @pytest.mark.asyncio
    @pytest.mark.timeout(30)
    async def test_timeout_terminates_child(self, make_bridge):
        invocation = Invocation()
        start = time.monotonic()

        with pytest.raises(CompileTimeoutError) as exc_info:
            await make_bridge("--mode", "hang").run(
                "var x;", timeout=0.5, invocation=invocation
            )

        elapsed = time.monotonic() - start
        assert exc_info.value.timeout == 0.5
        assert isinstance(exc_info.value, TimeoutError)
        assert elapsed < 5
        assert invocation.state is InvocationState.TIMED_OUT
        # Reaped: the pid no longer refers to our child
        with pytest.raises(ProcessLookupError):
            os.kill(invocation.pid, 0)

    @pytest.mark.asyncio
    @pytest.mark.timeout(30)
    async def test_bridge_default_timeout(self, make_bridge):
        bridge = make_bridge("--mode", "hang", timeout=0.3)

        with pytest.raises(CompileTimeoutError):
            await bridge.run("var x;")

    @pytest.mark.asyncio
    @pytest.mark.timeout(30)
    async def test_cancellation_tears_down(self, make_bridge):
        """Cancelling the caller still reaps the child."""
        invocation = Invocation()
        task = asyncio.create_task(
            make_bridge("--mode", "hang").run("var x;", invocation=invocation)
        )
        await asyncio.sleep(0.5)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert invocation.state is InvocationState.ERRORED
        with pytest.raises(ProcessLookupError):
            os.kill(invocation.pid, 0)

    @pytest.mark.asyncio
    @pytest.mark.timeout(30)
    async def test_timeout_with_unread_payload(self, make_bridge):
        """A child that never reads a large payload still times out promptly."""
        invocation = Invocation()
        start = time.monotonic()

        with pytest.raises(CompileTimeoutError):
            await asyncio.wait_for(
                make_bridge("--mode", "hang").run(
                    b"x" * (4 * 1024 * 1024), timeout=0.5, invocation=invocation
                ),
                timeout=10,
            )

        assert time.monotonic() - start < 5
        assert invocation.state is InvocationState.TIMED_OUT
        with pytest.raises(ProcessLookupError):
            os.kill(invocation.pid, 0)

    @pytest.mark.asyncio
    @pytest.mark.timeout(30)
    async def test_cancellation_with_unread_payload(self, make_bridge):
        """Cancelling while the feeder is blocked on a full pipe still returns."""
        invocation = Invocation()
        task = asyncio.create_task(
            make_bridge("--mode", "hang").run(
                b"x" * (4 * 1024 * 1024), invocation=invocation
            )
        )
        await asyncio.sleep(0.5)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await asyncio.wait_for(task, timeout=5)

        assert invocation.state is InvocationState.ERRORED
        with pytest.raises(ProcessLookupError):
            os.kill(invocation.pid, 0)

    @pytest.mark.asyncio
    @pytest.mark.skipif(IS_WINDOWS, reason="POSIX signals")
    async def test_crash_is_read_error(self, make_bridge):
        """A child killed by a signal we did not send is not a Success."""
        invocation = Invocation()

        with pytest.raises(ReadError):
            await make_bridge("--mode", "crash").run(
                "var x;", timeout=10, invocation=invocation
            )

        assert invocation.state is InvocationState.ERRORED

    @pytest.mark.asyncio
    async def test_exit_early_without_diagnostic(self, make_bridge):
        """A child that stops reading without saying why breaks the pipe."""
        data = b"x" * (4 * 1024 * 1024)

        with pytest.raises(PipeClosedError):
            await make_bridge("--mode", "exit-early").run(data, timeout=10)

    @pytest.mark.asyncio
    async def test_exit_early_with_diagnostic(self, make_bridge):
        """When the child explains itself the diagnostic is the result."""
        bridge = make_bridge(
            "--mode", "exit-early",
            "--exit-code", "2",
            "--stderr-text", "ERROR - cannot read input\n",
        )
        result = await bridge.run(b"x" * (4 * 1024 * 1024), timeout=10)

        assert not result.ok
        assert result.text == "ERROR - cannot read input\n"

    @pytest.mark.asyncio
    async def test_launch_error(self):
        invocation = Invocation()
        bridge = PipelineBridge.from_argv(["nonexistent_compiler_xyz_123", "-jar", "x.jar"])

        with pytest.raises(LaunchError) as exc_info:
            await bridge.run("var x;", invocation=invocation)

        assert exc_info.value.argv[0] == "nonexistent_compiler_xyz_123"
        assert invocation.history == [InvocationState.ERRORED]
        assert invocation.pid is None

    @pytest.mark.asyncio
    async def test_payload_source_error_propagates(self, make_bridge):
        """A failing payload source aborts the run and tears the child down."""
        invocation = Invocation()

        def source():
            yield b"var a;"
            raise RuntimeError("source failed")

        with pytest.raises(RuntimeError, match="source failed"):
            await make_bridge().run(source(), timeout=10, invocation=invocation)

        assert invocation.state is InvocationState.ERRORED


# =============================================================================
# Invocation Tracking Tests
# =============================================================================


class TestInvocation:
    """Test invocation state tracking through a run."""

    @pytest.mark.asyncio
    async def test_success_history(self, make_bridge):
        invocation = Invocation()
        await make_bridge().run("var x;", timeout=10, invocation=invocation)

        assert invocation.history == [
            InvocationState.LAUNCHED,
            InvocationState.FEEDING,
            InvocationState.AWAITING_RESULT,
            InvocationState.SUCCEEDED,
        ]
        assert invocation.finished
        assert invocation.pid is not None

    @pytest.mark.asyncio
    async def test_failure_history(self, make_bridge):
        invocation = Invocation()
        await make_bridge().run("var x = {;", timeout=10, invocation=invocation)

        assert invocation.state is InvocationState.FAILED

    @pytest.mark.asyncio
    async def test_sequential_reuse(self, make_bridge):
        """One bridge serves several runs, each with a fresh process."""
        bridge = make_bridge()
        first = Invocation()
        second = Invocation()

        r1 = await bridge.run("var a;", timeout=10, invocation=first)
        r2 = await bridge.run("var b;", timeout=10, invocation=second)

        assert r1.output == b"var a;"
        assert r2.output == b"var b;"
        assert first.pid != second.pid


# =============================================================================
# Sync API Tests
# =============================================================================


class TestRunSync:
    """Test the blocking entry point."""

    def test_run_sync(self, make_bridge):
        result = make_bridge().run_sync("var x=1;", timeout=10)

        assert result.ok
        assert result.output == b"var x=1;"

    def test_run_sync_failure(self, make_bridge):
        result = make_bridge().run_sync("var x=(;", timeout=10)

        assert not result.ok
