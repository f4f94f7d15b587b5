"""Bridge exception classes.

closure-bridge errors v0.1.0

None of these are retried internally; retry policy belongs to the caller.
"""

from __future__ import annotations

__all__ = [
    "BridgeError",
    "BridgeConfigError",
    "LaunchError",
    "PipeClosedError",
    "ReadError",
    "CompileTimeoutError",
    "CompilationFailure",
    "InvalidTransitionError",
]


class BridgeError(Exception):
    """Base exception for the bridge."""
    pass


class BridgeConfigError(BridgeError):
    """Configuration error (e.g. no compiler jar configured)."""
    pass


class LaunchError(BridgeError):
    """The executable could not be found or started.

    Attributes:
        argv: Argument vector that failed to launch
    """

    def __init__(self, message: str, argv: tuple[str, ...] = ()) -> None:
        self.argv = argv
        super().__init__(message)


class PipeClosedError(BridgeError, BrokenPipeError):
    """Write after the input sink was closed, or after the child exited."""
    pass


class ReadError(BridgeError):
    """An output or diagnostic stream could not be read to completion.

    Attributes:
        stream: Name of the stream that failed ("output" or "diagnostic")
    """

    def __init__(self, message: str, stream: str = "") -> None:
        self.stream = stream
        super().__init__(message)


class CompileTimeoutError(BridgeError, TimeoutError):
    """No result within the configured bound; the child is presumed hung.

    Attributes:
        timeout: The bound that elapsed, in seconds
    """

    def __init__(self, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(f"No result from child process within {timeout:g}s")


class CompilationFailure(BridgeError):
    """The child wrote to its diagnostic stream.

    ``str(exc)`` is the diagnostic text, unmodified, so callers can show the
    tool's own message.

    Attributes:
        diagnostic: Raw diagnostic bytes (banner removed)
        returncode: Child exit status, if it was reaped
    """

    def __init__(self, diagnostic: bytes, returncode: int | None = None) -> None:
        self.diagnostic = diagnostic
        self.returncode = returncode
        super().__init__(diagnostic.decode("utf-8", errors="replace"))


class InvalidTransitionError(BridgeError):
    """An invocation was moved out of a terminal state or skipped a step."""
    pass
