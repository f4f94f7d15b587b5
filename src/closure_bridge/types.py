"""Bridge type definitions.

closure-bridge types v0.1.0

Defines the invocation result, the banner policy and the per-invocation
state machine.
"""

from __future__ import annotations

import io
from dataclasses import dataclass, field
from enum import Enum
from typing import Union

from .errors import CompilationFailure, InvalidTransitionError

__all__ = [
    "BannerPolicy",
    "InvocationState",
    "Invocation",
    "Success",
    "Failure",
    "Result",
    "TERMINAL_STATES",
]


class BannerPolicy(str, Enum):
    """How startup text on the diagnostic stream is told apart from errors.

    - none: any diagnostic byte is a failure signal
    - fixed: a known banner prefix is ignored, only content beyond it counts
    - first_line: the first diagnostic line is always discarded
    """

    NONE = "none"
    FIXED = "fixed"
    FIRST_LINE = "first_line"

    @classmethod
    def from_string(cls, value: str) -> "BannerPolicy":
        """Parse a policy name, case-insensitive; "-" and "_" are equivalent.

        Raises:
            ValueError: Unknown policy name
        """
        normalized = value.strip().lower().replace("-", "_")
        for policy in cls:
            if policy.value == normalized:
                return policy
        raise ValueError(f"Unknown banner policy: {value!r}")


class InvocationState(str, Enum):
    """Lifecycle of one bridge invocation."""

    LAUNCHED = "launched"
    FEEDING = "feeding"
    AWAITING_RESULT = "awaiting_result"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    ERRORED = "errored"


TERMINAL_STATES = frozenset({
    InvocationState.SUCCEEDED,
    InvocationState.FAILED,
    InvocationState.TIMED_OUT,
    InvocationState.ERRORED,
})

_TRANSITIONS: dict[InvocationState | None, frozenset[InvocationState]] = {
    None: frozenset({InvocationState.LAUNCHED, InvocationState.ERRORED}),
    InvocationState.LAUNCHED: frozenset({InvocationState.FEEDING, InvocationState.ERRORED}),
    InvocationState.FEEDING: frozenset({InvocationState.AWAITING_RESULT}) | TERMINAL_STATES,
    InvocationState.AWAITING_RESULT: TERMINAL_STATES,
}


@dataclass
class Invocation:
    """Tracks the state of a single invocation.

    Attributes:
        state: Current state (None before launch)
        history: Every state entered, in order
        pid: Child pid once launched
    """

    state: InvocationState | None = None
    history: list[InvocationState] = field(default_factory=list)
    pid: int | None = None

    @property
    def finished(self) -> bool:
        return self.state in TERMINAL_STATES

    def advance(self, new_state: InvocationState) -> None:
        """Move to ``new_state``.

        Raises:
            InvalidTransitionError: Transition not allowed from the current state
        """
        allowed = _TRANSITIONS.get(self.state, frozenset())
        if new_state not in allowed:
            current = self.state.value if self.state else "new"
            raise InvalidTransitionError(
                f"Invalid transition {current} -> {new_state.value}"
            )
        self.state = new_state
        self.history.append(new_state)


@dataclass(frozen=True)
class Success:
    """The child finished without diagnostic output.

    Attributes:
        output: Output stream bytes, exactly as produced
        returncode: Child exit status
    """

    output: bytes
    returncode: int | None = None

    @property
    def ok(self) -> bool:
        return True

    @property
    def text(self) -> str:
        return self.output.decode("utf-8", errors="replace")

    def as_stream(self) -> io.BytesIO:
        """Return the output as a fresh, re-readable stream."""
        return io.BytesIO(self.output)

    def unwrap(self) -> bytes:
        return self.output


@dataclass(frozen=True)
class Failure:
    """The child wrote to its diagnostic stream.

    Attributes:
        diagnostic: Diagnostic bytes with the banner removed
        returncode: Child exit status, if it was reaped
    """

    diagnostic: bytes
    returncode: int | None = None

    @property
    def ok(self) -> bool:
        return False

    @property
    def text(self) -> str:
        return self.diagnostic.decode("utf-8", errors="replace")

    def to_exception(self) -> CompilationFailure:
        return CompilationFailure(self.diagnostic, self.returncode)

    def unwrap(self) -> bytes:
        """Raise the failure as :class:`CompilationFailure`."""
        raise self.to_exception()


Result = Union[Success, Failure]
