"""Runtime module for driving a child process through its standard streams.

This module provides the three parts of one invocation: the launcher
(isolated process with piped streams and reliable termination), the
feeder (payload into stdin, closed exactly once) and the readiness
arbiter (drains stdout/stderr concurrently and decides the result).
"""

from __future__ import annotations

from .arbiter import BannerFilter, ReadinessArbiter, StreamDrain, await_result
from .feeder import DEFAULT_CHUNK_SIZE, Payload, feed, iter_payload
from .process_runner import ProcessHandle, ProcessSpec, launch

__all__ = [
    "BannerFilter",
    "DEFAULT_CHUNK_SIZE",
    "Payload",
    "ProcessHandle",
    "ProcessSpec",
    "ReadinessArbiter",
    "StreamDrain",
    "await_result",
    "feed",
    "iter_payload",
    "launch",
]
