"""Stream feeder: pushes a payload into a child's input sink.

closure-bridge runtime module v0.1.0

Payload shapes accepted:
- None: nothing is written, the sink is just closed
- bytes / bytearray / memoryview / str: written in full
- object with read(n) (sync or async): pulled in bounded chunks
- iterable or async iterable of bytes/str chunks

Lazy payloads are never collected in memory as a whole. The sink is closed
exactly once on every exit path, including exceptions raised mid-write.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import AsyncIterable, AsyncIterator, Iterable
from typing import Any, Union

from .process_runner import ProcessHandle

__all__ = [
    "DEFAULT_CHUNK_SIZE",
    "Payload",
    "feed",
    "iter_payload",
]

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 4096

Chunk = Union[bytes, bytearray, memoryview, str]
Payload = Union[None, Chunk, Iterable[Chunk], AsyncIterable[Chunk], Any]


def _to_bytes(chunk: Chunk, encoding: str) -> bytes:
    if isinstance(chunk, str):
        return chunk.encode(encoding)
    if isinstance(chunk, (bytes, bytearray, memoryview)):
        return bytes(chunk)
    raise TypeError(f"Payload chunks must be bytes or str, got {type(chunk).__name__}")


def _split(data: bytes, chunk_size: int) -> Iterable[bytes]:
    """Slice oversized chunks so every write stays bounded."""
    for start in range(0, len(data), chunk_size):
        yield data[start:start + chunk_size]


async def _read_source(source: Any, chunk_size: int) -> AsyncIterator[Chunk]:
    """Pull chunks from a readable object until it returns an empty read."""
    read = source.read
    is_async = inspect.iscoroutinefunction(read)
    while True:
        if is_async:
            chunk = await read(chunk_size)
        else:
            # Off the event loop so stream draining keeps running
            chunk = await asyncio.to_thread(read, chunk_size)
        if not chunk:
            return
        yield chunk


async def iter_payload(
    payload: Payload,
    *,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    encoding: str = "utf-8",
) -> AsyncIterator[bytes]:
    """Normalize any supported payload into bounded byte chunks, in order.

    In-memory payloads come out as a single chunk (they are already whole);
    lazy payloads come out as chunks of at most ``chunk_size`` bytes. Empty
    chunks from iterables are skipped.

    Raises:
        TypeError: Unsupported payload or chunk type
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")

    if payload is None:
        return

    if isinstance(payload, (bytes, bytearray, memoryview, str)):
        data = _to_bytes(payload, encoding)
        if data:
            yield data
        return

    if hasattr(payload, "read"):
        source: AsyncIterable[Chunk] = _read_source(payload, chunk_size)
    elif isinstance(payload, AsyncIterable):
        source = payload
    elif isinstance(payload, Iterable):
        source = _aiter_sync(payload)
    else:
        raise TypeError(f"Unsupported payload type: {type(payload).__name__}")

    async for chunk in source:
        data = _to_bytes(chunk, encoding)
        for piece in _split(data, chunk_size):
            yield piece


async def _aiter_sync(items: Iterable[Chunk]) -> AsyncIterator[Chunk]:
    for item in items:
        yield item


async def feed(
    handle: ProcessHandle,
    payload: Payload,
    *,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    encoding: str = "utf-8",
) -> int:
    """Write ``payload`` to the handle's input sink, then close the sink.

    Args:
        handle: Freshly launched process handle
        payload: See module docstring
        chunk_size: Upper bound for each lazy write
        encoding: Encoding for str payloads

    Returns:
        Number of bytes written

    Raises:
        PipeClosedError: The child stopped reading, or the sink was closed
    """
    written = 0
    completed = False
    chunks = iter_payload(payload, chunk_size=chunk_size, encoding=encoding)
    try:
        async for chunk in chunks:
            await handle.write(chunk)
            written += len(chunk)
        completed = True
    finally:
        # Errors and cancellation drop whatever is still buffered
        await handle.close_input(abort=not completed)
        await chunks.aclose()
        logger.debug(f"Fed {written} bytes to pid={handle.pid}")
    return written
