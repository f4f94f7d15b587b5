"""Closure Compiler wrapper.

Builds the ``java ... -jar compiler.jar --key value ...`` argument vector
and runs it through a fresh :class:`PipelineBridge` per call.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable, Mapping, Sequence
from pathlib import Path
from types import MappingProxyType
from typing import Any

from .bridge import PipelineBridge
from .config import Config, get_config
from .errors import BridgeConfigError
from .runtime.arbiter import BannerFilter
from .runtime.feeder import Payload
from .runtime.process_runner import ProcessSpec
from .types import Result

__all__ = [
    "Compiler",
    "DEFAULT_OPTIONS",
    "JVM_FLAGS",
    "serialize_options",
]

logger = logging.getLogger(__name__)

DEFAULT_OPTIONS: Mapping[str, Any] = MappingProxyType({
    "warning_level": "QUIET",
    "language_in": "ECMASCRIPT5",
})

# Faster JVM startup for short-lived compiler runs
JVM_FLAGS: tuple[str, ...] = ("-XX:TieredStopAtLevel=1",)


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, os.PathLike):
        return os.fspath(value)
    return str(value)


def serialize_options(options: Mapping[str, Any]) -> list[str]:
    """Serialize an option map to ``--key value`` tokens.

    List/tuple values expand to one flag per element; None values are
    omitted; booleans become ``true``/``false``.

    Example:
        >>> serialize_options({"js": ["a.js", "b.js"], "warning_level": "QUIET"})
        ['--js', 'a.js', '--js', 'b.js', '--warning_level', 'QUIET']
    """
    tokens: list[str] = []
    for key, value in options.items():
        if value is None:
            continue
        values = value if isinstance(value, (list, tuple)) else [value]
        for item in values:
            tokens.extend([f"--{key}", _format_value(item)])
    return tokens


class Compiler:
    """Thin wrapper around the Closure Compiler jar.

    Options are merged over :data:`DEFAULT_OPTIONS` once, at construction,
    and never mutated afterwards; per-call additions build a fresh map.

    Example:
        compiler = Compiler(jar_file="compiler.jar", compilation_level="SIMPLE")
        js = await compiler.compile("var x = 1;")
    """

    def __init__(
        self,
        options: Mapping[str, Any] | None = None,
        *,
        java: str | None = None,
        jar_file: str | Path | None = None,
        jvm_flags: Sequence[str] = JVM_FLAGS,
        timeout: float | None = None,
        banner: BannerFilter | None = None,
        cwd: str | Path | None = None,
        config: Config | None = None,
        **extra_options: Any,
    ) -> None:
        config = config or get_config()
        self.java = java or config.java
        jar = jar_file if jar_file is not None else config.jar_file
        self.jar_file = Path(jar) if jar is not None else None
        self.jvm_flags = tuple(jvm_flags)
        self.timeout = timeout if timeout is not None else config.timeout
        self.banner = banner if banner is not None else config.banner_filter()
        self.cwd = Path(cwd) if cwd is not None else None
        self.chunk_size = config.chunk_size
        merged = {**DEFAULT_OPTIONS, **(options or {}), **extra_options}
        self.options: Mapping[str, Any] = MappingProxyType(merged)

    def command(self, extra_options: Mapping[str, Any] | None = None) -> tuple[str, ...]:
        """Full argument vector for one run.

        Raises:
            BridgeConfigError: No jar configured
        """
        if self.jar_file is None:
            raise BridgeConfigError(
                "No compiler jar configured (pass jar_file or set CLOSURE_JAR)"
            )
        options = {**self.options, **(extra_options or {})}
        return (
            self.java,
            *self.jvm_flags,
            "-jar",
            str(self.jar_file),
            *serialize_options(options),
        )

    def bridge(self, extra_options: Mapping[str, Any] | None = None) -> PipelineBridge:
        """A fresh bridge for one run."""
        return PipelineBridge(
            spec=ProcessSpec(argv=self.command(extra_options), cwd=self.cwd),
            banner=self.banner,
            timeout=self.timeout,
            chunk_size=self.chunk_size,
        )

    async def run(
        self,
        payload: Payload = None,
        *,
        extra_options: Mapping[str, Any] | None = None,
        timeout: float | None = None,
    ) -> Result:
        """Run the compiler and return the raw Success/Failure result."""
        bridge = self.bridge(extra_options)
        logger.info(f"Compiling with: {' '.join(bridge.spec.argv)}")
        return await bridge.run(payload, timeout=timeout)

    async def compile(self, source: Payload, *, timeout: float | None = None) -> str:
        """Compile JavaScript from a string, bytes, or readable/iterable source.

        Returns:
            The compiled JavaScript

        Raises:
            CompilationFailure: The compiler reported an error (message verbatim)
        """
        result = await self.run(source, timeout=timeout)
        if not result.ok:
            raise result.to_exception()
        return result.text

    compress = compile

    async def compile_files(
        self,
        files: str | Path | Iterable[str | Path],
        *,
        timeout: float | None = None,
    ) -> str:
        """Compile one or more JavaScript files by path.

        The file list goes into this call's options only (``--js`` per file).
        """
        if isinstance(files, (str, Path)):
            files = [files]
        paths = [os.fspath(f) for f in files]
        if not paths:
            raise ValueError("compile_files needs at least one file")
        result = await self.run(None, extra_options={"js": paths}, timeout=timeout)
        if not result.ok:
            raise result.to_exception()
        return result.text

    compile_file = compile_files

    def compile_sync(self, source: Payload, *, timeout: float | None = None) -> str:
        """Blocking variant of :meth:`compile`."""
        result = self.bridge().run_sync(source, timeout=timeout)
        if not result.ok:
            raise result.to_exception()
        return result.text

    def __repr__(self) -> str:
        return (
            f"Compiler(java={self.java}, jar_file={self.jar_file}, "
            f"options={dict(self.options)})"
        )
