"""编译工具处理器。

处理 compile 与 compile_files 工具调用。
"""

from __future__ import annotations

import logging
import time
from abc import abstractmethod
from pathlib import Path
from typing import Any

from mcp.types import TextContent
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..compiler import Compiler
from ..errors import BridgeError
from ..runtime.feeder import Payload
from ..shared.response_formatter import (
    DebugInfo,
    ResponseData,
    format_error_response,
    get_formatter,
)
from .base import ToolContext, ToolHandler

__all__ = [
    "CompileArguments",
    "CompileFilesArguments",
    "CompileHandler",
    "CompileFilesHandler",
]

logger = logging.getLogger(__name__)


class _BaseArguments(BaseModel):
    """公共参数。"""

    model_config = ConfigDict(extra="forbid")

    options: dict[str, Any] = Field(
        default_factory=dict,
        description="Extra compiler flags, e.g. {\"compilation_level\": \"ADVANCED\"}. "
        "List values repeat the flag.",
    )
    timeout: float | None = Field(
        default=None,
        gt=0,
        description="Seconds to wait for the compiler before giving up.",
    )
    debug: bool | None = Field(
        default=None,
        description="Include timing and exit status in the response.",
    )


class CompileArguments(_BaseArguments):
    """compile 工具参数。"""

    source: str = Field(description="JavaScript source to compile.")


class CompileFilesArguments(_BaseArguments):
    """compile_files 工具参数。"""

    files: list[str] = Field(
        min_length=1,
        description="JavaScript file paths, compiled together in order.",
    )
    workspace: str | None = Field(
        default=None,
        description="Base directory for relative file paths.",
    )

    def resolved_files(self) -> list[str]:
        """相对路径以 workspace 为基准拼接。"""
        base = Path(self.workspace).expanduser() if self.workspace else None
        resolved: list[str] = []
        for item in self.files:
            path = Path(item.strip()).expanduser()
            if base is not None and not path.is_absolute():
                path = base / path
            resolved.append(str(path))
        return resolved


def _describe_validation_error(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        loc = ".".join(str(p) for p in item.get("loc", ())) or "arguments"
        parts.append(f"{loc}: {item.get('msg', 'invalid')}")
    return "Invalid arguments: " + "; ".join(parts)


class _CompilerToolHandler(ToolHandler):
    """共享的执行与响应逻辑。"""

    arguments_model: type[_BaseArguments]

    def get_input_schema(self) -> dict[str, Any]:
        return self.arguments_model.model_json_schema()

    async def handle(
        self,
        arguments: dict[str, Any],
        ctx: ToolContext,
    ) -> list[TextContent]:
        try:
            args = self.arguments_model.model_validate(arguments)
        except ValidationError as e:
            return format_error_response(_describe_validation_error(e))

        debug = ctx.resolve_debug(arguments)
        try:
            compiler = Compiler(args.options, config=ctx.config)
            extra_options, payload = self._prepare(args)
            bridge = compiler.bridge(extra_options)
        except (BridgeError, ValueError) as e:
            return format_error_response(str(e))

        start = time.monotonic()
        try:
            result = await bridge.run(payload, timeout=args.timeout)
        except BridgeError as e:
            logger.warning(f"Tool '{self.name}' failed: {type(e).__name__}: {e}")
            return format_error_response(str(e))
        duration = time.monotonic() - start

        debug_info = DebugInfo(
            duration_sec=duration,
            returncode=result.returncode,
            output_bytes=len(result.output) if result.ok else 0,
            argv=" ".join(bridge.spec.argv),
            log_file=ctx.config.log_file,
        )
        if result.ok:
            data = ResponseData(output=result.text, debug_info=debug_info)
        else:
            data = ResponseData(
                output="",
                success=False,
                error=result.text,
                debug_info=debug_info,
            )
        return [TextContent(type="text", text=get_formatter().format(data, debug=debug))]

    @abstractmethod
    def _prepare(self, args: Any) -> tuple[dict[str, Any] | None, Payload]:
        """返回 (本次调用追加的选项, stdin 负载)。"""
        ...


class CompileHandler(_CompilerToolHandler):
    """compile 工具：通过 stdin 编译源码字符串。"""

    arguments_model = CompileArguments

    @property
    def name(self) -> str:
        return "compile"

    @property
    def description(self) -> str:
        return (
            "Compile or minify a JavaScript source string with Closure Compiler. "
            "Returns the compiled code, or the compiler's error output verbatim."
        )

    def _prepare(self, args: CompileArguments) -> tuple[dict[str, Any] | None, Payload]:
        return None, args.source


class CompileFilesHandler(_CompilerToolHandler):
    """compile_files 工具：按路径编译一个或多个文件。"""

    arguments_model = CompileFilesArguments

    @property
    def name(self) -> str:
        return "compile_files"

    @property
    def description(self) -> str:
        return (
            "Compile one or more JavaScript files (by path) into a single output "
            "with Closure Compiler. Relative paths resolve against workspace."
        )

    def _prepare(
        self, args: CompileFilesArguments
    ) -> tuple[dict[str, Any] | None, Payload]:
        return {"js": args.resolved_files()}, None
