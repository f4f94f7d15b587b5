"""MCP 响应格式化器。

使用 XML-wrapped 文本格式，对 LLM 友好。

格式说明:
    - <output>: 编译结果
    - <error>: 错误信息（编译器 stderr 原文）
    - <debug_info>: 调试信息（debug=True 时输出）
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from mcp.types import TextContent

__all__ = [
    "DebugInfo",
    "ResponseData",
    "ResponseFormatter",
    "get_formatter",
    "format_error_response",
]


@dataclass
class DebugInfo:
    """调试信息。"""

    duration_sec: float = 0.0
    returncode: int | None = None
    output_bytes: int = 0
    argv: str = ""
    log_file: str | None = None  # DEBUG 日志文件路径

    def to_dict(self) -> dict[str, Any]:
        """转换为字典。"""
        data: dict[str, Any] = {
            "duration_sec": round(self.duration_sec, 3),
            "output_bytes": self.output_bytes,
        }
        if self.returncode is not None:
            data["returncode"] = self.returncode
        if self.argv:
            data["argv"] = self.argv
        if self.log_file:
            data["log_file"] = self.log_file
        return data


@dataclass
class ResponseData:
    """响应数据。"""

    # 编译输出（成功时）
    output: str

    # 是否成功
    success: bool = True

    # 错误信息
    error: str | None = None

    # 调试信息（可选，debug 时使用）
    debug_info: DebugInfo | None = None


class ResponseFormatter:
    """MCP 响应格式化器。

    Example:
        >>> formatter = ResponseFormatter()
        >>> formatter.format(ResponseData(output="var x=1;"))
        '<response>\\n  <output>\\nvar x=1;\\n  </output>\\n</response>'
    """

    def format(
        self,
        data: ResponseData,
        *,
        debug: bool = False,
    ) -> str:
        """格式化响应数据。

        Args:
            data: 响应数据
            debug: 是否输出调试信息

        Returns:
            XML-wrapped 格式的响应字符串
        """
        parts = ["<response>"]
        if data.success:
            parts.append(f"  <output>\n{data.output}\n  </output>")
        else:
            parts.append(f"  <error>{data.error or 'Unknown error'}</error>")

        if debug and data.debug_info:
            parts.append(self._format_debug_info(data.debug_info))

        parts.append("</response>")
        return "\n".join(parts)

    def _format_debug_info(self, debug_info: DebugInfo) -> str:
        """格式化调试信息（XML 格式）。"""
        lines = ["  <debug_info>"]
        for key, value in debug_info.to_dict().items():
            lines.append(f"    <{key}>{value}</{key}>")
        lines.append("  </debug_info>")
        return "\n".join(lines)


# 全局实例
_formatter: ResponseFormatter | None = None


def get_formatter() -> ResponseFormatter:
    """获取全局格式化器实例。"""
    global _formatter
    if _formatter is None:
        _formatter = ResponseFormatter()
    return _formatter


def format_error_response(error: str) -> list[TextContent]:
    """统一的错误响应格式化函数。

    确保所有错误都以 <response><error>...</error></response> 格式返回，
    保持 API 契约一致性。
    """
    from mcp.types import TextContent

    formatter = get_formatter()
    response_data = ResponseData(output="", success=False, error=error)
    return [TextContent(type="text", text=formatter.format(response_data))]
