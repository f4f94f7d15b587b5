"""Tool Handlers 模块。

提供工具处理器抽象和具体实现。
"""

from .base import ToolContext, ToolHandler
from .compile import (
    CompileArguments,
    CompileFilesArguments,
    CompileFilesHandler,
    CompileHandler,
)

__all__ = [
    "ToolContext",
    "ToolHandler",
    "CompileArguments",
    "CompileFilesArguments",
    "CompileHandler",
    "CompileFilesHandler",
]
