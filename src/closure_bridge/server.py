"""closure-bridge MCP Server。

通过 MCP 暴露 Closure Compiler：compile（源码字符串）与 compile_files（文件路径）。

环境变量: 见 closure_bridge.config

用法:
    uvx closure-bridge
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from mcp.server import Server
from mcp.types import TextContent, Tool

from .config import Config, get_config
from .handlers import CompileFilesHandler, CompileHandler, ToolContext, ToolHandler
from .shared.response_formatter import format_error_response

__all__ = ["create_server", "HANDLERS"]

logger = logging.getLogger(__name__)

# 工具名 → 处理器
HANDLERS: dict[str, ToolHandler] = {
    handler.name: handler for handler in (CompileHandler(), CompileFilesHandler())
}


def _truncate_arguments(arguments: dict[str, Any]) -> str:
    return json.dumps(
        {
            k: v[:100] + "..." if isinstance(v, str) and len(v) > 100 else v
            for k, v in arguments.items()
        },
        ensure_ascii=False,
        default=str,
    )


async def dispatch(
    name: str,
    arguments: dict[str, Any] | None,
    config: Config,
) -> list[TextContent]:
    """按工具名分发到处理器。"""
    arguments = arguments or {}
    logger.debug(
        f"[MCP] call_tool request:\n"
        f"  Tool: {name}\n"
        f"  Arguments: {_truncate_arguments(arguments)}"
    )

    handler = HANDLERS.get(name)
    if handler is None:
        return format_error_response(f"Unknown tool '{name}'")

    try:
        return await handler.handle(arguments, ToolContext(config=config))

    except asyncio.CancelledError:
        logger.info(f"Tool '{name}' cancelled")
        raise

    except Exception as e:
        logger.error(f"Tool '{name}' failed: type={type(e).__name__}, msg={e}")
        return format_error_response(str(e))


def create_server(config: Config | None = None) -> Server:
    """创建 MCP Server 实例。

    Args:
        config: 配置（默认读取环境变量）
    """
    config = config or get_config()
    server = Server("closure-bridge")

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        """列出可用工具。"""
        tools = [
            Tool(
                name=handler.name,
                description=handler.description,
                inputSchema=handler.get_input_schema(),
            )
            for handler in HANDLERS.values()
        ]
        logger.debug(f"[MCP] list_tools called, returning {[t.name for t in tools]}")
        return tools

    @server.call_tool()
    async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
        """调用工具。"""
        return await dispatch(name, arguments, config)

    return server
