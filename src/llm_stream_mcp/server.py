"""LLM Stream MCP Server。

把本地模型 CLI（默认 ollama）包装为 MCP 工具，输出按行实时推送。

环境变量:
    LSM_BACKEND: 模型后端 (默认 ollama)
    LSM_MODEL: 默认模型
    LSM_CONCURRENCY: 并发策略 (allow/reject)
    LSM_TIMEOUT: 单次生成超时（秒）
    LSM_NOTIFY_LINES: 是否推送行通知 (默认 true)

用法:
    uvx llm-stream-mcp
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from mcp.server import Server
from mcp.types import TextContent, Tool

from .config import get_config
from .events import StreamEvent
from .handlers import GenerateHandler, NotifyCallback, ToolContext
from .orchestrator import RequestRegistry
from .response_formatter import format_error_response
from .runtime import Invoker

__all__ = ["create_server", "SERVER_NAME"]

logger = logging.getLogger(__name__)

SERVER_NAME = "llm-stream-mcp"

GET_CONFIG_DESCRIPTION = "Get the effective server configuration as JSON."


def create_server(
    registry: RequestRegistry | None = None,
    invoker: Invoker | None = None,
) -> Server:
    """创建 MCP Server 实例。

    Args:
        registry: 请求注册表（可选，用于并发策略和信号取消）
        invoker: 自定义 runtime invoker（可选，测试时注入假进程后端）
    """
    config = get_config()
    server = Server(SERVER_NAME)
    generate_handler = GenerateHandler()

    def make_notify() -> NotifyCallback | None:
        """为当前请求创建事件推送函数（MCP 日志通知）。"""
        try:
            session = server.request_context.session
        except LookupError:
            # 不在请求上下文中（例如直接调用 handler）
            return None

        async def notify(event: StreamEvent) -> None:
            await session.send_log_message(
                level="info",
                data=event.model_dump(mode="json"),
                logger=SERVER_NAME,
            )

        return notify

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        """列出可用工具。"""
        tools = [
            Tool(
                name=generate_handler.name,
                description=generate_handler.description,
                inputSchema=generate_handler.get_input_schema(),
            ),
            Tool(
                name="get_config",
                description=GET_CONFIG_DESCRIPTION,
                inputSchema={"type": "object", "properties": {}, "required": []},
            ),
        ]
        logger.debug(
            f"[MCP] list_tools called, returning {len(tools)} tools: "
            f"{[t.name for t in tools]}"
        )
        return tools

    @server.call_tool()
    async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
        """调用工具。"""
        arguments = arguments or {}
        logger.debug(
            f"[MCP] call_tool request:\n"
            f"  Tool: {name}\n"
            f"  Arguments: {json.dumps({k: v[:100] + '...' if isinstance(v, str) and len(v) > 100 else v for k, v in arguments.items()}, ensure_ascii=False, default=str)}"
        )

        if name == "get_config":
            return [TextContent(
                type="text",
                text=json.dumps(config.to_dict(), ensure_ascii=False, indent=2),
            )]

        if name != generate_handler.name:
            return format_error_response(f"Unknown tool '{name}'")

        # 生成请求 ID 并登记（如果 registry 可用）
        request_id = None
        if registry is not None:
            request_id = registry.generate_request_id()
            current_task = asyncio.current_task()
            if current_task:
                registry.register(request_id, name, current_task, arguments.get("task_note") or "")
            else:
                logger.warning("No current_task, cannot register request")

        tool_ctx = ToolContext(
            config=config,
            registry=registry,
            request_id=request_id,
            notify=make_notify(),
            invoker=invoker,
        )

        try:
            return await generate_handler.handle(arguments, tool_ctx)

        except asyncio.CancelledError:
            logger.info(f"Tool '{name}' cancelled")
            raise

        except Exception as e:
            logger.error(f"Tool '{name}' error: type={type(e).__name__}, msg={e}")
            return format_error_response(str(e))

        finally:
            if registry and request_id:
                registry.unregister(request_id)
                logger.debug(f"Unregistered request: {request_id[:8]}...")

    return server
