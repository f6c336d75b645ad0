"""Tool Handler 基础抽象。

定义工具处理器的协议和上下文。
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from mcp.types import TextContent

if TYPE_CHECKING:
    from ..config import Config
    from ..events import StreamEvent
    from ..orchestrator import RequestRegistry
    from ..runtime import Invoker

__all__ = [
    "NotifyCallback",
    "ToolContext",
    "ToolHandler",
]

# 类型别名：把事件推送给 MCP 客户端的协程函数
NotifyCallback = Callable[["StreamEvent"], Awaitable[None]]


@dataclass
class ToolContext:
    """工具执行上下文。

    封装工具执行所需的所有依赖，避免在函数间传递大量参数。

    Attributes:
        config: 当前配置
        registry: 请求注册表（并发策略使用）
        request_id: 当前请求 ID
        notify: 事件推送函数（None 表示不推送）
        invoker: 自定义 runtime invoker（None 使用默认进程后端）
    """

    config: "Config"
    registry: "RequestRegistry | None" = None
    request_id: str | None = None
    notify: NotifyCallback | None = None
    invoker: "Invoker | None" = None

    def resolve_debug(self, arguments: dict[str, Any]) -> bool:
        """统一解析 debug 开关。"""
        if "debug" in arguments:
            return bool(arguments["debug"])
        return self.config.debug


class ToolHandler(ABC):
    """工具处理器协议。

    所有工具处理器必须实现此接口。
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """工具名称。"""
        ...

    @property
    @abstractmethod
    def description(self) -> str:
        """工具描述。"""
        ...

    @abstractmethod
    def get_input_schema(self) -> dict[str, Any]:
        """获取输入参数 schema。"""
        ...

    @abstractmethod
    async def handle(
        self,
        arguments: dict[str, Any],
        ctx: ToolContext,
    ) -> list[TextContent]:
        """处理工具调用。

        Args:
            arguments: 工具参数
            ctx: 执行上下文

        Returns:
            TextContent 列表
        """
        ...

    def validate(self, arguments: dict[str, Any]) -> str | None:
        """验证参数。

        Args:
            arguments: 工具参数

        Returns:
            错误消息，如果验证通过则返回 None
        """
        return None
