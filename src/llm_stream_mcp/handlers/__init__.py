"""Tool Handlers 模块。

提供工具处理器抽象和具体实现。
"""

from .base import NotifyCallback, ToolContext, ToolHandler
from .generate import GenerateHandler

__all__ = [
    "NotifyCallback",
    "ToolContext",
    "ToolHandler",
    "GenerateHandler",
]
