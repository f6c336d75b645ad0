"""模型调用器模块。

llm-stream-mcp invokers v0.1.0

在 runtime 核心之上封装具体的模型 CLI。

基础用法:
    from llm_stream_mcp.invokers import OllamaInvoker, GenerationParams

    invoker = OllamaInvoker()
    result = await invoker.generate(GenerationParams(prompt="hello"))

工厂函数:
    from llm_stream_mcp.invokers import create_invoker

    invoker = create_invoker("ollama", executable="/usr/local/bin/ollama")
"""

from __future__ import annotations

from ..runtime import Invoker
from .base import EventCallback, ModelInvoker
from .ollama import OllamaInvoker
from .types import GenerationParams, GenerationResult

__all__ = [
    # 类型
    "GenerationParams",
    "GenerationResult",
    # 基类
    "ModelInvoker",
    "EventCallback",
    # 调用器
    "OllamaInvoker",
    # 工厂函数
    "SUPPORTED_BACKENDS",
    "create_invoker",
]

SUPPORTED_BACKENDS = frozenset({"ollama"})


def create_invoker(
    backend: str,
    *,
    executable: str | None = None,
    default_model: str | None = None,
    event_callback: EventCallback | None = None,
    invoker: Invoker | None = None,
    request_id: str | None = None,
) -> ModelInvoker:
    """创建指定后端的调用器实例。

    Args:
        backend: 后端名称（大小写不敏感）
        executable: 可执行文件路径（None 使用后端默认值）
        default_model: 默认模型（None 使用后端默认值）
        event_callback: 可选的事件回调函数
        invoker: 自定义 runtime invoker
        request_id: 所属请求 ID

    Returns:
        对应的调用器实例

    Raises:
        ValueError: 不支持的后端
    """
    name = backend.strip().lower()

    if name == "ollama":
        kwargs = {}
        if executable:
            kwargs["ollama_path"] = executable
        if default_model:
            kwargs["default_model"] = default_model
        return OllamaInvoker(
            event_callback=event_callback,
            invoker=invoker,
            request_id=request_id,
            **kwargs,
        )

    raise ValueError(f"Unsupported backend: {backend}")
