"""Ollama CLI 调用器。

llm-stream-mcp invokers v0.1.0

命令格式:
    ollama run --nowordwrap {model}

prompt 通过 stdin 发送（以换行结尾后关闭 stdin）。--nowordwrap 关闭
ollama 的终端自动换行，保证输出的换行全部来自模型本身。
"""

from __future__ import annotations

from ..config import DEFAULT_MODEL
from ..runtime import Invoker
from .base import EventCallback, ModelInvoker
from .types import GenerationParams

__all__ = ["OllamaInvoker"]


class OllamaInvoker(ModelInvoker):
    """Ollama CLI 调用器。

    Example:
        invoker = OllamaInvoker(default_model="deepseek-r1:latest")
        result = await invoker.generate(GenerationParams(prompt="Why is the sky blue?"))
    """

    def __init__(
        self,
        ollama_path: str = "ollama",
        default_model: str = DEFAULT_MODEL,
        event_callback: EventCallback | None = None,
        invoker: Invoker | None = None,
        request_id: str | None = None,
    ) -> None:
        """初始化 Ollama 调用器。

        Args:
            ollama_path: ollama 可执行文件路径，默认 "ollama"
            default_model: 参数未指定模型时使用的模型
            event_callback: 事件回调函数
            invoker: 自定义 runtime invoker
            request_id: 所属请求 ID
        """
        super().__init__(
            event_callback=event_callback,
            invoker=invoker,
            request_id=request_id,
        )
        self._ollama_path = ollama_path
        self._default_model = default_model

    @property
    def backend_name(self) -> str:
        return "ollama"

    @property
    def default_model(self) -> str:
        return self._default_model

    def validate_params(self, params: GenerationParams) -> None:
        """验证 Ollama 特有参数。"""
        super().validate_params(params)
        if not self.resolve_model(params):
            raise ValueError("model is required")

    def build_command(self, params: GenerationParams) -> list[str]:
        """构建 Ollama CLI 命令。

        Args:
            params: 调用参数

        Returns:
            命令行参数列表
        """
        return [self._ollama_path, "run", "--nowordwrap", self.resolve_model(params)]
