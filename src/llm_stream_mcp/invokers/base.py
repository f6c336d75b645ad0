"""模型调用器抽象基类。

llm-stream-mcp invokers v0.1.0

在 runtime.Invoker 之上提供：命令构建、参数校验、事件回调。

请求上下文隔离：
- 调用器实例只持有配置（回调、runtime invoker）
- 每次 generate() 的输出行、stderr 等状态都是局部变量，请求间互不影响
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from pathlib import Path

from ..events import LifecycleEvent, LineEvent, StreamEvent, SystemEvent, make_event_id
from ..runtime import Invoker
from .types import GenerationParams, GenerationResult

__all__ = [
    "ModelInvoker",
    "EventCallback",
]

# 类型别名：事件回调函数
EventCallback = Callable[[StreamEvent], None]

logger = logging.getLogger(__name__)


class ModelInvoker(ABC):
    """模型调用器抽象基类。

    子类需要实现：
    - backend_name: 后端名称
    - build_command(): 构建命令行
    - build_payload(): 构建 stdin 内容（可选，默认直接发送 prompt）

    使用示例:
        invoker = OllamaInvoker(event_callback=print)
        result = await invoker.generate(GenerationParams(prompt="hello"))
        print(result.text)
    """

    def __init__(
        self,
        event_callback: EventCallback | None = None,
        invoker: Invoker | None = None,
        request_id: str | None = None,
    ) -> None:
        """初始化调用器。

        Args:
            event_callback: 事件回调函数（行事件、诊断、生命周期）
            invoker: 自定义 runtime invoker（测试时注入假进程后端）
            request_id: 所属请求 ID，写入每个事件
        """
        self._event_callback = event_callback
        self._invoker = invoker or Invoker()
        self._request_id = request_id

    @property
    @abstractmethod
    def backend_name(self) -> str:
        """返回后端名称。"""
        ...

    @property
    def default_model(self) -> str:
        return ""

    @abstractmethod
    def build_command(self, params: GenerationParams) -> list[str]:
        """构建命令行参数。

        Args:
            params: 调用参数

        Returns:
            命令行参数列表（第一个元素为可执行文件）
        """
        ...

    def build_payload(self, params: GenerationParams) -> str | None:
        """构建写入 stdin 的内容，None 表示不发送输入。"""
        return params.prompt

    def resolve_model(self, params: GenerationParams) -> str:
        return params.model or self.default_model

    def validate_params(self, params: GenerationParams) -> None:
        """验证参数合法性。

        Raises:
            ValueError: 参数不合法时抛出
        """
        if not params.prompt or not params.prompt.strip():
            raise ValueError("prompt is required")
        if params.workspace is not None:
            workspace = Path(params.workspace)
            if not workspace.exists():
                raise ValueError(f"workspace does not exist: {workspace}")
            if not workspace.is_dir():
                raise ValueError(f"workspace is not a directory: {workspace}")

    async def generate(self, params: GenerationParams) -> GenerationResult:
        """执行一次生成并返回结果。

        输出行在到达时立即通过 event_callback 推送；返回值包含全部行。

        Args:
            params: 调用参数

        Returns:
            生成结果（启动失败、非零退出均以 success=False 返回）
        """
        start_time = time.time()
        model = self.resolve_model(params)

        try:
            self.validate_params(params)
        except ValueError as e:
            return GenerationResult(
                success=False,
                error=str(e),
                error_kind="validation_error",
                model=model,
                duration_sec=time.time() - start_time,
            )

        cmd = self.build_command(params)
        logger.info(f"Executing: {' '.join(cmd)}")

        lines: list[str] = []

        def on_line(line: str) -> None:
            index = len(lines)
            lines.append(line)
            self._emit(LineEvent(
                event_id=make_event_id(self.backend_name, "line"),
                source=self.backend_name,
                request_id=self._request_id,
                text=line,
                index=index,
            ))

        def on_stderr(text: str) -> None:
            self._emit(SystemEvent(
                event_id=make_event_id(self.backend_name, "stderr"),
                source=self.backend_name,
                request_id=self._request_id,
                severity="debug",
                message=text,
            ))

        self._emit(LifecycleEvent(
            event_id=make_event_id(self.backend_name, "start"),
            source=self.backend_name,
            request_id=self._request_id,
            lifecycle_type="start",
            model=model,
        ))

        try:
            outcome = await self._invoker.run(
                cmd[0],
                cmd[1:],
                self.build_payload(params),
                on_line=on_line,
                on_stderr=on_stderr,
                cwd=params.workspace,
            )
        except asyncio.CancelledError:
            logger.warning(
                f"{self.backend_name} generation cancelled after {len(lines)} line(s)"
            )
            self._emit(SystemEvent(
                event_id=make_event_id(self.backend_name, "cancelled"),
                source=self.backend_name,
                request_id=self._request_id,
                severity="warning",
                message="Generation cancelled",
            ))
            raise

        self._emit(LifecycleEvent(
            event_id=make_event_id(self.backend_name, "end"),
            source=self.backend_name,
            request_id=self._request_id,
            lifecycle_type="end",
            model=model,
            outcome=outcome.to_dict(),
        ))

        if not outcome.success:
            self._emit(SystemEvent(
                event_id=make_event_id(self.backend_name, "error"),
                source=self.backend_name,
                request_id=self._request_id,
                severity="error",
                message=outcome.error_message or "",
            ))

        return GenerationResult(
            success=outcome.success,
            lines=lines,
            error=outcome.error_message,
            error_kind=None if outcome.success else outcome.kind.value,
            exit_code=outcome.exit_code,
            stderr=outcome.stderr,
            duration_sec=time.time() - start_time,
            model=model,
        )

    def _emit(self, event: StreamEvent) -> None:
        if self._event_callback:
            self._event_callback(event)
