"""generate 工具处理器。

把一次 MCP 工具调用转换为一次模型 CLI 调用：
- 输出行在到达时通过 MCP 日志通知推送给客户端（LSM_NOTIFY_LINES）
- LSM_CONCURRENCY=reject 时拒绝与其他生成请求重叠
- LSM_TIMEOUT > 0 时超时取消（取消会终止子进程组）
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import anyio
from mcp.types import TextContent

from ..events import LifecycleEvent, LineEvent, StreamEvent, SystemEvent
from ..invokers import GenerationParams, GenerationResult, create_invoker
from ..response_formatter import format_error_response, format_generation_response
from ..runtime import Invoker
from .base import ToolContext, ToolHandler

__all__ = ["GenerateHandler", "GENERATE_DESCRIPTION", "BUSY_MESSAGE"]

logger = logging.getLogger(__name__)

GENERATE_DESCRIPTION = (
    "Run a prompt through a locally installed model CLI (ollama by default). "
    "Output lines are streamed as log notifications while the model runs; "
    "the complete answer is returned when the process exits."
)

BUSY_MESSAGE = "Another generation is already running. Try again when it has finished."

# 通知队列的结束标记
_DONE = object()


class GenerateHandler(ToolHandler):
    """generate 工具处理器。"""

    @property
    def name(self) -> str:
        return "generate"

    @property
    def description(self) -> str:
        return GENERATE_DESCRIPTION

    def get_input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "prompt": {
                    "type": "string",
                    "description": "Text sent to the model on stdin.",
                },
                "model": {
                    "type": "string",
                    "description": "Model name. Defaults to LSM_MODEL.",
                },
                "workspace": {
                    "type": "string",
                    "description": "Working directory for the model process.",
                },
                "task_note": {
                    "type": "string",
                    "description": "Short label shown in logs.",
                },
                "debug": {
                    "type": "boolean",
                    "description": "Include stderr diagnostics and statistics. Defaults to LSM_DEBUG.",
                },
            },
            "required": ["prompt"],
        }

    def validate(self, arguments: dict[str, Any]) -> str | None:
        prompt = arguments.get("prompt")
        if not isinstance(prompt, str) or not prompt.strip():
            return "Missing required argument: 'prompt'"
        for key in ("model", "workspace", "task_note"):
            value = arguments.get(key)
            if value is not None and not isinstance(value, str):
                return f"Argument '{key}' must be a string"
        return None

    async def handle(
        self,
        arguments: dict[str, Any],
        ctx: ToolContext,
    ) -> list[TextContent]:
        """处理 generate 工具调用。"""
        error = self.validate(arguments)
        if error:
            return format_error_response(error)

        config = ctx.config
        if (
            config.rejects_concurrent
            and ctx.registry is not None
            and ctx.registry.has_active_requests(exclude=ctx.request_id)
        ):
            logger.info("Rejecting generate request: another generation is running")
            return format_error_response(BUSY_MESSAGE)

        debug_enabled = ctx.resolve_debug(arguments)
        params = GenerationParams(
            prompt=arguments["prompt"],
            model=arguments.get("model") or "",
            workspace=arguments.get("workspace") or None,
            task_note=arguments.get("task_note") or "",
        )

        lines: list[str] = []
        queue: asyncio.Queue | None = None
        if ctx.notify is not None and config.notify_lines:
            queue = asyncio.Queue()

        def on_event(event: StreamEvent) -> None:
            if isinstance(event, LineEvent):
                lines.append(event.text)
            if queue is not None and self._should_forward(event, debug_enabled):
                queue.put_nowait(event)

        forwarder: asyncio.Task | None = None

        async def stop_forwarder(drain: bool) -> None:
            """停止推送任务；drain=True 时先把队列中的事件推送完。"""
            nonlocal forwarder
            if forwarder is None:
                return
            if drain and not forwarder.done():
                queue.put_nowait(_DONE)
            else:
                forwarder.cancel()
            try:
                await forwarder
            except (anyio.get_cancelled_exc_class(), asyncio.CancelledError):
                pass
            finally:
                forwarder = None

        try:
            invoker = create_invoker(
                config.backend,
                executable=config.executable,
                default_model=config.model,
                event_callback=on_event,
                invoker=ctx.invoker or Invoker(stderr_max_bytes=config.stderr_max_bytes),
                request_id=ctx.request_id,
            )

            if queue is not None:
                forwarder = asyncio.create_task(self._forward_events(queue, ctx))

            label = f" [{params.task_note}]" if params.task_note else ""
            logger.info(f"generate{label}: model={invoker.resolve_model(params)}")

            result: GenerationResult | None = None
            with anyio.move_on_after(config.timeout or None) as scope:
                result = await invoker.generate(params)

            if scope.cancelled_caught or result is None:
                logger.warning(
                    f"generate timed out after {config.timeout}s with {len(lines)} line(s)"
                )
                result = GenerationResult(
                    success=False,
                    lines=list(lines),
                    error=f"Generation timed out after {config.timeout:g}s",
                    error_kind="timeout",
                    model=invoker.resolve_model(params),
                    duration_sec=config.timeout,
                )

            await stop_forwarder(drain=True)

            logger.debug(
                "[MCP] call_tool response:\n"
                f"  Tool: {self.name}\n"
                f"  Success: {result.success}\n"
                f"  Lines: {len(result.lines)}\n"
                f"  Duration: {result.duration_sec:.3f}s"
            )
            return format_generation_response(result, debug=debug_enabled)

        except (anyio.get_cancelled_exc_class(), asyncio.CancelledError) as e:
            logger.info(f"Tool '{self.name}' cancelled (type={type(e).__name__})")
            raise

        except Exception as e:
            logger.error(f"Tool '{self.name}' error: {e}", exc_info=True)
            return format_error_response(str(e))

        finally:
            await stop_forwarder(drain=False)

    @staticmethod
    def _should_forward(event: StreamEvent, debug: bool) -> bool:
        """决定事件是否推送给客户端；stderr 调试事件仅在 debug 模式推送。"""
        if isinstance(event, (LineEvent, LifecycleEvent)):
            return True
        if isinstance(event, SystemEvent):
            return debug or event.severity != "debug"
        return False

    @staticmethod
    async def _forward_events(queue: asyncio.Queue, ctx: ToolContext) -> None:
        """按顺序推送事件，推送失败不影响生成本身。"""
        while True:
            event = await queue.get()
            if event is _DONE:
                return
            try:
                await ctx.notify(event)
            except (anyio.get_cancelled_exc_class(), asyncio.CancelledError):
                raise
            except Exception as e:
                logger.debug(f"Failed to send notification: {e}")
