"""MCP 响应格式化器。

使用 XML-wrapped 文本格式，对 LLM 友好。

格式说明:
    - <answer>: 完整输出（成功时）
    - <error>: 错误信息（失败时，前缀为统一的用户提示）
    - <partial_answer>: 失败前已收到的输出行
    - <diagnostics>: stderr 诊断尾部（debug=True 时输出）
    - <debug_info>: 统计信息（debug=True 时输出）
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .runtime.types import STDERR_TAIL_LINES

if TYPE_CHECKING:
    from mcp.types import TextContent

    from .invokers import GenerationResult

__all__ = [
    "USER_ERROR_MESSAGE",
    "ResponseData",
    "ResponseFormatter",
    "get_formatter",
    "format_error_response",
    "format_generation_response",
]

# 面向用户的统一错误提示
USER_ERROR_MESSAGE = "Error processing your request."


@dataclass
class ResponseData:
    """响应数据。"""

    answer: str
    success: bool = True
    error: str | None = None
    diagnostics: str = ""
    debug_info: dict[str, Any] | None = None

    @classmethod
    def from_result(cls, result: "GenerationResult") -> "ResponseData":
        diagnostics = ""
        if result.stderr:
            diagnostics = "\n".join(result.stderr.strip().splitlines()[-STDERR_TAIL_LINES:])
        return cls(
            answer=result.text,
            success=result.success,
            error=result.error,
            diagnostics=diagnostics,
            debug_info=result.to_dict(),
        )


class ResponseFormatter:
    """MCP 响应格式化器。

    Example:
        formatter = ResponseFormatter()
        text = formatter.format(ResponseData(answer="42"))
        # <response>
        #   <answer>
        # 42
        #   </answer>
        # </response>
    """

    def format(self, data: ResponseData, *, debug: bool = False) -> str:
        """格式化响应。

        Args:
            data: 响应数据
            debug: 是否输出诊断与统计信息

        Returns:
            XML 格式的响应文本
        """
        parts = ["<response>"]
        if data.success:
            parts.append(self._format_answer(data.answer))
        else:
            parts.append(f"  <error>{self._error_text(data.error)}</error>")
            # 失败时也返回已收到的部分输出
            if data.answer:
                parts.append(f"  <partial_answer>\n{data.answer}\n  </partial_answer>")

        if debug:
            if data.diagnostics:
                parts.append(f"  <diagnostics>\n{data.diagnostics}\n  </diagnostics>")
            if data.debug_info:
                parts.append(self._format_debug_info(data.debug_info))

        parts.append("</response>")
        return "\n".join(parts)

    def _format_answer(self, answer: str) -> str:
        return f"  <answer>\n{answer}\n  </answer>"

    def _error_text(self, error: str | None) -> str:
        if error:
            return f"{USER_ERROR_MESSAGE} {error}"
        return USER_ERROR_MESSAGE

    def _format_debug_info(self, debug_info: dict[str, Any]) -> str:
        lines = ["  <debug_info>"]
        for key in ("model", "duration_sec", "line_count", "exit_code", "error_kind"):
            if debug_info.get(key) is not None:
                lines.append(f"    <{key}>{debug_info[key]}</{key}>")
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

    确保所有错误都以 <response><error>...</error></response> 格式返回。
    """
    from mcp.types import TextContent

    data = ResponseData(answer="", success=False, error=error)
    return [TextContent(type="text", text=get_formatter().format(data))]


def format_generation_response(result: GenerationResult, *, debug: bool = False) -> list[TextContent]:
    """将生成结果格式化为 MCP 响应。"""
    from mcp.types import TextContent

    data = ResponseData.from_result(result)
    return [TextContent(type="text", text=get_formatter().format(data, debug=debug))]
