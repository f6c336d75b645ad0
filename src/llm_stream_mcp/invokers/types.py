"""模型调用器类型定义。

llm-stream-mcp invokers v0.1.0

定义调用参数、返回结构等类型。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

__all__ = [
    "GenerationParams",
    "GenerationResult",
]


@dataclass
class GenerationParams:
    """生成参数。

    Attributes:
        prompt: 用户输入（必需）
        model: 模型名称，空则使用调用器默认模型
        workspace: 子进程工作目录（可选）
        task_note: 任务备注，用于日志显示
    """

    prompt: str
    model: str = ""
    workspace: Path | None = None
    task_note: str = ""

    def __post_init__(self) -> None:
        """确保 workspace 是 Path 对象。"""
        if isinstance(self.workspace, str):
            self.workspace = Path(self.workspace) if self.workspace else None


@dataclass
class GenerationResult:
    """生成结果。

    Attributes:
        success: 是否成功（进程以 0 退出）
        lines: 按顺序收到的全部输出行（失败时为已收到的部分输出）
        error: 错误信息（仅失败时）
        error_kind: 失败类型（spawn_error / exit_error / validation_error / timeout）
        exit_code: 进程退出码（未启动时为 None）
        stderr: 捕获的 stderr 诊断输出
        duration_sec: 执行时长（秒）
        model: 实际使用的模型
    """

    success: bool
    lines: list[str] = field(default_factory=list)
    error: str | None = None
    error_kind: str | None = None
    exit_code: int | None = None
    stderr: str = ""
    duration_sec: float = 0.0
    model: str = ""

    @property
    def text(self) -> str:
        """完整输出文本（去除首尾空白）。"""
        return "\n".join(self.lines).strip()

    def to_dict(self) -> dict[str, Any]:
        """转换为字典格式。"""
        result: dict[str, Any] = {
            "success": self.success,
            "text": self.text,
            "line_count": len(self.lines),
            "duration_sec": round(self.duration_sec, 3),
        }
        if self.model:
            result["model"] = self.model
        if self.exit_code is not None:
            result["exit_code"] = self.exit_code
        if self.error:
            result["error"] = self.error
            result["error_kind"] = self.error_kind
        return result
