"""流事件模型定义。

llm-stream-mcp v0.1.0

将一次生成过程中的输出行、诊断信息和生命周期统一为可序列化的事件，
供 MCP 通知、日志等消费方使用。
设计原则：
1. 行即事件 - 每个完整输出行对应一个 LineEvent
2. 向前兼容 - 使用 extra='ignore' 忽略未知字段
3. 结局单一 - 每次调用只产生一个 end 生命周期事件
"""

from __future__ import annotations

import time
import uuid
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

__all__ = [
    "EventCategory",
    "StreamEventBase",
    "LifecycleEvent",
    "LineEvent",
    "SystemEvent",
    "StreamEvent",
    "make_event_id",
]


class EventCategory(str, Enum):
    """事件分类。"""

    LIFECYCLE = "lifecycle"
    LINE = "line"
    SYSTEM = "system"


def make_event_id(source: str, hint: str = "") -> str:
    """生成事件 ID。

    格式: {source}_{hint}_{uuid短码}
    """
    short_uuid = uuid.uuid4().hex[:8]
    if hint:
        return f"{source}_{hint}_{short_uuid}"
    return f"{source}_{short_uuid}"


class StreamEventBase(BaseModel):
    """所有流事件的基类。

    Attributes:
        event_id: 唯一 ID
        timestamp: Unix 时间戳（秒）
        source: 后端来源标识（如 ollama）
        category: 事件分类
        request_id: 所属请求 ID（可选）
    """

    model_config = ConfigDict(extra="ignore")

    event_id: str = Field(default_factory=lambda: make_event_id("unknown"))
    timestamp: float = Field(default_factory=time.time)
    source: str = "unknown"
    category: EventCategory
    request_id: str | None = None


class LifecycleEvent(StreamEventBase):
    """生命周期事件。

    start: 子进程已启动（或尝试启动）
    end: 终态，outcome 为 ExitOutcome.to_dict()
    """

    category: Literal[EventCategory.LIFECYCLE] = EventCategory.LIFECYCLE
    lifecycle_type: Literal["start", "end"]
    model: str | None = None
    outcome: dict[str, Any] = Field(default_factory=dict)


class LineEvent(StreamEventBase):
    """输出行事件。

    text 不含行终止符；index 从 0 开始，按到达顺序递增。
    """

    category: Literal[EventCategory.LINE] = EventCategory.LINE
    text: str
    index: int


class SystemEvent(StreamEventBase):
    """系统/诊断事件（stderr 输出、错误提示等）。"""

    category: Literal[EventCategory.SYSTEM] = EventCategory.SYSTEM
    severity: Literal["debug", "info", "warning", "error"] = "info"
    message: str = ""


# 统一联合类型
StreamEvent = LifecycleEvent | LineEvent | SystemEvent
