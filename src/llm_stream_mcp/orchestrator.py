"""请求编排与管理模块。

跟踪正在运行的生成请求，为以下场景提供支持：
- 并发策略：LSM_CONCURRENCY=reject 时判断是否已有请求在运行
- 取消：SIGINT/SIGTERM 时取消活动请求（取消会终止对应的子进程）

核心运行时本身不限制并发，这里的登记只服务于调用层的策略。
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime

__all__ = ["RequestRegistry", "RequestInfo"]

logger = logging.getLogger(__name__)


@dataclass
class RequestInfo:
    """活动请求的信息。

    Attributes:
        request_id: 唯一请求标识符
        tool: 工具名称
        task: 关联的 asyncio Task
        created_at: 创建时间
        task_note: 可选的任务说明
    """

    request_id: str
    tool: str
    task: asyncio.Task
    created_at: datetime = field(default_factory=datetime.now)
    task_note: str = ""

    def __repr__(self) -> str:
        elapsed = (datetime.now() - self.created_at).total_seconds()
        status = "running" if not self.task.done() else "done"
        return (
            f"RequestInfo(id={self.request_id[:8]}..., "
            f"tool={self.tool}, "
            f"status={status}, "
            f"elapsed={elapsed:.1f}s)"
        )


class RequestRegistry:
    """活动请求的注册表。

    所有操作都是同步的，由调用方保证在同一个事件循环中调用。

    Example:
        ```python
        registry = RequestRegistry()
        request_id = registry.generate_request_id()
        registry.register(request_id, "generate", asyncio.current_task())
        try:
            ...
        finally:
            registry.unregister(request_id)
        ```
    """

    def __init__(self) -> None:
        self._requests: dict[str, RequestInfo] = {}

    @staticmethod
    def generate_request_id() -> str:
        """生成唯一的请求 ID（UUID4）。"""
        return str(uuid.uuid4())

    def register(
        self,
        request_id: str,
        tool: str,
        task: asyncio.Task,
        task_note: str = "",
    ) -> None:
        """登记新请求。

        Raises:
            ValueError: 如果 request_id 已存在
        """
        if request_id in self._requests:
            raise ValueError(f"Request {request_id} already registered")

        info = RequestInfo(
            request_id=request_id,
            tool=tool,
            task=task,
            task_note=task_note,
        )
        self._requests[request_id] = info
        logger.debug(f"Registered request: {info}")

    def unregister(self, request_id: str) -> bool:
        """注销请求。

        Returns:
            是否成功注销（请求存在则返回 True）
        """
        info = self._requests.pop(request_id, None)
        if info is None:
            return False
        logger.debug(f"Unregistered request: {info}")
        return True

    def get(self, request_id: str) -> RequestInfo | None:
        return self._requests.get(request_id)

    def cancel(self, request_id: str) -> bool:
        """取消指定请求。

        Returns:
            是否成功发起取消（请求存在且未完成则返回 True）
        """
        info = self._requests.get(request_id)
        if info and not info.task.done():
            info.task.cancel()
            logger.info(f"Cancelled request: {info}")
            return True
        return False

    def cancel_all(self) -> int:
        """取消所有活动请求。

        Returns:
            成功发起取消的请求数量
        """
        cancelled = 0
        for info in list(self._requests.values()):
            if not info.task.done():
                info.task.cancel()
                logger.info(f"Cancelled request: {info}")
                cancelled += 1

        if cancelled > 0:
            logger.info(f"Cancelled {cancelled} active request(s)")

        return cancelled

    def has_active_requests(self, exclude: str | None = None) -> bool:
        """检查是否有活动请求。

        Args:
            exclude: 忽略的请求 ID（通常是调用方自身）
        """
        return any(
            not info.task.done()
            for request_id, info in self._requests.items()
            if request_id != exclude
        )

    @property
    def active_count(self) -> int:
        """未完成的请求数量。"""
        return sum(1 for info in self._requests.values() if not info.task.done())

    def list_active(self) -> list[RequestInfo]:
        """列出所有活动请求（按创建时间排序）。"""
        active = [info for info in self._requests.values() if not info.task.done()]
        return sorted(active, key=lambda x: x.created_at)

    def __len__(self) -> int:
        return len(self._requests)

    def __contains__(self, request_id: str) -> bool:
        return request_id in self._requests
