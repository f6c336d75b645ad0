"""信号管理模块。

将 OS 信号转换为请求级别的操作：
- SIGINT: 取消正在运行的生成请求（mode=cancel），或直接退出（mode=exit）
- SIGTERM: 优雅退出（取消所有请求 + 清理 + 退出）

取消请求即取消对应的 asyncio Task，runtime invoker 的清理逻辑会终止
子进程组，因此不会留下孤儿 ollama 进程。
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from collections.abc import Callable

from .config import SigintMode, get_config
from .orchestrator import RequestRegistry

__all__ = ["SignalManager"]

logger = logging.getLogger(__name__)


class SignalManager:
    """信号管理器。

    Example:
        ```python
        signal_manager = SignalManager(registry)
        await signal_manager.start()
        try:
            await server_task
        finally:
            await signal_manager.stop()
        ```
    """

    def __init__(
        self,
        registry: RequestRegistry,
        sigint_mode: SigintMode | None = None,
        on_shutdown: Callable[[], None] | None = None,
    ) -> None:
        """初始化信号管理器。

        Args:
            registry: 请求注册表
            sigint_mode: SIGINT 处理模式（默认从配置读取）
            on_shutdown: 关闭时的回调函数
        """
        self.registry = registry
        self.sigint_mode = sigint_mode if sigint_mode is not None else get_config().sigint_mode
        self._on_shutdown = on_shutdown

        self._shutdown_requested = False
        self._shutdown_event: asyncio.Event | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._original_sigint_handler = None
        self._running = False

    @property
    def is_shutdown_requested(self) -> bool:
        return self._shutdown_requested

    async def start(self) -> None:
        """启动信号监听，必须在事件循环中调用。"""
        if self._running:
            logger.warning("SignalManager already running")
            return

        self._loop = asyncio.get_running_loop()
        self._shutdown_event = asyncio.Event()
        self._running = True

        if sys.platform != "win32":
            self._loop.add_signal_handler(signal.SIGINT, self._handle_sigint)
            self._loop.add_signal_handler(signal.SIGTERM, self._handle_sigterm)
        else:
            # Windows: 事件循环不支持 add_signal_handler
            self._original_sigint_handler = signal.signal(
                signal.SIGINT,
                lambda sig, frame: self._loop.call_soon_threadsafe(self._handle_sigint),
            )
        logger.debug(f"Signal handlers installed (mode={self.sigint_mode.value})")

    async def stop(self) -> None:
        """停止信号监听，恢复原始处理器。"""
        if not self._running:
            return
        self._running = False

        if sys.platform != "win32" and self._loop:
            self._loop.remove_signal_handler(signal.SIGINT)
            self._loop.remove_signal_handler(signal.SIGTERM)
        elif self._original_sigint_handler is not None:
            signal.signal(signal.SIGINT, self._original_sigint_handler)

        logger.debug("Signal handlers removed")

    async def wait_for_shutdown(self) -> None:
        """等待关闭信号。"""
        if self._shutdown_event:
            await self._shutdown_event.wait()

    def _handle_sigint(self) -> None:
        """处理 SIGINT。

        - mode=exit: 请求关闭
        - mode=cancel: 有活动请求则取消，否则请求关闭
        """
        if self.sigint_mode == SigintMode.EXIT:
            logger.info("SIGINT received (mode=exit), requesting shutdown")
            self.request_shutdown()
            return

        if self.registry.has_active_requests():
            count = self.registry.cancel_all()
            logger.info(f"SIGINT received (mode=cancel), cancelled {count} request(s)")
        else:
            logger.info("SIGINT received (mode=cancel), no active requests, requesting shutdown")
            self.request_shutdown()

    def _handle_sigterm(self) -> None:
        """处理 SIGTERM：始终进入优雅退出流程。"""
        logger.info("SIGTERM received, initiating graceful shutdown")
        self.request_shutdown()

    def request_shutdown(self) -> None:
        """取消所有活动请求并触发关闭。"""
        if self.registry.has_active_requests():
            count = self.registry.cancel_all()
            logger.info(f"Cancelled {count} active request(s) for shutdown")

        self._shutdown_requested = True

        if self._on_shutdown:
            try:
                self._on_shutdown()
            except Exception as e:
                logger.warning(f"Error in shutdown callback: {e}")

        if self._shutdown_event:
            self._shutdown_event.set()
