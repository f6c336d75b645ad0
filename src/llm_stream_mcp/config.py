"""LSM 环境变量配置管理。

环境变量:
    LSM_BACKEND: 模型后端名称
        - 默认 ollama

    LSM_EXECUTABLE: 后端可执行文件路径
        - 默认 ollama（从 PATH 查找）
        - Windows 上如果不在 PATH 中，需要填写完整路径

    LSM_MODEL: 默认模型
        - 默认 deepseek-r1:latest

    LSM_CONCURRENCY: 并发请求策略
        - allow = 允许多个生成请求同时运行 (默认)
        - reject = 已有请求运行时拒绝新请求

    LSM_TIMEOUT: 单次生成的超时时间（秒）
        - 0 = 不限制 (默认)

    LSM_NOTIFY_LINES: 是否将每一行实时推送为 MCP 日志通知
        - true/1/yes = 推送 (默认)
        - false/0/no = 不推送

    LSM_DEBUG: 调试模式
        - true/1/yes = 开启 (响应中包含 stderr 诊断和统计信息)
        - false/0/no = 关闭 (默认)

    LSM_LOG_DEBUG: 日志调试模式
        - true/1/yes = 开启 (日志输出到临时文件)
        - false/0/no = 关闭 (默认，日志输出到 stderr)

    LSM_STDERR_MAX_BYTES: stderr 环形缓冲区上限（字节）
        - 默认 4194304 (4MB)

    LSM_SIGINT_MODE: SIGINT (Ctrl+C) 处理模式
        - cancel = 取消活动请求（无活动请求则退出）(默认)
        - exit = 直接退出进程
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path

__all__ = [
    "Config",
    "ConcurrencyPolicy",
    "SigintMode",
    "load_config",
    "get_config",
    "reload_config",
]

DEFAULT_BACKEND = "ollama"
DEFAULT_EXECUTABLE = "ollama"
DEFAULT_MODEL = "deepseek-r1:latest"
DEFAULT_STDERR_MAX_BYTES = 4 * 1024 * 1024


class _ChoiceEnum(Enum):
    @classmethod
    def from_string(cls, value: str | None, default):
        """从字符串解析，无效值返回 default。"""
        if not value:
            return default
        value = value.lower().strip()
        for member in cls:
            if member.value == value:
                return member
        return default


class SigintMode(_ChoiceEnum):
    """SIGINT 处理模式。

    - CANCEL: 只取消活动请求，不退出（如果没有活动请求则退出）
    - EXIT: 直接退出进程
    """

    CANCEL = "cancel"
    EXIT = "exit"


class ConcurrencyPolicy(_ChoiceEnum):
    """并发请求策略。

    核心运行时对并发不做限制，由调用层（MCP handler）决定。
    """

    ALLOW = "allow"
    REJECT = "reject"


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """解析布尔值环境变量。"""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_timeout(value: str | None) -> float:
    """解析超时时间，负数和无效值视为不限制。"""
    if not value:
        return 0.0
    try:
        return max(0.0, float(value))
    except ValueError:
        return 0.0


def _parse_positive_int(value: str | None, default: int) -> int:
    """解析正整数环境变量。"""
    if not value:
        return default
    try:
        parsed = int(value)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


@dataclass
class Config:
    """LSM 配置。

    Attributes:
        backend: 模型后端名称
        executable: 后端可执行文件路径
        model: 默认模型
        concurrency: 并发请求策略
        timeout: 单次生成超时（秒，0 = 不限制）
        notify_lines: 是否实时推送输出行
        debug: 调试模式（响应包含诊断信息）
        log_debug: 日志调试模式（输出到临时文件）
        log_file: 日志文件路径（当 log_debug=True 时自动设置）
        stderr_max_bytes: stderr 缓冲上限
        sigint_mode: SIGINT 处理模式
    """

    backend: str = DEFAULT_BACKEND
    executable: str = DEFAULT_EXECUTABLE
    model: str = DEFAULT_MODEL
    concurrency: ConcurrencyPolicy = ConcurrencyPolicy.ALLOW
    timeout: float = 0.0
    notify_lines: bool = True
    debug: bool = False
    log_debug: bool = False
    log_file: str | None = None
    stderr_max_bytes: int = DEFAULT_STDERR_MAX_BYTES
    sigint_mode: SigintMode = SigintMode.CANCEL

    @property
    def rejects_concurrent(self) -> bool:
        return self.concurrency == ConcurrencyPolicy.REJECT

    def to_dict(self) -> dict[str, object]:
        """转换为字典格式（用于 get_config 工具）。"""
        return {
            "backend": self.backend,
            "executable": self.executable,
            "model": self.model,
            "concurrency": self.concurrency.value,
            "timeout": self.timeout,
            "notify_lines": self.notify_lines,
            "debug": self.debug,
            "log_debug": self.log_debug,
            "log_file": self.log_file,
            "stderr_max_bytes": self.stderr_max_bytes,
            "sigint_mode": self.sigint_mode.value,
        }

    def __repr__(self) -> str:
        return (
            f"Config(backend={self.backend}, "
            f"executable={self.executable}, "
            f"model={self.model}, "
            f"concurrency={self.concurrency.value}, "
            f"timeout={self.timeout}, "
            f"notify_lines={self.notify_lines}, "
            f"debug={self.debug}, "
            f"log_debug={self.log_debug}, "
            f"log_file={self.log_file}, "
            f"sigint_mode={self.sigint_mode.value})"
        )


def _generate_log_file_path() -> str:
    """生成日志文件路径。

    Returns:
        临时目录下的日志文件绝对路径
    """
    log_dir = Path(tempfile.gettempdir()) / "llm-stream-mcp"
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"lsm_debug_{timestamp}.log"

    return str(log_file.resolve())


def load_config() -> Config:
    """从环境变量加载配置。"""
    log_debug = _parse_bool(os.environ.get("LSM_LOG_DEBUG"), default=False)
    log_file = _generate_log_file_path() if log_debug else None

    return Config(
        backend=(os.environ.get("LSM_BACKEND") or DEFAULT_BACKEND).strip().lower(),
        executable=os.environ.get("LSM_EXECUTABLE") or DEFAULT_EXECUTABLE,
        model=os.environ.get("LSM_MODEL") or DEFAULT_MODEL,
        concurrency=ConcurrencyPolicy.from_string(
            os.environ.get("LSM_CONCURRENCY"), ConcurrencyPolicy.ALLOW
        ),
        timeout=_parse_timeout(os.environ.get("LSM_TIMEOUT")),
        notify_lines=_parse_bool(os.environ.get("LSM_NOTIFY_LINES"), default=True),
        debug=_parse_bool(os.environ.get("LSM_DEBUG"), default=False),
        log_debug=log_debug,
        log_file=log_file,
        stderr_max_bytes=_parse_positive_int(
            os.environ.get("LSM_STDERR_MAX_BYTES"), DEFAULT_STDERR_MAX_BYTES
        ),
        sigint_mode=SigintMode.from_string(
            os.environ.get("LSM_SIGINT_MODE"), SigintMode.CANCEL
        ),
    )


# 全局配置实例（延迟加载）
_config: Config | None = None


def get_config() -> Config:
    """获取全局配置实例。"""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """重新加载配置（用于测试）。"""
    global _config
    _config = load_config()
    return _config
