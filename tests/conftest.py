"""Pytest 配置和 fixtures。"""

from __future__ import annotations

import os
import sys
from pathlib import Path
from unittest import mock

import pytest

# 项目根目录
PROJECT_ROOT = Path(__file__).parent.parent

# 添加 src 目录到 Python 路径
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

# 测试用假 CLI 脚本
FIXTURES_DIR = Path(__file__).parent / "fixtures"
FAKE_CLI = FIXTURES_DIR / "fake_cli.py"


@pytest.fixture
def project_root() -> Path:
    """项目根目录。"""
    return PROJECT_ROOT


@pytest.fixture
def fake_cli() -> list[str]:
    """运行假 CLI 的命令前缀（python 解释器 + 脚本路径）。"""
    return [sys.executable, str(FAKE_CLI)]


@pytest.fixture
def clean_env():
    """清除所有 LSM_* 环境变量并在测试后恢复全局配置。"""
    from llm_stream_mcp.config import reload_config

    env = {k: v for k, v in os.environ.items() if not k.startswith("LSM_")}
    with mock.patch.dict(os.environ, env, clear=True):
        yield
    reload_config()
