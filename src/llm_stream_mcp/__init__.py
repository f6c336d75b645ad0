"""LLM Stream MCP - 把本地模型 CLI 的输出按行流式推送的 MCP 服务器。

环境变量:
    LSM_BACKEND: 模型后端 (默认 ollama)
    LSM_MODEL: 默认模型
    LSM_NOTIFY_LINES: 是否推送行通知 (默认 true)

用法:
    uvx llm-stream-mcp
"""

__version__ = "0.1.0"

from .app import main

__all__ = ["__version__", "main"]
