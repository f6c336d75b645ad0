"""LLM Stream MCP 入口点。

支持: python -m llm_stream_mcp
"""

from .app import main

if __name__ == "__main__":
    main()
