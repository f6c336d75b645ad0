"""响应格式化器测试。"""

from __future__ import annotations

from llm_stream_mcp.invokers import GenerationResult
from llm_stream_mcp.runtime import ExitOutcome
from llm_stream_mcp.response_formatter import (
    USER_ERROR_MESSAGE,
    ResponseData,
    ResponseFormatter,
    format_error_response,
    format_generation_response,
    get_formatter,
)


class TestResponseFormatter:
    """ResponseFormatter 测试。"""

    def test_success(self):
        text = ResponseFormatter().format(ResponseData(answer="42"))
        assert text == "<response>\n  <answer>\n42\n  </answer>\n</response>"

    def test_error_without_partial(self):
        text = ResponseFormatter().format(ResponseData(answer="", success=False, error="boom"))
        assert f"<error>{USER_ERROR_MESSAGE} boom</error>" in text
        assert "<partial_answer>" not in text
        assert "<answer>" not in text

    def test_error_without_detail(self):
        text = ResponseFormatter().format(ResponseData(answer="", success=False))
        assert f"<error>{USER_ERROR_MESSAGE}</error>" in text

    def test_error_with_partial(self):
        text = ResponseFormatter().format(
            ResponseData(answer="half", success=False, error="boom")
        )
        assert "<partial_answer>\nhalf\n  </partial_answer>" in text

    def test_debug_sections_hidden_by_default(self):
        data = ResponseData(answer="x", diagnostics="warn", debug_info={"model": "llama3"})
        text = ResponseFormatter().format(data)
        assert "<diagnostics>" not in text
        assert "<debug_info>" not in text

    def test_debug_sections(self):
        data = ResponseData(
            answer="x",
            diagnostics="warn",
            debug_info={"model": "llama3", "line_count": 1, "exit_code": None},
        )
        text = ResponseFormatter().format(data, debug=True)
        assert "<diagnostics>\nwarn\n  </diagnostics>" in text
        assert "<model>llama3</model>" in text
        assert "<line_count>1</line_count>" in text
        assert "<exit_code>" not in text

    def test_get_formatter_is_singleton(self):
        assert get_formatter() is get_formatter()


class TestResponseData:
    """ResponseData.from_result 测试。"""

    def test_diagnostics_keep_stderr_tail(self):
        stderr = "".join(f"line {i}\n" for i in range(8))
        result = GenerationResult(success=False, lines=["a"], error="boom", stderr=stderr)
        data = ResponseData.from_result(result)
        assert data.diagnostics.splitlines() == [f"line {i}" for i in range(3, 8)]
        assert data.answer == "a"
        assert data.success is False

    def test_diagnostics_match_outcome_stderr_tail(self):
        stderr = "".join(f"error {i}\n" for i in range(20))
        outcome = ExitOutcome.exited("ollama", 1, stderr=stderr)
        result = GenerationResult(success=False, error="boom", stderr=stderr)
        assert ResponseData.from_result(result).diagnostics == outcome.stderr_tail


class TestHelpers:
    """MCP 响应辅助函数测试。"""

    def test_format_error_response(self):
        content = format_error_response("bad input")
        assert len(content) == 1
        assert content[0].type == "text"
        assert content[0].text.startswith("<response>\n  <error>")
        assert "bad input" in content[0].text

    def test_format_generation_response(self):
        result = GenerationResult(success=True, lines=["Thinking.", "Answer: 42"])
        content = format_generation_response(result)
        assert "<answer>\nThinking.\nAnswer: 42\n  </answer>" in content[0].text
