"""Tests for shared utilities, tracing and the error taxonomy."""

from __future__ import annotations

import json
import logging

from switchboard.shared.errors import (
    DeadlineExceeded,
    DisabledError,
    NotFoundError,
    OperationCancelled,
    ToolExecutionFailure,
    UpstreamFailure,
    ValidationFailure,
)
from switchboard.shared.trace import TRACE_HEADER, current_trace_id, start_trace, trace_headers
from switchboard.shared.utils import (
    StructuredFormatter,
    TextFormatter,
    config_digest,
    expand_env,
    new_id,
    sanitize_for_prompt,
    truncate,
)


def _record(msg="hello", **extra):
    record = logging.LogRecord("core.test", logging.INFO, __file__, 1, msg, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestHelpers:
    def test_new_id(self):
        a = new_id("auto")
        assert a.startswith("auto_")
        assert len(a) == len("auto_") + 12
        assert a != new_id("auto")

    def test_truncate(self):
        assert truncate("short", 10) == "short"
        assert truncate("a" * 20, 10) == "aaaaaaa..."

    def test_config_digest_ignores_key_order(self):
        assert config_digest({"a": 1, "b": [1, 2]}) == config_digest({"b": [1, 2], "a": 1})
        assert config_digest({"a": 1}) != config_digest({"a": 2})

    def test_expand_env(self, monkeypatch):
        monkeypatch.setenv("SB_TOKEN", "secret")
        monkeypatch.delenv("SB_UNSET", raising=False)
        config = {"token": "${SB_TOKEN}", "nested": ["x-${SB_TOKEN}", 3], "missing": "${SB_UNSET}"}
        assert expand_env(config) == {"token": "secret", "nested": ["x-secret", 3], "missing": ""}

    def test_sanitize_strips_invisible_characters(self):
        assert sanitize_for_prompt("a\u200bb\u202ec") == "abc"
        assert sanitize_for_prompt("line\u2028next") == "line\nnext"
        assert sanitize_for_prompt("tab\tok\n") == "tab\tok\n"
        assert sanitize_for_prompt("") == ""


class TestTrace:
    def test_start_trace_binds_id(self):
        tid = start_trace()
        assert tid.startswith("tr_")
        assert current_trace_id.get() == tid
        assert trace_headers() == {TRACE_HEADER: tid}

    def test_no_trace(self):
        token = current_trace_id.set(None)
        try:
            assert trace_headers() == {}
        finally:
            current_trace_id.reset(token)


class TestFormatters:
    def test_structured_includes_extra_and_trace(self):
        tid = start_trace()
        line = StructuredFormatter().format(_record(extra_data={"instance_id": "chan"}))
        data = json.loads(line)
        assert data["message"] == "hello"
        assert data["module"] == "core.test"
        assert data["instance_id"] == "chan"
        assert data["trace_id"] == tid

    def test_text_format(self):
        token = current_trace_id.set(None)
        try:
            line = TextFormatter().format(_record())
        finally:
            current_trace_id.reset(token)
        assert "[INFO ]" in line
        assert line.endswith("core.test: hello")


class TestErrors:
    def test_status_codes(self):
        assert NotFoundError("x").status_code == 404
        assert DisabledError("x").status_code == 409
        assert ValidationFailure("x").status_code == 400
        assert UpstreamFailure("x").status_code == 502
        assert OperationCancelled("x").status_code == 499
        assert DeadlineExceeded("x").status_code == 504

    def test_disabled_is_not_found(self):
        assert isinstance(DisabledError("x"), NotFoundError)
        assert isinstance(NotFoundError("x"), LookupError)
        assert isinstance(ValidationFailure("x"), ValueError)

    def test_tool_failure_result(self):
        failure = ToolExecutionFailure("search", RuntimeError("timeout"))
        result = failure.to_result()
        assert result["success"] is False
        assert result["error"] == "timeout"
        assert '"search"' in result["message"]

    def test_tool_failure_without_message_uses_type(self):
        assert ToolExecutionFailure("search", KeyError()).detail == "KeyError"
