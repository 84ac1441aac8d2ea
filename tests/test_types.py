"""Tests for shared pydantic types and plugin helpers."""

from __future__ import annotations

import pytest
from fakes import make_context, make_message

from switchboard.plugins.base import (
    ToolWithHandler,
    chunk_text,
    command_from_text,
    to_function_schema,
)
from switchboard.shared.types import (
    Automation,
    ConversationMessage,
    DeliveryTarget,
    ToolParameter,
    ToolSchema,
    ToolUse,
)


async def _reply(text, ephemeral=True):
    pass


class TestTypes:
    def test_tool_use_default_id(self):
        a, b = ToolUse(name="x"), ToolUse(name="x")
        assert a.id.startswith("call_")
        assert a.id != b.id

    def test_message_defaults(self):
        msg = ConversationMessage(role="user")
        assert msg.content == ""
        assert msg.tool_uses is None

    def test_inbound_message_round_trips_json(self):
        message = make_message(attachments=[{"type": "image", "url": "http://x/a.png", "filename": "a.png"}])
        restored = type(message).model_validate_json(message.model_dump_json())
        assert restored == message

    def test_automation_defaults(self):
        automation = Automation(
            cron="every 1h", prompt="p", assistant_id="a",
            delivery=DeliveryTarget(instance_id="i", channel_id="c"),
        )
        assert automation.enabled is True
        assert automation.max_executions == 10
        assert automation.executions == []


class TestFunctionSchema:
    def test_conversion(self):
        schema = ToolSchema(
            name="search",
            description="Search the web",
            parameters=[
                ToolParameter(name="query", required=True, description="terms"),
                ToolParameter(name="mode", enum=["fast", "deep"]),
            ],
        )
        out = to_function_schema(schema)
        assert out["type"] == "function"
        fn = out["function"]
        assert fn["name"] == "search"
        assert fn["parameters"]["required"] == ["query"]
        assert fn["parameters"]["properties"]["mode"]["enum"] == ["fast", "deep"]
        assert fn["parameters"]["properties"]["query"]["type"] == "string"


class TestToolWithHandler:
    @pytest.mark.asyncio
    async def test_sync_handler(self):
        tool = ToolWithHandler(name="t", description="d", handler=lambda i, c: i["v"] * 2)
        assert await tool.invoke({"v": 2}, make_context()) == 4

    @pytest.mark.asyncio
    async def test_async_handler(self):
        async def handler(input, context):
            return context.channel_id

        tool = ToolWithHandler(name="t", description="d", handler=handler, requires_approval=True)
        assert await tool.invoke({}, make_context()) == "chan-1"
        assert tool.to_schema().requires_approval is True


class TestCommandParsing:
    def test_plain_text_is_not_a_command(self):
        assert command_from_text("hello", _reply) is None
        assert command_from_text("/", _reply) is None

    def test_slash_and_bang(self):
        assert command_from_text("/help", _reply).command_name == "help"
        assert command_from_text("!Tools", _reply).command_name == "tools"

    def test_model_argument(self):
        command = command_from_text("/model gpt-4o", _reply, channel_id="c", user_id="u")
        assert command.options == {"model": "gpt-4o"}
        assert command.channel_id == "c"
        assert command.user_id == "u"

    def test_bot_suffix_stripped(self):
        assert command_from_text("/clear@my_bot", _reply).command_name == "clear"

    def test_unknown_command_has_no_options(self):
        assert command_from_text("/clear now", _reply).options == {}


class TestChunkText:
    def test_short(self):
        assert chunk_text("abc", 10) == ["abc"]

    def test_splits_on_newline(self):
        text = "line one\nline two\nline three"
        chunks = chunk_text(text, 18)
        assert chunks == ["line one\nline two", "line three"]

    def test_hard_split(self):
        assert chunk_text("a" * 25, 10) == ["a" * 10, "a" * 10, "a" * 5]
