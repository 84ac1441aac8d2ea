"""Tests for tool resolution and single tool execution."""

from __future__ import annotations

import asyncio

import pytest
from fakes import make_context

from switchboard.core.cancel import CancellationToken
from switchboard.core.tools import (
    APPROVAL_DENIED,
    execute_tool,
    resolve_tools,
)
from switchboard.shared.errors import NotFoundError, OperationCancelled
from switchboard.shared.types import ToolUse


class TestResolveTools:
    @pytest.mark.asyncio
    async def test_merges_providers_in_order(self, registry):
        await registry.add_instance("fake-tools", {"tools": ["a", "b"]}, instance_id="p1")
        await registry.add_instance("fake-tools", {"tools": ["c"]}, instance_id="p2")
        resolved = resolve_tools(registry, ["p1", "p2"])
        assert [s.name for s in resolved.schemas] == ["a", "b", "c"]
        assert resolved.name_to_instance_id == {"a": "p1", "b": "p1", "c": "p2"}

    @pytest.mark.asyncio
    async def test_skips_unknown_disabled_and_toolless(self, registry):
        await registry.add_instance("fake-tools", {"tools": ["a"]}, instance_id="off", enabled=False)
        await registry.add_instance("fake-model", {}, instance_id="llm")
        await registry.add_instance("fake-tools", {"tools": ["b"]}, instance_id="on")
        resolved = resolve_tools(registry, ["ghost", "off", "llm", "on"])
        assert [s.name for s in resolved.schemas] == ["b"]
        assert resolved.name_to_instance_id == {"b": "on"}

    @pytest.mark.asyncio
    async def test_collision_keeps_both_schemas_last_wins_routing(self, registry):
        await registry.add_instance("fake-tools", {"tools": ["search"]}, instance_id="p1")
        await registry.add_instance("fake-tools", {"tools": ["search"]}, instance_id="p2")
        resolved = resolve_tools(registry, ["p1", "p2"])
        assert [s.name for s in resolved.schemas] == ["search", "search"]
        assert resolved.name_to_instance_id == {"search": "p2"}

    def test_empty(self, registry):
        resolved = resolve_tools(registry, [])
        assert resolved.schemas == []
        assert resolved.name_to_instance_id == {}

    @pytest.mark.asyncio
    async def test_resolution_is_repeatable(self, registry):
        await registry.add_instance("fake-tools", {"tools": ["a", "search"]}, instance_id="p1")
        await registry.add_instance("fake-tools", {"tools": ["search"]}, instance_id="p2")
        first = resolve_tools(registry, ["p1", "p2"])
        second = resolve_tools(registry, ["p1", "p2"])
        assert first.schemas == second.schemas
        assert first.name_to_instance_id == second.name_to_instance_id
        assert first.schemas is not second.schemas


class TestExecuteTool:
    @pytest.mark.asyncio
    async def test_runs_handler(self, registry):
        await registry.add_instance("fake-tools", {"tools": ["echo"], "label": "x"}, instance_id="p1")
        result = await execute_tool(
            registry, "p1", ToolUse(name="echo", input={"text": "hi"}), make_context(),
        )
        assert result == {"tool": "echo", "label": "x", "input": {"text": "hi"}}

    @pytest.mark.asyncio
    async def test_unknown_instance(self, registry):
        with pytest.raises(NotFoundError, match="Plugin with tools not found: ghost"):
            await execute_tool(registry, "ghost", ToolUse(name="echo"), make_context())

    @pytest.mark.asyncio
    async def test_unknown_tool(self, registry):
        await registry.add_instance("fake-tools", {"tools": ["echo"]}, instance_id="p1")
        with pytest.raises(NotFoundError, match="Tool not found: other"):
            await execute_tool(registry, "p1", ToolUse(name="other"), make_context())

    @pytest.mark.asyncio
    async def test_denied_approval_skips_handler(self, registry):
        await registry.add_instance("fake-tools", {"approve": False}, instance_id="p1")
        result = await execute_tool(registry, "p1", ToolUse(name="echo"), make_context())
        assert result == APPROVAL_DENIED
        assert result is not APPROVAL_DENIED
        assert registry.get("p1").plugin.calls == []

    @pytest.mark.asyncio
    async def test_handler_exception_propagates(self, registry):
        await registry.add_instance("fake-tools", {}, instance_id="p1")

        def fail(input, context):
            raise ValueError("bad input")

        registry.get("p1").plugin.handlers["echo"] = fail
        with pytest.raises(ValueError, match="bad input"):
            await execute_tool(registry, "p1", ToolUse(name="echo"), make_context())

    @pytest.mark.asyncio
    async def test_cancelled_token_prevents_call(self, registry):
        await registry.add_instance("fake-tools", {}, instance_id="p1")
        token = CancellationToken()
        token.cancel()
        with pytest.raises(OperationCancelled):
            await execute_tool(registry, "p1", ToolUse(name="echo"), make_context(), token)
        assert registry.get("p1").plugin.calls == []

    @pytest.mark.asyncio
    async def test_cancel_interrupts_slow_handler(self, registry):
        await registry.add_instance("fake-tools", {}, instance_id="p1")

        async def slow(input, context):
            await asyncio.sleep(10)

        registry.get("p1").plugin.handlers["echo"] = slow
        token = CancellationToken()
        asyncio.get_running_loop().call_later(0.01, token.cancel)
        with pytest.raises(OperationCancelled):
            await execute_tool(registry, "p1", ToolUse(name="echo"), make_context(), token)
