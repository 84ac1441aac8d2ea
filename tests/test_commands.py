"""Tests for slash commands: help, tools, model, clear, unknown."""

from __future__ import annotations

import pytest

from switchboard.core.commands import HELP_TEXT, NO_ASSISTANT, SlashCommands
from switchboard.core.context_cache import RollingContextCache
from switchboard.plugins.base import SlashCommandContext
from switchboard.shared.types import AssistantConfig, ConversationMessage
from switchboard.stores.config import YamlConfigStore


class Replies:
    def __init__(self):
        self.texts: list[str] = []
        self.ephemeral: list[bool] = []

    async def __call__(self, text: str, ephemeral: bool = True) -> None:
        self.texts.append(text)
        self.ephemeral.append(ephemeral)


async def _setup(registry, bind=True, channel_config=None, tool_provider_ids=("tools",)):
    await registry.add_instance("fake-model", {"models": ["m1", "m2"]}, instance_id="llm")
    await registry.add_instance("fake-tools", {"tools": ["echo", "search"]}, instance_id="tools")
    await registry.add_instance("fake-channel", channel_config or {}, instance_id="chan")
    store = YamlConfigStore()
    store.add_assistant(AssistantConfig(
        id="helper", llm_provider_id="llm", llm_model="m1",
        tool_provider_ids=list(tool_provider_ids),
    ))
    if bind:
        store.bind("chan", "helper")
    cache = RollingContextCache()
    return SlashCommands(registry, store, cache), store, cache


async def _run(commands, name, channel_id="c1", **options):
    replies = Replies()
    await commands.dispatch("chan", SlashCommandContext(
        command_name=name, reply=replies, options=options, channel_id=channel_id,
    ))
    assert len(replies.texts) == 1
    assert replies.ephemeral == [True]
    return replies.texts[0]


class TestSlashCommands:
    @pytest.mark.asyncio
    async def test_help(self, registry):
        commands, _, _ = await _setup(registry)
        assert await _run(commands, "help") == HELP_TEXT

    @pytest.mark.asyncio
    async def test_unknown(self, registry):
        commands, _, _ = await _setup(registry)
        assert await _run(commands, "dance") == "Unknown command: dance"

    @pytest.mark.asyncio
    async def test_tools(self, registry):
        commands, _, _ = await _setup(registry)
        text = await _run(commands, "tools")
        assert "`echo`" in text
        assert "`search`" in text

    @pytest.mark.asyncio
    async def test_tools_none_configured(self, registry):
        commands, _, _ = await _setup(registry, tool_provider_ids=())
        assert await _run(commands, "tools") == "No active tools are configured for this assistant."

    @pytest.mark.asyncio
    async def test_tools_unbound(self, registry):
        commands, _, _ = await _setup(registry, bind=False)
        assert await _run(commands, "tools") == NO_ASSISTANT

    @pytest.mark.asyncio
    async def test_model_lists(self, registry):
        commands, _, _ = await _setup(registry)
        text = await _run(commands, "model")
        assert "**Current model:** `m1`" in text
        assert "`m1`: M1 (current)" in text
        assert "`m2`: M2" in text

    @pytest.mark.asyncio
    async def test_model_switch(self, registry):
        commands, store, _ = await _setup(registry)
        text = await _run(commands, "model", model="m2")
        assert text == "Model switched to **M2** (`m2`)."
        assert (await store.get_assistant("helper")).llm_model == "m2"

    @pytest.mark.asyncio
    async def test_model_switch_unknown(self, registry):
        commands, store, _ = await _setup(registry)
        text = await _run(commands, "model", model="gpt-99")
        assert text.startswith("Unknown model `gpt-99`.")
        assert (await store.get_assistant("helper")).llm_model == "m1"

    @pytest.mark.asyncio
    async def test_model_unbound(self, registry):
        commands, _, _ = await _setup(registry, bind=False)
        assert await _run(commands, "model") == NO_ASSISTANT

    @pytest.mark.asyncio
    async def test_clear_without_channel(self, registry):
        commands, _, _ = await _setup(registry)
        assert await _run(commands, "clear", channel_id=None) == "This command must be run in a channel."

    @pytest.mark.asyncio
    async def test_clear_unsupported_still_drops_cache(self, registry):
        commands, _, cache = await _setup(registry)
        cache.append(("chan", "c1"), ConversationMessage(role="user", content="old"))
        text = await _run(commands, "clear")
        assert text == "Clearing channel history is not supported by this connector."
        assert cache.get(("chan", "c1")) == []
        await registry.shutdown_all()

    @pytest.mark.asyncio
    async def test_clear_supported(self, registry):
        commands, _, _ = await _setup(registry, channel_config={"clearable": True})
        assert await _run(commands, "clear") == "Cleared 3 message(s) in this channel."
        await registry.shutdown_all()

    @pytest.mark.asyncio
    async def test_clear_failure(self, registry):
        commands, _, _ = await _setup(registry)

        async def broken(channel_id):
            raise PermissionError("missing permission")

        registry.get("chan").plugin.clear_channel_history = broken
        assert await _run(commands, "clear") == "Failed to clear channel history: missing permission"
        await registry.shutdown_all()

    @pytest.mark.asyncio
    async def test_command_error_is_replied(self, registry):
        commands, store, _ = await _setup(registry)

        async def broken(assistant_id):
            raise RuntimeError("store offline")

        store.get_bound_assistant_id = broken
        assert await _run(commands, "tools") == "Error: store offline"
