"""Slash commands answered on behalf of a channel's bound assistant.

Commands: /help, /tools, /model [name], /clear. Every reply is ephemeral
where the platform supports it.
"""

from __future__ import annotations

from switchboard.core.context_cache import RollingContextCache
from switchboard.core.registry import InstanceRegistry
from switchboard.core.tools import resolve_tools
from switchboard.plugins.base import SlashCommandContext
from switchboard.shared.types import AssistantConfig
from switchboard.shared.utils import setup_logging
from switchboard.stores.base import ConfigStore

logger = setup_logging("core.commands")

HELP_TEXT = "\n".join([
    "**Slash commands**",
    "",
    "`/model` Show the current model and the available models, or switch with `/model <id>`.",
    "`/tools` List the tools available to the assistant.",
    "`/clear` Delete message history in this channel and reset the assistant's memory of it.",
    "`/help` List available slash commands.",
])

NO_ASSISTANT = "No assistant is configured for this connector."


class SlashCommands:
    def __init__(
        self,
        registry: InstanceRegistry,
        config_store: ConfigStore,
        cache: RollingContextCache,
    ):
        self.registry = registry
        self.config_store = config_store
        self.cache = cache

    async def dispatch(self, instance_id: str, command: SlashCommandContext) -> None:
        name = command.command_name.lower().lstrip("/")
        try:
            text = await self._respond(instance_id, name, command)
        except Exception as e:
            logger.error(f"Slash command /{name} failed on {instance_id}: {e}")
            text = f"Error: {e}"
        await command.reply(text, True)

    async def _respond(self, instance_id: str, name: str, command: SlashCommandContext) -> str:
        if name == "help":
            return HELP_TEXT
        if name == "clear":
            return await self._clear(instance_id, command)
        if name == "tools":
            assistant = await self._bound_assistant(instance_id)
            return self._tools(assistant) if assistant else NO_ASSISTANT
        if name == "model":
            assistant = await self._bound_assistant(instance_id)
            if assistant is None:
                return NO_ASSISTANT
            return await self._model(assistant, command.options.get("model"))
        return f"Unknown command: {name}"

    async def _bound_assistant(self, instance_id: str) -> AssistantConfig | None:
        assistant_id = await self.config_store.get_bound_assistant_id(instance_id)
        if not assistant_id:
            return None
        return await self.config_store.get_assistant(assistant_id)

    async def _clear(self, instance_id: str, command: SlashCommandContext) -> str:
        if not command.channel_id:
            return "This command must be run in a channel."
        self.cache.clear((instance_id, command.channel_id))
        channel = self.registry.channel(instance_id)
        if channel is None:
            return "Clearing channel history is not supported by this connector."
        try:
            deleted = await channel.clear_channel_history(command.channel_id)
        except NotImplementedError as e:
            return str(e)
        except Exception as e:
            return f"Failed to clear channel history: {e}"
        return f"Cleared {deleted} message(s) in this channel."

    def _tools(self, assistant: AssistantConfig) -> str:
        schemas = resolve_tools(self.registry, assistant.tool_provider_ids).schemas
        if not schemas:
            return "No active tools are configured for this assistant."
        lines = ["**Active tools**", ""]
        for tool in schemas:
            params = f" ({', '.join(p.name for p in tool.parameters)})" if tool.parameters else ""
            lines.append(f"• `{tool.name}`{params}: {tool.description or '-'}")
        return "\n".join(lines)

    async def _model(self, assistant: AssistantConfig, requested: str | None) -> str:
        models = []
        entry = self.registry.get(assistant.llm_provider_id) if assistant.llm_provider_id else None
        model_api = entry.plugin.as_model() if entry else None
        if model_api is not None:
            models = await model_api.list_models()
        current = assistant.llm_model or "-"

        if not requested:
            lines = [f"**Current model:** `{current}`", ""]
            if models:
                lines.append("**Available models:**")
                for m in models:
                    marker = " (current)" if m.id == current else ""
                    lines.append(f"• `{m.id}`: {m.name}{marker}")
            else:
                lines.append("_No model list available for this provider._")
            return "\n".join(lines)

        match = next((m for m in models if m.id == requested), None)
        if match is None:
            return (
                f"Unknown model `{requested}`. "
                "Use `/model` without arguments to see available models."
            )
        await self.config_store.set_assistant_model(assistant.id, requested)
        return f"Model switched to **{match.name}** (`{requested}`)."
