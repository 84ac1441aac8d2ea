"""Generation entry points used by the HTTP API, CLI, channels and automations."""

from __future__ import annotations

from switchboard.core.cancel import CancellationToken
from switchboard.core.loop import AgentLoop
from switchboard.core.registry import InstanceRegistry
from switchboard.core.tools import resolve_tools
from switchboard.shared.errors import NotFoundError, ValidationFailure
from switchboard.shared.types import (
    AssistantConfig,
    Conversation,
    ConversationMessage,
    GenerateOptions,
    GenerateResult,
    InboundMessage,
    ModelResponse,
    ToolContext,
    TranscriptEntry,
)
from switchboard.shared.utils import setup_logging
from switchboard.stores.base import ConfigStore, ConversationStore

logger = setup_logging("core.service")

WEB_CHANNEL_ID = "web-ui"


def web_context(assistant_id: str | None = None) -> ToolContext:
    """Tool context for API and CLI chats, which have no originating channel."""
    message = InboundMessage(
        id="web-request",
        platform="web",
        channel_id=WEB_CHANNEL_ID,
        user_id=WEB_CHANNEL_ID,
        username="Web UI",
    )
    return ToolContext(
        user_id=WEB_CHANNEL_ID,
        channel_id=WEB_CHANNEL_ID,
        platform="web",
        message=message,
        assistant_id=assistant_id,
    )


def with_system_prompt(
    assistant: AssistantConfig, messages: list[ConversationMessage],
) -> list[ConversationMessage]:
    """Merge the assistant's system prompt into the transcript.

    A leading system message gets the prompt prepended to it; otherwise a
    new system message is inserted first.
    """
    prompt = (assistant.system_prompt or "").strip()
    if not prompt:
        return list(messages)
    if messages and messages[0].role == "system":
        merged = f"{prompt}\n\n{messages[0].content}".rstrip()
        return [messages[0].model_copy(update={"content": merged}), *messages[1:]]
    return [ConversationMessage(role="system", content=prompt), *messages]


class AssistantService:
    def __init__(
        self,
        registry: InstanceRegistry,
        config_store: ConfigStore,
        loop: AgentLoop,
        conversations: ConversationStore | None = None,
    ):
        self.registry = registry
        self.config_store = config_store
        self.loop = loop
        self.conversations = conversations

    async def get_assistant(self, assistant_id: str) -> AssistantConfig:
        assistant = await self.config_store.get_assistant(assistant_id)
        if assistant is None:
            raise NotFoundError(f"Assistant not found: {assistant_id}")
        return assistant

    async def run(
        self,
        assistant: AssistantConfig,
        messages: list[ConversationMessage],
        context: ToolContext,
        options: GenerateOptions | None = None,
        cancel: CancellationToken | None = None,
    ) -> GenerateResult:
        """Resolve the assistant's tools and run the agent loop."""
        if not assistant.llm_provider_id or not assistant.llm_model:
            raise ValidationFailure(f"Assistant {assistant.id} has no LLM provider or model configured")
        resolved = resolve_tools(self.registry, assistant.tool_provider_ids)
        return await self.loop.generate_with_tools(
            assistant.llm_provider_id,
            assistant.llm_model,
            messages,
            resolved.schemas,
            resolved.name_to_instance_id,
            context,
            options=options,
            cancel=cancel,
        )

    async def generate_for_assistant(
        self,
        assistant_id: str,
        messages: list[ConversationMessage],
        options: GenerateOptions | None = None,
        cancel: CancellationToken | None = None,
    ) -> GenerateResult:
        if not messages:
            raise ValidationFailure("messages must not be empty")
        assistant = await self.get_assistant(assistant_id)
        return await self.run(
            assistant,
            with_system_prompt(assistant, messages),
            web_context(assistant.id),
            options=options,
            cancel=cancel,
        )

    async def generate_for_provider(
        self,
        provider_id: str,
        model: str,
        messages: list[ConversationMessage],
        options: GenerateOptions | None = None,
        cancel: CancellationToken | None = None,
    ) -> ModelResponse:
        if not messages:
            raise ValidationFailure("messages must not be empty")
        return await self.loop.generate(provider_id, model, messages, options, cancel)

    async def append_to_conversation(
        self, conversation_id: str, entries: list[TranscriptEntry],
    ) -> Conversation:
        if self.conversations is None:
            raise ValidationFailure("No conversation store configured")
        return await self.conversations.append_messages(conversation_id, entries)
