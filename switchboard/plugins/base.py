"""Plugin base classes and capability interfaces.

A plugin is one class that mixes ``PluginBase`` with any of the three
capability interfaces:

  - ``Channel``  bridges an external messaging platform
  - ``Model``    generates completions (optionally with tool calls)
  - ``Tooling``  exposes tools with executable handlers

Capabilities are tagged once, when the ``@plugin`` decorator registers the
class (see ``switchboard.plugins.catalog``). Callers never check for
methods: they ask ``as_channel()`` / ``as_model()`` / ``as_tooling()``.
"""

from __future__ import annotations

import abc
import asyncio
import inspect
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Optional, Union

from switchboard.shared.types import (
    ConversationMessage,
    GenerateOptions,
    InboundMessage,
    ModelInfo,
    ModelResponse,
    PluginManifest,
    SendMessageOptions,
    ToolContext,
    ToolParameter,
    ToolSchema,
)
from switchboard.shared.utils import setup_logging

logger = setup_logging("plugins.base")


class Capability(str, Enum):
    CHANNEL = "channel"
    MODEL = "model"
    TOOLING = "tooling"


# ── Slash commands ───────────────────────────────────────────

ReplyFn = Callable[[str, bool], Awaitable[None]]


@dataclass
class SlashCommandContext:
    """A platform-native command invocation with a way to answer it."""

    command_name: str
    reply: ReplyFn
    options: dict[str, Any] = field(default_factory=dict)
    channel_id: Optional[str] = None
    user_id: Optional[str] = None


ChannelEvent = Union[InboundMessage, SlashCommandContext]

# Commands whose first text argument maps to a named option.
COMMAND_ARGUMENTS = {"model": "model"}


def command_from_text(
    text: str, reply: ReplyFn, channel_id: str | None = None, user_id: str | None = None,
) -> SlashCommandContext | None:
    """Parse ``/name arg`` (or ``!name arg``) into a command context."""
    text = text.strip()
    if len(text) < 2 or text[0] not in "/!":
        return None
    parts = text[1:].split()
    # Telegram appends the bot name in groups: /model@my_bot
    name = parts[0].split("@", 1)[0].lower()
    options: dict[str, Any] = {}
    if len(parts) > 1 and name in COMMAND_ARGUMENTS:
        options[COMMAND_ARGUMENTS[name]] = parts[1]
    return SlashCommandContext(
        command_name=name, reply=reply, options=options,
        channel_id=channel_id, user_id=user_id,
    )

_END_OF_EVENTS = object()


# ── Capability interfaces ────────────────────────────────────


class Channel(abc.ABC):
    """Bridge to an external messaging platform.

    Inbound traffic is exposed as an async iterator of events
    (``InboundMessage`` or ``SlashCommandContext``). Adapters push into it
    with ``_emit()``; the iterator ends after ``_close_events()``.
    """

    platform: ClassVar[str] = ""
    max_message_length: ClassVar[int] = 4000

    @property
    def _event_queue(self) -> asyncio.Queue:
        queue = self.__dict__.get("_events")
        if queue is None:
            queue = asyncio.Queue()
            self.__dict__["_events"] = queue
        return queue

    @abc.abstractmethod
    async def connect(self) -> None:
        """Start receiving traffic from the platform."""

    @abc.abstractmethod
    async def disconnect(self) -> None:
        """Stop receiving traffic. Must end the ``events()`` iterator."""

    @abc.abstractmethod
    def is_connected(self) -> bool: ...

    @abc.abstractmethod
    async def send_message(self, options: SendMessageOptions) -> None: ...

    async def send_typing(self, channel_id: str) -> None:
        """Show a typing indicator. No-op for platforms without one."""

    async def send_error(
        self, channel_id: str, message: str, code: str = "error",
        reply_to: str | None = None,
    ) -> None:
        """Report a processing failure to the user."""
        await self.send_message(SendMessageOptions(
            channel_id=channel_id, content=f"Error: {message}", reply_to=reply_to,
        ))

    async def clear_channel_history(self, channel_id: str) -> int:
        """Delete recent messages in a channel. Returns the number deleted."""
        raise NotImplementedError(
            "Clearing channel history is not supported by this connector."
        )

    async def events(self) -> AsyncIterator[ChannelEvent]:
        queue = self._event_queue
        while True:
            event = await queue.get()
            if event is _END_OF_EVENTS:
                return
            yield event

    def _emit(self, event: ChannelEvent) -> None:
        self._event_queue.put_nowait(event)

    def _close_events(self) -> None:
        self._event_queue.put_nowait(_END_OF_EVENTS)
        # A later connect() starts a fresh stream.
        self.__dict__.pop("_events", None)


class Model(abc.ABC):
    """Completion provider."""

    @abc.abstractmethod
    async def list_models(self) -> list[ModelInfo]: ...

    @abc.abstractmethod
    async def generate(
        self,
        model: str,
        messages: list[ConversationMessage],
        options: GenerateOptions | None = None,
    ) -> ModelResponse: ...


ToolHandler = Callable[[dict[str, Any], ToolContext], Any]


@dataclass
class ToolWithHandler:
    """A tool declaration plus the callable that executes it.

    The handler receives ``(input, context)`` and may be sync or async.
    """

    name: str
    description: str
    handler: ToolHandler
    parameters: list[ToolParameter] = field(default_factory=list)
    requires_approval: bool = False

    def to_schema(self) -> ToolSchema:
        return ToolSchema(
            name=self.name,
            description=self.description,
            parameters=list(self.parameters),
            requires_approval=self.requires_approval,
        )

    async def invoke(self, input: dict[str, Any], context: ToolContext) -> Any:
        result = self.handler(input, context)
        if inspect.isawaitable(result):
            result = await result
        return result


class Tooling(abc.ABC):
    """Tool provider."""

    @abc.abstractmethod
    def get_tools(self) -> list[ToolWithHandler]: ...

    async def request_approval(
        self, tool: ToolWithHandler, input: dict[str, Any], context: ToolContext,
    ) -> bool:
        """Gate a tool call. Returning False skips the handler."""
        return True


# ── Plugin base ──────────────────────────────────────────────


class PluginBase:
    """Common base for every plugin class.

    ``manifest`` and ``capabilities`` are assigned by ``@plugin``.
    Constructors validate their config and raise ``ValidationFailure``
    on bad input.
    """

    manifest: ClassVar[PluginManifest]
    capabilities: ClassVar[frozenset[Capability]] = frozenset()

    def __init__(self, config: dict[str, Any]):
        self.config = dict(config)

    @property
    def display_name(self) -> str:
        return self.config.get("name") or self.manifest.name

    async def shutdown(self) -> None:
        """Release resources. Called once before the instance is dropped."""

    def as_channel(self) -> Channel | None:
        return self if Capability.CHANNEL in self.capabilities else None  # type: ignore[return-value]

    def as_model(self) -> Model | None:
        return self if Capability.MODEL in self.capabilities else None  # type: ignore[return-value]

    def as_tooling(self) -> Tooling | None:
        return self if Capability.TOOLING in self.capabilities else None  # type: ignore[return-value]


def derive_capabilities(cls: type) -> frozenset[Capability]:
    """Capability tags implied by the interfaces a plugin class implements."""
    tags = set()
    if issubclass(cls, Channel):
        tags.add(Capability.CHANNEL)
    if issubclass(cls, Model):
        tags.add(Capability.MODEL)
    if issubclass(cls, Tooling):
        tags.add(Capability.TOOLING)
    return frozenset(tags)


# ── Helpers shared by adapters ───────────────────────────────


def to_function_schema(tool: ToolSchema) -> dict[str, Any]:
    """OpenAI-style function declaration, as accepted by litellm and Ollama."""
    properties: dict[str, Any] = {}
    required: list[str] = []
    for param in tool.parameters:
        prop: dict[str, Any] = {"type": param.type, "description": param.description}
        if param.enum:
            prop["enum"] = list(param.enum)
        properties[param.name] = prop
        if param.required:
            required.append(param.name)
    return {
        "type": "function",
        "function": {
            "name": tool.name,
            "description": tool.description,
            "parameters": {
                "type": "object",
                "properties": properties,
                "required": required,
            },
        },
    }


def chunk_text(text: str, max_len: int) -> list[str]:
    """Split text into chunks respecting a platform's message limit."""
    if len(text) <= max_len:
        return [text]
    chunks = []
    while text:
        if len(text) <= max_len:
            chunks.append(text)
            break
        split_at = text.rfind("\n", 0, max_len)
        if split_at <= 0:
            split_at = max_len
        chunks.append(text[:split_at])
        text = text[split_at:].lstrip("\n")
    return chunks
