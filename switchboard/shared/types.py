"""Pydantic models shared by the registry, the agent loop, channels and stores.

This is the contract between plugins and the orchestration core.
Plugins only ever see and return these types; nothing here holds
executable handlers (see ``switchboard.plugins.base.ToolWithHandler``).
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

from switchboard.shared.utils import new_id

Role = Literal["user", "assistant", "system", "tool"]


# === Channel Messages ===


class Attachment(BaseModel):
    """A file attached to an inbound or outbound channel message."""

    type: str
    url: str
    filename: str
    size: Optional[int] = None


class ImagePart(BaseModel):
    """Inline image data (base64) sent with a user message."""

    data: str
    media_type: str


class InboundMessage(BaseModel):
    """A message received from an external channel."""

    id: str
    platform: str
    channel_id: str
    user_id: str
    username: str = ""
    content: str = ""
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    attachments: list[Attachment] = []
    images: list[ImagePart] = []
    reply_to: Optional[str] = None
    subject: Optional[str] = None


class SendMessageOptions(BaseModel):
    """An outbound message for a channel."""

    channel_id: str
    content: str
    reply_to: Optional[str] = None
    attachments: list[Attachment] = []


# === LLM Transcript ===


class ToolUse(BaseModel):
    """A tool invocation requested by the model."""

    id: str = Field(default_factory=lambda: new_id("call"))
    name: str
    input: dict[str, Any] = {}


class ConversationMessage(BaseModel):
    """One entry of the transcript sent to a model on every iteration."""

    role: Role
    content: str = ""
    images: Optional[list[ImagePart]] = None
    tool_uses: Optional[list[ToolUse]] = None
    tool_call_id: Optional[str] = None
    tool_name: Optional[str] = None


class TokenUsage(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0


class ModelResponse(BaseModel):
    """Standardized completion returned by any Model capability."""

    content: str = ""
    tool_uses: Optional[list[ToolUse]] = None
    finish_reason: Optional[str] = None
    usage: Optional[TokenUsage] = None


class ModelInfo(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    context_window: Optional[int] = None
    capabilities: list[str] = []


# === Tools ===


class ToolParameter(BaseModel):
    name: str
    type: str = "string"
    description: str = ""
    required: bool = False
    enum: Optional[list[str]] = None


class ToolSchema(BaseModel):
    """Model-facing tool declaration. Never carries a handler."""

    name: str
    description: str = ""
    parameters: list[ToolParameter] = []
    requires_approval: bool = False


class GenerateOptions(BaseModel):
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    tools: Optional[list[ToolSchema]] = None


class ToolContext(BaseModel):
    """Per-invocation context handed to every tool handler."""

    user_id: str
    channel_id: str
    platform: str
    message: InboundMessage
    assistant_id: Optional[str] = None


class ToolUsageRecord(BaseModel):
    """Outcome of one tool call, kept for observability and persistence."""

    tool_name: str
    input: dict[str, Any] = {}
    output: Any = None
    error: Optional[str] = None
    duration_ms: int = 0


class GenerateResult(BaseModel):
    """Final model response plus every tool call made to reach it."""

    response: ModelResponse
    tool_usages: list[ToolUsageRecord] = []
    messages: list[ConversationMessage] = []


# === Assistants & Automations ===


class AssistantConfig(BaseModel):
    id: str
    name: str = ""
    llm_provider_id: Optional[str] = None
    llm_model: Optional[str] = None
    system_prompt: Optional[str] = None
    tool_provider_ids: list[str] = []
    memory_enabled: bool = False


class DeliveryTarget(BaseModel):
    """Where an automation's final answer is sent."""

    instance_id: str
    channel_id: str


class AutomationExecution(BaseModel):
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    success: bool
    result: str = ""
    duration_ms: int = 0
    delivered: bool = False
    delivery_error: Optional[str] = None


class Automation(BaseModel):
    id: str = Field(default_factory=lambda: new_id("auto"))
    name: str = ""
    cron: str
    prompt: str
    assistant_id: str
    delivery: DeliveryTarget
    enabled: bool = True
    max_executions: int = 10
    executions: list[AutomationExecution] = []


# === Persisted Conversations ===


class TranscriptEntry(BaseModel):
    """A persisted conversation line (user, assistant, or tool audit entry)."""

    id: str = Field(default_factory=lambda: new_id("entry"))
    role: Role
    content: str = ""
    created: datetime = Field(default_factory=lambda: datetime.now(UTC))
    tool_usage: Optional[ToolUsageRecord] = None


class Conversation(BaseModel):
    id: str = Field(default_factory=lambda: new_id("conv"))
    title: str = ""
    instance_id: Optional[str] = None
    channel_id: Optional[str] = None
    messages: list[TranscriptEntry] = []
    created: datetime = Field(default_factory=lambda: datetime.now(UTC))


# === Plugin Instances ===


class PluginManifest(BaseModel):
    """Catalog entry describing a plugin type."""

    type: str
    name: str
    description: str = ""
    version: str = "1.0.0"
    author: Optional[str] = None
    features: list[Literal["channel", "model", "tooling"]] = []
    config_schema: list[dict[str, Any]] = []


class PluginRecord(BaseModel):
    """Declared plugin instance, as read from configuration."""

    id: str
    type: str
    enabled: bool = True
    config: dict[str, Any] = {}


class InstanceDescriptor(BaseModel):
    """Snapshot of a live plugin instance for callers outside the registry."""

    id: str
    type: str
    display_name: str
    enabled: bool
    config: dict[str, Any] = {}
    capabilities: list[str] = []
    connected: Optional[bool] = None
    models: Optional[list[ModelInfo]] = None
    tools: Optional[list[ToolSchema]] = None
