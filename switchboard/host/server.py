"""HTTP API for the switchboard host process.

Provides endpoints for:
  - Direct chat with an assistant or a bare model provider
  - Plugin instance management (list, add, reconfigure, remove, toggle, reload)
  - The plugin catalog
  - Automations (list, run now)
  - Inbound webhook channel traffic
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from switchboard.core.cancel import CancellationToken
from switchboard.core.handler import tool_entry_content
from switchboard.plugins.builtin.webhook_channel import SECRET_HEADER, WebhookChannel
from switchboard.shared.errors import NotFoundError, SwitchboardError, ValidationFailure
from switchboard.shared.trace import TRACE_HEADER, current_trace_id, start_trace
from switchboard.shared.types import (
    ConversationMessage,
    GenerateOptions,
    ToolUsageRecord,
    TranscriptEntry,
)
from switchboard.shared.utils import setup_logging

if TYPE_CHECKING:
    from switchboard.host.runtime import Runtime

logger = setup_logging("host.server")


class ChatRequest(BaseModel):
    assistant_id: Optional[str] = None
    provider_id: Optional[str] = None
    model: Optional[str] = None
    messages: list[ConversationMessage]
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    conversation_id: Optional[str] = None
    timeout: Optional[float] = None


class ChatResponse(BaseModel):
    content: str
    tool_usages: Optional[list[ToolUsageRecord]] = None
    finish_reason: Optional[str] = None
    trace_id: Optional[str] = None


class CreateInstanceRequest(BaseModel):
    type: str
    config: dict[str, Any] = {}
    id: Optional[str] = None
    enabled: bool = True


class UpdateInstanceRequest(BaseModel):
    config: dict[str, Any]


def _transcript(
    request: ChatRequest, tool_usages: list[ToolUsageRecord], content: str,
) -> list[TranscriptEntry]:
    entries = []
    last = request.messages[-1]
    if last.role == "user":
        entries.append(TranscriptEntry(role="user", content=last.content))
    for usage in tool_usages:
        entries.append(TranscriptEntry(
            role="tool", content=tool_entry_content(usage), tool_usage=usage,
        ))
    entries.append(TranscriptEntry(role="assistant", content=content))
    return entries


def create_app(runtime: Runtime, manage_runtime: bool = True) -> FastAPI:
    """Create the FastAPI application.

    With ``manage_runtime`` the runtime is started and stopped with the
    app's lifespan.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if manage_runtime:
            await runtime.start()
        yield
        if manage_runtime:
            await runtime.stop()

    app = FastAPI(title="Switchboard", lifespan=lifespan)
    registry = runtime.registry
    service = runtime.service

    @app.exception_handler(SwitchboardError)
    async def switchboard_error(request: Request, exc: SwitchboardError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": str(exc), "type": type(exc).__name__},
        )

    # === Chat ===

    @app.post("/api/chat", response_model=ChatResponse, response_model_exclude_none=True)
    async def chat(body: ChatRequest, request: Request) -> ChatResponse:
        """Generate a reply as an assistant (with tools) or a bare provider."""
        incoming = request.headers.get(TRACE_HEADER)
        if incoming:
            current_trace_id.set(incoming)
        else:
            start_trace()
        options = GenerateOptions(temperature=body.temperature, max_tokens=body.max_tokens)
        cancel = CancellationToken(timeout=body.timeout) if body.timeout else None
        tool_usages: list[ToolUsageRecord] = []

        if body.assistant_id:
            result = await service.generate_for_assistant(
                body.assistant_id, body.messages, options, cancel=cancel,
            )
            response, tool_usages = result.response, result.tool_usages
        elif body.provider_id:
            if not body.model:
                raise ValidationFailure("model is required with provider_id")
            response = await service.generate_for_provider(
                body.provider_id, body.model, body.messages, options, cancel=cancel,
            )
        else:
            raise ValidationFailure("Either assistant_id or provider_id is required")

        if body.conversation_id:
            await service.append_to_conversation(
                body.conversation_id, _transcript(body, tool_usages, response.content),
            )
        return ChatResponse(
            content=response.content,
            tool_usages=tool_usages or None,
            finish_reason=response.finish_reason,
            trace_id=current_trace_id.get(),
        )

    # === Plugins ===

    @app.get("/api/catalog")
    async def list_catalog() -> list[dict]:
        return [m.model_dump(mode="json") for m in runtime.catalog.entries()]

    @app.get("/api/plugins")
    async def list_plugins() -> list[dict]:
        return [d.model_dump(mode="json") for d in await registry.list_instances()]

    @app.post("/api/plugins", status_code=201)
    async def add_plugin(body: CreateInstanceRequest) -> dict:
        descriptor = await registry.add_instance(
            body.type, body.config, instance_id=body.id, enabled=body.enabled,
        )
        return descriptor.model_dump(mode="json")

    @app.post("/api/plugins/reload")
    async def reload_plugins() -> list[dict]:
        """Sync instances with the plugin records in the config file."""
        await runtime.reload()
        return [d.model_dump(mode="json") for d in await registry.list_instances()]

    @app.put("/api/plugins/{instance_id}")
    async def update_plugin(instance_id: str, body: UpdateInstanceRequest) -> dict:
        descriptor = await registry.reconfigure(instance_id, body.config)
        return descriptor.model_dump(mode="json")

    @app.delete("/api/plugins/{instance_id}")
    async def remove_plugin(instance_id: str) -> dict:
        if not await registry.remove_instance(instance_id):
            raise NotFoundError(f"Instance not found: {instance_id}")
        runtime.cache.clear_instance(instance_id)
        return {"removed": instance_id}

    @app.post("/api/plugins/{instance_id}/toggle")
    async def toggle_plugin(instance_id: str) -> dict:
        """Flip enabled. Channels are connected or disconnected to match."""
        enabled = registry.toggle_enabled(instance_id)
        if registry.channel(instance_id) is not None:
            if enabled:
                await registry.connect_channel(instance_id)
            else:
                await registry.disconnect_channel(instance_id)
        return {"id": instance_id, "enabled": enabled}

    # === Automations ===

    @app.get("/api/automations")
    async def list_automations() -> list[dict]:
        return [a.model_dump(mode="json") for a in await runtime.automation_store.list()]

    @app.post("/api/automations/{automation_id}/run")
    async def run_automation(automation_id: str) -> dict:
        execution = await runtime.scheduler.run_automation_now(automation_id)
        return execution.model_dump(mode="json")

    # === Webhook channels ===

    @app.post("/webhook/{instance_id}", status_code=202)
    async def webhook(instance_id: str, payload: dict, request: Request) -> dict:
        """Accept an inbound message for a webhook channel instance."""
        entry = registry.require(instance_id)
        channel = entry.plugin.as_channel()
        if not isinstance(channel, WebhookChannel):
            raise NotFoundError(f"Webhook channel not found: {instance_id}")
        if not channel.verify(request.headers.get(SECRET_HEADER)):
            return JSONResponse(status_code=401, content={"error": "Invalid webhook secret"})
        message = channel.receive(payload)
        return {"accepted": True, "message_id": message.id}

    return app
