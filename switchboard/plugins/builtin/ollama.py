"""Model provider for a local Ollama server.

Talks to the Ollama REST API directly over httpx. Some local models emit
tool calls as text (``[TOOL_CALLS]name[ARGS]{...}``) instead of the
structured ``tool_calls`` field; those are parsed as a fallback.

Config:
  base_url:    Ollama server (default http://localhost:11434)
  temperature: default temperature (0.7)
  max_tokens:  default num_predict (4096)
  timeout:     request timeout in seconds (default 120)
"""

from __future__ import annotations

import json
import re
import time
import uuid
from typing import Any

import httpx

from switchboard.plugins.base import Model, PluginBase, to_function_schema
from switchboard.plugins.catalog import plugin
from switchboard.shared.trace import trace_headers
from switchboard.shared.types import (
    ConversationMessage,
    GenerateOptions,
    ModelInfo,
    ModelResponse,
    TokenUsage,
    ToolUse,
)
from switchboard.shared.utils import setup_logging

logger = setup_logging("plugins.ollama")

MODEL_CACHE_TTL = 60
_TEXT_CALL_PREFIX = "[TOOL_CALLS]"
_TEXT_CALL_ARGS = "[ARGS]"


def _call_id(index: int) -> str:
    return f"call_{index}_{uuid.uuid4().hex[:8]}"


def to_ollama_messages(messages: list[ConversationMessage]) -> list[dict[str, Any]]:
    out: list[dict[str, Any]] = []
    for msg in messages:
        if msg.role == "tool":
            out.append({"role": "tool", "content": msg.content, "tool_name": msg.tool_name})
        elif msg.role == "assistant" and msg.tool_uses:
            out.append({
                "role": "assistant",
                "content": msg.content,
                "tool_calls": [
                    {"id": tu.id, "function": {"name": tu.name, "arguments": tu.input}}
                    for tu in msg.tool_uses
                ],
            })
        elif msg.role == "user" and msg.images:
            out.append({
                "role": "user",
                "content": msg.content,
                "images": [image.data for image in msg.images],
            })
        else:
            out.append({"role": msg.role, "content": msg.content})
    return out


def parse_tool_calls(message: dict[str, Any]) -> list[ToolUse]:
    tool_uses = []
    for i, call in enumerate(message.get("tool_calls") or []):
        function = call.get("function") or {}
        arguments = function.get("arguments")
        if isinstance(arguments, str):
            try:
                arguments = json.loads(arguments)
            except json.JSONDecodeError:
                arguments = {"raw": arguments}
        tool_uses.append(ToolUse(
            id=call.get("id") or _call_id(i),
            name=function.get("name") or "unknown",
            input=arguments if isinstance(arguments, dict) else {},
        ))
    return tool_uses


def parse_text_tool_calls(content: str) -> tuple[str, list[ToolUse]]:
    """Extract ``[TOOL_CALLS]name[ARGS]{json}`` blocks from plain content.

    Returns the content with the parsed blocks removed, and the calls.
    Blocks whose arguments are not valid JSON are left in place.
    """
    tool_uses: list[ToolUse] = []
    spans: list[tuple[int, int]] = []
    pos = 0
    while True:
        start = content.find(_TEXT_CALL_PREFIX, pos)
        if start == -1:
            break
        name_start = start + len(_TEXT_CALL_PREFIX)
        args_tag = content.find(_TEXT_CALL_ARGS, name_start)
        if args_tag == -1:
            break
        name = content[name_start:args_tag].strip()
        json_start = args_tag + len(_TEXT_CALL_ARGS)
        end = content.find(_TEXT_CALL_PREFIX, json_start)
        end = len(content) if end == -1 else end
        try:
            arguments = json.loads(content[json_start:end].strip())
        except json.JSONDecodeError:
            pos = json_start
            continue
        tool_uses.append(ToolUse(
            id=_call_id(len(tool_uses)),
            name=name or "unknown",
            input=arguments if isinstance(arguments, dict) else {},
        ))
        spans.append((start, end))
        pos = end

    for start, end in reversed(spans):
        content = content[:start] + content[end:]
    return re.sub(r"\n{3,}", "\n\n", content).strip(), tool_uses


@plugin(
    type="ollama",
    name="Ollama",
    description="Local models served by Ollama.",
    config_schema=[
        {"key": "base_url", "type": "string", "default": "http://localhost:11434"},
        {"key": "temperature", "type": "number", "default": 0.7},
        {"key": "max_tokens", "type": "number", "default": 4096},
    ],
)
class OllamaPlugin(PluginBase, Model):
    def __init__(self, config: dict[str, Any]):
        super().__init__(config)
        self.base_url = str(config.get("base_url") or "http://localhost:11434").rstrip("/")
        self.temperature = float(config.get("temperature", 0.7))
        self.max_tokens = int(config.get("max_tokens", 4096))
        self.timeout = float(config.get("timeout", 120))
        self._models: list[ModelInfo] = []
        self._models_fetched = 0.0

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout)

    async def list_models(self) -> list[ModelInfo]:
        """Models pulled on the server, cached for a minute.

        An unreachable server yields the last known list.
        """
        if self._models and time.monotonic() - self._models_fetched < MODEL_CACHE_TTL:
            return list(self._models)
        try:
            async with self._client() as client:
                response = await client.get("/api/tags", headers=trace_headers())
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as e:
            logger.warning(f"Failed to list Ollama models at {self.base_url}: {e}")
            return list(self._models)
        models = []
        for entry in data.get("models") or []:
            size = (entry.get("details") or {}).get("parameter_size")
            models.append(ModelInfo(
                id=entry["name"],
                name=entry["name"],
                description=f"Ollama model ({size})" if size else "Ollama model",
            ))
        self._models = models
        self._models_fetched = time.monotonic()
        return list(models)

    async def generate(
        self,
        model: str,
        messages: list[ConversationMessage],
        options: GenerateOptions | None = None,
    ) -> ModelResponse:
        options = options or GenerateOptions()
        body: dict[str, Any] = {
            "model": model,
            "messages": to_ollama_messages(messages),
            "stream": False,
            "options": {
                "temperature": options.temperature if options.temperature is not None else self.temperature,
                "num_predict": options.max_tokens or self.max_tokens,
            },
        }
        if options.tools:
            body["tools"] = [to_function_schema(t) for t in options.tools]

        async with self._client() as client:
            response = await client.post("/api/chat", json=body, headers=trace_headers())
            response.raise_for_status()
        data = response.json()
        message = data.get("message") or {}
        content = message.get("content") or ""
        tool_uses = parse_tool_calls(message)
        if not tool_uses and _TEXT_CALL_PREFIX in content:
            content, tool_uses = parse_text_tool_calls(content)
        return ModelResponse(
            content=content,
            tool_uses=tool_uses or None,
            finish_reason="stop" if data.get("done") else None,
            usage=TokenUsage(
                input_tokens=data.get("prompt_eval_count") or 0,
                output_tokens=data.get("eval_count") or 0,
            ),
        )
