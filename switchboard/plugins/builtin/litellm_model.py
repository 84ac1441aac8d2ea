"""Model provider backed by litellm.

Any model litellm can route (``openai/gpt-4o-mini``,
``anthropic/claude-sonnet-4-5``, ...) can be listed in config.

Config:
  models:      list of model ids (strings or {id, name, context_window})
  api_key:     optional key passed to litellm (else provider env vars apply)
  api_base:    optional base URL
  temperature: default temperature (0.7)
  max_tokens:  default max tokens (4096)
  num_retries: litellm-level retries (default 0, the agent loop retries too)
"""

from __future__ import annotations

import json
from typing import Any

import litellm

from switchboard.plugins.base import Model, PluginBase, to_function_schema
from switchboard.plugins.catalog import plugin
from switchboard.shared.errors import ValidationFailure
from switchboard.shared.types import (
    ConversationMessage,
    GenerateOptions,
    ModelInfo,
    ModelResponse,
    TokenUsage,
    ToolUse,
)
from switchboard.shared.utils import setup_logging

logger = setup_logging("plugins.litellm")


def to_openai_messages(messages: list[ConversationMessage]) -> list[dict[str, Any]]:
    """Convert the transcript into OpenAI chat-completions messages."""
    out: list[dict[str, Any]] = []
    for msg in messages:
        if msg.role == "tool":
            out.append({
                "role": "tool",
                "tool_call_id": msg.tool_call_id,
                "name": msg.tool_name,
                "content": msg.content,
            })
        elif msg.role == "assistant" and msg.tool_uses:
            out.append({
                "role": "assistant",
                "content": msg.content or None,
                "tool_calls": [
                    {
                        "id": tu.id,
                        "type": "function",
                        "function": {"name": tu.name, "arguments": json.dumps(tu.input)},
                    }
                    for tu in msg.tool_uses
                ],
            })
        elif msg.role == "user" and msg.images:
            parts: list[dict[str, Any]] = [{"type": "text", "text": msg.content}]
            for image in msg.images:
                parts.append({
                    "type": "image_url",
                    "image_url": {"url": f"data:{image.media_type};base64,{image.data}"},
                })
            out.append({"role": "user", "content": parts})
        else:
            out.append({"role": msg.role, "content": msg.content})
    return out


def _parse_arguments(raw: Any) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    try:
        parsed = json.loads(raw or "{}")
    except (json.JSONDecodeError, TypeError):
        logger.warning(f"Malformed tool arguments: {raw!r}")
        return {"raw": raw}
    return parsed if isinstance(parsed, dict) else {"value": parsed}


def parse_completion(response: Any) -> ModelResponse:
    """Normalize a litellm ModelResponse."""
    choice = response.choices[0]
    msg = choice.message
    tool_uses = [
        ToolUse(
            id=tc.id or f"call_{i}",
            name=tc.function.name,
            input=_parse_arguments(tc.function.arguments),
        )
        for i, tc in enumerate(msg.tool_calls or [])
    ]
    usage = getattr(response, "usage", None)
    return ModelResponse(
        content=msg.content or "",
        tool_uses=tool_uses or None,
        finish_reason=getattr(choice, "finish_reason", None),
        usage=TokenUsage(
            input_tokens=usage.prompt_tokens or 0,
            output_tokens=usage.completion_tokens or 0,
        ) if usage else None,
    )


def _model_info(entry: Any) -> ModelInfo:
    if isinstance(entry, str):
        return ModelInfo(id=entry, name=entry)
    data = dict(entry)
    data.setdefault("name", data["id"])
    return ModelInfo(**data)


@plugin(
    type="litellm",
    name="LiteLLM",
    description="Hosted models (OpenAI, Anthropic, Gemini, ...) through litellm.",
    config_schema=[
        {"key": "models", "type": "list", "required": True},
        {"key": "api_key", "type": "secret", "required": False},
        {"key": "api_base", "type": "string", "required": False},
        {"key": "temperature", "type": "number", "default": 0.7},
        {"key": "max_tokens", "type": "number", "default": 4096},
    ],
)
class LiteLLMPlugin(PluginBase, Model):
    def __init__(self, config: dict[str, Any]):
        super().__init__(config)
        models = config.get("models")
        if not models or not isinstance(models, list):
            raise ValidationFailure("litellm provider requires a non-empty 'models' list")
        self.models = [_model_info(m) for m in models]
        self.api_key = config.get("api_key") or None
        self.api_base = config.get("api_base") or None
        self.temperature = float(config.get("temperature", 0.7))
        self.max_tokens = int(config.get("max_tokens", 4096))
        self.num_retries = int(config.get("num_retries", 0))

    async def list_models(self) -> list[ModelInfo]:
        return list(self.models)

    async def generate(
        self,
        model: str,
        messages: list[ConversationMessage],
        options: GenerateOptions | None = None,
    ) -> ModelResponse:
        options = options or GenerateOptions()
        params: dict[str, Any] = {
            "temperature": options.temperature if options.temperature is not None else self.temperature,
            "max_tokens": options.max_tokens or self.max_tokens,
        }
        if options.tools:
            params["tools"] = [to_function_schema(t) for t in options.tools]
        if self.api_key:
            params["api_key"] = self.api_key
        if self.api_base:
            params["api_base"] = self.api_base
        if self.num_retries:
            params["num_retries"] = self.num_retries
        response = await litellm.acompletion(
            model=model, messages=to_openai_messages(messages), **params,
        )
        return parse_completion(response)
