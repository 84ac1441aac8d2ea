"""Bounded tool-calling loop.

Each generation runs: call model -> execute requested tools -> append
results -> call model again, until the model answers without tool calls
or ``max_iterations`` rounds have run. At the cap, one last call is made
with tools omitted so the caller always gets a usable answer.

Message order is the transcript:
  user -> assistant(tool_uses) -> tool(result)... -> assistant
"""

from __future__ import annotations

import asyncio
import json
import time
from typing import Any

import httpx
import litellm

from switchboard.core.cancel import CancellationToken, guarded
from switchboard.core.registry import InstanceRegistry
from switchboard.core.tools import execute_tool
from switchboard.plugins.base import Model
from switchboard.shared.errors import (
    OperationCancelled,
    SwitchboardError,
    ToolExecutionFailure,
    UpstreamFailure,
)
from switchboard.shared.types import (
    ConversationMessage,
    GenerateOptions,
    GenerateResult,
    ModelResponse,
    ToolContext,
    ToolSchema,
    ToolUsageRecord,
    ToolUse,
)
from switchboard.shared.utils import sanitize_for_prompt, setup_logging, truncate

logger = setup_logging("core.loop")

DEFAULT_MAX_ITERATIONS = 10

# Status codes that indicate transient server-side errors worth retrying
_RETRYABLE_STATUS_CODES = {429, 502, 503}
_MAX_RETRIES = 2
_BACKOFF_BASE = 1  # seconds: 1, 2

# litellm raises its own exception types instead of httpx ones
_PROVIDER_TRANSIENT_ERRORS = (
    litellm.RateLimitError,
    litellm.ServiceUnavailableError,
    litellm.InternalServerError,
    litellm.Timeout,
    litellm.APIConnectionError,
)


async def _generate_with_retry(
    model_api: Model,
    model: str,
    messages: list[ConversationMessage],
    options: GenerateOptions,
    cancel: CancellationToken | None,
) -> ModelResponse:
    """Call the model with exponential backoff on transient errors.

    Retries on: connection errors, timeouts, 429/502/503 status codes,
    and the equivalent litellm provider errors.
    Anything else that is not already a SwitchboardError is wrapped in
    UpstreamFailure.
    """
    for attempt in range(_MAX_RETRIES + 1):
        try:
            return await guarded(model_api.generate(model, list(messages), options), cancel)
        except SwitchboardError:
            raise
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status in _RETRYABLE_STATUS_CODES and attempt < _MAX_RETRIES:
                wait = _BACKOFF_BASE * (2 ** attempt)
                logger.warning(
                    f"Model call returned {status}, retrying in {wait}s "
                    f"(attempt {attempt + 1}/{_MAX_RETRIES})"
                )
                await guarded(asyncio.sleep(wait), cancel)
                continue
            raise UpstreamFailure(f"Model provider returned HTTP {status}") from e
        except (httpx.ConnectError, httpx.TimeoutException) as e:
            if attempt < _MAX_RETRIES:
                wait = _BACKOFF_BASE * (2 ** attempt)
                logger.warning(
                    f"Model call failed ({type(e).__name__}), retrying in {wait}s "
                    f"(attempt {attempt + 1}/{_MAX_RETRIES})"
                )
                await guarded(asyncio.sleep(wait), cancel)
                continue
            raise UpstreamFailure(f"Model provider unreachable: {e}") from e
        except _PROVIDER_TRANSIENT_ERRORS as e:
            if attempt < _MAX_RETRIES:
                wait = _BACKOFF_BASE * (2 ** attempt)
                logger.warning(
                    f"Model call failed ({type(e).__name__}), retrying in {wait}s "
                    f"(attempt {attempt + 1}/{_MAX_RETRIES})"
                )
                await guarded(asyncio.sleep(wait), cancel)
                continue
            raise UpstreamFailure(f"Model provider unavailable: {e}") from e
        except Exception as e:
            raise UpstreamFailure(str(e) or type(e).__name__) from e
    raise UpstreamFailure("Model call failed")


def _stringify(result: Any) -> str:
    if isinstance(result, str):
        return result
    return json.dumps(result, default=str)


class AgentLoop:
    """Drives model/tool rounds against instances held by a registry."""

    def __init__(self, registry: InstanceRegistry, max_iterations: int = DEFAULT_MAX_ITERATIONS):
        self.registry = registry
        self.max_iterations = max_iterations

    async def generate(
        self,
        provider_id: str,
        model: str,
        messages: list[ConversationMessage],
        options: GenerateOptions | None = None,
        cancel: CancellationToken | None = None,
    ) -> ModelResponse:
        """Single model call without tools."""
        model_api = self.registry.require_model(provider_id)
        options = (options or GenerateOptions()).model_copy(update={"tools": None})
        return await _generate_with_retry(model_api, model, messages, options, cancel)

    async def generate_with_tools(
        self,
        provider_id: str,
        model: str,
        messages: list[ConversationMessage],
        tools: list[ToolSchema],
        name_to_instance_id: dict[str, str],
        context: ToolContext,
        options: GenerateOptions | None = None,
        cancel: CancellationToken | None = None,
        max_iterations: int | None = None,
    ) -> GenerateResult:
        model_api = self.registry.require_model(provider_id)
        max_iterations = self.max_iterations if max_iterations is None else max_iterations
        base = options or GenerateOptions()
        with_tools = base.model_copy(update={"tools": list(tools) or None})
        transcript = list(messages)
        tool_usages: list[ToolUsageRecord] = []

        for iteration in range(max_iterations):
            if cancel is not None:
                cancel.raise_if_cancelled()
            response = await _generate_with_retry(model_api, model, transcript, with_tools, cancel)
            if not response.tool_uses:
                transcript.append(ConversationMessage(role="assistant", content=response.content))
                return GenerateResult(response=response, tool_usages=tool_usages, messages=transcript)

            logger.debug(
                f"Iteration {iteration + 1}: {len(response.tool_uses)} tool call(s)",
                extra={"extra_data": {
                    "provider_id": provider_id,
                    "tools": [t.name for t in response.tool_uses],
                }},
            )
            transcript.append(ConversationMessage(
                role="assistant", content=response.content, tool_uses=list(response.tool_uses),
            ))
            for tool_use in response.tool_uses:
                record, content = await self._run_tool_call(
                    tool_use, name_to_instance_id, context, cancel,
                )
                tool_usages.append(record)
                transcript.append(ConversationMessage(
                    role="tool",
                    content=content,
                    tool_call_id=tool_use.id,
                    tool_name=tool_use.name,
                ))

        logger.warning(f"Tool loop hit {max_iterations} iterations, forcing final answer")
        if cancel is not None:
            cancel.raise_if_cancelled()
        final_options = base.model_copy(update={"tools": None})
        response = await _generate_with_retry(model_api, model, transcript, final_options, cancel)
        transcript.append(ConversationMessage(role="assistant", content=response.content))
        return GenerateResult(response=response, tool_usages=tool_usages, messages=transcript)

    async def _run_tool_call(
        self,
        tool_use: ToolUse,
        name_to_instance_id: dict[str, str],
        context: ToolContext,
        cancel: CancellationToken | None,
    ) -> tuple[ToolUsageRecord, str]:
        """Execute one tool call. Never raises except on cancellation."""
        start = time.monotonic()
        error: str | None = None
        instance_id = name_to_instance_id.get(tool_use.name)
        if instance_id is None:
            error = f"Unknown tool: {tool_use.name}"
            result: Any = {"error": error}
        else:
            try:
                result = await execute_tool(self.registry, instance_id, tool_use, context, cancel)
            except OperationCancelled:
                raise
            except Exception as e:
                failure = ToolExecutionFailure(tool_use.name, e)
                logger.error(
                    f"Tool {tool_use.name} failed: {failure.detail}",
                    extra={"extra_data": {
                        "tool": tool_use.name,
                        "instance_id": instance_id,
                        "input": truncate(str(tool_use.input), 200),
                    }},
                )
                error = failure.detail
                result = failure.to_result()

        record = ToolUsageRecord(
            tool_name=tool_use.name,
            input=tool_use.input,
            output=result,
            error=error,
            duration_ms=int((time.monotonic() - start) * 1000),
        )
        return record, sanitize_for_prompt(_stringify(result))
