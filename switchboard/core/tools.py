"""Tool resolution and execution.

Resolution merges tool declarations from a set of tool-provider instances
into one model-facing schema list plus a name -> instance id map.
Execution looks a tool up by name on one instance, runs the optional
approval hook, then the handler.
"""

from __future__ import annotations

from typing import Any, NamedTuple

from switchboard.core.cancel import CancellationToken, guarded
from switchboard.core.registry import InstanceRegistry
from switchboard.shared.errors import NotFoundError
from switchboard.shared.types import ToolContext, ToolSchema, ToolUse
from switchboard.shared.utils import setup_logging

logger = setup_logging("core.tools")

APPROVAL_DENIED = {"error": "Action was not approved"}


class ResolvedTools(NamedTuple):
    schemas: list[ToolSchema]
    name_to_instance_id: dict[str, str]


def resolve_tools(registry: InstanceRegistry, provider_ids: list[str]) -> ResolvedTools:
    """Collect tools from ``provider_ids`` in order.

    Unknown, disabled or tool-less instances are skipped. When two
    providers declare the same tool name, both schemas are kept in the
    list and the later provider wins the routing entry.
    """
    schemas: list[ToolSchema] = []
    name_to_instance_id: dict[str, str] = {}
    for instance_id in provider_ids:
        entry = registry.get(instance_id)
        if entry is None or not entry.enabled:
            continue
        tooling = entry.plugin.as_tooling()
        if tooling is None:
            continue
        for tool in tooling.get_tools():
            previous = name_to_instance_id.get(tool.name)
            if previous is not None and previous != instance_id:
                logger.warning(f"Tool {tool.name} from {instance_id} shadows the one from {previous}")
            schemas.append(tool.to_schema())
            name_to_instance_id[tool.name] = instance_id
    return ResolvedTools(schemas, name_to_instance_id)


async def execute_tool(
    registry: InstanceRegistry,
    instance_id: str,
    tool_use: ToolUse,
    context: ToolContext,
    cancel: CancellationToken | None = None,
) -> Any:
    """Run one tool call on ``instance_id``.

    Raises NotFoundError when the instance or tool is gone. A declined
    approval returns ``APPROVAL_DENIED`` without calling the handler.
    Handler exceptions propagate unchanged.
    """
    tooling = registry.require_tooling(instance_id)
    tool = next((t for t in tooling.get_tools() if t.name == tool_use.name), None)
    if tool is None:
        raise NotFoundError(f"Tool not found: {tool_use.name}")
    if cancel is not None:
        cancel.raise_if_cancelled()

    approved = await guarded(tooling.request_approval(tool, tool_use.input, context), cancel)
    if not approved:
        logger.info(f"Tool {tool.name} on {instance_id} was not approved")
        return dict(APPROVAL_DENIED)

    return await guarded(tool.invoke(tool_use.input, context), cancel)
