"""Storage interfaces consumed by the orchestration core.

Each interface has a file-backed implementation in this package; tests
and embedders may supply their own.
"""

from __future__ import annotations

from typing import Protocol

from switchboard.shared.types import (
    AssistantConfig,
    Automation,
    AutomationExecution,
    Conversation,
    TranscriptEntry,
)


class ConfigStore(Protocol):
    async def get_assistant(self, assistant_id: str) -> AssistantConfig | None: ...

    async def get_bound_assistant_id(self, instance_id: str) -> str | None: ...

    async def set_assistant_model(self, assistant_id: str, model: str) -> AssistantConfig: ...


class ConversationStore(Protocol):
    async def append_channel_messages(
        self, instance_id: str, channel_id: str, entries: list[TranscriptEntry], title: str,
    ) -> Conversation: ...

    async def append_messages(
        self, conversation_id: str, entries: list[TranscriptEntry],
    ) -> Conversation: ...

    async def get(self, conversation_id: str) -> Conversation | None: ...


class AutomationStore(Protocol):
    async def get(self, automation_id: str) -> Automation | None: ...

    async def list(self) -> list[Automation]: ...

    async def save(self, automation: Automation) -> Automation: ...

    async def remove(self, automation_id: str) -> bool: ...

    async def append_execution(
        self, automation_id: str, execution: AutomationExecution,
    ) -> Automation: ...
