"""Assistant definitions and channel bindings, persisted as YAML.

File layout (``config/assistants.yaml``)::

    assistants:
      helper:
        name: Helper
        llm_provider_id: openai
        llm_model: gpt-4o-mini
        system_prompt: You are helpful.
        tool_provider_ids: [http]
    bindings:
      telegram-main: helper
"""

from __future__ import annotations

from pathlib import Path

import yaml

from switchboard.shared.errors import NotFoundError
from switchboard.shared.types import AssistantConfig
from switchboard.shared.utils import setup_logging

logger = setup_logging("stores.config")


class YamlConfigStore:
    """Reads assistants and bindings from YAML. ``path=None`` keeps them in memory."""

    def __init__(self, path: str | Path | None = None):
        self.path = Path(path) if path else None
        self.assistants: dict[str, AssistantConfig] = {}
        self.bindings: dict[str, str] = {}
        self._load()

    def _load(self) -> None:
        if self.path is None or not self.path.exists():
            return
        try:
            data = yaml.safe_load(self.path.read_text()) or {}
        except yaml.YAMLError as e:
            logger.warning(f"Failed to parse {self.path}: {e}")
            return
        for assistant_id, cfg in (data.get("assistants") or {}).items():
            self.assistants[assistant_id] = AssistantConfig(id=assistant_id, **(cfg or {}))
        self.bindings = {str(k): str(v) for k, v in (data.get("bindings") or {}).items()}

    def _save(self) -> None:
        if self.path is None:
            return
        data = {
            "assistants": {
                a.id: a.model_dump(exclude={"id"}, exclude_none=True)
                for a in self.assistants.values()
            },
            "bindings": dict(self.bindings),
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(yaml.dump(data, default_flow_style=False, sort_keys=False))

    def add_assistant(self, assistant: AssistantConfig) -> None:
        self.assistants[assistant.id] = assistant
        self._save()

    def bind(self, instance_id: str, assistant_id: str | None) -> None:
        """Bind a channel instance to an assistant (None removes the binding)."""
        if assistant_id is None:
            self.bindings.pop(instance_id, None)
        else:
            self.bindings[instance_id] = assistant_id
        self._save()

    async def get_assistant(self, assistant_id: str) -> AssistantConfig | None:
        return self.assistants.get(assistant_id)

    async def get_bound_assistant_id(self, instance_id: str) -> str | None:
        return self.bindings.get(instance_id)

    async def set_assistant_model(self, assistant_id: str, model: str) -> AssistantConfig:
        assistant = self.assistants.get(assistant_id)
        if assistant is None:
            raise NotFoundError(f"Assistant not found: {assistant_id}")
        updated = assistant.model_copy(update={"llm_model": model})
        self.assistants[assistant_id] = updated
        self._save()
        logger.info(f"Assistant {assistant_id} switched to model {model}")
        return updated
