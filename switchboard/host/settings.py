"""Process configuration loaded from ``config/switchboard.yaml``.

Example::

    server:
      host: 127.0.0.1
      port: 8430
    plugins:
      - id: openai
        type: litellm
        config:
          models: [openai/gpt-4o-mini]
          api_key: ${OPENAI_API_KEY}
      - id: telegram-main
        type: telegram
        config:
          token: ${TELEGRAM_BOT_TOKEN}
    orchestrator:
      max_iterations: 10
      context_cache: {max_messages: 30, ttl_seconds: 21600}
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from switchboard.core.automations import DEFAULT_TICK_INTERVAL
from switchboard.core.context_cache import DEFAULT_MAX_MESSAGES, DEFAULT_TTL_SECONDS
from switchboard.core.handler import DEFAULT_TYPING_INTERVAL
from switchboard.core.loop import DEFAULT_MAX_ITERATIONS
from switchboard.shared.errors import ValidationFailure
from switchboard.shared.types import PluginRecord


class ServerSettings(BaseModel):
    host: str = "127.0.0.1"
    port: int = 8430


class ContextCacheSettings(BaseModel):
    max_messages: int = Field(default=DEFAULT_MAX_MESSAGES, ge=1)
    ttl_seconds: Optional[float] = DEFAULT_TTL_SECONDS


class OrchestratorSettings(BaseModel):
    max_iterations: int = Field(default=DEFAULT_MAX_ITERATIONS, ge=0)
    typing_interval_seconds: float = Field(default=DEFAULT_TYPING_INTERVAL, gt=0)
    automation_tick_seconds: float = Field(default=DEFAULT_TICK_INTERVAL, gt=0)
    context_cache: ContextCacheSettings = Field(default_factory=ContextCacheSettings)


class PathSettings(BaseModel):
    assistants: str = "config/assistants.yaml"
    conversations: str = "data/conversations.json"
    automations: str = "config/automations.json"
    plugin_dir: Optional[str] = "plugins"


class Settings(BaseModel):
    server: ServerSettings = Field(default_factory=ServerSettings)
    plugins: list[PluginRecord] = []
    orchestrator: OrchestratorSettings = Field(default_factory=OrchestratorSettings)
    paths: PathSettings = Field(default_factory=PathSettings)

    def resolve_paths(self, root: Path) -> Settings:
        """Make relative paths absolute against ``root``."""
        updates = {}
        for name, value in self.paths.model_dump().items():
            if value and not Path(value).is_absolute():
                updates[name] = str(root / value)
        return self.model_copy(update={"paths": self.paths.model_copy(update=updates)})


def load_settings(path: Path | None) -> Settings:
    """Read settings from YAML. A missing file yields defaults."""
    if path is None or not path.exists():
        return Settings()
    try:
        data = yaml.safe_load(path.read_text()) or {}
        return Settings(**data)
    except (yaml.YAMLError, ValidationError) as e:
        raise ValidationFailure(f"Invalid config {path}: {e}") from e
