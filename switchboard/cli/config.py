"""Configuration paths and loading for the CLI."""

from __future__ import annotations

import logging
import os
from pathlib import Path

from switchboard.host.settings import Settings, load_settings

# ── Path constants ──────────────────────────────────────────

PROJECT_ROOT = Path(os.environ.get("SWITCHBOARD_HOME") or Path.cwd()).resolve()
ENV_FILE = PROJECT_ROOT / ".env"
CONFIG_FILE = PROJECT_ROOT / "config" / "switchboard.yaml"

_QUIET_LOGGERS = (
    "host.runtime", "core.registry", "core.automations",
    "plugins.telegram", "plugins.discord", "plugins.webhook",
)


def load_project_settings(config_path: Path | None = None) -> Settings:
    """Load settings and anchor relative paths at the config's project root."""
    path = config_path or CONFIG_FILE
    settings = load_settings(path)
    root = path.resolve().parent.parent if config_path else PROJECT_ROOT
    return settings.resolve_paths(root)


def suppress_runtime_logs() -> None:
    """Set runtime loggers to WARNING for clean one-shot command output."""
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
