"""Automation definitions and execution history, persisted as JSON."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

from switchboard.shared.errors import NotFoundError
from switchboard.shared.types import Automation, AutomationExecution
from switchboard.shared.utils import setup_logging

logger = setup_logging("stores.automations")


class JsonAutomationStore:
    def __init__(self, path: str | Path | None = None):
        self.path = Path(path) if path else None
        self.automations: dict[str, Automation] = {}
        self._lock = asyncio.Lock()
        self._load()

    def _load(self) -> None:
        if self.path is None or not self.path.exists():
            return
        try:
            raw = json.loads(self.path.read_text()).get("automations", {})
            self.automations = {aid: Automation(**a) for aid, a in raw.items()}
            logger.info(f"Loaded {len(self.automations)} automations")
        except Exception as e:
            logger.warning(f"Failed to load automations from {self.path}: {e}")

    def _save(self) -> None:
        if self.path is None:
            return
        data = {aid: a.model_dump(mode="json") for aid, a in self.automations.items()}
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps({"automations": data}, indent=2) + "\n")

    async def get(self, automation_id: str) -> Automation | None:
        return self.automations.get(automation_id)

    async def list(self) -> list[Automation]:
        return list(self.automations.values())

    async def save(self, automation: Automation) -> Automation:
        async with self._lock:
            self.automations[automation.id] = automation
            self._save()
            return automation

    async def remove(self, automation_id: str) -> bool:
        async with self._lock:
            if self.automations.pop(automation_id, None) is None:
                return False
            self._save()
            return True

    async def append_execution(
        self, automation_id: str, execution: AutomationExecution,
    ) -> Automation:
        """Record a run, newest first, keeping at most ``max_executions`` entries."""
        async with self._lock:
            automation = self.automations.get(automation_id)
            if automation is None:
                raise NotFoundError(f"Automation not found: {automation_id}")
            history = [execution, *automation.executions][: max(automation.max_executions, 1)]
            automation.executions = history
            self._save()
            return automation
