"""Wires the catalog, registry, stores, agent loop, handler and scheduler together."""

from __future__ import annotations

import asyncio
from collections.abc import Callable

from switchboard.core.automations import AutomationScheduler
from switchboard.core.context_cache import RollingContextCache
from switchboard.core.handler import ChannelMessageHandler
from switchboard.core.loop import AgentLoop
from switchboard.core.registry import InstanceRegistry
from switchboard.core.service import AssistantService
from switchboard.host.settings import Settings
from switchboard.plugins.base import Capability
from switchboard.plugins.catalog import PluginCatalog
from switchboard.shared.errors import ValidationFailure
from switchboard.shared.utils import setup_logging
from switchboard.stores.automations import JsonAutomationStore
from switchboard.stores.config import YamlConfigStore
from switchboard.stores.conversations import JsonConversationStore

logger = setup_logging("host.runtime")


class Runtime:
    """All long-lived components of one switchboard process."""

    def __init__(
        self,
        settings: Settings,
        catalog: PluginCatalog | None = None,
        load_settings: Callable[[], Settings] | None = None,
    ):
        self.settings = settings
        self._load_settings = load_settings
        paths = settings.paths
        orchestrator = settings.orchestrator
        self.catalog = catalog or PluginCatalog(plugin_dir=paths.plugin_dir)
        self.registry = InstanceRegistry(self.catalog)
        self.config_store = YamlConfigStore(paths.assistants)
        self.conversations = JsonConversationStore(paths.conversations)
        self.automation_store = JsonAutomationStore(paths.automations)
        self.loop = AgentLoop(self.registry, max_iterations=orchestrator.max_iterations)
        self.service = AssistantService(
            self.registry, self.config_store, self.loop, conversations=self.conversations,
        )
        self.cache = RollingContextCache(
            max_messages=orchestrator.context_cache.max_messages,
            ttl_seconds=orchestrator.context_cache.ttl_seconds,
        )
        self.handler = ChannelMessageHandler(
            self.service,
            self.config_store,
            conversations=self.conversations,
            cache=self.cache,
            typing_interval=orchestrator.typing_interval_seconds,
        )
        self.registry.set_event_handler(self.handler.handle_event)
        self.scheduler = AutomationScheduler(
            self.automation_store, self.service, tick_interval=orchestrator.automation_tick_seconds,
        )
        self._scheduler_task: asyncio.Task | None = None

    async def start(self, run_scheduler: bool = True, channels: bool = True) -> None:
        """Load configured plugin instances. ``channels=False`` skips channel plugins."""
        records = self.settings.plugins
        if not channels:
            records = [r for r in records if not self._is_channel_type(r.type)]
        await self.registry.sync_instances(records)
        if run_scheduler:
            self._scheduler_task = asyncio.create_task(self.scheduler.start())
        logger.info(
            f"Runtime started with {len(self.registry.entries())} plugin instance(s)",
            extra={"extra_data": {"instances": [e.id for e in self.registry.entries()]}},
        )

    async def reload(self) -> None:
        """Re-read plugin records from the config file and sync the registry."""
        if self._load_settings is None:
            raise ValidationFailure("Runtime was not started from a config file")
        self.settings = self.settings.model_copy(update={"plugins": self._load_settings().plugins})
        await self.registry.sync_instances(self.settings.plugins)
        logger.info(f"Reloaded {len(self.settings.plugins)} plugin record(s)")

    def _is_channel_type(self, plugin_type: str) -> bool:
        if not self.catalog.has(plugin_type):
            return False
        return Capability.CHANNEL in self.catalog.get(plugin_type).capabilities

    async def stop(self) -> None:
        self.scheduler.stop()
        if self._scheduler_task is not None:
            self._scheduler_task.cancel()
            try:
                await self._scheduler_task
            except asyncio.CancelledError:
                pass
            self._scheduler_task = None
        await self.registry.shutdown_all()
        logger.info("Runtime stopped")
