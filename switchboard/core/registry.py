"""Plugin instance registry.

Owns every live plugin object. Mutations (add, reconfigure, remove) are
serialized by one asyncio lock and tear the old object down before the
replacement connects. Reads hand out snapshots and never wait on the lock.

For each enabled, connected channel the registry runs one consumer task
that drains ``Channel.events()`` and hands every event to the injected
event handler in its own task. Consumers are cancelled when their
instance is replaced, removed or disconnected.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from switchboard.plugins.base import Channel, ChannelEvent, Model, PluginBase, Tooling
from switchboard.plugins.catalog import PluginCatalog
from switchboard.shared.errors import DisabledError, NotFoundError
from switchboard.shared.types import InstanceDescriptor, PluginRecord
from switchboard.shared.utils import config_digest, expand_env, setup_logging

logger = setup_logging("core.registry")

EventHandler = Callable[[str, ChannelEvent], Awaitable[None]]


@dataclass
class InstanceEntry:
    id: str
    type: str
    plugin: PluginBase
    config: dict[str, Any]
    enabled: bool = True
    consumer: asyncio.Task | None = field(default=None, repr=False)

    @property
    def display_name(self) -> str:
        return self.plugin.display_name


class InstanceRegistry:
    """Keyed collection of live plugin instances."""

    def __init__(self, catalog: PluginCatalog, event_handler: EventHandler | None = None):
        self.catalog = catalog
        self._entries: dict[str, InstanceEntry] = {}
        self._lock = asyncio.Lock()
        self._event_handler = event_handler
        self._inflight: set[asyncio.Task] = set()

    def set_event_handler(self, handler: EventHandler | None) -> None:
        self._event_handler = handler

    # ── reads ─────────────────────────────────────────────────

    def get(self, instance_id: str) -> InstanceEntry | None:
        return self._entries.get(instance_id)

    def entries(self) -> list[InstanceEntry]:
        return list(self._entries.values())

    def __contains__(self, instance_id: str) -> bool:
        return instance_id in self._entries

    def require(self, instance_id: str, label: str = "Instance") -> InstanceEntry:
        """Return an enabled entry or raise NotFoundError / DisabledError."""
        entry = self._entries.get(instance_id)
        if entry is None:
            raise NotFoundError(f"{label} not found: {instance_id}")
        if not entry.enabled:
            raise DisabledError(f"{label} is disabled: {instance_id}")
        return entry

    def require_model(self, instance_id: str) -> Model:
        entry = self.require(instance_id, "LLM provider")
        model = entry.plugin.as_model()
        if model is None:
            raise NotFoundError(f"LLM provider not found: {instance_id}")
        return model

    def require_tooling(self, instance_id: str) -> Tooling:
        entry = self._entries.get(instance_id)
        tooling = entry.plugin.as_tooling() if entry else None
        if tooling is None:
            raise NotFoundError(f"Plugin with tools not found: {instance_id}")
        return tooling

    def channel(self, instance_id: str) -> Channel | None:
        entry = self._entries.get(instance_id)
        return entry.plugin.as_channel() if entry else None

    async def list_instances(self) -> list[InstanceDescriptor]:
        return [await self.describe(entry) for entry in self.entries()]

    async def describe(self, entry: InstanceEntry) -> InstanceDescriptor:
        plugin = entry.plugin
        desc = InstanceDescriptor(
            id=entry.id,
            type=entry.type,
            display_name=entry.display_name,
            enabled=entry.enabled,
            config=dict(entry.config),
            capabilities=sorted(c.value for c in plugin.capabilities),
        )
        channel = plugin.as_channel()
        if channel is not None:
            desc.connected = channel.is_connected()
        model = plugin.as_model()
        if model is not None:
            try:
                desc.models = await model.list_models()
            except Exception as e:
                logger.warning(f"Failed to list models for {entry.id}: {e}")
                desc.models = []
        tooling = plugin.as_tooling()
        if tooling is not None:
            desc.tools = [t.to_schema() for t in tooling.get_tools()]
        return desc

    # ── mutations ─────────────────────────────────────────────

    async def add_instance(
        self,
        plugin_type: str,
        config: dict[str, Any],
        instance_id: str | None = None,
        enabled: bool = True,
    ) -> InstanceDescriptor:
        """Create (or replace) an instance and connect it if it is a channel."""
        instance_id = instance_id or f"{plugin_type}-{int(time.time() * 1000)}"
        async with self._lock:
            plugin = self.catalog.load(plugin_type, config)
            existing = self._entries.pop(instance_id, None)
            if existing is not None:
                logger.info(f"Replacing instance {instance_id}")
                await self._teardown(existing)
            entry = InstanceEntry(
                id=instance_id, type=plugin_type, plugin=plugin,
                config=dict(config), enabled=enabled,
            )
            self._entries[instance_id] = entry
            if enabled:
                await self._connect(entry)
        logger.info(
            f"Added instance {instance_id} ({plugin_type})",
            extra={"extra_data": {"instance_id": instance_id, "type": plugin_type}},
        )
        return await self.describe(entry)

    async def reconfigure(self, instance_id: str, config: dict[str, Any]) -> InstanceDescriptor:
        """Swap an instance's config by rebuilding its plugin object."""
        async with self._lock:
            entry = self._entries.get(instance_id)
            if entry is None:
                raise NotFoundError(f"Instance not found: {instance_id}")
            plugin = self.catalog.load(entry.type, config)
            await self._teardown(entry)
            entry.plugin = plugin
            entry.config = dict(config)
            if entry.enabled:
                await self._connect(entry)
        logger.info(f"Reconfigured instance {instance_id}")
        return await self.describe(entry)

    async def remove_instance(self, instance_id: str) -> bool:
        """Tear down and forget an instance. Absent ids are a no-op."""
        async with self._lock:
            entry = self._entries.pop(instance_id, None)
            if entry is None:
                return False
            await self._teardown(entry)
        logger.info(f"Removed instance {instance_id}")
        return True

    def toggle_enabled(self, instance_id: str) -> bool:
        """Flip the enabled flag without touching the plugin object."""
        entry = self._entries.get(instance_id)
        if entry is None:
            raise NotFoundError(f"Instance not found: {instance_id}")
        entry.enabled = not entry.enabled
        logger.info(f"Instance {instance_id} {'enabled' if entry.enabled else 'disabled'}")
        return entry.enabled

    async def connect_channel(self, instance_id: str) -> None:
        async with self._lock:
            entry = self.require(instance_id)
            await self._connect(entry)

    async def disconnect_channel(self, instance_id: str) -> None:
        async with self._lock:
            entry = self._entries.get(instance_id)
            if entry is None:
                raise NotFoundError(f"Instance not found: {instance_id}")
            await self._disconnect(entry)

    async def sync_instances(self, records: list[PluginRecord]) -> None:
        """Reconcile live instances with declared records.

        Instances that are undeclared or disabled are removed, new enabled
        records are added, and enabled records whose config changed are
        reconfigured. A failing record is logged and does not stop the rest.
        """
        wanted = {r.id: r for r in records if r.enabled}
        for instance_id in [i for i in self._entries if i not in wanted]:
            try:
                await self.remove_instance(instance_id)
            except Exception as e:
                logger.error(f"Failed to remove instance {instance_id}: {e}")
        for record in wanted.values():
            config = expand_env(record.config)
            entry = self._entries.get(record.id)
            try:
                if entry is None or entry.type != record.type:
                    await self.add_instance(record.type, config, instance_id=record.id)
                elif config_digest(entry.config) != config_digest(config):
                    await self.reconfigure(record.id, config)
                elif not entry.enabled:
                    entry.enabled = True
                    await self.connect_channel(record.id)
            except Exception as e:
                logger.error(
                    f"Failed to sync instance {record.id}: {e}",
                    extra={"extra_data": {"instance_id": record.id, "type": record.type}},
                )

    async def shutdown_all(self) -> None:
        async with self._lock:
            entries = list(self._entries.values())
            self._entries.clear()
            for entry in entries:
                await self._teardown(entry)
        for task in list(self._inflight):
            task.cancel()

    # ── internals (callers hold the lock) ─────────────────────

    async def _connect(self, entry: InstanceEntry) -> None:
        channel = entry.plugin.as_channel()
        if channel is None:
            return
        if not channel.is_connected():
            try:
                await channel.connect()
            except Exception as e:
                logger.error(f"Failed to connect {entry.id}: {e}")
                return
        if entry.consumer is None or entry.consumer.done():
            entry.consumer = asyncio.create_task(self._consume(entry.id, channel))

    async def _disconnect(self, entry: InstanceEntry) -> None:
        if entry.consumer is not None:
            entry.consumer.cancel()
            try:
                await entry.consumer
            except asyncio.CancelledError:
                pass
            entry.consumer = None
        channel = entry.plugin.as_channel()
        if channel is not None and channel.is_connected():
            try:
                await channel.disconnect()
            except Exception as e:
                logger.warning(f"Error disconnecting {entry.id}: {e}")

    async def _teardown(self, entry: InstanceEntry) -> None:
        await self._disconnect(entry)
        try:
            await entry.plugin.shutdown()
        except Exception as e:
            logger.warning(f"Error shutting down {entry.id}: {e}")

    async def _consume(self, instance_id: str, channel: Channel) -> None:
        async for event in channel.events():
            if self._event_handler is None:
                logger.debug(f"Dropping event from {instance_id}: no handler")
                continue
            task = asyncio.create_task(self._dispatch(instance_id, event))
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)

    async def _dispatch(self, instance_id: str, event: ChannelEvent) -> None:
        try:
            await self._event_handler(instance_id, event)
        except Exception as e:
            logger.error(f"Event handler failed for {instance_id}: {e}", exc_info=True)
