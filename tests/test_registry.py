"""Tests for InstanceRegistry: lifecycle, capability lookup, event consumers, sync."""

from __future__ import annotations

import asyncio

import pytest
from fakes import FakeChannel, FakeModel, make_message

from switchboard.core.registry import InstanceRegistry
from switchboard.shared.errors import DisabledError, NotFoundError, ValidationFailure
from switchboard.shared.types import PluginRecord


async def _drain():
    for _ in range(5):
        await asyncio.sleep(0)


class TestAddInstance:
    @pytest.mark.asyncio
    async def test_add_describes_capabilities(self, registry):
        desc = await registry.add_instance("fake-model", {"models": ["a"]}, instance_id="llm")
        assert desc.id == "llm"
        assert desc.type == "fake-model"
        assert desc.capabilities == ["model"]
        assert [m.id for m in desc.models] == ["a"]
        assert desc.tools is None
        assert desc.connected is None

    @pytest.mark.asyncio
    async def test_generated_id_uses_type_prefix(self, registry):
        desc = await registry.add_instance("fake-tools", {})
        assert desc.id.startswith("fake-tools-")
        assert desc.id in registry

    @pytest.mark.asyncio
    async def test_unknown_type(self, registry):
        with pytest.raises(NotFoundError, match="Plugin not found in catalog: nope"):
            await registry.add_instance("nope", {})

    @pytest.mark.asyncio
    async def test_channel_is_connected_on_add(self, registry):
        desc = await registry.add_instance("fake-channel", {}, instance_id="chan")
        assert desc.connected is True
        entry = registry.get("chan")
        assert entry.consumer is not None
        await registry.shutdown_all()

    @pytest.mark.asyncio
    async def test_disabled_channel_is_not_connected(self, registry):
        await registry.add_instance("fake-channel", {}, instance_id="chan", enabled=False)
        assert registry.get("chan").plugin.connect_calls == 0

    @pytest.mark.asyncio
    async def test_connect_failure_leaves_instance_registered(self, registry):
        desc = await registry.add_instance("fake-channel", {"fail_connect": True}, instance_id="chan")
        assert desc.connected is False
        assert registry.get("chan").consumer is None

    @pytest.mark.asyncio
    async def test_replace_tears_down_previous(self, registry):
        log: list = []
        await registry.add_instance("fake-channel", {"log": log, "label": "old"}, instance_id="chan")
        old = registry.get("chan").plugin
        await registry.add_instance("fake-channel", {"log": log, "label": "new"}, instance_id="chan")
        new = registry.get("chan").plugin
        assert old is not new
        assert old.shutdown_calls == 1
        assert not old.is_connected()
        assert new.is_connected()
        assert log == [
            ("connect", "old"), ("disconnect", "old"), ("shutdown", "old"), ("connect", "new"),
        ]
        await registry.shutdown_all()

    @pytest.mark.asyncio
    async def test_failed_construction_keeps_existing(self, registry):
        await registry.add_instance("fake-tools", {}, instance_id="tools")
        old = registry.get("tools").plugin
        with pytest.raises(ValidationFailure):
            await registry.add_instance("fake-tools", {"fail_init": True}, instance_id="tools")
        assert registry.get("tools").plugin is old


class TestLookups:
    @pytest.mark.asyncio
    async def test_require_model(self, registry):
        await registry.add_instance("fake-model", {}, instance_id="llm")
        assert isinstance(registry.require_model("llm"), FakeModel)

    @pytest.mark.asyncio
    async def test_require_model_missing(self, registry):
        with pytest.raises(NotFoundError, match="LLM provider not found: llm"):
            registry.require_model("llm")

    @pytest.mark.asyncio
    async def test_require_model_disabled(self, registry):
        await registry.add_instance("fake-model", {}, instance_id="llm", enabled=False)
        with pytest.raises(DisabledError):
            registry.require_model("llm")

    @pytest.mark.asyncio
    async def test_require_model_wrong_capability(self, registry):
        await registry.add_instance("fake-tools", {}, instance_id="tools")
        with pytest.raises(NotFoundError, match="LLM provider not found"):
            registry.require_model("tools")

    @pytest.mark.asyncio
    async def test_require_tooling_wrong_capability(self, registry):
        await registry.add_instance("fake-model", {}, instance_id="llm")
        with pytest.raises(NotFoundError, match="Plugin with tools not found: llm"):
            registry.require_tooling("llm")

    @pytest.mark.asyncio
    async def test_channel_lookup(self, registry):
        await registry.add_instance("fake-model", {}, instance_id="llm")
        await registry.add_instance("fake-channel", {}, instance_id="chan")
        assert registry.channel("llm") is None
        assert isinstance(registry.channel("chan"), FakeChannel)
        assert registry.channel("missing") is None
        await registry.shutdown_all()

    @pytest.mark.asyncio
    async def test_list_instances(self, registry):
        await registry.add_instance("fake-model", {}, instance_id="llm")
        await registry.add_instance("fake-tools", {"tools": ["a", "b"]}, instance_id="tools")
        descs = {d.id: d for d in await registry.list_instances()}
        assert set(descs) == {"llm", "tools"}
        assert [t.name for t in descs["tools"].tools] == ["a", "b"]


class TestMutations:
    @pytest.mark.asyncio
    async def test_reconfigure_rebuilds_plugin(self, registry):
        await registry.add_instance("fake-tools", {"tools": ["a"]}, instance_id="tools")
        desc = await registry.reconfigure("tools", {"tools": ["b"]})
        assert [t.name for t in desc.tools] == ["b"]
        assert registry.get("tools").config == {"tools": ["b"]}

    @pytest.mark.asyncio
    async def test_reconfigure_channel_disconnects_old_before_connecting_new(self, registry):
        log: list = []
        await registry.add_instance("fake-channel", {"log": log, "label": "v1"}, instance_id="chan")
        await registry.reconfigure("chan", {"log": log, "label": "v2"})
        assert log == [
            ("connect", "v1"), ("disconnect", "v1"), ("shutdown", "v1"), ("connect", "v2"),
        ]
        assert registry.get("chan").plugin.is_connected()
        await registry.shutdown_all()

    @pytest.mark.asyncio
    async def test_reconfigure_unknown(self, registry):
        with pytest.raises(NotFoundError, match="Instance not found: x"):
            await registry.reconfigure("x", {})

    @pytest.mark.asyncio
    async def test_reconfigure_failure_keeps_old_plugin(self, registry):
        await registry.add_instance("fake-tools", {"tools": ["a"]}, instance_id="tools")
        old = registry.get("tools").plugin
        with pytest.raises(ValidationFailure):
            await registry.reconfigure("tools", {"fail_init": True})
        assert registry.get("tools").plugin is old

    @pytest.mark.asyncio
    async def test_remove(self, registry):
        await registry.add_instance("fake-channel", {}, instance_id="chan")
        plugin = registry.get("chan").plugin
        assert await registry.remove_instance("chan") is True
        assert "chan" not in registry
        assert plugin.shutdown_calls == 1
        assert not plugin.is_connected()

    @pytest.mark.asyncio
    async def test_remove_absent_is_noop(self, registry):
        assert await registry.remove_instance("ghost") is False

    @pytest.mark.asyncio
    async def test_toggle(self, registry):
        await registry.add_instance("fake-model", {}, instance_id="llm")
        assert registry.toggle_enabled("llm") is False
        with pytest.raises(DisabledError):
            registry.require("llm")
        assert registry.toggle_enabled("llm") is True
        registry.require("llm")

    def test_toggle_unknown(self, registry):
        with pytest.raises(NotFoundError):
            registry.toggle_enabled("ghost")

    @pytest.mark.asyncio
    async def test_concurrent_adds_of_same_id_leave_one_connected(self, registry):
        await asyncio.gather(
            registry.add_instance("fake-channel", {}, instance_id="chan"),
            registry.add_instance("fake-channel", {}, instance_id="chan"),
        )
        assert len(registry.entries()) == 1
        assert registry.get("chan").plugin.is_connected()
        await registry.shutdown_all()


class TestEventConsumers:
    @pytest.mark.asyncio
    async def test_events_reach_handler(self, catalog):
        received = []

        async def handler(instance_id, event):
            received.append((instance_id, event.content))

        registry = InstanceRegistry(catalog, event_handler=handler)
        await registry.add_instance("fake-channel", {}, instance_id="chan")
        registry.get("chan").plugin.push(make_message("ping"))
        await _drain()
        assert received == [("chan", "ping")]
        await registry.shutdown_all()

    @pytest.mark.asyncio
    async def test_handler_failure_does_not_stop_consumer(self, catalog):
        received = []

        async def handler(instance_id, event):
            if event.content == "boom":
                raise RuntimeError("handler exploded")
            received.append(event.content)

        registry = InstanceRegistry(catalog, event_handler=handler)
        await registry.add_instance("fake-channel", {}, instance_id="chan")
        channel = registry.get("chan").plugin
        channel.push(make_message("boom"))
        channel.push(make_message("after"))
        await _drain()
        assert received == ["after"]
        await registry.shutdown_all()

    @pytest.mark.asyncio
    async def test_replaced_instance_stops_old_consumer(self, catalog):
        received = []

        async def handler(instance_id, event):
            received.append(event.content)

        registry = InstanceRegistry(catalog, event_handler=handler)
        await registry.add_instance("fake-channel", {}, instance_id="chan")
        old_entry_consumer = registry.get("chan").consumer
        old = registry.get("chan").plugin
        await registry.add_instance("fake-channel", {}, instance_id="chan")
        assert old_entry_consumer.done()
        old.push(make_message("stale"))
        registry.get("chan").plugin.push(make_message("fresh"))
        await _drain()
        assert received == ["fresh"]
        await registry.shutdown_all()

    @pytest.mark.asyncio
    async def test_disconnect_and_reconnect(self, registry):
        await registry.add_instance("fake-channel", {}, instance_id="chan")
        await registry.disconnect_channel("chan")
        entry = registry.get("chan")
        assert entry.consumer is None
        assert not entry.plugin.is_connected()
        await registry.connect_channel("chan")
        assert entry.plugin.is_connected()
        assert entry.consumer is not None
        await registry.shutdown_all()


class TestSync:
    @pytest.mark.asyncio
    async def test_sync_adds_and_removes(self, registry):
        await registry.add_instance("fake-model", {}, instance_id="old")
        await registry.sync_instances([
            PluginRecord(id="llm", type="fake-model", config={"models": ["x"]}),
            PluginRecord(id="off", type="fake-tools", enabled=False),
        ])
        assert {e.id for e in registry.entries()} == {"llm"}

    @pytest.mark.asyncio
    async def test_sync_reconfigures_on_config_change_only(self, registry):
        records = [PluginRecord(id="tools", type="fake-tools", config={"tools": ["a"]})]
        await registry.sync_instances(records)
        first = registry.get("tools").plugin
        await registry.sync_instances(records)
        assert registry.get("tools").plugin is first
        await registry.sync_instances(
            [PluginRecord(id="tools", type="fake-tools", config={"tools": ["b"]})],
        )
        assert registry.get("tools").plugin is not first

    @pytest.mark.asyncio
    async def test_sync_expands_env(self, registry, monkeypatch):
        monkeypatch.setenv("FAKE_LABEL", "from-env")
        await registry.sync_instances(
            [PluginRecord(id="tools", type="fake-tools", config={"label": "${FAKE_LABEL}"})],
        )
        assert registry.get("tools").plugin.label == "from-env"

    @pytest.mark.asyncio
    async def test_sync_continues_after_bad_record(self, registry):
        await registry.sync_instances([
            PluginRecord(id="bad", type="fake-tools", config={"fail_init": True}),
            PluginRecord(id="unknown", type="does-not-exist"),
            PluginRecord(id="good", type="fake-model"),
        ])
        assert {e.id for e in registry.entries()} == {"good"}

    @pytest.mark.asyncio
    async def test_sync_reenables_disabled_instance(self, registry):
        records = [PluginRecord(id="llm", type="fake-model")]
        await registry.sync_instances(records)
        registry.toggle_enabled("llm")
        await registry.sync_instances(records)
        assert registry.get("llm").enabled is True


class TestShutdown:
    @pytest.mark.asyncio
    async def test_shutdown_all(self, registry):
        await registry.add_instance("fake-channel", {}, instance_id="chan")
        await registry.add_instance("fake-model", {}, instance_id="llm")
        chan = registry.get("chan").plugin
        llm = registry.get("llm").plugin
        await registry.shutdown_all()
        assert registry.entries() == []
        assert chan.shutdown_calls == 1
        assert llm.shutdown_calls == 1
