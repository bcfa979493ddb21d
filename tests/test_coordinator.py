"""Tests for wiring adapters to working sets and the history store."""

from datetime import datetime

import pytest

from sightline.discovery.base import LANPeer, RadioState, SightingEvent
from sightline.discovery.coordinator import DiscoveryCoordinator
from sightline.exceptions import StoreError
from sightline.registry.memory import MemoryDeviceStore
from sightline.registry.models import Transport

PRINTER = LANPeer(
    name="Office Printer", host_name="printer.local.", port=9100, addresses=("192.168.1.40",)
)


class FailingStore(MemoryDeviceStore):
    async def upsert(self, identity, *args, **kwargs) -> None:
        raise StoreError("disk full", operation="upsert")


def _sighting(identity: str, name: str | None, rssi: int = -50, **attrs) -> SightingEvent:
    return SightingEvent(
        identity=identity,
        transport=Transport.radio,
        display_name=name,
        signal_strength=rssi,
        attributes=attrs,
    )


@pytest.fixture
def memory_store() -> MemoryDeviceStore:
    return MemoryDeviceStore()


class TestRadioPipeline:
    @pytest.mark.asyncio
    async def test_late_name_survives_placeholder(self, memory_store, fake_radio, clock):
        coordinator = DiscoveryCoordinator(memory_store, radio=fake_radio, clock=clock)
        await coordinator.start_radio_scan(timeout=None)

        for name in ["", "Thermostat", "unknown"]:
            fake_radio._emit(_sighting("AA:BB", name))
        await coordinator.drain()

        live = coordinator.radio_devices.value
        assert [(e.identity, e.name) for e in live] == [("AA:BB", "Thermostat")]
        stored = await memory_store.get("AA:BB")
        assert stored is not None
        assert stored.name == "Thermostat"
        assert stored.transport is Transport.radio
        assert len(memory_store) == 1
        await coordinator.close()

    @pytest.mark.asyncio
    async def test_persists_entry_last_seen(self, memory_store, fake_radio, clock):
        coordinator = DiscoveryCoordinator(memory_store, radio=fake_radio, clock=clock)
        await coordinator.start_radio_scan(timeout=None)
        fake_radio._emit(_sighting("AA:BB", "Speaker", rssi=-42))
        await coordinator.drain()

        stored = await memory_store.get("AA:BB")
        assert stored is not None
        assert stored.last_seen == coordinator.radio_devices.value[0].last_seen
        assert stored.signal_strength == -42
        await coordinator.close()

    @pytest.mark.asyncio
    async def test_local_name_preferred_for_history(self, memory_store, fake_radio, clock):
        coordinator = DiscoveryCoordinator(memory_store, radio=fake_radio, clock=clock)
        await coordinator.start_radio_scan(timeout=None)
        fake_radio._emit(_sighting("AA:BB", "LE-Device", local_name="Kitchen Speaker"))
        await coordinator.drain()
        stored = await memory_store.get("AA:BB")
        assert stored is not None
        assert stored.name == "Kitchen Speaker"
        await coordinator.close()

    @pytest.mark.asyncio
    async def test_failed_write_is_dropped(self, fake_radio, clock):
        store = FailingStore()
        coordinator = DiscoveryCoordinator(store, radio=fake_radio, clock=clock)
        await coordinator.start_radio_scan(timeout=None)
        fake_radio._emit(_sighting("AA:BB", "Speaker"))
        await coordinator.drain()

        assert coordinator.pending_writes == 0
        assert [e.identity for e in coordinator.radio_devices.value] == ["AA:BB"]
        assert len(store) == 0
        await coordinator.close()

    @pytest.mark.asyncio
    async def test_session_start_and_stop_clear_working_set(
        self, memory_store, fake_radio, clock
    ):
        coordinator = DiscoveryCoordinator(memory_store, radio=fake_radio, clock=clock)
        await coordinator.start_radio_scan(timeout=None)
        fake_radio._emit(_sighting("AA:BB", "Speaker"))
        assert len(coordinator.radio_devices.value) == 1

        await coordinator.stop_radio_scan()
        assert coordinator.radio_devices.value == []

        await coordinator.start_radio_scan(timeout=None)
        assert coordinator.radio_devices.value == []
        await coordinator.drain()
        # History outlives the session
        assert await memory_store.get("AA:BB") is not None
        await coordinator.close()

    @pytest.mark.asyncio
    async def test_radio_state_mirrored(self, memory_store, fake_radio):
        coordinator = DiscoveryCoordinator(memory_store, radio=fake_radio)
        assert coordinator.radio_state.value == RadioState.unknown
        await fake_radio.update_state(RadioState.powered_off)
        assert coordinator.radio_state.value == RadioState.powered_off
        assert await coordinator.start_radio_scan() is False
        assert not coordinator.radio_scanning

    @pytest.mark.asyncio
    async def test_no_radio_configured(self, memory_store):
        coordinator = DiscoveryCoordinator(memory_store)
        assert coordinator.radio_state.value == RadioState.unsupported
        assert await coordinator.start_radio_scan() is False
        await coordinator.stop_radio_scan()


class TestNetworkPipeline:
    @pytest.mark.asyncio
    async def test_resolved_peer_persisted(self, memory_store, fake_network, clock):
        coordinator = DiscoveryCoordinator(memory_store, network=fake_network, clock=clock)
        await coordinator.start_network_browse(timeout=None)
        fake_network._peer_resolved(PRINTER)
        await coordinator.drain()

        assert [e.identity for e in coordinator.network_peers.value] == ["printer.local."]
        stored = await memory_store.get("printer.local.")
        assert stored is not None
        assert stored.name == "Office Printer"
        assert stored.transport is Transport.network
        assert stored.network_address == "192.168.1.40"
        await coordinator.close()

    @pytest.mark.asyncio
    async def test_removed_peer_keeps_history(self, memory_store, fake_network, clock):
        coordinator = DiscoveryCoordinator(memory_store, network=fake_network, clock=clock)
        await coordinator.start_network_browse(timeout=None)
        fake_network._peer_resolved(PRINTER)
        await coordinator.drain()

        fake_network._peer_removed("Office Printer")
        await coordinator.drain()

        assert coordinator.network_peers.value == []
        stored = await memory_store.get("printer.local.")
        assert stored is not None
        assert stored.name == "Office Printer"
        await coordinator.close()

    @pytest.mark.asyncio
    async def test_status_mirrored(self, memory_store, fake_network):
        coordinator = DiscoveryCoordinator(memory_store, network=fake_network)
        assert coordinator.network_status.value == "Idle"
        await coordinator.start_network_browse(timeout=None)
        assert coordinator.network_status.value == "Browsing..."
        assert coordinator.network_browsing
        await coordinator.stop_network_browse()
        assert coordinator.network_status.value == "Idle"

    @pytest.mark.asyncio
    async def test_no_network_configured(self, memory_store):
        coordinator = DiscoveryCoordinator(memory_store)
        assert coordinator.network_status.value == "Unavailable"
        assert await coordinator.start_network_browse() is False
        assert await coordinator.start_advertising() is False
        assert not coordinator.network_advertising

    @pytest.mark.asyncio
    async def test_advertising_uses_configured_name(self, memory_store, fake_network):
        coordinator = DiscoveryCoordinator(
            memory_store, network=fake_network, advertise_name="den"
        )
        assert await coordinator.start_advertising(port=8000) is True
        assert fake_network.advertised_as == "den"
        assert coordinator.network_advertising
        await coordinator.close()
        assert not coordinator.network_advertising


class TestTransportsStaySeparate:
    @pytest.mark.asyncio
    async def test_same_name_on_both_transports(
        self, memory_store, fake_radio, fake_network, clock
    ):
        coordinator = DiscoveryCoordinator(
            memory_store, radio=fake_radio, network=fake_network, clock=clock
        )
        await coordinator.start_radio_scan(timeout=None)
        await coordinator.start_network_browse(timeout=None)
        fake_radio._emit(_sighting("AA:BB", "Office Printer"))
        fake_network._peer_resolved(PRINTER)
        await coordinator.drain()

        devices = await memory_store.fetch()
        assert {(d.identity, d.transport) for d in devices} == {
            ("AA:BB", Transport.radio),
            ("printer.local.", Transport.network),
        }
        await coordinator.close()
        assert coordinator.radio_devices.value == []
        assert coordinator.network_peers.value == []
        assert isinstance(devices[0].last_seen, datetime)
