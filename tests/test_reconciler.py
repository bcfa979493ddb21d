"""Tests for the per-transport working sets."""

import pytest

from sightline.discovery.base import LANPeer, SightingEvent
from sightline.reconcile.reconciler import (
    UNNAMED,
    NetworkReconciler,
    RadioReconciler,
    WorkingSetEntry,
)
from sightline.registry.models import Transport


def _radio(
    identity: str, name: str | None = None, rssi: int | None = None, **attrs
) -> SightingEvent:
    return SightingEvent(
        identity=identity,
        transport=Transport.radio,
        display_name=name,
        signal_strength=rssi,
        attributes=attrs,
    )


class TestSightingEvent:
    def test_empty_identity_rejected(self):
        with pytest.raises(ValueError):
            SightingEvent(identity="  ", transport=Transport.radio)


class TestRadioReconciler:
    def test_deduplicates_by_identity(self, clock):
        reconciler = RadioReconciler(clock=clock)
        reconciler.merge(_radio("AA:BB", "Speaker", -50))
        reconciler.merge(_radio("AA:BB", "Speaker", -45))
        assert len(reconciler) == 1
        assert reconciler.entries.value[0].signal_strength == -45

    def test_name_never_regresses(self, clock):
        reconciler = RadioReconciler(clock=clock)
        reconciler.merge(_radio("AA:BB", ""))
        reconciler.merge(_radio("AA:BB", "Thermostat"))
        entry = reconciler.merge(_radio("AA:BB", "unknown"))
        assert entry.name == "Thermostat"

    def test_last_seen_from_clock(self, clock):
        reconciler = RadioReconciler(clock=clock)
        first = reconciler.merge(_radio("AA:BB", rssi=-60))
        second = reconciler.merge(_radio("AA:BB", rssi=-60))
        assert second.last_seen > first.last_seen

    def test_signal_kept_when_missing(self, clock):
        reconciler = RadioReconciler(clock=clock)
        reconciler.merge(_radio("AA:BB", rssi=-60))
        entry = reconciler.merge(_radio("AA:BB"))
        assert entry.signal_strength == -60

    def test_attributes_merge(self, clock):
        reconciler = RadioReconciler(clock=clock)
        reconciler.merge(_radio("AA:BB", tx_power=4))
        entry = reconciler.merge(_radio("AA:BB", local_name="Pixel 7"))
        assert entry.attributes == {"tx_power": 4, "local_name": "Pixel 7"}

    def test_sorted_by_signal_then_name(self, clock):
        reconciler = RadioReconciler(clock=clock)
        reconciler.merge(_radio("01", "zeta", -70))
        reconciler.merge(_radio("02", "Beta", -40))
        reconciler.merge(_radio("03", "alpha", -70))
        reconciler.merge(_radio("04", None, None))
        assert [e.identity for e in reconciler.entries.value] == ["02", "03", "01", "04"]

    def test_publishes_after_every_merge(self, clock):
        reconciler = RadioReconciler(clock=clock)
        snapshots: list[list[WorkingSetEntry]] = []
        reconciler.entries.subscribe(snapshots.append)
        reconciler.merge(_radio("AA:BB", "Speaker", -50))
        reconciler.merge(_radio("CC:DD", "Band", -70))
        assert [len(s) for s in snapshots] == [0, 1, 2]

    def test_snapshots_are_copies(self, clock):
        reconciler = RadioReconciler(clock=clock)
        entry = reconciler.merge(_radio("AA:BB", "Speaker", -50))
        entry.name = "Changed"
        reconciler.entries.value[0].attributes["x"] = 1
        stored = reconciler.find("AA:BB")
        assert stored is not None
        assert stored.name == "Speaker"
        assert stored.attributes == {}

    def test_rejects_other_transport(self, clock):
        reconciler = RadioReconciler(clock=clock)
        with pytest.raises(ValueError):
            reconciler.merge(LANPeer(name="NAS", host_name="nas.local.").to_sighting())

    def test_remove_and_reset(self, clock):
        reconciler = RadioReconciler(clock=clock)
        reconciler.merge(_radio("AA:BB"))
        reconciler.merge(_radio("CC:DD"))
        assert reconciler.remove("AA:BB") is True
        assert reconciler.remove("AA:BB") is False
        reconciler.reset()
        assert reconciler.entries.value == []


class TestNetworkReconciler:
    def test_keeps_resolution_order(self, clock):
        reconciler = NetworkReconciler(clock=clock)
        for name in ["Zeta", "Alpha", "Mid"]:
            reconciler.merge(LANPeer(name=name, host_name=f"{name.lower()}.local.").to_sighting())
        assert [e.name for e in reconciler.entries.value] == ["Zeta", "Alpha", "Mid"]

    def test_identity_from_host_name(self, clock):
        reconciler = NetworkReconciler(clock=clock)
        peer = LANPeer(name="Office Printer", host_name="printer.local.", addresses=("10.0.0.5",))
        entry = reconciler.merge(peer.to_sighting())
        assert entry.identity == "printer.local."
        assert entry.network_address == "10.0.0.5"
        assert entry.attributes["service_name"] == "Office Printer"

    def test_identity_falls_back_to_service_name(self, clock):
        reconciler = NetworkReconciler(clock=clock)
        entry = reconciler.merge(LANPeer(name="NAS", host_name=None).to_sighting())
        assert entry.identity == "NAS"
        assert entry.network_address is None

    def test_remove_named(self, clock):
        reconciler = NetworkReconciler(clock=clock)
        reconciler.merge(LANPeer(name="Office Printer", host_name="printer.local.").to_sighting())
        reconciler.merge(LANPeer(name="NAS", host_name="nas.local.").to_sighting())
        assert reconciler.remove_named("Office Printer") == ["printer.local."]
        assert reconciler.remove_named("Office Printer") == []
        assert [e.identity for e in reconciler.entries.value] == ["nas.local."]


class TestWorkingSetEntry:
    def test_label_falls_back(self, clock):
        entry = WorkingSetEntry(
            identity="AA", transport=Transport.radio, name=None, last_seen=clock()
        )
        assert entry.label == UNNAMED

    def test_candidate_name_prefers_local_name(self, clock):
        entry = WorkingSetEntry(
            identity="AA",
            transport=Transport.radio,
            name="Generic",
            last_seen=clock(),
            attributes={"local_name": "Pixel 7"},
        )
        assert entry.candidate_name == "Pixel 7"

    def test_candidate_name_skips_placeholder(self, clock):
        entry = WorkingSetEntry(
            identity="AA",
            transport=Transport.radio,
            name="Thermostat",
            last_seen=clock(),
            attributes={"local_name": "Unknown"},
        )
        assert entry.candidate_name == "Thermostat"
