"""Mock discovery adapters for development and testing.

The radio mock produces fake advertisements on a timer with a mix of
realistic behaviors: stable nearby devices whose names resolve late,
intermittent visitors, and anonymous beacons. The network mock resolves
a fixed set of services after a short delay and lets callers announce or
withdraw services by hand.
"""

import asyncio
import logging
import random
from datetime import UTC, datetime

from sightline.discovery.base import (
    LANPeer,
    NetworkAdapter,
    RadioAdapter,
    RadioState,
    SightingEvent,
)
from sightline.registry.models import Transport

logger = logging.getLogger(__name__)

# (address, name once resolved, base RSSI)
_NEARBY_DEVICES = [
    ("C4:7C:8D:11:22:33", "Kitchen Speaker", -48),
    ("C4:7C:8D:44:55:66", "Thermostat", -55),
    ("F0:99:B6:77:88:99", "Pixel 7", -40),
]

_VISITOR_DEVICES = [
    ("D8:3A:DD:11:22:33", "Guest Earbuds", -66),
    ("D8:3A:DD:44:55:66", "Fitness Band", -74),
]

# Beacons that never advertise a name
_ANONYMOUS = [
    "6E:12:34:56:78:9A",
    "5A:AB:CD:EF:01:23",
]

_DEFAULT_PEERS = [
    LANPeer(
        name="Office Printer", host_name="printer.local.", port=9100, addresses=("192.168.1.40",)
    ),
    LANPeer(
        name="Living Room TV", host_name="tv.local.", port=7000, addresses=("192.168.1.52",)
    ),
    LANPeer(name="NAS", host_name="nas.local.", port=5000, addresses=("192.168.1.10",)),
]


class MockRadioAdapter(RadioAdapter):
    """Generates fake BLE sightings for development."""

    def __init__(self, poll_interval: float = 1.0) -> None:
        super().__init__()
        self.poll_interval = poll_interval
        self.state.send(RadioState.powered_on)
        self._task: asyncio.Task[None] | None = None
        self._tick = 0

    async def _start_discovery(self) -> None:
        logger.info("Starting mock radio (interval=%ss)", self.poll_interval)
        self._tick = 0
        self._task = asyncio.create_task(self._poll_loop())

    async def _stop_discovery(self) -> None:
        logger.info("Stopping mock radio")
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _poll_loop(self) -> None:
        while self.is_running:
            try:
                for event in self._generate_events(datetime.now(UTC)):
                    self._emit(event)
                self._tick += 1
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Mock radio error")

            await asyncio.sleep(self.poll_interval)

    def _generate_events(self, now: datetime) -> list[SightingEvent]:
        events: list[SightingEvent] = []

        # Nearby: always present; names show up after the first tick
        for address, name, base_rssi in _NEARBY_DEVICES:
            events.append(
                SightingEvent(
                    identity=address,
                    transport=Transport.radio,
                    display_name=name if self._tick > 0 else random.choice(["", "Unknown"]),
                    signal_strength=base_rssi + random.randint(-5, 5),
                    observed_at=now,
                    attributes={"local_name": name} if self._tick > 0 else {},
                )
            )

        # Visitors: roughly 40% of ticks
        for address, name, base_rssi in _VISITOR_DEVICES:
            if random.random() < 0.4:
                events.append(
                    SightingEvent(
                        identity=address,
                        transport=Transport.radio,
                        display_name=name,
                        signal_strength=base_rssi + random.randint(-8, 8),
                        observed_at=now,
                    )
                )

        # Anonymous beacons: occasional, weak
        if random.random() < 0.3:
            events.append(
                SightingEvent(
                    identity=random.choice(_ANONYMOUS),
                    transport=Transport.radio,
                    signal_strength=random.randint(-95, -80),
                    observed_at=now,
                    attributes={"manufacturer_data": {"0x004C": "1005"}},
                )
            )

        return events


class MockNetworkAdapter(NetworkAdapter):
    """Resolves a fixed list of fake LAN services after ``resolve_delay``."""

    def __init__(
        self,
        peers: list[LANPeer] | None = None,
        resolve_delay: float = 0.2,
        resolve_timeout: float = 5.0,
    ) -> None:
        super().__init__(resolve_timeout=resolve_timeout)
        self.peers = list(_DEFAULT_PEERS if peers is None else peers)
        self.resolve_delay = resolve_delay

    async def _start_discovery(self) -> None:
        logger.info("Starting mock network browse (%d services)", len(self.peers))
        for peer in self.peers:
            self.announce(peer)

    async def _stop_discovery(self) -> None:
        logger.info("Stopping mock network browse")

    def announce(self, peer: LANPeer) -> None:
        """Simulate a service appearing on the network."""
        self._track_resolution(peer.name, self._resolve(peer))

    def withdraw(self, name: str) -> None:
        """Simulate a service leaving the network."""
        self._peer_removed(name)

    async def _resolve(self, peer: LANPeer) -> None:
        await asyncio.wait_for(asyncio.sleep(self.resolve_delay), timeout=self.resolve_timeout)
        self._peer_resolved(peer)

    async def start_advertising(self, port: int = 0, name: str | None = None) -> bool:
        instance = name or "sightline"
        self.advertising.send(True)
        self.status.send(f"Advertising as {instance}")
        return True

    async def stop_advertising(self) -> None:
        if not self.advertising.value:
            return
        self.advertising.send(False)
        self.status.send("Browsing..." if self.is_running else "Idle")
