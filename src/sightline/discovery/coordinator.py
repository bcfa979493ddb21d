"""Wires discovery adapters to working sets and the device history store.

Adapter -> SightingEvent -> reconciler (live working set) -> snapshot
published -> store upsert scheduled in the background. Persistence is
at-most-once: a failed upsert is logged and dropped, the live view keeps
the device.
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime

from sightline.discovery.base import (
    DiscoveryEvent,
    NetworkAdapter,
    PeerRemoved,
    RadioAdapter,
    RadioState,
    SightingEvent,
)
from sightline.reconcile.reconciler import (
    NetworkReconciler,
    RadioReconciler,
    Reconciler,
    WorkingSetEntry,
)
from sightline.registry.store import DeviceStore
from sightline.stream import Subject

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class DiscoveryCoordinator:
    def __init__(
        self,
        store: DeviceStore,
        radio: RadioAdapter | None = None,
        network: NetworkAdapter | None = None,
        clock: Callable[[], datetime] = _utcnow,
        advertise_name: str | None = None,
        scan_timeout: float | None = 15.0,
    ) -> None:
        self.store = store
        self.radio = radio
        self.network = network
        self.advertise_name = advertise_name
        self.scan_timeout = scan_timeout  # default session length for the API

        self.radio_reconciler = RadioReconciler(clock=clock)
        self.network_reconciler = NetworkReconciler(clock=clock)
        self._pending_writes: set[asyncio.Task[None]] = set()
        self._unsubscribe: list[Callable[[], None]] = []

        self.radio_state: Subject[RadioState] = Subject(RadioState.unsupported)
        self.network_status: Subject[str] = Subject("Unavailable")

        if radio is not None:
            radio.on_event(self._make_handler(self.radio_reconciler))
            self._unsubscribe.append(radio.state.subscribe(self.radio_state.send))
            self._unsubscribe.append(
                radio.running.subscribe(self._session_flag(self.radio_reconciler))
            )
        if network is not None:
            network.on_event(self._make_handler(self.network_reconciler))
            self._unsubscribe.append(network.status.subscribe(self.network_status.send))
            self._unsubscribe.append(
                network.running.subscribe(self._session_flag(self.network_reconciler))
            )

    # --- Live views ---

    @property
    def radio_devices(self) -> Subject[list[WorkingSetEntry]]:
        return self.radio_reconciler.entries

    @property
    def network_peers(self) -> Subject[list[WorkingSetEntry]]:
        return self.network_reconciler.entries

    @property
    def radio_scanning(self) -> bool:
        return self.radio is not None and self.radio.is_running

    @property
    def network_browsing(self) -> bool:
        return self.network is not None and self.network.is_running

    @property
    def network_advertising(self) -> bool:
        return self.network is not None and self.network.advertising.value

    @property
    def pending_writes(self) -> int:
        return len(self._pending_writes)

    # --- Event handling ---

    def _session_flag(self, reconciler: Reconciler) -> Callable[[bool], None]:
        """Working sets start empty and are discarded when the session ends."""
        started = False

        def _on_running(running: bool) -> None:
            nonlocal started
            if running or started:
                reconciler.reset()
            started = started or running

        return _on_running

    def _make_handler(self, reconciler: Reconciler) -> Callable[[DiscoveryEvent], None]:
        def _handle(event: DiscoveryEvent) -> None:
            if isinstance(event, PeerRemoved):
                if isinstance(reconciler, NetworkReconciler):
                    gone = reconciler.remove_named(event.name)
                    logger.info("Peer %s left (%d entries removed)", event.name, len(gone))
                return
            self._handle_sighting(reconciler, event)

        return _handle

    def _handle_sighting(self, reconciler: Reconciler, event: SightingEvent) -> None:
        entry = reconciler.merge(event)
        self._schedule_persist(entry)

    def _schedule_persist(self, entry: WorkingSetEntry) -> None:
        task = asyncio.create_task(self._persist(entry))
        self._pending_writes.add(task)
        task.add_done_callback(self._pending_writes.discard)

    async def _persist(self, entry: WorkingSetEntry) -> None:
        """Upsert one working-set entry; failures are logged and dropped."""
        try:
            await self.store.upsert(
                identity=entry.identity,
                name=entry.candidate_name,
                transport=entry.transport,
                last_seen=entry.last_seen,
                signal_strength=entry.signal_strength,
                network_address=entry.network_address,
            )
        except Exception:
            logger.exception("Dropping history write for %s", entry.identity)

    async def drain(self) -> None:
        """Wait for every scheduled history write to finish."""
        while self._pending_writes:
            await asyncio.gather(*list(self._pending_writes), return_exceptions=True)

    # --- Radio controls ---

    async def start_radio_scan(self, timeout: float | None = 15.0) -> bool:
        if self.radio is None:
            logger.warning("Radio scan requested but no radio adapter is configured")
            return False
        return await self.radio.start(timeout)

    async def stop_radio_scan(self) -> None:
        if self.radio is not None:
            await self.radio.stop()

    # --- Network controls ---

    async def start_network_browse(self, timeout: float | None = 15.0) -> bool:
        if self.network is None:
            logger.warning("Network browse requested but no network adapter is configured")
            return False
        return await self.network.start(timeout)

    async def stop_network_browse(self) -> None:
        if self.network is not None:
            await self.network.stop()

    async def start_advertising(self, port: int = 0) -> bool:
        if self.network is None:
            logger.warning("Advertising requested but no network adapter is configured")
            return False
        return await self.network.start_advertising(port, name=self.advertise_name)

    async def stop_advertising(self) -> None:
        if self.network is not None:
            await self.network.stop_advertising()

    async def close(self) -> None:
        """Stop every session and flush pending history writes."""
        await self.stop_radio_scan()
        await self.stop_network_browse()
        await self.stop_advertising()
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe.clear()
        await self.drain()
