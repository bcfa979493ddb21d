"""In-memory DeviceStore.

Used for tests and for running without a database file. Every operation
completes without yielding to the event loop, so per-identity
read-modify-write cycles cannot interleave.
"""

import logging
from datetime import datetime

from sightline.registry.models import Device, Transport
from sightline.registry.query import DeviceQuery, SortOrder, sort_devices
from sightline.registry.store import DeviceStore, apply_sighting

logger = logging.getLogger(__name__)


def _copy(device: Device) -> Device:
    return Device(**device.model_dump())


class MemoryDeviceStore(DeviceStore):
    def __init__(self) -> None:
        self._devices: dict[str, Device] = {}

    def __len__(self) -> int:
        return len(self._devices)

    async def upsert(
        self,
        identity: str,
        name: str | None,
        transport: Transport,
        last_seen: datetime,
        signal_strength: int | None = None,
        network_address: str | None = None,
    ) -> None:
        self._devices[identity] = apply_sighting(
            self._devices.get(identity),
            identity,
            name,
            transport,
            last_seen,
            signal_strength,
            network_address,
        )

    async def fetch(
        self,
        query: DeviceQuery | None = None,
        order: SortOrder = SortOrder.last_seen_desc,
        limit: int | None = None,
    ) -> list[Device]:
        matched = [d for d in self._devices.values() if query is None or query.matches(d)]
        result = sort_devices(matched, order)
        if limit is not None:
            result = result[:limit]
        return [_copy(d) for d in result]

    async def get(self, identity: str) -> Device | None:
        device = self._devices.get(identity)
        return _copy(device) if device is not None else None

    async def delete(self, identity: str) -> None:
        if self._devices.pop(identity, None) is not None:
            logger.info("Deleted device %s", identity)

    async def delete_where(self, query: DeviceQuery | None = None) -> list[str]:
        removed = [
            identity
            for identity, device in self._devices.items()
            if query is None or query.matches(device)
        ]
        for identity in removed:
            del self._devices[identity]
        logger.info("Deleted %d device(s)", len(removed))
        return removed
