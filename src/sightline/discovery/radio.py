"""BLE advertisement scanner using bleak.

Every received advertisement becomes a SightingEvent keyed by the
device's hardware address (a stable per-host UUID on macOS).
"""

import logging
from datetime import UTC, datetime
from typing import Any

from bleak import BleakScanner
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData
from bleak.exc import BleakError

from sightline.discovery.base import RadioAdapter, RadioState, SightingEvent
from sightline.exceptions import AdapterUnavailableError
from sightline.registry.models import Transport

logger = logging.getLogger(__name__)


def state_for_error(exc: Exception) -> RadioState:
    """Map a scanner start failure onto the radio state it implies."""
    message = str(exc).lower()
    if "not authorized" in message or "denied" in message or "permission" in message:
        return RadioState.unauthorized
    if "no bluetooth adapter" in message or "not supported" in message:
        return RadioState.unsupported
    return RadioState.powered_off


def advertisement_attributes(adv: AdvertisementData) -> dict[str, Any]:
    """Flatten advertisement payloads into JSON-friendly attributes."""
    attributes: dict[str, Any] = {}
    if adv.local_name:
        attributes["local_name"] = adv.local_name
    if adv.service_uuids:
        attributes["service_uuids"] = sorted(adv.service_uuids)
    if adv.manufacturer_data:
        attributes["manufacturer_data"] = {
            f"0x{company:04X}": payload.hex() for company, payload in adv.manufacturer_data.items()
        }
    if adv.service_data:
        attributes["service_data"] = sorted(adv.service_data)
    if adv.tx_power is not None:
        attributes["tx_power"] = adv.tx_power
    return attributes


class BleakRadioAdapter(RadioAdapter):
    """Passive BLE scan via the platform Bluetooth stack."""

    def __init__(self) -> None:
        super().__init__()
        self._scanner: BleakScanner | None = None

    def can_start(self) -> bool:
        # States here are inferred from failed starts; bleak reports no power
        # changes, so only another start attempt can observe recovery.
        return True

    async def _start_discovery(self) -> None:
        scanner = BleakScanner(detection_callback=self._on_detection)
        try:
            await scanner.start()
        except (BleakError, OSError) as exc:
            await self.update_state(state_for_error(exc))
            raise AdapterUnavailableError(str(exc), transport="radio") from exc
        self._scanner = scanner
        await self.update_state(RadioState.powered_on)

    async def _stop_discovery(self) -> None:
        scanner, self._scanner = self._scanner, None
        if scanner is None:
            return
        try:
            await scanner.stop()
        except (BleakError, OSError):
            logger.warning("Error stopping BLE scanner", exc_info=True)

    def _on_detection(self, device: BLEDevice, adv: AdvertisementData) -> None:
        if not self.is_running:
            return
        self._emit(
            SightingEvent(
                identity=device.address.upper(),
                transport=Transport.radio,
                display_name=adv.local_name or device.name,
                signal_strength=adv.rssi,
                observed_at=datetime.now(UTC),
                attributes=advertisement_attributes(adv),
            )
        )
