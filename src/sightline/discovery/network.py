"""DNS-SD (mDNS) service browser and advertiser using zeroconf.

Browses one service type on the local link. A found service is resolved
to host, port and addresses before it is reported; a removed service is
reported by instance name.
"""

import asyncio
import logging
import socket

from zeroconf import NotRunningException, ServiceStateChange, Zeroconf
from zeroconf.asyncio import AsyncServiceBrowser, AsyncServiceInfo, AsyncZeroconf

from sightline.discovery.base import LANPeer, NetworkAdapter
from sightline.exceptions import AdapterUnavailableError

logger = logging.getLogger(__name__)


def instance_name(full_name: str, service_type: str) -> str:
    """Strip the service type suffix: "Printer._ipp._tcp.local." -> "Printer"."""
    suffix = "." + service_type
    if full_name.endswith(suffix):
        return full_name[: -len(suffix)]
    return full_name


def _local_address() -> str:
    try:
        return socket.gethostbyname(socket.gethostname())
    except OSError:
        return "127.0.0.1"


class ZeroconfNetworkAdapter(NetworkAdapter):
    def __init__(self, service_type: str, resolve_timeout: float = 5.0) -> None:
        super().__init__(resolve_timeout=resolve_timeout)
        self.service_type = service_type
        self._zeroconf: AsyncZeroconf | None = None
        self._browser: AsyncServiceBrowser | None = None
        self._advertised: AsyncServiceInfo | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    def _ensure_zeroconf(self) -> AsyncZeroconf:
        if self._zeroconf is None:
            try:
                self._zeroconf = AsyncZeroconf()
            except OSError as exc:
                raise AdapterUnavailableError(str(exc), transport="network") from exc
        return self._zeroconf

    async def _release_zeroconf(self) -> None:
        if self._zeroconf is not None and self._browser is None and self._advertised is None:
            zc, self._zeroconf = self._zeroconf, None
            await zc.async_close()

    async def _start_discovery(self) -> None:
        self._loop = asyncio.get_running_loop()
        zc = self._ensure_zeroconf()
        try:
            self._browser = AsyncServiceBrowser(
                zc.zeroconf,
                self.service_type,
                handlers=[self._on_service_state_change],
            )
        except Exception as exc:
            self.status.send(f"Browse error: {exc}")
            await self._release_zeroconf()
            raise AdapterUnavailableError(str(exc), transport="network") from exc
        logger.info("Browsing for %s", self.service_type)

    async def _stop_discovery(self) -> None:
        browser, self._browser = self._browser, None
        if browser is not None:
            await browser.async_cancel()
        await self._release_zeroconf()

    def _on_service_state_change(
        self,
        zeroconf: Zeroconf,
        service_type: str,
        name: str,
        state_change: ServiceStateChange,
    ) -> None:
        """Browser handler; may run off the event loop thread."""
        if self._loop is None:
            return
        if state_change in (ServiceStateChange.Added, ServiceStateChange.Updated):
            self._loop.call_soon_threadsafe(self._service_found, service_type, name)
        elif state_change == ServiceStateChange.Removed:
            self._loop.call_soon_threadsafe(self._peer_removed, instance_name(name, service_type))

    def _service_found(self, service_type: str, name: str) -> None:
        if not self.is_running:
            return
        self._track_resolution(
            instance_name(name, service_type), self._resolve(service_type, name)
        )

    async def _resolve(self, service_type: str, name: str) -> None:
        if self._zeroconf is None:
            return
        info = AsyncServiceInfo(service_type, name)
        try:
            resolved = await info.async_request(
                self._zeroconf.zeroconf, timeout=int(self.resolve_timeout * 1000)
            )
        except (NotRunningException, OSError) as exc:
            await self._browse_failed(str(exc) or type(exc).__name__)
            return
        if not resolved:
            logger.debug("Could not resolve %s within %ss", name, self.resolve_timeout)
            return
        self._peer_resolved(
            LANPeer(
                name=instance_name(name, service_type),
                host_name=info.server,
                domain="local.",
                port=info.port or None,
                addresses=tuple(info.parsed_addresses()),
            )
        )

    async def start_advertising(self, port: int = 0, name: str | None = None) -> bool:
        await self.stop_advertising()
        instance = name or socket.gethostname()
        try:
            zc = self._ensure_zeroconf()
            info = AsyncServiceInfo(
                self.service_type,
                f"{instance}.{self.service_type}",
                port=port,
                parsed_addresses=[_local_address()],
                server=f"{socket.gethostname()}.local.",
            )
            self.status.send("Publishing...")
            # The first await queues the announcement, the second waits for it
            await (await zc.async_register_service(info, allow_name_change=True))
        except Exception as exc:
            logger.warning("Advertising %s failed: %s", instance, exc)
            self.status.send(f"Advertise error: {exc}")
            self.advertising.send(False)
            await self._release_zeroconf()
            return False
        self._advertised = info
        self.advertising.send(True)
        self.status.send(f"Advertising as {instance}")
        return True

    async def stop_advertising(self) -> None:
        info, self._advertised = self._advertised, None
        if info is None:
            return
        if self._zeroconf is not None:
            await (await self._zeroconf.async_unregister_service(info))
        self.advertising.send(False)
        self.status.send("Browsing..." if self.is_running else "Idle")
        await self._release_zeroconf()
