"""Discovery events and the adapter interfaces both transports implement."""

import asyncio
import enum
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from sightline.exceptions import AdapterUnavailableError
from sightline.registry.models import Transport
from sightline.stream import Subject

logger = logging.getLogger(__name__)


@dataclass
class SightingEvent:
    """A single observation of one device on one transport."""

    identity: str  # radio: hardware address; network: host name or service name
    transport: Transport
    display_name: str | None = None  # may be empty or "unknown"
    signal_strength: int | None = None  # dBm, radio only
    network_address: str | None = None  # network only
    observed_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    attributes: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.identity or not self.identity.strip():
            raise ValueError("identity must be non-empty")


@dataclass(frozen=True)
class LANPeer:
    """A resolved DNS-SD service instance."""

    name: str  # service instance name, e.g. "Office Printer"
    host_name: str | None
    domain: str = "local."
    port: int | None = None
    addresses: tuple[str, ...] = ()

    @property
    def identity(self) -> str:
        return self.host_name or self.name

    def to_sighting(self, observed_at: datetime | None = None) -> SightingEvent:
        attributes: dict[str, Any] = {"service_name": self.name, "domain": self.domain}
        if self.port is not None:
            attributes["port"] = self.port
        if self.addresses:
            attributes["addresses"] = list(self.addresses)
        return SightingEvent(
            identity=self.identity,
            transport=Transport.network,
            display_name=self.name,
            network_address=self.addresses[0] if self.addresses else self.host_name,
            observed_at=observed_at or datetime.now(UTC),
            attributes=attributes,
        )


@dataclass(frozen=True)
class PeerRemoved:
    """A DNS-SD service instance went away."""

    name: str


DiscoveryEvent = SightingEvent | PeerRemoved


class RadioState(enum.StrEnum):
    unknown = "unknown"
    resetting = "resetting"
    unsupported = "unsupported"
    unauthorized = "unauthorized"
    powered_off = "powered_off"
    powered_on = "powered_on"


class BaseAdapter(ABC):
    """Abstract base for a transport's discovery backend.

    Subclasses implement ``_start_discovery`` / ``_stop_discovery`` and
    hand observations to ``_emit``. Session bookkeeping (running flag,
    auto-stop timeout, idempotent stop) lives here.
    """

    transport: Transport

    def __init__(self) -> None:
        self._callbacks: list[Callable[[DiscoveryEvent], None]] = []
        self.running: Subject[bool] = Subject(False)
        self._timeout_task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self.running.value

    def on_event(self, callback: Callable[[DiscoveryEvent], None]) -> None:
        """Register a callback for discovery events."""
        self._callbacks.append(callback)

    def can_start(self) -> bool:
        """Whether the transport's current state allows discovery."""
        return True

    async def start(self, timeout: float | None = None) -> bool:
        """Begin a discovery session; auto-stop after ``timeout`` seconds.

        Returns False when the transport cannot discover right now.
        """
        if not self.can_start():
            logger.info("%s discovery unavailable, not starting", self.transport.name)
            return False
        if self.is_running:
            await self.stop()

        try:
            await self._start_discovery()
        except AdapterUnavailableError as exc:
            logger.warning("%s discovery failed to start: %s", self.transport.name, exc)
            return False

        self.running.send(True)
        if timeout is not None:
            self._timeout_task = asyncio.create_task(self._stop_after(timeout))
        logger.info("%s discovery started (timeout=%s)", self.transport.name, timeout)
        return True

    async def stop(self) -> None:
        """Halt discovery. Safe to call when not running."""
        task, self._timeout_task = self._timeout_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
        if not self.is_running:
            return
        try:
            await self._stop_discovery()
        finally:
            self.running.send(False)
            logger.info("%s discovery stopped", self.transport.name)

    async def _stop_after(self, timeout: float) -> None:
        await asyncio.sleep(timeout)
        logger.debug("%s discovery timed out after %ss", self.transport.name, timeout)
        await self.stop()

    def _emit(self, event: DiscoveryEvent) -> None:
        for cb in self._callbacks:
            try:
                cb(event)
            except Exception:
                logger.exception("Discovery callback failed for %r", event)

    @abstractmethod
    async def _start_discovery(self) -> None:
        """Start the platform scan/browse. Raise AdapterUnavailableError on failure."""

    @abstractmethod
    async def _stop_discovery(self) -> None:
        """Stop the platform scan/browse."""


class RadioAdapter(BaseAdapter):
    """Short-range radio scanner with a power/availability state."""

    transport = Transport.radio

    # States in which a scan must not be attempted
    BLOCKING_STATES = frozenset(
        {
            RadioState.resetting,
            RadioState.unsupported,
            RadioState.unauthorized,
            RadioState.powered_off,
        }
    )

    def __init__(self) -> None:
        super().__init__()
        self.state: Subject[RadioState] = Subject(RadioState.unknown)

    def can_start(self) -> bool:
        return self.state.value not in self.BLOCKING_STATES

    async def update_state(self, state: RadioState) -> None:
        """Record a new radio state; leaving powered_on ends the active scan."""
        if state == self.state.value:
            return
        logger.info("Radio state: %s -> %s", self.state.value, state)
        self.state.send(state)
        if state != RadioState.powered_on and self.is_running:
            await self.stop()


class NetworkAdapter(BaseAdapter):
    """Local-network service browser that can also advertise this host.

    Discovery is two-stage: a found service is resolved (bounded by
    ``resolve_timeout``) before it is emitted as a sighting. Pending
    resolutions are tracked per service name so a removal, or stopping
    the session, discards them.
    """

    transport = Transport.network

    def __init__(self, resolve_timeout: float = 5.0) -> None:
        super().__init__()
        self.resolve_timeout = resolve_timeout
        self.status: Subject[str] = Subject("Idle")
        self.advertising: Subject[bool] = Subject(False)
        self._resolving: dict[str, asyncio.Task[None]] = {}

    @property
    def pending_resolutions(self) -> int:
        return len(self._resolving)

    async def start(self, timeout: float | None = None) -> bool:
        started = await super().start(timeout)
        if started:
            self.status.send("Browsing...")
        return started

    async def stop(self) -> None:
        was_running = self.is_running
        await super().stop()
        self._cancel_resolutions()
        if was_running:
            self.status.send(self._idle_status())

    def _idle_status(self) -> str:
        return "Advertising" if self.advertising.value else "Idle"

    def _track_resolution(self, name: str, coro: Coroutine[Any, Any, None]) -> None:
        """Run a resolution for service ``name``, replacing any pending one."""
        previous = self._resolving.pop(name, None)
        if previous is not None:
            previous.cancel()
        task = asyncio.create_task(coro)
        self._resolving[name] = task

        def _done(t: asyncio.Task[None]) -> None:
            if self._resolving.get(name) is t:
                del self._resolving[name]
            if not t.cancelled() and t.exception() is not None:
                logger.warning("Resolving %s failed: %s", name, t.exception())

        task.add_done_callback(_done)

    def _cancel_resolutions(self) -> None:
        for task in self._resolving.values():
            task.cancel()
        self._resolving.clear()

    def _peer_resolved(self, peer: LANPeer) -> None:
        if not self.is_running:
            return
        logger.debug("Resolved %s -> %s:%s", peer.name, peer.host_name, peer.port)
        self._emit(peer.to_sighting())

    def _peer_removed(self, name: str) -> None:
        pending = self._resolving.pop(name, None)
        if pending is not None:
            pending.cancel()
        logger.debug("Service removed: %s", name)
        self._emit(PeerRemoved(name=name))

    async def _browse_failed(self, reason: str) -> None:
        """End the session after the browser itself failed; status shows why."""
        logger.warning("Network browse failed: %s", reason)
        current = asyncio.current_task()
        self._resolving = {n: t for n, t in self._resolving.items() if t is not current}
        await self.stop()
        self.status.send(f"Browse error: {reason}")

    @abstractmethod
    async def start_advertising(self, port: int = 0, name: str | None = None) -> bool:
        """Publish this host as a service instance named ``name``."""

    @abstractmethod
    async def stop_advertising(self) -> None:
        """Withdraw the published service instance."""
