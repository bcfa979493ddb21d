"""Per-transport working sets of currently observed devices.

A reconciler folds a stream of SightingEvents into one entry per
identity and publishes a fresh snapshot after every change. All
mutations happen on the event loop in arrival order, so the snapshot
published after event N reflects events 1..N.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Any

from sightline.discovery.base import SightingEvent
from sightline.reconcile.policy import clean_name, resolve_name
from sightline.registry.models import Transport
from sightline.stream import Subject

logger = logging.getLogger(__name__)

UNNAMED = "Unnamed device"


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class WorkingSetEntry:
    identity: str
    transport: Transport
    name: str | None
    last_seen: datetime
    signal_strength: int | None = None
    network_address: str | None = None
    attributes: dict[str, Any] = field(default_factory=dict)

    @property
    def label(self) -> str:
        return self.name or UNNAMED

    @property
    def candidate_name(self) -> str | None:
        """Name to persist: advertised local name first, then the reported name."""
        return clean_name(self.attributes.get("local_name")) or clean_name(self.name)


class Reconciler:
    """Deduplicating working set for one transport."""

    transport: Transport

    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        self._clock = clock
        self._entries: list[WorkingSetEntry] = []
        self.entries: Subject[list[WorkingSetEntry]] = Subject([])

    def __len__(self) -> int:
        return len(self._entries)

    def find(self, identity: str) -> WorkingSetEntry | None:
        for entry in self._entries:
            if entry.identity == identity:
                return entry
        return None

    def merge(self, event: SightingEvent) -> WorkingSetEntry:
        """Fold ``event`` into the working set and publish the result.

        Returns a copy of the merged entry.
        """
        if event.transport != self.transport:
            raise ValueError(
                f"{self.transport.name} reconciler got a {event.transport.name} sighting"
            )

        now = self._clock()
        entry = self.find(event.identity)
        if entry is None:
            entry = WorkingSetEntry(
                identity=event.identity,
                transport=event.transport,
                name=clean_name(event.display_name),
                last_seen=now,
                signal_strength=event.signal_strength,
                network_address=event.network_address,
                attributes=dict(event.attributes),
            )
            self._entries.append(entry)
            logger.debug("New %s device %s", self.transport.name, event.identity)
        else:
            entry.name = resolve_name(event.display_name, entry.name)
            entry.last_seen = now
            if event.signal_strength is not None:
                entry.signal_strength = event.signal_strength
            if event.network_address is not None:
                entry.network_address = event.network_address
            entry.attributes.update(event.attributes)

        self._reorder()
        self._publish()
        return replace(entry, attributes=dict(entry.attributes))

    def remove(self, identity: str) -> bool:
        before = len(self._entries)
        self._entries = [e for e in self._entries if e.identity != identity]
        if len(self._entries) == before:
            return False
        self._publish()
        return True

    def reset(self) -> None:
        """Drop every entry (new session or session end)."""
        self._entries = []
        self._publish()

    def _reorder(self) -> None:
        pass

    def _publish(self) -> None:
        self.entries.send([replace(e, attributes=dict(e.attributes)) for e in self._entries])


class RadioReconciler(Reconciler):
    """Strongest signal first; equal signals by name, case-insensitively."""

    transport = Transport.radio

    def _reorder(self) -> None:
        self._entries.sort(
            key=lambda e: (
                -(e.signal_strength if e.signal_strength is not None else -1000),
                e.label.casefold(),
            )
        )


class NetworkReconciler(Reconciler):
    """Peers stay in the order their resolution completed."""

    transport = Transport.network

    def remove_named(self, service_name: str) -> list[str]:
        """Remove every entry advertised under ``service_name``; return their identities."""
        removed = [
            e.identity
            for e in self._entries
            if e.attributes.get("service_name", e.name) == service_name
        ]
        if removed:
            self._entries = [e for e in self._entries if e.identity not in removed]
            self._publish()
        return removed
