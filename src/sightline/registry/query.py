"""Device filter predicate and sort orders."""

import enum
from dataclasses import dataclass
from datetime import UTC, datetime

from sightline.registry.models import Device, Transport


class SortOrder(enum.StrEnum):
    last_seen_desc = "last_seen_desc"
    last_seen_asc = "last_seen_asc"
    name_asc = "name_asc"
    signal_desc = "signal_desc"


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    return value.replace(tzinfo=UTC) if value.tzinfo is None else value.astimezone(UTC)


@dataclass(frozen=True)
class DeviceQuery:
    """Conjunctive filter over device records.

    Every clause that is set must hold. ``text`` is a case-insensitive
    substring match against name, identity or network address; blank
    text adds no clause.
    """

    transport: Transport | None = None
    text: str | None = None
    seen_after: datetime | None = None  # inclusive
    seen_before: datetime | None = None  # inclusive

    @property
    def search_text(self) -> str | None:
        if self.text is None:
            return None
        return self.text.strip() or None

    @property
    def is_empty(self) -> bool:
        return (
            self.transport is None
            and self.search_text is None
            and self.seen_after is None
            and self.seen_before is None
        )

    def matches(self, device: Device) -> bool:
        if self.transport is not None and device.transport != self.transport:
            return False

        needle = self.search_text
        if needle is not None:
            needle = needle.casefold()
            haystacks = (device.name, device.identity, device.network_address)
            if not any(h is not None and needle in h.casefold() for h in haystacks):
                return False

        if self.seen_after is not None or self.seen_before is not None:
            if device.last_seen is None:
                return False
            seen = as_utc(device.last_seen)
            if self.seen_after is not None and seen < as_utc(self.seen_after):
                return False
            if self.seen_before is not None and seen > as_utc(self.seen_before):
                return False

        return True


def sort_devices(devices: list[Device], order: SortOrder) -> list[Device]:
    """Sort in Python the same way the SQL backend orders rows (nulls last)."""
    if order in (SortOrder.last_seen_desc, SortOrder.last_seen_asc):
        seen = [d for d in devices if d.last_seen is not None]
        unseen = [d for d in devices if d.last_seen is None]
        seen.sort(
            key=lambda d: as_utc(d.last_seen),  # type: ignore[arg-type]
            reverse=order == SortOrder.last_seen_desc,
        )
        return seen + unseen
    if order == SortOrder.name_asc:
        named = [d for d in devices if d.name]
        named.sort(key=lambda d: d.name.casefold())  # type: ignore[union-attr]
        return named + [d for d in devices if not d.name]
    return sorted(devices, key=lambda d: d.signal_strength, reverse=True)
