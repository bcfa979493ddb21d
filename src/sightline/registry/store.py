"""Device record upsert, queries and deletion.

The module-level functions operate on a SQLModel session. ``DeviceStore``
is the backend-neutral async interface the rest of the application uses;
``SqlDeviceStore`` implements it on top of those functions, and
``sightline.registry.memory.MemoryDeviceStore`` is the in-memory twin.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from functools import partial
from typing import Any, TypeVar

from sqlalchemy import String, func
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, or_, select
from sqlmodel.sql.expression import SelectOfScalar

from sightline.exceptions import StoreError
from sightline.reconcile.policy import resolve_name
from sightline.registry.locks import KeyedLock
from sightline.registry.models import NO_SIGNAL, Device, Transport
from sightline.registry.query import DeviceQuery, SortOrder

logger = logging.getLogger(__name__)

R = TypeVar("R")


def apply_sighting(
    device: Device | None,
    identity: str,
    name: str | None,
    transport: Transport,
    last_seen: datetime,
    signal_strength: int | None = None,
    network_address: str | None = None,
) -> Device:
    """Create a Device or fold a sighting into an existing one.

    Transport is fixed when the record is created. The name goes through
    ``resolve_name`` so a placeholder never replaces a known name;
    ``last_seen`` always moves to the given time; signal and address
    only change when a value is provided.
    """
    if device is None:
        return Device(
            identity=identity,
            name=resolve_name(name, None),
            transport=transport,
            last_seen=last_seen,
            signal_strength=signal_strength if signal_strength is not None else NO_SIGNAL,
            network_address=network_address,
        )

    if device.transport != transport:
        logger.warning(
            "Ignoring transport change for %s: stored %s, sighted %s",
            identity,
            device.transport.name,
            transport.name,
        )
    device.name = resolve_name(name, device.name)
    device.last_seen = last_seen
    if signal_strength is not None:
        device.signal_strength = signal_strength
    if network_address is not None:
        device.network_address = network_address
    return device


def upsert_device(
    session: Session,
    identity: str,
    name: str | None,
    transport: Transport,
    last_seen: datetime,
    signal_strength: int | None = None,
    network_address: str | None = None,
) -> Device:
    """Create or update the Device stored under ``identity``."""
    existing = session.get(Device, identity)
    device = apply_sighting(
        existing, identity, name, transport, last_seen, signal_strength, network_address
    )
    if existing is None:
        session.add(device)
    session.commit()
    session.refresh(device)
    return device


def _folded(column: Any) -> Any:
    # casefold() is registered on each SQLite connection in sightline.database
    return func.casefold(col(column), type_=String)


def _filtered(stmt: SelectOfScalar[Device], query: DeviceQuery | None) -> SelectOfScalar[Device]:
    if query is None:
        return stmt
    if query.transport is not None:
        stmt = stmt.where(col(Device.transport) == query.transport)
    needle = query.search_text
    if needle is not None:
        needle = needle.casefold()
        stmt = stmt.where(
            or_(
                _folded(Device.name).contains(needle, autoescape=True),
                _folded(Device.identity).contains(needle, autoescape=True),
                _folded(Device.network_address).contains(needle, autoescape=True),
            )
        )
    if query.seen_after is not None:
        stmt = stmt.where(col(Device.last_seen) >= query.seen_after)
    if query.seen_before is not None:
        stmt = stmt.where(col(Device.last_seen) <= query.seen_before)
    return stmt


def _ordered(stmt: SelectOfScalar[Device], order: SortOrder) -> SelectOfScalar[Device]:
    if order == SortOrder.last_seen_desc:
        return stmt.order_by(col(Device.last_seen).desc().nulls_last())
    if order == SortOrder.last_seen_asc:
        return stmt.order_by(col(Device.last_seen).asc().nulls_last())
    if order == SortOrder.name_asc:
        return stmt.order_by(_folded(Device.name).asc().nulls_last())
    return stmt.order_by(col(Device.signal_strength).desc())


def get_devices(
    session: Session,
    query: DeviceQuery | None = None,
    order: SortOrder = SortOrder.last_seen_desc,
    limit: int | None = None,
) -> list[Device]:
    """Get devices matching ``query``, sorted, optionally capped."""
    stmt = _ordered(_filtered(select(Device), query), order)
    if limit is not None:
        stmt = stmt.limit(limit)
    return list(session.exec(stmt).all())


def get_device(session: Session, identity: str) -> Device | None:
    """Get a single device by identity."""
    return session.get(Device, identity)


def delete_device(session: Session, identity: str) -> bool:
    """Delete a device. Return True if deleted, False if it was absent."""
    device = session.get(Device, identity)
    if device is None:
        return False
    session.delete(device)
    session.commit()
    return True


def delete_devices(session: Session, query: DeviceQuery | None = None) -> list[str]:
    """Delete every device matching ``query`` in one commit; return their identities."""
    devices = list(session.exec(_filtered(select(Device), query)).all())
    for device in devices:
        session.delete(device)
    session.commit()
    return [d.identity for d in devices]


class DeviceStore(ABC):
    """Async device history repository keyed by identity.

    Upserts for the same identity are applied one at a time
    (read, resolve, write); upserts for different identities may overlap.
    Backend failures surface as ``StoreError``.
    """

    @abstractmethod
    async def upsert(
        self,
        identity: str,
        name: str | None,
        transport: Transport,
        last_seen: datetime,
        signal_strength: int | None = None,
        network_address: str | None = None,
    ) -> None:
        """Create or refresh the record for ``identity``."""

    @abstractmethod
    async def fetch(
        self,
        query: DeviceQuery | None = None,
        order: SortOrder = SortOrder.last_seen_desc,
        limit: int | None = None,
    ) -> list[Device]:
        """Return matching records; no query returns everything."""

    @abstractmethod
    async def get(self, identity: str) -> Device | None:
        """Return one record or None."""

    @abstractmethod
    async def delete(self, identity: str) -> None:
        """Remove one record; absent identities are ignored."""

    @abstractmethod
    async def delete_where(self, query: DeviceQuery | None = None) -> list[str]:
        """Remove all matching records and return their identities."""

    def close(self) -> None:
        """Release backend resources."""


class SqlDeviceStore(DeviceStore):
    """DeviceStore over a SQLAlchemy engine.

    Sessions run on a small private thread pool so the event loop never
    blocks on disk I/O; with the default single worker that thread owns
    every write. A per-identity lock keeps read-modify-write cycles for
    one identity in sequence whatever the pool size.
    """

    def __init__(self, engine: Engine, max_workers: int = 1) -> None:
        self.engine = engine
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="sightline-store"
        )
        self._locks = KeyedLock()

    def _in_session(self, fn: Callable[..., R], *args: Any) -> R:
        with Session(self.engine, expire_on_commit=False) as session:
            return fn(session, *args)

    async def _run(self, operation: str, fn: Callable[..., R], *args: Any) -> R:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(self._executor, partial(self._in_session, fn, *args))
        except SQLAlchemyError as exc:
            raise StoreError(f"{operation} failed: {exc}", operation=operation) from exc

    async def upsert(
        self,
        identity: str,
        name: str | None,
        transport: Transport,
        last_seen: datetime,
        signal_strength: int | None = None,
        network_address: str | None = None,
    ) -> None:
        async with self._locks.hold(identity):
            await self._run(
                "upsert",
                upsert_device,
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
        return await self._run("fetch", get_devices, query, order, limit)

    async def get(self, identity: str) -> Device | None:
        return await self._run("get", get_device, identity)

    async def delete(self, identity: str) -> None:
        async with self._locks.hold(identity):
            deleted = await self._run("delete", delete_device, identity)
        if deleted:
            logger.info("Deleted device %s", identity)

    async def delete_where(self, query: DeviceQuery | None = None) -> list[str]:
        removed = await self._run("delete_where", delete_devices, query)
        logger.info("Deleted %d device(s)", len(removed))
        return removed

    def close(self) -> None:
        self._executor.shutdown(wait=True)
