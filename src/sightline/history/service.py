"""Live, filtered view over the device history store.

Four independent filter inputs drive one query. Free-text edits are
debounced; transport and date changes re-query on the next loop tick,
so several changes made together cost a single query. Only the newest
query may publish: results of superseded queries are dropped.
"""

import asyncio
import enum
import logging
from datetime import datetime

from sightline.registry.models import Device, Transport
from sightline.registry.query import DeviceQuery, SortOrder
from sightline.registry.store import DeviceStore
from sightline.stream import Subject

logger = logging.getLogger(__name__)


class HistoryFilter(enum.StrEnum):
    all = "all"
    radio = "radio"
    network = "network"

    @property
    def transport(self) -> Transport | None:
        if self == HistoryFilter.radio:
            return Transport.radio
        if self == HistoryFilter.network:
            return Transport.network
        return None


def build_history_query(
    search_text: str = "",
    transport_filter: HistoryFilter = HistoryFilter.all,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
) -> DeviceQuery:
    """Combine the filter inputs into one conjunctive query."""
    return DeviceQuery(
        transport=transport_filter.transport,
        text=search_text.strip() or None,
        seen_after=date_from,
        seen_before=date_to,
    )


class HistoryQueryService:
    def __init__(self, store: DeviceStore, debounce: float = 0.25) -> None:
        self.store = store
        self.debounce = debounce
        self.items: Subject[list[Device]] = Subject([])

        self._search_text = ""
        self._transport_filter = HistoryFilter.all
        self._date_from: datetime | None = None
        self._date_to: datetime | None = None

        self._generation = 0
        self._debounce_handle: asyncio.TimerHandle | None = None
        self._tick_handle: asyncio.Handle | None = None
        self._tasks: set[asyncio.Task[list[Device]]] = set()

    # --- Filter inputs ---

    @property
    def search_text(self) -> str:
        return self._search_text

    @search_text.setter
    def search_text(self, value: str) -> None:
        if value == self._search_text:
            return
        self._search_text = value
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
        loop = asyncio.get_running_loop()
        self._debounce_handle = loop.call_later(self.debounce, self._debounce_fired)

    @property
    def transport_filter(self) -> HistoryFilter:
        return self._transport_filter

    @transport_filter.setter
    def transport_filter(self, value: HistoryFilter) -> None:
        value = HistoryFilter(value)
        if value == self._transport_filter:
            return
        self._transport_filter = value
        self._schedule_next_tick()

    @property
    def date_from(self) -> datetime | None:
        return self._date_from

    @date_from.setter
    def date_from(self, value: datetime | None) -> None:
        if value == self._date_from:
            return
        self._date_from = value
        self._schedule_next_tick()

    @property
    def date_to(self) -> datetime | None:
        return self._date_to

    @date_to.setter
    def date_to(self, value: datetime | None) -> None:
        if value == self._date_to:
            return
        self._date_to = value
        self._schedule_next_tick()

    async def apply_filters(
        self,
        search_text: str = "",
        transport_filter: HistoryFilter = HistoryFilter.all,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
    ) -> list[Device]:
        """Replace all four filters at once and run one query for them.

        Pending debounced or next-tick reloads are cancelled; reloads
        already in flight are superseded by this one.
        """
        self._cancel_scheduled()
        self._search_text = search_text
        self._transport_filter = HistoryFilter(transport_filter)
        self._date_from = date_from
        self._date_to = date_to
        return await self.reload()

    def current_query(self) -> DeviceQuery:
        return build_history_query(
            self._search_text, self._transport_filter, self._date_from, self._date_to
        )

    # --- Scheduling ---

    def _schedule_next_tick(self) -> None:
        if self._tick_handle is not None:
            return
        self._tick_handle = asyncio.get_running_loop().call_soon(self._tick_fired)

    def _tick_fired(self) -> None:
        self._tick_handle = None
        self._spawn_reload()

    def _debounce_fired(self) -> None:
        self._debounce_handle = None
        self._spawn_reload()

    def _spawn_reload(self) -> None:
        task = asyncio.create_task(self.reload())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def settle(self) -> None:
        """Wait until no scheduled or running reload remains."""
        while self._tick_handle or self._debounce_handle or self._tasks:
            if self._tasks:
                await asyncio.gather(*list(self._tasks), return_exceptions=True)
            else:
                await asyncio.sleep(self.debounce if self._debounce_handle else 0)

    # --- Queries ---

    async def reload(self) -> list[Device]:
        """Re-query with the latest filters and publish the result.

        A failed query publishes an empty list. If a newer reload started
        while this one was waiting, its result is discarded.
        """
        self._generation += 1
        generation = self._generation
        query = self.current_query()
        try:
            result = await self.store.fetch(query, SortOrder.last_seen_desc)
        except Exception:
            logger.exception("History query failed")
            result = []
        if generation != self._generation:
            logger.debug("Discarding superseded history result")
            return self.items.value
        self.items.send(result)
        return result

    async def delete(self, item: Device | str) -> None:
        identity = item if isinstance(item, str) else item.identity
        try:
            await self.store.delete(identity)
        except Exception:
            logger.exception("Failed to delete %s from history", identity)
        await self.reload()

    async def delete_all(self, transport_filter: HistoryFilter | None = None) -> list[str]:
        """Delete every record of one transport, or everything for all/None."""
        transport = transport_filter.transport if transport_filter is not None else None
        removed: list[str] = []
        try:
            removed = await self.store.delete_where(DeviceQuery(transport=transport))
        except Exception:
            logger.exception("Failed to clear history (%s)", transport_filter)
        await self.reload()
        return removed

    def _cancel_scheduled(self) -> None:
        for handle in (self._debounce_handle, self._tick_handle):
            if handle is not None:
                handle.cancel()
        self._debounce_handle = None
        self._tick_handle = None

    def close(self) -> None:
        self._cancel_scheduled()
        for task in self._tasks:
            task.cancel()
