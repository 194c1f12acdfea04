"""Async history service: visits in, ranked links and change events out."""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import Any

from frecent_links.exceptions import InvalidInputError, NotFoundError
from frecent_links.history.clock import VisitClock
from frecent_links.history.frecency import FrecencyEngine
from frecent_links.history.index import LinkIndex
from frecent_links.history.models import (
    PROVISIONAL_FRECENCY,
    LinkEntry,
    coerce_visit_inputs,
)
from frecent_links.history.notifier import (
    CLEAR_HISTORY,
    DELETE_URI,
    LINK_CHANGED,
    MANY_LINKS_CHANGED,
    ChangeNotifier,
    Handler,
)
from frecent_links.history.store import StoredBatch, VisitStore

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = os.environ.get("FRECENT_LINKS_DB_PATH", ":memory:")
DEFAULT_TOP_SITES = int(os.environ.get("FRECENT_LINKS_TOP_SITES", "100"))

IDLE_DAILY_TOPIC = "idle-daily"

Event = tuple[str, Any]  # (name, data) awaiting delivery


class HistoryService:
    """Owns the visit store, the frecency engine and the top sites index.

    Mutations are serialized on an ``asyncio.Lock`` and the store is driven
    from a worker thread. When a mutation returns, the store, the affected
    frecencies and the index all reflect it, and its events have been
    delivered. Events go out after the lock is released, so a handler may
    await the service, mutations included.

    Args:
        db_path: SQLite database path. Defaults to ``FRECENT_LINKS_DB_PATH``
            or an in-memory database.
        top_sites: Index capacity. Defaults to ``FRECENT_LINKS_TOP_SITES``.
        clock: Time source for default visit times and frecency aging.
    """

    def __init__(
        self,
        db_path: str | Path | None = None,
        top_sites: int | None = None,
        clock: VisitClock | None = None,
    ):
        self.clock = clock or VisitClock()
        self._store = VisitStore(db_path or DEFAULT_DB_PATH)
        self._engine = FrecencyEngine(self.clock)
        self._index = LinkIndex(capacity=top_sites or DEFAULT_TOP_SITES)
        self._notifier = ChangeNotifier()
        self._lock = asyncio.Lock()
        self._index.load(self._store.top_sites(self._index.capacity))

    # ------------------------------------------------------------------
    # Lifecycle and subscriptions
    # ------------------------------------------------------------------

    @property
    def initialized(self) -> bool:
        return self._notifier.attached

    def init(self) -> None:
        if self._notifier.attached:
            return
        self._notifier.attach()
        logger.info("History provider initialized")

    def uninit(self) -> None:
        if not self._notifier.attached:
            return
        self._notifier.detach()
        logger.info("History provider uninitialized")

    def on(self, event: str, handler: Handler) -> None:
        self._notifier.on(event, handler)

    def off(self, event: str, handler: Handler) -> None:
        self._notifier.off(event, handler)

    def close(self) -> None:
        self.uninit()
        self._store.close()

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def add_visits(self, places: Any) -> int:
        """Record visits and return how many were added.

        ``places`` is a url string, a ``VisitInput``, a mapping, or a list of
        those. Each new page fires ``linkChanged`` three times: on insertion
        with provisional frecency, after its frecency is computed, and when
        its title settles. The visits and the derived frecency and title are
        committed together before any event is delivered.

        Raises:
            InvalidInputError: A url is ineligible or an input is malformed.
            StoreError: The store failed; nothing was added.
        """
        inputs = coerce_visit_inputs(places, self.clock.next_visit_time)
        pending: list[Event] = []
        async with self._lock:
            batch = await asyncio.to_thread(
                self._store.add_visits, inputs, self._engine.recompute
            )
            await self._settle_batch(batch, pending)
        await self._deliver(pending)
        return batch.count

    async def _settle_batch(self, batch: StoredBatch, pending: list[Event]) -> None:
        for url in batch.urls:
            if url in batch.created:
                provisional = LinkEntry(
                    url=url,
                    title="",
                    frecency=PROVISIONAL_FRECENCY,
                    last_visit_time=batch.records[url].last_visit_time,
                )
                await self._link_changed(provisional, pending)

        for url in batch.urls:
            record = batch.records[url]
            scored = LinkEntry(
                url=url,
                title=batch.previous_titles[url],
                frecency=record.frecency,
                last_visit_time=record.last_visit_time,
            )
            await self._link_changed(scored, pending)

        for url in batch.urls:
            record = batch.records[url]
            if url in batch.created or record.title != batch.previous_titles[url]:
                await self._link_changed(record.to_entry(), pending)

    async def import_visits(self, places: Any) -> int:
        """Bulk-add visits, announcing them with one ``manyLinksChanged``."""
        inputs = coerce_visit_inputs(places, self.clock.next_visit_time)
        async with self._lock:
            batch = await asyncio.to_thread(
                self._store.add_visits, inputs, self._engine.recompute
            )
            await self._reload_index()
        logger.info("Imported %d visits across %d pages", batch.count, len(batch.urls))
        await self._deliver([(MANY_LINKS_CHANGED, None)])
        return batch.count

    async def remove(self, url: str) -> None:
        """Delete a page. Removing an unknown url is a no-op."""
        async with self._lock:
            try:
                await asyncio.to_thread(self._store.remove, url)
            except NotFoundError:
                logger.debug("Nothing to remove for %s", url)
                return
            if self._index.discard(url):
                await self._reload_index()
        await self._deliver([(DELETE_URI, url)])

    async def clear(self) -> None:
        """Delete all history. ``clearHistory`` fires once the index is empty."""
        async with self._lock:
            await asyncio.to_thread(self._store.clear)
            self._index.reset()
        logger.info("History cleared")
        await self._deliver([(CLEAR_HISTORY, None)])

    async def expire(self, older_than: int) -> int:
        """Drop visits older than ``older_than`` (microseconds since the epoch).

        Pages left without visits are deleted and fire ``deleteURI``. If any
        surviving page's frecency changed, ``manyLinksChanged`` fires once.

        Returns:
            The number of visits removed.
        """
        async with self._lock:
            expiration = await asyncio.to_thread(
                self._store.expire, older_than, self._engine.recompute
            )
            if expiration.visits_removed:
                await self._reload_index()
        logger.debug(
            "Expired %d visits, removed %d pages",
            expiration.visits_removed,
            len(expiration.removed_urls),
        )

        pending: list[Event] = [(DELETE_URI, url) for url in expiration.removed_urls]
        if expiration.changed:
            pending.append((MANY_LINKS_CHANGED, None))
        await self._deliver(pending)
        return expiration.visits_removed

    async def decay_all(self) -> int:
        """Re-age every page's frecency against the current time.

        Fires a single ``manyLinksChanged`` when history is not empty, never
        per-page ``linkChanged``.

        Returns:
            The number of pages whose frecency changed.
        """
        async with self._lock:
            records = await asyncio.to_thread(self._store.records)
            changed: dict[str, int] = {}
            for record in records:
                frecency = self._engine.recompute(record)
                if frecency != record.frecency:
                    changed[record.url] = frecency
            if changed:
                await asyncio.to_thread(self._store.apply_updates, changed)
                await self._reload_index()
        logger.debug("Decay pass over %d pages changed %d", len(records), len(changed))
        if records:
            await self._deliver([(MANY_LINKS_CHANGED, None)])
        return len(changed)

    async def observe(self, topic: str) -> None:
        """Handle a maintenance signal such as ``idle-daily``."""
        if topic == IDLE_DAILY_TOPIC:
            await self.decay_all()
        else:
            logger.debug("Ignoring unknown topic %r", topic)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_top_frecent_sites(self, limit: int | None = None) -> list[LinkEntry]:
        """Best pages by frecency, then last visit, then url."""
        if limit is None:
            limit = self._index.capacity
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 0:
            raise InvalidInputError(f"Invalid limit: {limit!r}")
        if limit <= self._index.capacity:
            return self._index.top(limit)
        async with self._lock:
            return await asyncio.to_thread(self._store.top_sites, limit)

    async def get_link(self, url: str) -> LinkEntry | None:
        async with self._lock:
            record = await asyncio.to_thread(self._store.get_record, url)
        return record.to_entry() if record else None

    async def count(self) -> int:
        """Total stored visits."""
        async with self._lock:
            return await asyncio.to_thread(self._store.count)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _link_changed(self, entry: LinkEntry, pending: list[Event]) -> None:
        if self._index.update(entry):
            await self._reload_index()
        pending.append((LINK_CHANGED, entry))

    async def _reload_index(self) -> None:
        entries = await asyncio.to_thread(self._store.top_sites, self._index.capacity)
        self._index.load(entries)

    async def _deliver(self, pending: list[Event]) -> None:
        # Called with the lock released, so handlers may call back into the service.
        for event, data in pending:
            await self._notifier.emit(event, data)
