"""SQLite-backed store of pages and their visits."""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from frecent_links.exceptions import InvalidInputError, NotFoundError, StoreError
from frecent_links.history.models import (
    PROVISIONAL_FRECENCY,
    LinkEntry,
    Transition,
    UrlRecord,
    Visit,
    VisitInput,
)
from frecent_links.links.checker import LinkChecker

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS places (
    id INTEGER PRIMARY KEY,
    url TEXT NOT NULL UNIQUE,
    title TEXT NOT NULL DEFAULT '',
    frecency INTEGER NOT NULL DEFAULT -1,
    last_visit_time INTEGER NOT NULL DEFAULT 0
);
CREATE TABLE IF NOT EXISTS visits (
    id INTEGER PRIMARY KEY,
    place_id INTEGER NOT NULL REFERENCES places(id) ON DELETE CASCADE,
    visit_time INTEGER NOT NULL,
    transition INTEGER NOT NULL,
    title TEXT NOT NULL DEFAULT '',
    referrer TEXT
);
CREATE INDEX IF NOT EXISTS visits_place_time ON visits(place_id, visit_time);
CREATE INDEX IF NOT EXISTS places_ranking ON places(frecency DESC, last_visit_time DESC, url);
"""


@dataclass
class StoredBatch:
    """What a committed ``add_visits`` batch touched."""

    count: int
    urls: list[str]  # affected urls, in first-seen order
    created: set[str] = field(default_factory=set)
    titles: dict[str, str] = field(default_factory=dict)  # last incoming title per url
    previous_titles: dict[str, str] = field(default_factory=dict)
    records: dict[str, UrlRecord] = field(default_factory=dict)  # settled pages


@dataclass
class Expiration:
    """Outcome of an expiration pass."""

    visits_removed: int
    removed_urls: list[str]
    touched_urls: list[str]  # pages that lost visits but still exist
    changed: dict[str, int] = field(default_factory=dict)  # new frecency per touched url


class VisitStore:
    """Append-only visit log keyed by page url.

    Every write runs in a single transaction, so a failing batch leaves the
    store unchanged. The connection is opened with ``check_same_thread=False``;
    callers are expected to serialize writes.
    """

    def __init__(self, db_path: str | Path = ":memory:"):
        self.db_path = str(db_path)
        try:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
            self._conn.executescript(_SCHEMA)
        except sqlite3.Error as e:
            raise StoreError(f"Cannot open visit store at {self.db_path}: {e}") from e

    def close(self) -> None:
        self._conn.close()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def add_visits(
        self,
        inputs: list[VisitInput],
        recompute: Callable[[UrlRecord], int] | None = None,
    ) -> StoredBatch:
        """Append one visit per input, all or nothing.

        Inputs must be complete (see ``coerce_visit_inputs``). New pages are
        created with an empty title and provisional frecency. When
        ``recompute`` is given, every affected page gets its frecency from it
        and its title from the last incoming visit in the same transaction,
        and the settled pages are returned in ``batch.records``.

        Raises:
            InvalidInputError: An input url is not eligible for history.
            StoreError: The transaction failed and was rolled back.
        """
        for item in inputs:
            if not LinkChecker.is_eligible(item.url):
                raise InvalidInputError(f"Url not allowed in history: {item.url}")

        batch = StoredBatch(count=len(inputs), urls=[])
        try:
            with self._conn:
                for item in inputs:
                    place_id, is_new = self._ensure_place(item.url)
                    if is_new:
                        batch.created.add(item.url)
                    if item.url not in batch.titles:
                        batch.urls.append(item.url)
                    batch.titles[item.url] = item.title
                    self._insert_visit(place_id, item)
                if recompute is not None:
                    self._settle_pages(batch, recompute)
        except sqlite3.Error as e:
            raise StoreError(f"Failed to add visits: {e}") from e

        logger.debug("Stored %d visits across %d pages", batch.count, len(batch.urls))
        return batch

    def _ensure_place(self, url: str) -> tuple[int, bool]:
        row = self._conn.execute("SELECT id FROM places WHERE url = ?", (url,)).fetchone()
        if row:
            return row["id"], False
        cur = self._conn.execute(
            "INSERT INTO places (url, title, frecency, last_visit_time) VALUES (?, '', ?, 0)",
            (url, PROVISIONAL_FRECENCY),
        )
        return cur.lastrowid, True

    def _insert_visit(self, place_id: int, item: VisitInput) -> None:
        self._conn.execute(
            """
            INSERT INTO visits (place_id, visit_time, transition, title, referrer)
            VALUES (?, ?, ?, ?, ?)
            """,
            (place_id, item.visit_time, int(item.transition), item.title, item.referrer),
        )
        self._conn.execute(
            "UPDATE places SET last_visit_time = MAX(last_visit_time, ?) WHERE id = ?",
            (item.visit_time, place_id),
        )

    def _settle_pages(self, batch: StoredBatch, recompute: Callable[[UrlRecord], int]) -> None:
        # Runs inside the caller's transaction; a nested ``with self._conn``
        # would commit it early.
        for url in batch.urls:
            record = self._read_record(url)
            batch.previous_titles[url] = "" if url in batch.created else record.title
            record.frecency = recompute(record)
            record.title = batch.titles[url]
            batch.records[url] = record
        self._write_derived(
            {url: r.frecency for url, r in batch.records.items()},
            {url: r.title for url, r in batch.records.items()},
        )

    def apply_updates(
        self,
        frecencies: dict[str, int] | None = None,
        titles: dict[str, str] | None = None,
    ) -> None:
        """Write derived page fields in one transaction."""
        try:
            with self._conn:
                self._write_derived(frecencies, titles)
        except sqlite3.Error as e:
            raise StoreError(f"Failed to update pages: {e}") from e

    def _write_derived(
        self,
        frecencies: dict[str, int] | None = None,
        titles: dict[str, str] | None = None,
    ) -> None:
        if frecencies:
            self._conn.executemany(
                "UPDATE places SET frecency = ? WHERE url = ?",
                [(f, url) for url, f in frecencies.items()],
            )
        if titles:
            self._conn.executemany(
                "UPDATE places SET title = ? WHERE url = ?",
                [(t, url) for url, t in titles.items()],
            )

    def remove(self, url: str) -> None:
        """Delete a page and all its visits.

        Raises:
            NotFoundError: No page is stored for ``url``.
        """
        try:
            with self._conn:
                self._conn.execute(
                    "DELETE FROM visits WHERE place_id IN (SELECT id FROM places WHERE url = ?)",
                    (url,),
                )
                cur = self._conn.execute("DELETE FROM places WHERE url = ?", (url,))
                removed = cur.rowcount
        except sqlite3.Error as e:
            raise StoreError(f"Failed to remove {url}: {e}") from e
        if not removed:
            raise NotFoundError(f"No history for {url}")

    def clear(self) -> None:
        try:
            with self._conn:
                self._conn.execute("DELETE FROM visits")
                self._conn.execute("DELETE FROM places")
        except sqlite3.Error as e:
            raise StoreError(f"Failed to clear history: {e}") from e

    def expire(
        self,
        older_than: int,
        recompute: Callable[[UrlRecord], int] | None = None,
    ) -> Expiration:
        """Drop visits older than ``older_than`` and pages left without visits.

        With ``recompute``, surviving pages that lost visits are rescored in
        the same transaction; the ones whose frecency moved are reported in
        ``changed``.
        """
        try:
            with self._conn:
                touched = [
                    row["url"]
                    for row in self._conn.execute(
                        """
                        SELECT DISTINCT p.url AS url
                        FROM places p
                        JOIN visits v ON v.place_id = p.id
                        WHERE v.visit_time < ?
                        ORDER BY p.url
                        """,
                        (older_than,),
                    ).fetchall()
                ]
                visits_removed = self._conn.execute(
                    "DELETE FROM visits WHERE visit_time < ?", (older_than,)
                ).rowcount
                removed = [
                    row["url"]
                    for row in self._conn.execute(
                        """
                        SELECT url FROM places
                        WHERE id NOT IN (SELECT DISTINCT place_id FROM visits)
                        ORDER BY url
                        """
                    ).fetchall()
                ]
                self._conn.execute(
                    "DELETE FROM places WHERE id NOT IN (SELECT DISTINCT place_id FROM visits)"
                )
                self._conn.execute(
                    """
                    UPDATE places SET last_visit_time = COALESCE(
                        (SELECT MAX(visit_time) FROM visits WHERE visits.place_id = places.id),
                        0
                    )
                    """
                )
                removed_set = set(removed)
                expiration = Expiration(
                    visits_removed=visits_removed,
                    removed_urls=removed,
                    touched_urls=[url for url in touched if url not in removed_set],
                )
                if recompute is not None:
                    for url in expiration.touched_urls:
                        record = self._read_record(url)
                        frecency = recompute(record)
                        if frecency != record.frecency:
                            expiration.changed[url] = frecency
                    self._write_derived(expiration.changed)
        except sqlite3.Error as e:
            raise StoreError(f"Failed to expire visits: {e}") from e

        return expiration

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_record(self, url: str) -> UrlRecord | None:
        try:
            return self._read_record(url)
        except sqlite3.Error as e:
            raise StoreError(f"Failed to read {url}: {e}") from e

    def _read_record(self, url: str) -> UrlRecord | None:
        row = self._conn.execute(
            "SELECT id, url, title, frecency, last_visit_time FROM places WHERE url = ?",
            (url,),
        ).fetchone()
        if row is None:
            return None
        visit_rows = self._conn.execute(
            """
            SELECT visit_time, transition, title, referrer
            FROM visits
            WHERE place_id = ?
            ORDER BY visit_time, id
            """,
            (row["id"],),
        ).fetchall()
        record = self._row_to_record(row)
        record.visits = [self._row_to_visit(url, v) for v in visit_rows]
        return record

    def records(self) -> list[UrlRecord]:
        """Every page with its visits, ordered by url."""
        try:
            place_rows = self._conn.execute(
                "SELECT id, url, title, frecency, last_visit_time FROM places ORDER BY url"
            ).fetchall()
            visit_rows = self._conn.execute(
                """
                SELECT place_id, visit_time, transition, title, referrer
                FROM visits
                ORDER BY place_id, visit_time, id
                """
            ).fetchall()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to read history: {e}") from e

        by_id: dict[int, UrlRecord] = {}
        records: list[UrlRecord] = []
        for row in place_rows:
            record = self._row_to_record(row)
            by_id[row["id"]] = record
            records.append(record)
        for v in visit_rows:
            record = by_id.get(v["place_id"])
            if record is not None:
                record.visits.append(self._row_to_visit(record.url, v))
        return records

    def top_sites(self, limit: int) -> list[LinkEntry]:
        """Pages ranked by frecency desc, last visit desc, url asc."""
        try:
            rows = self._conn.execute(
                """
                SELECT url, title, frecency, last_visit_time
                FROM places
                ORDER BY frecency DESC, last_visit_time DESC, url ASC
                LIMIT ?
                """,
                (limit,),
            ).fetchall()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to query top sites: {e}") from e
        return [
            LinkEntry(
                url=row["url"],
                title=row["title"],
                frecency=row["frecency"],
                last_visit_time=row["last_visit_time"],
            )
            for row in rows
        ]

    def count(self) -> int:
        """Total visit rows across all pages."""
        try:
            row = self._conn.execute("SELECT COUNT(*) FROM visits").fetchone()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to count visits: {e}") from e
        return int(row[0])

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> UrlRecord:
        return UrlRecord(
            url=row["url"],
            title=row["title"],
            frecency=row["frecency"],
            last_visit_time=row["last_visit_time"],
        )

    @staticmethod
    def _row_to_visit(url: str, row: sqlite3.Row) -> Visit:
        return Visit(
            url=url,
            title=row["title"],
            visit_time=row["visit_time"],
            transition=Transition(row["transition"]),
            referrer=row["referrer"],
        )
