"""
Mood entry storage for the Moodlog journal.

This module provides a SQLite-backed entry store with point-in-time reads and
live queries. Live queries are exposed as ``Subscription`` handles that deliver
a fresh snapshot to each subscriber whenever a committed write changes the
stored collection.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from functools import partial
from typing import Any

import aiosqlite

from .errors import EntryNotFoundError
from .models import MoodEntry

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS mood_entries (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    mood TEXT NOT NULL,
    timestamp INTEGER NOT NULL,
    note TEXT NOT NULL DEFAULT ''
);
CREATE INDEX IF NOT EXISTS idx_mood_entries_timestamp
    ON mood_entries (timestamp);
"""

_SELECT = "SELECT id, mood, timestamp, note FROM mood_entries"
_ORDER = "ORDER BY timestamp DESC, id DESC"

Snapshot = list[MoodEntry]


def _row_to_entry(row: aiosqlite.Row) -> MoodEntry:
    return MoodEntry(
        id=row["id"], mood=row["mood"], timestamp=row["timestamp"], note=row["note"]
    )


class Subscription:
    """
    Handle for a live query.

    Iterating the handle yields the current result immediately, then a new
    result after every committed change to the store. Snapshots are coalesced:
    a slow consumer skips intermediate states and always receives the latest
    one. Closing the handle (directly or by leaving an ``async with`` block)
    ends iteration and unregisters it from the store.
    """

    def __init__(
        self, store: "EntryStore", fetch: Callable[[], Awaitable[Snapshot]]
    ) -> None:
        self._store = store
        self._fetch = fetch
        self._last_seen: int | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> Snapshot:
        changes = self._store._changes
        async with changes:
            if self._last_seen is not None:
                last_seen = self._last_seen
                await changes.wait_for(
                    lambda: self._closed or self._store._version > last_seen
                )
            if self._closed:
                raise StopAsyncIteration
            self._last_seen = self._store._version

        return await self._fetch()

    async def close(self) -> None:
        """Stop delivery and wake any consumer waiting on this handle."""
        if self._closed:
            return
        self._closed = True
        self._store._unregister(self)

        async with self._store._changes:
            self._store._changes.notify_all()

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()


class EntryStore:
    """
    Durable storage of mood entries with live queries.

    Every database operation runs under a single lock, so writes are applied
    in a total order and reads never observe an uncommitted write. Mutations
    commit before returning; a failed write is rolled back and the
    ``aiosqlite.Error`` is re-raised to the caller.
    """

    def __init__(self, database_path: str = ":memory:") -> None:
        self._database_path = database_path
        self._db: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()
        self._changes = asyncio.Condition()
        self._version = 0  # Bumped after each committed change
        self._subscriptions: set[Subscription] = set()

    # MARK: - Lifecycle

    async def open(self) -> "EntryStore":
        """Connect to the database and create the schema if needed."""
        if self._db is not None:
            return self

        db = await aiosqlite.connect(self._database_path)
        db.row_factory = aiosqlite.Row
        try:
            await db.executescript(SCHEMA)
            await db.commit()
        except aiosqlite.Error:
            await db.close()
            raise

        self._db = db
        logger.info("Opened mood entry store at %s", self._database_path)
        return self

    async def close(self) -> None:
        """End all live queries and close the database connection."""
        for subscription in list(self._subscriptions):
            await subscription.close()

        if self._db is not None:
            await self._db.close()
            self._db = None
            logger.info("Closed mood entry store at %s", self._database_path)

    async def __aenter__(self) -> "EntryStore":
        return await self.open()

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    # MARK: - Reads

    async def get_by_id(self, entry_id: int) -> MoodEntry:
        """
        Fetch a single entry.

        Raises:
            EntryNotFoundError: No entry has this id
        """
        rows = await self._query(f"{_SELECT} WHERE id = ?", (entry_id,))
        if not rows:
            raise EntryNotFoundError(entry_id)
        return rows[0]

    async def list_all(self) -> Snapshot:
        """All entries, newest first."""
        return await self._query(f"{_SELECT} {_ORDER}", ())

    async def list_since(self, start_millis: int) -> Snapshot:
        """Entries with ``timestamp >= start_millis``, newest first."""
        return await self._query(
            f"{_SELECT} WHERE timestamp >= ? {_ORDER}", (start_millis,)
        )

    # MARK: - Live queries

    def watch_all(self) -> Subscription:
        """
        Live view of ``list_all``.

        The handle is registered immediately and stays registered until it is
        closed, so callers must close it (or use it with ``async with``).
        """
        return self._subscribe(self.list_all)

    def watch_since(self, start_millis: int) -> Subscription:
        """Live view of ``list_since``; close the handle when done with it."""
        return self._subscribe(partial(self.list_since, start_millis))

    # MARK: - Writes

    async def insert(self, entry: MoodEntry) -> MoodEntry:
        """
        Persist an entry.

        An entry without an id gets a new one that has never been used before.
        An entry with an id replaces any stored entry with that id.

        Args:
            entry: The entry to store; its timestamp is kept as given

        Returns:
            The stored entry, including its id
        """
        if entry.id is None:
            entry_id, _ = await self._write(
                "INSERT INTO mood_entries (mood, timestamp, note) VALUES (?, ?, ?)",
                (entry.mood, entry.timestamp, entry.note),
            )
        else:
            entry_id, _ = await self._write(
                "INSERT OR REPLACE INTO mood_entries (id, mood, timestamp, note) "
                "VALUES (?, ?, ?, ?)",
                (entry.id, entry.mood, entry.timestamp, entry.note),
            )
        return entry.model_copy(update={"id": entry_id})

    async def update(self, entry: MoodEntry) -> bool:
        """
        Replace the stored entry with the same id.

        The caller carries the original timestamp forward; the store writes
        whatever it is given. An unknown id is not an error.

        Returns:
            Whether a stored entry was changed
        """
        if entry.id is None:
            return False

        _, changed = await self._write(
            "UPDATE mood_entries SET mood = ?, timestamp = ?, note = ? WHERE id = ?",
            (entry.mood, entry.timestamp, entry.note, entry.id),
        )
        return changed > 0

    async def delete(self, entry: MoodEntry) -> None:
        """Remove the entry with the same id; unknown ids are ignored."""
        if entry.id is None:
            return

        await self._write("DELETE FROM mood_entries WHERE id = ?", (entry.id,))

    # MARK: - Private Helpers

    @property
    def _connection(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("EntryStore is not open")
        return self._db

    async def _query(self, sql: str, params: tuple[Any, ...]) -> Snapshot:
        db = self._connection
        async with self._lock:
            async with db.execute(sql, params) as cursor:
                rows = await cursor.fetchall()
        return [_row_to_entry(row) for row in rows]

    async def _write(self, sql: str, params: tuple[Any, ...]) -> tuple[int, int]:
        """Execute and commit one statement, returning (lastrowid, rowcount)."""
        db = self._connection
        async with self._lock:
            try:
                cursor = await db.execute(sql, params)
                await db.commit()
            except aiosqlite.Error:
                logger.exception("Write failed, rolling back: %s", sql)
                await db.rollback()
                raise
            result = (cursor.lastrowid, cursor.rowcount)
            await cursor.close()

        if result[1] > 0:
            await self._publish()
        return result

    async def _publish(self) -> None:
        async with self._changes:
            self._version += 1
            self._changes.notify_all()

    def _subscribe(self, fetch: Callable[[], Awaitable[Snapshot]]) -> Subscription:
        subscription = Subscription(self, fetch)
        self._subscriptions.add(subscription)
        logger.debug("Live query opened (%d active)", len(self._subscriptions))
        return subscription

    def _unregister(self, subscription: Subscription) -> None:
        self._subscriptions.discard(subscription)
        logger.debug("Live query closed (%d active)", len(self._subscriptions))
