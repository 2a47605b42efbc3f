"""
Tests for the EntryStore implementation.

These tests verify the core functionality of the entry storage system,
including CRUD, ordering, time-windowed reads, durability and live queries.
"""

import asyncio

import aiosqlite
import pytest

from moodlog.errors import EntryNotFoundError
from moodlog.models import MoodEntry
from moodlog.store import EntryStore

NOW = 1_700_000_000_000
HOUR = 60 * 60 * 1000


class TestEntryStore:
    """Test suite for EntryStore CRUD and queries."""

    @pytest.fixture(autouse=True)
    async def open_store(self):
        """Set up a fresh in-memory EntryStore for each test."""
        self.store = EntryStore()
        async with self.store:
            yield

    async def test_insert_and_get_round_trip(self):
        """Test that an inserted entry reads back equal in every field."""
        stored = await self.store.insert(
            MoodEntry(mood="Happy", timestamp=NOW, note="sunny walk")
        )

        assert stored.id is not None
        fetched = await self.store.get_by_id(stored.id)
        assert fetched == stored
        assert fetched.mood == "Happy"
        assert fetched.timestamp == NOW
        assert fetched.note == "sunny walk"

    async def test_note_defaults_to_empty(self):
        stored = await self.store.insert(MoodEntry(mood="Calm", timestamp=NOW))
        assert (await self.store.get_by_id(stored.id)).note == ""

    async def test_mood_is_stored_as_given(self):
        """Test that the store accepts labels outside the catalog, even empty ones."""
        odd = await self.store.insert(MoodEntry(mood="Ecstatic 🤩", timestamp=NOW))
        empty = await self.store.insert(MoodEntry(mood="", timestamp=NOW))

        assert (await self.store.get_by_id(odd.id)).mood == "Ecstatic 🤩"
        assert (await self.store.get_by_id(empty.id)).mood == ""

    async def test_get_unknown_id(self):
        with pytest.raises(EntryNotFoundError) as excinfo:
            await self.store.get_by_id(42)
        assert excinfo.value.entry_id == 42

    async def test_ids_increase_and_are_not_reused(self):
        """Test that a deleted id is never handed out again."""
        first = await self.store.insert(MoodEntry(mood="Happy", timestamp=NOW))
        second = await self.store.insert(MoodEntry(mood="Sad", timestamp=NOW))
        assert second.id > first.id

        await self.store.delete(second)
        third = await self.store.insert(MoodEntry(mood="Calm", timestamp=NOW))
        assert third.id > second.id

    async def test_insert_with_existing_id_replaces(self):
        original = await self.store.insert(MoodEntry(mood="Happy", timestamp=NOW))

        await self.store.insert(
            MoodEntry(id=original.id, mood="Sad", timestamp=NOW + 1, note="replaced")
        )

        entries = await self.store.list_all()
        assert len(entries) == 1
        assert entries[0] == MoodEntry(
            id=original.id, mood="Sad", timestamp=NOW + 1, note="replaced"
        )

    async def test_update_preserves_identity_and_timestamp(self):
        """Test that update replaces mood and note while keeping the timestamp."""
        original = await self.store.insert(MoodEntry(mood="Neutral", timestamp=NOW))

        edited = original.model_copy(update={"mood": "Calm", "note": "better now"})
        assert await self.store.update(edited) is True

        fetched = await self.store.get_by_id(original.id)
        assert fetched == edited
        assert fetched.timestamp == NOW

    async def test_update_unknown_id_changes_nothing(self):
        """Test that updating a missing entry is not an error."""
        kept = await self.store.insert(MoodEntry(mood="Happy", timestamp=NOW))

        assert await self.store.update(MoodEntry(id=999, mood="Sad", timestamp=NOW)) is False
        assert await self.store.update(MoodEntry(mood="Sad", timestamp=NOW)) is False
        assert await self.store.list_all() == [kept]

    async def test_delete_is_idempotent(self):
        """Test that repeated and unknown deletes never fail."""
        kept = await self.store.insert(MoodEntry(mood="Happy", timestamp=NOW))
        doomed = await self.store.insert(MoodEntry(mood="Sad", timestamp=NOW + 1))

        await self.store.delete(doomed)
        await self.store.delete(doomed)
        await self.store.delete(MoodEntry(id=12345, mood="Calm", timestamp=0))

        assert await self.store.list_all() == [kept]

    async def test_list_all_newest_first(self):
        """Test ordering by timestamp descending, ties broken by id descending."""
        middle = await self.store.insert(MoodEntry(mood="Calm", timestamp=NOW))
        oldest = await self.store.insert(MoodEntry(mood="Sad", timestamp=NOW - HOUR))
        newest = await self.store.insert(MoodEntry(mood="Happy", timestamp=NOW + HOUR))
        tied = await self.store.insert(MoodEntry(mood="Anxious", timestamp=NOW))

        entries = await self.store.list_all()
        assert [e.id for e in entries] == [newest.id, tied.id, middle.id, oldest.id]

    async def test_list_since_is_a_window_of_list_all(self):
        """Test that list_since keeps exactly the entries at or after the start."""
        for offset in (-3, -2, -1, 0, 1):
            await self.store.insert(MoodEntry(mood="Happy", timestamp=NOW + offset * HOUR))

        all_entries = await self.store.list_all()
        window = await self.store.list_since(NOW - HOUR)

        assert window == [e for e in all_entries if e.timestamp >= NOW - HOUR]
        assert [e.timestamp for e in window] == [NOW + HOUR, NOW, NOW - HOUR]
        assert await self.store.list_since(NOW + 2 * HOUR) == []

    async def test_concurrent_inserts_are_all_kept(self):
        """Test that writes issued together all land with distinct ids."""
        stored = await asyncio.gather(
            *(
                self.store.insert(MoodEntry(mood="Happy", timestamp=NOW + i))
                for i in range(20)
            )
        )

        assert len({entry.id for entry in stored}) == 20
        assert len(await self.store.list_all()) == 20


class TestEntryStoreLifecycle:
    """Test suite for opening, closing and persisting the store."""

    async def test_entries_survive_reopen(self, tmp_path):
        """Test that committed writes are durable across connections."""
        path = str(tmp_path / "moods.db")

        async with EntryStore(path) as store:
            first = await store.insert(MoodEntry(mood="Happy", timestamp=NOW, note="a"))
            second = await store.insert(MoodEntry(mood="Sad", timestamp=NOW + 1))
            await store.delete(second)

        async with EntryStore(path) as store:
            assert await store.list_all() == [first]
            third = await store.insert(MoodEntry(mood="Calm", timestamp=NOW + 2))
            assert third.id > second.id

    async def test_open_is_idempotent(self):
        store = EntryStore()
        await store.open()
        await store.open()
        await store.insert(MoodEntry(mood="Happy", timestamp=NOW))
        assert len(await store.list_all()) == 1
        await store.close()

    async def test_storage_failure_propagates(self, tmp_path):
        """Test that the database error reaches the caller unchanged."""
        store = EntryStore(str(tmp_path))  # A directory is not a database file
        with pytest.raises(aiosqlite.Error):
            await store.open()

    async def test_store_must_be_open(self):
        with pytest.raises(RuntimeError):
            await EntryStore().list_all()


class TestLiveQueries:
    """Test suite for watch_all and watch_since subscriptions."""

    @pytest.fixture(autouse=True)
    async def open_store(self):
        self.store = EntryStore()
        async with self.store:
            yield

    async def test_two_subscribers_see_every_change(self):
        """Test that two consumers receive the initial state and later updates."""
        consumer1_snapshots = []
        consumer2_snapshots = []

        async def consume(snapshots):
            async with self.store.watch_all() as subscription:
                async for entries in subscription:
                    snapshots.append([e.mood for e in entries])
                    if len(entries) >= 2:
                        break

        # Start both consumers
        task1 = asyncio.create_task(consume(consumer1_snapshots))
        task2 = asyncio.create_task(consume(consumer2_snapshots))

        # Let them set up
        await asyncio.sleep(0.01)

        await self.store.insert(MoodEntry(mood="Happy", timestamp=NOW))
        await asyncio.sleep(0.01)
        await self.store.insert(MoodEntry(mood="Sad", timestamp=NOW + 1))

        try:
            await asyncio.wait_for(asyncio.gather(task1, task2), timeout=2.0)
        except TimeoutError:
            task1.cancel()
            task2.cancel()
            await asyncio.gather(task1, task2, return_exceptions=True)
            assert False, (
                f"Test timed out. Consumer1 got: {consumer1_snapshots}, "
                f"Consumer2 got: {consumer2_snapshots}"
            )

        for snapshots in (consumer1_snapshots, consumer2_snapshots):
            assert snapshots[0] == []
            assert snapshots[-1] == ["Sad", "Happy"]

        assert self.store.subscriber_count == 0

    async def test_watch_since_ignores_entries_outside_window(self):
        await self.store.insert(MoodEntry(mood="Sad", timestamp=NOW - 2 * HOUR))

        async with self.store.watch_since(NOW - HOUR) as subscription:
            assert await anext(subscription) == []

            inside = await self.store.insert(MoodEntry(mood="Happy", timestamp=NOW))
            assert await asyncio.wait_for(anext(subscription), timeout=2.0) == [inside]

    async def test_snapshot_after_update_and_delete(self):
        entry = await self.store.insert(MoodEntry(mood="Neutral", timestamp=NOW))

        async with self.store.watch_all() as subscription:
            assert await anext(subscription) == [entry]

            edited = entry.model_copy(update={"note": "edited"})
            await self.store.update(edited)
            assert await asyncio.wait_for(anext(subscription), timeout=2.0) == [edited]

            await self.store.delete(edited)
            assert await asyncio.wait_for(anext(subscription), timeout=2.0) == []

    async def test_handle_is_registered_until_closed(self):
        """Test that an unused handle holds its slot until it is closed."""
        subscription = self.store.watch_since(NOW)
        assert self.store.subscriber_count == 1

        await subscription.close()
        assert self.store.subscriber_count == 0

    async def test_close_ends_waiting_consumer(self):
        """Test that disposing of a handle stops delivery and releases it."""
        subscription = self.store.watch_all()
        received = []

        async def consume():
            async for entries in subscription:
                received.append(entries)

        task = asyncio.create_task(consume())
        await asyncio.sleep(0.01)
        assert self.store.subscriber_count == 1

        await subscription.close()
        await asyncio.wait_for(task, timeout=2.0)

        assert received == [[]]
        assert subscription.closed
        assert self.store.subscriber_count == 0

    async def test_store_close_ends_subscriptions(self):
        subscription = self.store.watch_all()
        assert await anext(subscription) == []

        waiter = asyncio.create_task(anext(subscription))
        await asyncio.sleep(0.01)
        await self.store.close()

        with pytest.raises(StopAsyncIteration):
            await asyncio.wait_for(waiter, timeout=2.0)
        assert self.store.subscriber_count == 0


class TestFailedWrites:
    """Test suite for writes rejected by the database."""

    @pytest.fixture(autouse=True)
    async def open_store(self):
        self.store = EntryStore()
        async with self.store:
            yield

    async def _reject(self, event: str) -> None:
        """Make every ``event`` (INSERT/UPDATE/DELETE) on the table fail."""
        db = self.store._connection
        await db.execute(
            f"CREATE TRIGGER reject_{event.lower()} BEFORE {event} ON mood_entries "
            "BEGIN SELECT RAISE(ABORT, 'disk full'); END"
        )
        await db.commit()

    async def _allow(self, event: str) -> None:
        db = self.store._connection
        await db.execute(f"DROP TRIGGER reject_{event.lower()}")
        await db.commit()

    async def test_failed_insert_keeps_prior_state(self):
        """Test that a rejected insert raises and leaves stored entries untouched."""
        kept = await self.store.insert(MoodEntry(mood="Happy", timestamp=NOW))
        await self._reject("INSERT")

        with pytest.raises(aiosqlite.Error, match="disk full"):
            await self.store.insert(MoodEntry(mood="Sad", timestamp=NOW + 1))
        assert await self.store.list_all() == [kept]

        await self._allow("INSERT")
        later = await self.store.insert(MoodEntry(mood="Calm", timestamp=NOW + 2))
        assert later.id > kept.id
        assert await self.store.list_all() == [later, kept]

    async def test_failed_update_keeps_prior_state(self):
        kept = await self.store.insert(MoodEntry(mood="Neutral", timestamp=NOW))
        await self._reject("UPDATE")

        with pytest.raises(aiosqlite.Error, match="disk full"):
            await self.store.update(kept.model_copy(update={"mood": "Sad"}))
        assert await self.store.list_all() == [kept]

        await self._allow("UPDATE")
        edited = kept.model_copy(update={"note": "retried"})
        assert await self.store.update(edited) is True
        assert await self.store.list_all() == [edited]

    async def test_failed_delete_keeps_prior_state(self):
        kept = await self.store.insert(MoodEntry(mood="Anxious", timestamp=NOW))
        await self._reject("DELETE")

        with pytest.raises(aiosqlite.Error, match="disk full"):
            await self.store.delete(kept)
        assert await self.store.list_all() == [kept]

        await self._allow("DELETE")
        await self.store.delete(kept)
        assert await self.store.list_all() == []

    async def test_failed_write_does_not_notify_subscribers(self):
        kept = await self.store.insert(MoodEntry(mood="Happy", timestamp=NOW))
        await self._reject("INSERT")

        async with self.store.watch_all() as subscription:
            assert await anext(subscription) == [kept]

            with pytest.raises(aiosqlite.Error):
                await self.store.insert(MoodEntry(mood="Sad", timestamp=NOW + 1))

            with pytest.raises(TimeoutError):
                await asyncio.wait_for(anext(subscription), timeout=0.1)
