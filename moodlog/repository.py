"""
Entry access for the presentation layers.

``MoodRepository`` is a thin façade over ``EntryStore`` expressing the
journal's user commands: add a mood, edit or delete a past entry, and observe
the history.
"""

from .errors import EntryNotFoundError
from .models import MoodEntry, now_millis
from .store import EntryStore, Subscription


class MoodRepository:
    """User-level commands over an entry store."""

    def __init__(self, store: EntryStore) -> None:
        self._store = store

    @property
    def store(self) -> EntryStore:
        return self._store

    def entries(self) -> Subscription:
        return self._store.watch_all()

    def entries_since(self, start_millis: int) -> Subscription:
        return self._store.watch_since(start_millis)

    async def list_entries(self) -> list[MoodEntry]:
        return await self._store.list_all()

    async def get_entry(self, entry_id: int) -> MoodEntry:
        return await self._store.get_by_id(entry_id)

    async def add_entry(self, mood: str, note: str = "") -> MoodEntry:
        """Record a mood stamped with the current time."""
        entry = MoodEntry(mood=mood, timestamp=now_millis(), note=note)
        return await self._store.insert(entry)

    async def edit_entry(
        self, entry_id: int, mood: str | None = None, note: str | None = None
    ) -> MoodEntry:
        """
        Change the mood and/or note of an existing entry.

        The original timestamp is carried forward unchanged.

        Raises:
            EntryNotFoundError: No entry has this id
        """
        current = await self._store.get_by_id(entry_id)
        changes: dict[str, str] = {}
        if mood is not None:
            changes["mood"] = mood
        if note is not None:
            changes["note"] = note

        updated = current.model_copy(update=changes)
        if not await self._store.update(updated):
            raise EntryNotFoundError(entry_id)
        return updated

    async def delete_entry(self, entry_id: int) -> None:
        # Only the id matters for deletion
        await self._store.delete(MoodEntry(id=entry_id, mood="", timestamp=0))
