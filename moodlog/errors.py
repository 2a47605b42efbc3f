"""
Error types raised by the Moodlog core.

Storage failures are not wrapped: ``aiosqlite.Error`` propagates to the caller
of the store operation unchanged.
"""


class EntryNotFoundError(LookupError):
    """No entry exists with the requested id."""

    def __init__(self, entry_id: int) -> None:
        super().__init__(f"Mood entry {entry_id} not found")
        self.entry_id = entry_id
