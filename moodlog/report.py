"""
Weekly mood report for the Moodlog journal.

The report counts how often each mood was recorded during the last seven days.
Every catalog mood appears in the counts, including those recorded zero times,
and labels outside the catalog are counted under their own name after the
catalog moods.
"""

from collections.abc import AsyncGenerator, Callable, Iterable, Sequence
from contextlib import aclosing, asynccontextmanager

from pydantic import BaseModel, Field, computed_field

from .models import MOOD_CATALOG, MoodCategory, MoodEntry, now_millis
from .store import EntryStore

WEEK_MILLIS = 7 * 24 * 60 * 60 * 1000


def week_start(now: int) -> int:
    """Start of the seven-day window ending at ``now`` (ms since epoch)."""
    return now - WEEK_MILLIS


def count_moods(
    entries: Iterable[MoodEntry], catalog: Sequence[MoodCategory] = MOOD_CATALOG
) -> dict[str, int]:
    """
    Count entries per mood label.

    Args:
        entries: Entries to count
        catalog: Moods that always appear in the result, in this order

    Returns:
        Mapping of label to count, catalog labels first
    """
    frequencies = {category.name: 0 for category in catalog}
    for entry in entries:
        frequencies[entry.mood] = frequencies.get(entry.mood, 0) + 1
    return frequencies


class WeeklyReport(BaseModel):
    """Mood frequencies over one seven-day window."""

    window_start: int = Field(..., description="Window start, ms since epoch")
    window_end: int = Field(..., description="Time the report was opened")
    frequencies: dict[str, int] = Field(
        ..., description="Count per mood label, catalog order first"
    )

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_entries(self) -> int:
        return sum(self.frequencies.values())

    @computed_field  # type: ignore[prop-decorator]
    @property
    def most_common_mood(self) -> str | None:
        """The first label with the highest count, or None if nothing was recorded."""
        if not self.frequencies:
            return None
        # max() keeps the first maximum in iteration order
        label = max(self.frequencies, key=self.frequencies.__getitem__)
        return label if self.frequencies[label] > 0 else None


class ReportService:
    """
    Builds weekly reports from an entry store.

    Each report is computed from scratch from a snapshot of the window; the
    window itself is fixed when the report is opened.
    """

    def __init__(
        self,
        store: EntryStore,
        catalog: Sequence[MoodCategory] = MOOD_CATALOG,
        clock: Callable[[], int] = now_millis,
    ) -> None:
        self._store = store
        self._catalog = catalog
        self._clock = clock

    def build(
        self, entries: Iterable[MoodEntry], window_start: int, window_end: int
    ) -> WeeklyReport:
        return WeeklyReport(
            window_start=window_start,
            window_end=window_end,
            frequencies=count_moods(entries, self._catalog),
        )

    @asynccontextmanager
    async def watch(
        self, now: int | None = None
    ) -> AsyncGenerator[AsyncGenerator[WeeklyReport, None], None]:
        """
        Open a live weekly report.

        This context manager yields an async generator that produces a report
        immediately and again after every change to the store. Store errors
        propagate out of the generator.

        Args:
            now: End of the window in ms; defaults to the current time

        Yields:
            An async generator of WeeklyReport objects
        """
        window_end = self._clock() if now is None else now
        window_start = week_start(window_end)

        async with self._store.watch_since(window_start) as snapshots:

            async def report_generator() -> AsyncGenerator[WeeklyReport, None]:
                async for entries in snapshots:
                    yield self.build(entries, window_start, window_end)

            yield report_generator()

    async def compute(self, now: int | None = None) -> WeeklyReport:
        """Build a single report for the window ending at ``now``."""
        async with self.watch(now) as reports:
            async with aclosing(reports):
                return await anext(reports)
