"""
Shared data models for the Moodlog journal.

This module defines the core domain models used across multiple layers
of the application (storage, reporting, CLI, API).
"""

import time
from datetime import datetime

from pydantic import BaseModel, Field

TIMESTAMP_FORMAT = "%d %b %Y, %I:%M %p"
DATE_FORMAT = "%d %b %Y"
FALLBACK_EMOJI = "🔘"


def now_millis() -> int:
    """Current time in milliseconds since the epoch."""
    return int(time.time() * 1000)


class MoodEntry(BaseModel):
    """A single recorded mood with an optional note."""

    id: int | None = Field(None, description="Identifier assigned by the store")
    mood: str = Field(..., description="Mood label, normally a catalog name")
    timestamp: int = Field(
        default_factory=now_millis,
        description="Creation time in milliseconds since the epoch",
    )
    note: str = Field("", description="Free-form note")

    def _local_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.timestamp / 1000)

    def formatted_timestamp(self) -> str:
        """Creation time as e.g. ``05 Mar 2024, 02:07 PM`` (local time)."""
        return self._local_datetime().strftime(TIMESTAMP_FORMAT)

    def formatted_date(self) -> str:
        """Creation date as e.g. ``05 Mar 2024`` (local time)."""
        return self._local_datetime().strftime(DATE_FORMAT)


class MoodCategory(BaseModel):
    """A recognized mood: the label stored on entries and its visual marker."""

    name: str
    emoji: str

    def display(self) -> str:
        return f"{self.name} {self.emoji}"


MOOD_CATALOG: tuple[MoodCategory, ...] = (
    MoodCategory(name="Happy", emoji="😊"),
    MoodCategory(name="Calm", emoji="🙂"),
    MoodCategory(name="Neutral", emoji="😐"),
    MoodCategory(name="Sad", emoji="😟"),
    MoodCategory(name="Anxious", emoji="😬"),
)

MOOD_LABELS: tuple[str, ...] = tuple(category.name for category in MOOD_CATALOG)


def find_mood(label: str) -> MoodCategory | None:
    """Look up a catalog category by its label."""
    for category in MOOD_CATALOG:
        if category.name == label:
            return category
    return None


def mood_emoji(label: str) -> str:
    """Visual marker for a label, with a placeholder for off-catalog labels."""
    category = find_mood(label)
    return category.emoji if category else FALLBACK_EMOJI
