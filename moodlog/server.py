"""
FastAPI server for the Moodlog journal.

This module implements the HTTP API over the entry store and the weekly report.
The two live queries (history and weekly report) are available as Server-Sent
Events streams. Mood values in request bodies are checked against the catalog
here; the store itself accepts any label.
"""

import json
import logging
from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager

import aiosqlite
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field, field_validator

from . import __version__
from .config import get_settings
from .errors import EntryNotFoundError
from .models import MOOD_CATALOG, MOOD_LABELS, MoodCategory, MoodEntry
from .report import ReportService, WeeklyReport
from .repository import MoodRepository
from .store import EntryStore

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "*",
}


def _check_mood(value: str) -> str:
    if value not in MOOD_LABELS:
        raise ValueError(f"Unknown mood {value!r}, expected one of {list(MOOD_LABELS)}")
    return value


# API Request/Response Schemas
class EntryCreate(BaseModel):
    """Payload for recording a new mood."""

    mood: str = Field(..., description="A mood from the catalog")
    note: str = Field("", description="Optional note")

    @field_validator("mood")
    @classmethod
    def mood_in_catalog(cls, value: str) -> str:
        return _check_mood(value)


class EntryUpdate(BaseModel):
    """Payload for editing an entry; omitted fields are left unchanged."""

    mood: str | None = Field(None, description="A mood from the catalog")
    note: str | None = Field(None, description="Replacement note")

    @field_validator("mood")
    @classmethod
    def mood_in_catalog(cls, value: str | None) -> str | None:
        return None if value is None else _check_mood(value)


class EntryResponse(BaseModel):
    entry: MoodEntry


class EntriesResponse(BaseModel):
    entries: list[MoodEntry]


class ReportResponse(BaseModel):
    report: WeeklyReport


def create_app(store: EntryStore) -> FastAPI:
    """
    Create a FastAPI application serving the given entry store.

    Args:
        store: The EntryStore instance to use; it is opened and closed with
            the application

    Returns:
        Configured FastAPI application
    """
    repository = MoodRepository(store)
    reports = ReportService(store)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Lifespan context manager for FastAPI application."""
        await store.open()
        yield
        await store.close()

    app = FastAPI(
        title="Moodlog",
        description="A mood journal with a weekly report",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.store = store

    @app.exception_handler(EntryNotFoundError)
    async def entry_not_found(
        request: Request, exc: EntryNotFoundError
    ) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.get("/")
    async def root() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok", "service": "moodlog"}

    @app.get("/moods")
    async def list_moods() -> list[MoodCategory]:
        """The mood catalog, in display order."""
        return list(MOOD_CATALOG)

    # MARK: - Entries

    @app.get("/entries")
    async def list_entries() -> EntriesResponse:
        """All entries, newest first."""
        try:
            entries = await repository.list_entries()
        except aiosqlite.Error as e:
            raise HTTPException(status_code=500, detail=f"Failed to list entries: {e}")
        return EntriesResponse(entries=entries)

    @app.get("/entries/stream")
    async def stream_entries() -> StreamingResponse:
        """
        Stream the entry history via Server-Sent Events.

        The current history is sent on connection, then again after every
        change.
        """

        async def payloads() -> AsyncGenerator[str, None]:
            async with repository.entries() as snapshots:
                async for entries in snapshots:
                    yield EntriesResponse(entries=entries).model_dump_json()

        return _event_stream(payloads())

    @app.get("/entries/{entry_id}")
    async def get_entry(entry_id: int) -> EntryResponse:
        try:
            entry = await repository.get_entry(entry_id)
        except aiosqlite.Error as e:
            raise HTTPException(status_code=500, detail=f"Failed to read entry: {e}")
        return EntryResponse(entry=entry)

    @app.post("/entries", status_code=201)
    async def add_entry(payload: EntryCreate) -> EntryResponse:
        """Record a mood stamped with the current time."""
        try:
            entry = await repository.add_entry(payload.mood, payload.note)
        except aiosqlite.Error as e:
            raise HTTPException(status_code=500, detail=f"Failed to add entry: {e}")
        return EntryResponse(entry=entry)

    @app.put("/entries/{entry_id}")
    async def edit_entry(entry_id: int, payload: EntryUpdate) -> EntryResponse:
        """Change the mood and/or note of an entry; its timestamp is kept."""
        try:
            entry = await repository.edit_entry(
                entry_id, mood=payload.mood, note=payload.note
            )
        except aiosqlite.Error as e:
            raise HTTPException(status_code=500, detail=f"Failed to update entry: {e}")
        return EntryResponse(entry=entry)

    @app.delete("/entries/{entry_id}", status_code=204)
    async def delete_entry(entry_id: int) -> None:
        """Delete an entry; deleting an unknown id succeeds."""
        try:
            await repository.delete_entry(entry_id)
        except aiosqlite.Error as e:
            raise HTTPException(status_code=500, detail=f"Failed to delete entry: {e}")

    # MARK: - Weekly report

    @app.get("/report/weekly")
    async def weekly_report() -> ReportResponse:
        """Mood frequencies over the last seven days."""
        try:
            report = await reports.compute()
        except aiosqlite.Error as e:
            raise HTTPException(status_code=500, detail=f"Failed to build report: {e}")
        return ReportResponse(report=report)

    @app.get("/report/weekly/stream")
    async def stream_weekly_report() -> StreamingResponse:
        """Stream the weekly report via Server-Sent Events as entries change."""

        async def payloads() -> AsyncGenerator[str, None]:
            async with reports.watch() as report_stream:
                async for report in report_stream:
                    yield ReportResponse(report=report).model_dump_json()

        return _event_stream(payloads())

    return app


def _event_stream(payloads: AsyncIterator[str]) -> StreamingResponse:
    """Wrap JSON payloads as a text/event-stream response."""

    async def event_generator() -> AsyncGenerator[str, None]:
        try:
            async for data in payloads:
                yield f"data: {data}\n\n"
        except Exception as e:
            logger.exception("Event stream failed")
            error_data = json.dumps({"error": str(e)})
            yield f"event: error\ndata: {error_data}\n\n"

    return StreamingResponse(
        event_generator(), media_type="text/event-stream", headers=SSE_HEADERS
    )


# Default app instance for the uvicorn entry point
app = create_app(EntryStore(get_settings().database_path))


def main() -> None:
    """Main entry point for the server."""
    import uvicorn

    settings = get_settings()
    logging.basicConfig(level=settings.log_level.upper())

    uvicorn.run(
        "moodlog.server:app",
        host=settings.host,
        port=settings.port,
        reload=settings.reload,
        log_level=settings.log_level,
    )


if __name__ == "__main__":
    main()
