"""
Command-line interface for the Moodlog service.
"""

import asyncio
import json
from collections.abc import Callable, Coroutine
from typing import Any

import httpx
import typer
from httpx_sse import ServerSentEvent, aconnect_sse

from .config import get_settings
from .models import MoodEntry, mood_emoji
from .report import WeeklyReport

app = typer.Typer(help="Moodlog CLI tools")


def _url_option() -> Any:
    return typer.Option(
        get_settings().base_url, "--url", "-u", help="Base URL of the Moodlog service"
    )


# MARK: - Commands


@app.command()
def moods(base_url: str = _url_option()) -> None:
    """List the moods that can be recorded."""

    async def _moods() -> None:
        async with httpx.AsyncClient(base_url=base_url) as client:
            response = await client.get("/moods")
            response.raise_for_status()
            for category in response.json():
                print(f"{category['emoji']} {category['name']}")

    _run_with_error_handling(_moods(), base_url)


@app.command()
def add(
    mood: str = typer.Argument(..., help="The mood to record, e.g. Happy"),
    note: str = typer.Option("", "--note", "-n", help="Optional note"),
    base_url: str = _url_option(),
) -> None:
    """Record how you feel right now."""

    async def _add() -> None:
        async with httpx.AsyncClient(base_url=base_url) as client:
            response = await client.post("/entries", json={"mood": mood, "note": note})
            response.raise_for_status()
            entry = MoodEntry.model_validate(response.json()["entry"])
            print(f"Recorded: {_format_entry(entry)}")

    _run_with_error_handling(_add(), base_url)


@app.command("list")
def list_entries(
    base_url: str = _url_option(),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output raw JSON"),
) -> None:
    """Show the mood history, newest first."""

    async def _list() -> None:
        async with httpx.AsyncClient(base_url=base_url) as client:
            response = await client.get("/entries")
            response.raise_for_status()
            result = response.json()

            if json_output:
                print(json.dumps(result, indent=2, ensure_ascii=False))
                return

            _print_entries(
                [MoodEntry.model_validate(item) for item in result["entries"]]
            )

    _run_with_error_handling(_list(), base_url)


@app.command()
def show(
    entry_id: int = typer.Argument(..., help="Entry id"),
    base_url: str = _url_option(),
) -> None:
    """Show a single entry."""

    async def _show() -> None:
        async with httpx.AsyncClient(base_url=base_url) as client:
            response = await client.get(f"/entries/{entry_id}")
            if response.status_code == 404:
                print("Entry not found")
                return
            response.raise_for_status()
            entry = MoodEntry.model_validate(response.json()["entry"])
            print(_format_entry(entry))

    _run_with_error_handling(_show(), base_url)


@app.command()
def edit(
    entry_id: int = typer.Argument(..., help="Entry id"),
    mood: str | None = typer.Option(None, "--mood", "-m", help="New mood"),
    note: str | None = typer.Option(None, "--note", "-n", help="New note"),
    base_url: str = _url_option(),
) -> None:
    """Change the mood or note of an entry."""
    if mood is None and note is None:
        print("Nothing to change: pass --mood and/or --note")
        raise typer.Exit(1)

    async def _edit() -> None:
        async with httpx.AsyncClient(base_url=base_url) as client:
            response = await client.put(
                f"/entries/{entry_id}", json={"mood": mood, "note": note}
            )
            if response.status_code == 404:
                print("Entry not found")
                raise typer.Exit(1)
            response.raise_for_status()
            entry = MoodEntry.model_validate(response.json()["entry"])
            print(f"Updated: {_format_entry(entry)}")

    _run_with_error_handling(_edit(), base_url)


@app.command()
def delete(
    entry_id: int = typer.Argument(..., help="Entry id"),
    base_url: str = _url_option(),
) -> None:
    """Delete an entry."""

    async def _delete() -> None:
        async with httpx.AsyncClient(base_url=base_url) as client:
            response = await client.delete(f"/entries/{entry_id}")
            response.raise_for_status()
            print(f"Deleted entry #{entry_id}")

    _run_with_error_handling(_delete(), base_url)


@app.command()
def report(
    base_url: str = _url_option(),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output raw JSON"),
) -> None:
    """Show mood frequencies over the last seven days."""

    async def _report() -> None:
        async with httpx.AsyncClient(base_url=base_url) as client:
            response = await client.get("/report/weekly")
            response.raise_for_status()
            result = response.json()

            if json_output:
                print(json.dumps(result, indent=2, ensure_ascii=False))
                return

            print(_format_report(WeeklyReport.model_validate(result["report"])))

    _run_with_error_handling(_report(), base_url)


@app.command()
def stream(base_url: str = _url_option()) -> None:
    """Stream the mood history in real-time."""

    async def _stream() -> None:
        print(f"Streaming from {base_url}/entries/stream... (Ctrl+C to stop)")

        async with httpx.AsyncClient(timeout=None) as client:
            async with aconnect_sse(
                client, "GET", f"{base_url}/entries/stream"
            ) as event_source:
                async for sse in event_source.aiter_sse():
                    _handle_sse_event(sse, _print_history_event)

    _run_with_error_handling(_stream(), base_url)


@app.command("stream-report")
def stream_report(base_url: str = _url_option()) -> None:
    """Stream the weekly report in real-time."""

    async def _stream() -> None:
        print(f"Streaming from {base_url}/report/weekly/stream... (Ctrl+C to stop)")

        async with httpx.AsyncClient(timeout=None) as client:
            async with aconnect_sse(
                client, "GET", f"{base_url}/report/weekly/stream"
            ) as event_source:
                async for sse in event_source.aiter_sse():
                    _handle_sse_event(sse, _print_report_event)

    _run_with_error_handling(_stream(), base_url)


# MARK: - Private Helpers


def _format_entry(entry: MoodEntry) -> str:
    """Format an entry as a single history line."""
    mood = f"{mood_emoji(entry.mood)} {entry.mood}"
    line = f"#{entry.id}  {entry.formatted_timestamp()}  {mood}"
    if entry.note:
        line += f"  {entry.note}"
    return line


def _print_entries(entries: list[MoodEntry]) -> None:
    if not entries:
        print("No moods logged yet")
        return
    for entry in entries:
        print(_format_entry(entry))


def _format_report(weekly: WeeklyReport) -> str:
    """Format a weekly report as a bar chart followed by statistics."""
    lines = ["Last 7 Days"]
    for label, count in weekly.frequencies.items():
        lines.append(f"{mood_emoji(label)} {label:<10} {'█' * count} {count}")

    lines.append(f"Total Entries: {weekly.total_entries}")
    if weekly.most_common_mood is not None:
        lines.append(f"Most Common: {weekly.most_common_mood}")
    return "\n".join(lines)


def _print_history_event(data: dict[str, Any]) -> None:
    print("---")
    _print_entries([MoodEntry.model_validate(item) for item in data["entries"]])


def _print_report_event(data: dict[str, Any]) -> None:
    print("---")
    print(_format_report(WeeklyReport.model_validate(data["report"])))


def _handle_sse_event(
    sse: ServerSentEvent, render: Callable[[dict[str, Any]], None]
) -> None:
    """Handle a single SSE event."""
    try:
        # Handle error events from server
        if sse.event == "error":
            error_data = json.loads(sse.data)
            print(f"Server error: {error_data.get('error', 'Unknown error')}")
            return

        render(json.loads(sse.data))

    except json.JSONDecodeError as e:
        print(f"Warning: Could not parse SSE data: {sse.data} - {e}")
    except Exception as e:
        print(f"Warning: Error processing event data: {e}")


def _run_with_error_handling(coro: Coroutine[Any, Any, Any], base_url: str) -> None:
    """Run an async coroutine with standardized error handling."""
    try:
        asyncio.run(coro)
    except KeyboardInterrupt:
        print("\nStopped")
        raise typer.Exit(0)
    except typer.Exit:
        raise
    except httpx.ConnectError:
        print(f"Error: Could not connect to {base_url}")
        raise typer.Exit(1)
    except httpx.HTTPStatusError as e:
        print(f"Error: HTTP {e.response.status_code}")
        raise typer.Exit(1)
    except Exception as e:
        error_msg = str(e) if str(e) else f"Unknown error of type {type(e).__name__}"
        print(f"Error: {error_msg}")
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
