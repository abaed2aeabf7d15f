"""Google Calendar tool server — events, daily agenda, free slots, event creation.

Registered under the server name ``calendar`` (connector ``google-calendar``).

Run: ``python -m agent_server.toolservers.google_calendar``
"""

from __future__ import annotations

import logging
import os
from datetime import date, datetime, timedelta, timezone
from typing import Any

import httpx

from agent_server.toolservers.api import BearerApi, clamp, stored_token_source
from agent_server.toolservers.protocol import ToolServer
from agent_server.toolservers.storage import StorageClient
from agent_server.toolservers.transport import run

logger = logging.getLogger(__name__)

GOOGLE_API_BASE_URL = "https://www.googleapis.com"
_EVENTS = "/calendar/v3/calendars/primary/events"

# Working-day window searched for free slots, local time.
WORKDAY_START_HOUR = 8
WORKDAY_END_HOUR = 18


def parse_iso(value: str) -> datetime:
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)


def _local(day: str, hour: int, minute: int = 0, second: int = 0) -> datetime:
    return datetime.fromisoformat(day).replace(hour=hour, minute=minute, second=second).astimezone()


def find_free_slots(
    busy: list[tuple[datetime, datetime]],
    window_start: datetime,
    window_end: datetime,
    duration: timedelta,
) -> list[tuple[datetime, datetime]]:
    """Gaps of at least ``duration`` between busy intervals inside the window."""
    slots = []
    cursor = window_start
    for busy_start, busy_end in sorted(busy):
        busy_start = min(busy_start, window_end)
        if busy_start > cursor and busy_start - cursor >= duration:
            slots.append((cursor, busy_start))
        cursor = max(cursor, busy_end)
    if window_end > cursor and window_end - cursor >= duration:
        slots.append((cursor, window_end))
    return slots


def format_event(event: dict[str, Any]) -> str:
    start_raw = (event.get("start") or {}).get("dateTime") or (event.get("start") or {}).get("date")
    end_raw = (event.get("end") or {}).get("dateTime") or (event.get("end") or {}).get("date")
    if start_raw and end_raw:
        start, end = parse_iso(start_raw), parse_iso(end_raw)
        minutes = round((end - start).total_seconds() / 60)
        when = f"{start.strftime('%Y-%m-%d %H:%M')} ({minutes} min)"
    else:
        when = "Unknown"

    lines = [f"**{event.get('summary') or 'Untitled'}**", f"Time: {when}"]
    if event.get("location"):
        lines.append(f"Location: {event['location']}")
    attendees = [a.get("email", "") for a in event.get("attendees") or []]
    if attendees:
        lines.append(f"Attendees: {', '.join(attendees)}")
    if event.get("description"):
        lines.append(f"Description: {event['description']}")
    lines.append(f"ID: {event.get('id')}")
    return "\n".join(lines)


def create_server(
    storage: StorageClient | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ToolServer:
    storage = storage or StorageClient.from_env(transport=transport)
    api = BearerApi(
        GOOGLE_API_BASE_URL,
        stored_token_source(storage, "google-calendar", "Google Calendar"),
        label="Calendar",
        transport=transport,
    )
    server = ToolServer("calendar")

    async def list_events(time_min: str, time_max: str, max_results: int | None = None) -> list[dict]:
        data = await api.get(
            _EVENTS,
            maxResults=max_results,
            orderBy="startTime",
            singleEvents="true",
            timeMin=time_min,
            timeMax=time_max,
        )
        return data.get("items") or []

    @server.tool(
        "calendar_list_events",
        "List upcoming calendar events from Google Calendar.",
        {
            "type": "object",
            "properties": {
                "maxResults": {"type": "number", "description": "Number of events (default 10)"},
                "timeMin": {"type": "string", "description": "Start time in ISO 8601 format (default: now)"},
                "timeMax": {"type": "string", "description": "End time in ISO 8601 format (default: 7 days from now)"},
            },
        },
    )
    async def calendar_list_events(args: dict[str, Any]) -> str:
        now = datetime.now(timezone.utc)
        items = await list_events(
            str(args.get("timeMin") or now.isoformat()),
            str(args.get("timeMax") or (now + timedelta(days=7)).isoformat()),
            clamp(args.get("maxResults"), 10, 50),
        )
        if not items:
            return "No upcoming events found."
        return "\n\n---\n\n".join(format_event(e) for e in items)

    @server.tool(
        "calendar_get_agenda",
        "Get agenda for a specific day.",
        {
            "type": "object",
            "properties": {
                "date": {"type": "string", "description": "Date in YYYY-MM-DD format (default: today)"},
            },
        },
    )
    async def calendar_get_agenda(args: dict[str, Any]) -> str:
        day = str(args.get("date") or date.today().isoformat())
        items = await list_events(
            _local(day, 0).isoformat(),
            _local(day, 23, 59, 59).isoformat(),
        )
        if not items:
            return f"No events on {day}."
        return f"Agenda for {day}:\n\n" + "\n\n---\n\n".join(format_event(e) for e in items)

    @server.tool(
        "calendar_find_free_slots",
        "Find free time slots in the user's calendar for scheduling.",
        {
            "type": "object",
            "properties": {
                "date": {"type": "string", "description": "Date in YYYY-MM-DD format"},
                "durationMinutes": {"type": "number", "description": "Duration of the meeting in minutes"},
            },
            "required": ["date", "durationMinutes"],
        },
    )
    async def calendar_find_free_slots(args: dict[str, Any]) -> str:
        day = str(args["date"])
        minutes = int(args["durationMinutes"])
        window_start = _local(day, WORKDAY_START_HOUR)
        window_end = _local(day, WORKDAY_END_HOUR)
        data = await api.post(
            "/calendar/v3/freeBusy",
            {
                "timeMin": window_start.isoformat(),
                "timeMax": window_end.isoformat(),
                "items": [{"id": "primary"}],
            },
        )
        busy = [
            (parse_iso(b["start"]), parse_iso(b["end"]))
            for b in ((data.get("calendars") or {}).get("primary") or {}).get("busy") or []
        ]
        slots = find_free_slots(busy, window_start, window_end, timedelta(minutes=minutes))
        if not slots:
            return f"No free slots on {day} for a {minutes}-minute meeting."
        lines = [f"• {s.astimezone().strftime('%H:%M')} – {e.astimezone().strftime('%H:%M')}" for s, e in slots]
        return f"Free slots on {day} for {minutes}-minute meeting:\n" + "\n".join(lines)

    @server.tool(
        "calendar_create_event",
        "Create a new calendar event. Requires user confirmation before creating.",
        {
            "type": "object",
            "properties": {
                "title": {"type": "string"},
                "startDateTime": {"type": "string", "description": "ISO 8601 datetime"},
                "endDateTime": {"type": "string", "description": "ISO 8601 datetime"},
                "description": {"type": "string"},
                "attendees": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Email addresses of attendees",
                },
                "location": {"type": "string"},
            },
            "required": ["title", "startDateTime", "endDateTime"],
        },
    )
    async def calendar_create_event(args: dict[str, Any]) -> str:
        tz_name = os.environ.get("TZ") or "UTC"
        event = {
            "summary": args["title"],
            "description": args.get("description"),
            "location": args.get("location"),
            "start": {"dateTime": args["startDateTime"], "timeZone": tz_name},
            "end": {"dateTime": args["endDateTime"], "timeZone": tz_name},
            "attendees": [{"email": e} for e in args.get("attendees") or []],
        }
        created = await api.post(_EVENTS, event)
        logger.info(f"Created calendar event {created.get('id')}")
        return f'Event created: "{args["title"]}"\nLink: {created.get("htmlLink", "")}'

    return server


def main() -> None:
    run(create_server())


if __name__ == "__main__":
    main()
